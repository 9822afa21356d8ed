"""Workflow engine: drives registered workflows to a recorded outcome."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Set, TypeVar

from .context import WorkflowContext, _never
from .errors import (
    InstanceConflictError,
    StoreUnavailableError,
    WorkflowFailedError,
    WorkflowSuspendedError,
)
from .persistence import (
    CapturedError,
    InstanceHeader,
    Outcome,
    WorkflowJournal,
    WorkflowStatus,
)
from .registry import WorkflowDefinition
from .steps import StepExecutor
from .utils.retry import retry_store_call

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkflowEngine:
    """Executes workflow bodies, replaying recorded steps on resumption.

    ``execute`` serves fresh invocations and recovery alike. An instance moves
    PENDING -> RUNNING -> SUCCEEDED | FAILED. RUNNING is re-entrant: executing
    it again replays its recorded steps and continues from the first
    unrecorded one. Terminal instances return their stored outcome without
    running the body.

    The header is written before the running marker, so a process that dies
    in between leaves a PENDING instance. Recovery picks those up once they
    are older than its grace period.

    Store outages are retried with backoff. If the store stays unavailable
    the error propagates and the instance is left as it was (never FAILED),
    so recovery can finish it later.
    """

    def __init__(
        self,
        journal: WorkflowJournal,
        step_executor: StepExecutor,
        executor_id: str = "local",
        draining: Callable[[], bool] = _never,
        store_retry_attempts: int = 5,
    ) -> None:
        self._journal = journal
        self._step_executor = step_executor
        self._executor_id = executor_id
        self._draining = draining
        self._store_retry_attempts = store_retry_attempts
        self._active: Dict[str, Set[WorkflowContext]] = defaultdict(set)

    async def _store_call(self, call: Callable[[], Awaitable[T]], description: str) -> T:
        return await retry_store_call(
            call, attempts=self._store_retry_attempts, description=description
        )

    async def execute(
        self,
        definition: WorkflowDefinition,
        instance_id: str,
        arguments: dict[str, Any],
    ) -> Any:
        """Run ``definition`` for ``instance_id`` until it reaches an outcome.

        Args:
            definition: Registered workflow to run.
            instance_id: Instance to create or resume.
            arguments: Serialized arguments, stored on first creation. A
                resumed instance always uses its stored arguments.

        Raises:
            InstanceConflictError: If the instance belongs to another workflow.
            WorkflowFailedError: If the instance was already recorded as FAILED.
            WorkflowSuspendedError: If the runtime began draining; the
                instance stays RUNNING.
            StoreUnavailableError: If the store stayed unreachable; the
                instance keeps its current status.
        """
        header = await self._store_call(
            lambda: self._journal.create_instance(
                InstanceHeader(
                    instance_id=instance_id,
                    workflow_name=definition.name,
                    arguments=arguments,
                    executor_id=self._executor_id,
                )
            ),
            f"Creating workflow {instance_id}",
        )
        if header.workflow_name != definition.name:
            raise InstanceConflictError(
                f"Instance {instance_id} belongs to workflow {header.workflow_name!r}, "
                f"not {definition.name!r}"
            )

        outcome = await self._store_call(
            lambda: self._journal.get_outcome(instance_id),
            f"Reading outcome of {instance_id}",
        )
        if outcome is not None:
            logger.debug(f"Workflow {instance_id} already {outcome.status.value}")
            return self._resolve(definition, instance_id, outcome)

        await self._store_call(
            lambda: self._journal.mark_running(instance_id, self._executor_id),
            f"Marking workflow {instance_id} running",
        )
        ctx = WorkflowContext(
            instance_id=instance_id,
            workflow_name=definition.name,
            step_executor=self._step_executor,
            cancel_requested=await self._store_call(
                lambda: self._journal.is_cancel_requested(instance_id),
                f"Checking cancellation of {instance_id}",
            ),
            draining=self._draining,
        )
        kwargs = definition.load_arguments(header.arguments)

        logger.info(f"Executing workflow {definition.name} instance={instance_id}")
        self._active[instance_id].add(ctx)
        try:
            result = await definition.fn(ctx, **kwargs)
            if ctx.nondeterminism is not None:
                raise ctx.nondeterminism
            payload = definition.dump_result(result)
        except WorkflowSuspendedError:
            logger.info(
                f"Workflow {instance_id} suspended after {ctx.steps_reached} step(s); "
                "left RUNNING for recovery"
            )
            raise
        except StoreUnavailableError as exc:
            logger.error(
                f"Store unavailable while running workflow {instance_id}: {exc}; "
                "left RUNNING for recovery"
            )
            raise
        except Exception as exc:
            error = exc
            if ctx.nondeterminism is not None and exc is not ctx.nondeterminism:
                # the body swallowed the mismatch and failed later
                error = ctx.nondeterminism
            stored, written = await self._store_call(
                lambda: self._journal.record_outcome(
                    instance_id,
                    Outcome(
                        status=WorkflowStatus.FAILED,
                        error=CapturedError.from_exception(error),
                        executor_id=self._executor_id,
                    ),
                ),
                f"Recording failure of {instance_id}",
            )
            if not written:
                return self._resolve(definition, instance_id, stored)
            logger.error(f"Workflow {definition.name} instance={instance_id} failed: {error}")
            if error is exc:
                raise
            raise error from exc
        finally:
            self._release(instance_id, ctx)

        stored, written = await self._store_call(
            lambda: self._journal.record_outcome(
                instance_id,
                Outcome(
                    status=WorkflowStatus.SUCCEEDED,
                    result=payload,
                    executor_id=self._executor_id,
                ),
            ),
            f"Recording result of {instance_id}",
        )
        if written:
            logger.info(f"Workflow {definition.name} instance={instance_id} succeeded")
        return self._resolve(definition, instance_id, stored)

    def cancel(self, instance_id: str) -> bool:
        """Flag in-process executions of ``instance_id``; return whether any exist."""
        contexts = self._active.get(instance_id, ())
        for ctx in contexts:
            ctx.cancel()
        return bool(contexts)

    def active_instances(self) -> list[str]:
        return [instance_id for instance_id, ctxs in self._active.items() if ctxs]

    def _release(self, instance_id: str, ctx: WorkflowContext) -> None:
        contexts = self._active.get(instance_id)
        if contexts is not None:
            contexts.discard(ctx)
            if not contexts:
                del self._active[instance_id]

    @staticmethod
    def _resolve(
        definition: WorkflowDefinition, instance_id: str, outcome: Outcome
    ) -> Any:
        if outcome.status is WorkflowStatus.SUCCEEDED:
            return definition.load_result(outcome.result)
        raise WorkflowFailedError(instance_id, outcome.error)
