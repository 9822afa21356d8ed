"""Step execution with idempotency bookkeeping."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from pydantic import TypeAdapter
from pydantic_core import to_jsonable_python

from .errors import (
    NonDeterminismError,
    StepExecutionError,
    WorkflowCancelledError,
    WorkflowSuspendedError,
)
from .persistence import CapturedError, StepRecord, WorkflowJournal
from .utils.retry import compute_backoff, retry_store_call

if TYPE_CHECKING:
    from .context import WorkflowContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StepOptions:
    """Per-step execution options.

    With ``retries_allowed`` a failing step is retried in-process up to
    ``max_attempts`` times, waiting ``interval_seconds * backoff_rate ** n``
    between attempts. Only the final outcome is recorded. Steps return their
    recorded JSON form; ``result_type`` validates it back into a richer type.
    """

    retries_allowed: bool = False
    max_attempts: int = 3
    interval_seconds: float = 1.0
    backoff_rate: float = 2.0
    result_type: Any = None


DEFAULT_STEP_OPTIONS = StepOptions()


class StepExecutor:
    """Runs step functions so each sequence position is recorded once."""

    def __init__(self, journal: WorkflowJournal, store_retry_attempts: int = 5) -> None:
        self._journal = journal
        self._store_retry_attempts = store_retry_attempts

    async def _store_call(self, call: Callable[[], Awaitable[T]], description: str) -> T:
        return await retry_store_call(
            call, attempts=self._store_retry_attempts, description=description
        )

    async def run_step(
        self,
        ctx: "WorkflowContext",
        step_name: str,
        fn: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        options: StepOptions = DEFAULT_STEP_OPTIONS,
    ) -> Any:
        await self._check_can_continue(ctx)
        sequence = ctx.next_sequence()

        stored = await self._store_call(
            lambda: self._journal.get_step(ctx.instance_id, sequence),
            f"Reading step {step_name}#{sequence}",
        )
        if stored is not None:
            self._check_matches(ctx, stored, step_name)
            logger.debug(
                f"Replaying step {step_name}#{sequence} for workflow {ctx.instance_id}"
            )
            return self._replay(stored, options)

        value, failure, attempts = await self._invoke(
            ctx, step_name, fn, args, kwargs or {}, options
        )
        record = StepRecord(
            instance_id=ctx.instance_id,
            step_name=step_name,
            sequence=sequence,
            attempts=attempts,
        )
        if failure is None:
            try:
                record.output = to_jsonable_python(value)
            except Exception as exc:
                failure = exc
        if failure is not None:
            record.error = CapturedError.from_exception(failure)

        stored, written = await self._store_call(
            lambda: self._journal.record_step(record),
            f"Recording step {step_name}#{sequence}",
        )
        if not written:
            self._check_matches(ctx, stored, step_name)
            logger.warning(
                f"Step {step_name}#{sequence} of workflow {ctx.instance_id} was recorded "
                "by another executor; discarding local result"
            )
            return self._replay(stored, options)

        if failure is not None:
            logger.info(
                f"Step {step_name}#{sequence} of workflow {ctx.instance_id} failed: {failure}"
            )
            raise StepExecutionError(step_name, record.error) from failure
        logger.debug(f"Step {step_name}#{sequence} of workflow {ctx.instance_id} completed")
        # the body sees the recorded form, exactly as it would on replay
        return self._replay(record, options)

    async def _check_can_continue(self, ctx: "WorkflowContext") -> None:
        if ctx.cancel_requested or await self._store_call(
            lambda: self._journal.is_cancel_requested(ctx.instance_id),
            f"Checking cancellation of {ctx.instance_id}",
        ):
            ctx.cancel_requested = True
            raise WorkflowCancelledError(f"Workflow {ctx.instance_id} was cancelled")
        if ctx.draining():
            raise WorkflowSuspendedError(
                f"Workflow {ctx.instance_id} suspended: runtime is shutting down"
            )

    def _check_matches(
        self, ctx: "WorkflowContext", stored: StepRecord, step_name: str
    ) -> None:
        if stored.step_name != step_name:
            error = NonDeterminismError(
                ctx.instance_id, stored.sequence, stored.step_name, step_name
            )
            ctx.nondeterminism = error
            raise error

    def _replay(self, stored: StepRecord, options: StepOptions) -> Any:
        if stored.error is not None:
            raise StepExecutionError(stored.step_name, stored.error)
        if options.result_type is not None:
            return TypeAdapter(options.result_type).validate_python(stored.output)
        return stored.output

    async def _invoke(
        self,
        ctx: "WorkflowContext",
        step_name: str,
        fn: Callable[..., Any],
        args: tuple,
        kwargs: dict,
        options: StepOptions,
    ) -> tuple[Any, Optional[Exception], int]:
        """Call ``fn`` with retries; return ``(value, failure, attempts)``."""
        max_attempts = max(1, options.max_attempts) if options.retries_allowed else 1
        attempt = 1
        while True:
            try:
                return await _call(fn, args, kwargs), None, attempt
            except Exception as exc:
                if attempt >= max_attempts:
                    return None, exc, attempt
                delay = options.interval_seconds * compute_backoff(
                    attempt - 1, base=options.backoff_rate, jitter=0
                )
                logger.warning(
                    f"Step {step_name} of workflow {ctx.instance_id} failed "
                    f"(attempt {attempt}/{max_attempts}): {exc}; retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1


async def _call(fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
    if inspect.iscoroutinefunction(fn):
        result = fn(*args, **kwargs)
    else:
        # plain callables may block; lambdas returning coroutines are awaited below
        result = await asyncio.to_thread(fn, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
