"""Runtime supervisor: configuration, registration and lifecycle."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Callable, Mapping, Optional, Set

from .config import RuntimeConfig, coerce_config
from .engine import WorkflowEngine
from .errors import (
    ConfigurationError,
    RegistrationError,
    RuntimeNotLaunchedError,
    StoreUnavailableError,
    WorkflowFailedError,
    WorkflowNotFoundError,
)
from .persistence import WorkflowInstance, WorkflowJournal, WorkflowStatus
from .recovery import RecoveryScanner
from .registry import WorkflowDefinition, WorkflowFn, WorkflowRegistry
from .steps import StepExecutor
from .store import LogStore, get_store

logger = logging.getLogger(__name__)

RESERVED_ARGUMENTS = ("instance_id",)


class WorkflowHandle:
    """Handle to a started or previously recorded workflow instance."""

    def __init__(
        self,
        runtime: "Runtime",
        instance_id: str,
        task: Optional[asyncio.Task] = None,
    ) -> None:
        self.instance_id = instance_id
        self._runtime = runtime
        self._task = task

    async def get_status(self) -> WorkflowStatus:
        """Return the current status of this workflow."""
        return await self._runtime.get_workflow_status(self.instance_id)

    async def get_result(self, timeout: Optional[float] = None) -> Any:
        """Wait until the workflow completes and return its result.

        Raises ``asyncio.TimeoutError`` if *timeout* seconds elapse first.
        """
        if self._task is not None:
            return await asyncio.wait_for(asyncio.shield(self._task), timeout)
        return await asyncio.wait_for(
            self._runtime._poll_result(self.instance_id), timeout
        )


class WorkflowFunction:
    """Callable returned by :meth:`Runtime.register_workflow`.

    ``await fn(*args)`` starts a new instance and waits for its result;
    ``await fn.start(*args)`` returns a :class:`WorkflowHandle` immediately.
    Pass ``instance_id=`` to choose the id; invoking an existing id returns
    its recorded outcome or resumes it.
    """

    def __init__(self, runtime: "Runtime", definition: WorkflowDefinition) -> None:
        self._runtime = runtime
        self.definition = definition
        self.__name__ = definition.name
        self.__doc__ = definition.fn.__doc__

    @property
    def name(self) -> str:
        return self.definition.name

    async def __call__(
        self, *args: Any, instance_id: Optional[str] = None, **kwargs: Any
    ) -> Any:
        handle = await self.start(*args, instance_id=instance_id, **kwargs)
        return await handle.get_result()

    async def start(
        self, *args: Any, instance_id: Optional[str] = None, **kwargs: Any
    ) -> WorkflowHandle:
        return await self._runtime._start(self.definition, args, kwargs, instance_id)


class Runtime:
    """Owns the store connection and every component built on it.

    One runtime is constructed per process and passed to whatever needs it::

        runtime = Runtime({"name": "orders", "store_connection": url})

        @runtime.workflow()
        async def checkout(ctx, order_id: str) -> dict:
            ...

        await runtime.launch()
        await checkout("o-1")
        await runtime.shutdown()
    """

    def __init__(
        self,
        config: RuntimeConfig | Mapping[str, Any] | None = None,
        store: Optional[LogStore] = None,
    ) -> None:
        self.config = coerce_config(config)
        self.registry = WorkflowRegistry()
        self._store = store
        self._journal: Optional[WorkflowJournal] = None
        self._engine: Optional[WorkflowEngine] = None
        self._launched = False
        self._accepting = False
        self._draining = False
        self._tasks: Set[asyncio.Task] = set()

    # ── Configuration and registration ───────────────────────────────

    def configure(self, options: RuntimeConfig | Mapping[str, Any]) -> None:
        """Replace the configuration; must be called before :meth:`launch`."""
        if self._launched:
            raise ConfigurationError("Cannot reconfigure a launched runtime")
        self.config = coerce_config(options)

    def register_workflow(
        self, fn: WorkflowFn, name: Optional[str] = None
    ) -> WorkflowFunction:
        """Register ``fn`` and return the callable used to start instances."""
        parameters = inspect.signature(fn).parameters
        for reserved in RESERVED_ARGUMENTS:
            if reserved in parameters:
                raise RegistrationError(
                    f"Workflow {name or fn.__qualname__!r} cannot use reserved "
                    f"argument {reserved!r}"
                )
        definition = self.registry.register(fn, name)
        logger.debug(f"Registered workflow {definition.name}")
        return WorkflowFunction(self, definition)

    def workflow(self, name: Optional[str] = None) -> Callable[[WorkflowFn], WorkflowFunction]:
        """Decorator form of :meth:`register_workflow`."""

        def decorator(fn: WorkflowFn) -> WorkflowFunction:
            return self.register_workflow(fn, name)

        return decorator

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def launched(self) -> bool:
        return self._launched

    async def launch(self) -> "Runtime":
        """Connect to the store, recover incomplete workflows, accept invocations.

        Calling it again on a launched runtime does nothing.

        Raises:
            ConfigurationError: If ``name`` or ``store_connection`` is missing.
            StoreUnavailableError: If the store cannot be reached within
                ``connect_timeout`` seconds.
        """
        if self._launched:
            return self
        self.config.validate_required()
        store = self._store or get_store(self.config.store_connection)
        try:
            await asyncio.wait_for(store.connect(), timeout=self.config.connect_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                f"Timed out after {self.config.connect_timeout}s connecting to the store"
            ) from exc
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot connect to the store: {exc}") from exc

        self._store = store
        self._journal = WorkflowJournal(store)
        self._engine = WorkflowEngine(
            self._journal,
            StepExecutor(
                self._journal, store_retry_attempts=self.config.store_retry_attempts
            ),
            executor_id=self.config.executor_id,
            draining=lambda: self._draining,
            store_retry_attempts=self.config.store_retry_attempts,
        )
        self._draining = False
        self._launched = True
        scheme = self.config.store_connection.split("://", 1)[0]
        logger.info(
            f"Runtime {self.config.name} launched "
            f"(executor={self.config.executor_id}, store={scheme}, "
            f"workflows={len(self.registry)})"
        )

        scanner = RecoveryScanner(
            self._journal,
            self.registry,
            self._resume,
            concurrency=self.config.recovery_concurrency,
            store_retry_attempts=self.config.store_retry_attempts,
            pending_grace=self.config.pending_grace_seconds,
        )
        try:
            recovered = await scanner.recover_all()
        except BaseException:
            logger.error(f"Runtime {self.config.name} recovery failed; launch aborted")
            await self._abort_launch()
            raise
        if recovered:
            logger.info(f"Runtime {self.config.name} recovered {recovered} workflow(s)")
        self._accepting = True
        return self

    async def _abort_launch(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._launched = False
        self._journal = None
        self._engine = None
        await self._store.close()

    async def shutdown(self) -> None:
        """Stop accepting invocations and drain in-flight executions.

        Running executions stop at their next step boundary and stay RUNNING
        for recovery; a step already executing is allowed to finish and be
        recorded first.
        """
        if not self._launched:
            return
        self._accepting = False
        self._draining = True
        in_flight = set(self._tasks)
        logger.info(
            f"Runtime {self.config.name} shutting down; "
            f"waiting for {len(in_flight)} in-flight workflow(s)"
        )
        if in_flight:
            _, pending = await asyncio.wait(
                in_flight, timeout=self.config.shutdown_timeout
            )
            if pending:
                logger.warning(
                    f"Cancelling {len(pending)} workflow(s) still running after "
                    f"{self.config.shutdown_timeout}s"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        await self._store.close()
        self._launched = False
        logger.info(f"Runtime {self.config.name} shut down")

    async def __aenter__(self) -> "Runtime":
        return await self.launch()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ── Workflow management ──────────────────────────────────────────

    def retrieve(self, instance_id: str) -> WorkflowHandle:
        """Return a handle to an existing instance."""
        self._require_launched()
        return WorkflowHandle(self, instance_id)

    async def get_workflow(self, instance_id: str) -> WorkflowInstance:
        journal = self._require_launched()
        wf = await journal.get_instance(instance_id)
        if wf is None:
            raise WorkflowNotFoundError(f"No workflow found with id {instance_id}")
        return wf

    async def get_workflow_status(self, instance_id: str) -> WorkflowStatus:
        return (await self.get_workflow(instance_id)).status

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowInstance]:
        return await self._require_launched().list_instances(status)

    async def cancel(self, instance_id: str, reason: Optional[str] = None) -> None:
        """Ask an instance to stop before its next step.

        The request is durable, so a runtime that later resumes the instance
        honours it too. The instance ends FAILED with a cancellation error.
        """
        journal = self._require_launched()
        if await journal.get_header(instance_id) is None:
            raise WorkflowNotFoundError(f"No workflow found with id {instance_id}")
        await journal.request_cancel(instance_id, reason)
        self._engine.cancel(instance_id)
        logger.info(f"Cancellation requested for workflow {instance_id}")

    # ── Internal helpers ─────────────────────────────────────────────

    def _require_launched(self) -> WorkflowJournal:
        if not self._launched or self._journal is None:
            raise RuntimeNotLaunchedError("Runtime has not been launched")
        return self._journal

    async def _start(
        self,
        definition: WorkflowDefinition,
        args: tuple,
        kwargs: dict,
        instance_id: Optional[str],
    ) -> WorkflowHandle:
        if not self._accepting:
            raise RuntimeNotLaunchedError(
                f"Runtime is not accepting invocations of {definition.name!r}"
            )
        if instance_id is not None and (not instance_id or "/" in instance_id):
            raise ValueError(f"Invalid instance id: {instance_id!r}")
        payload = definition.bind_arguments(args, kwargs)
        instance_id = instance_id or str(uuid.uuid4())
        task = self._spawn(self._engine.execute(definition, instance_id, payload))
        return WorkflowHandle(self, instance_id, task)

    async def _resume(self, wf: WorkflowInstance) -> Any:
        definition = self.registry.get(wf.workflow_name)
        return await self._spawn(
            self._engine.execute(definition, wf.instance_id, wf.arguments)
        )

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled():
            # failures are logged by the engine and raised to whoever awaits
            task.exception()

    async def _poll_result(self, instance_id: str, interval: float = 0.1) -> Any:
        journal = self._require_launched()
        header = await journal.get_header(instance_id)
        if header is None:
            raise WorkflowNotFoundError(f"No workflow found with id {instance_id}")
        while True:
            outcome = await journal.get_outcome(instance_id)
            if outcome is not None:
                break
            await asyncio.sleep(interval)
        if outcome.status is WorkflowStatus.FAILED:
            raise WorkflowFailedError(instance_id, outcome.error)
        if header.workflow_name in self.registry:
            return self.registry.get(header.workflow_name).load_result(outcome.result)
        return outcome.result
