"""Recovery of workflow instances left unfinished by a stopped runtime."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from .errors import WaypointError, WorkflowSuspendedError
from .persistence import WorkflowInstance, WorkflowJournal, WorkflowStatus, utcnow
from .registry import WorkflowRegistry
from .utils.retry import retry_store_call

logger = logging.getLogger(__name__)

Resume = Callable[[WorkflowInstance], Awaitable[object]]


class RecoveryScanner:
    """Find unfinished instances of known workflows and execute them again.

    RUNNING instances are always recovered. PENDING instances are recovered
    only once they are older than ``pending_grace`` seconds: younger ones may
    still be between header and running marker in another process.

    Each instance is resumed through ``resume`` (normally the runtime's
    tracked call into the workflow engine). A failing instance is logged and
    never stops the others.
    """

    def __init__(
        self,
        journal: WorkflowJournal,
        registry: WorkflowRegistry,
        resume: Resume,
        concurrency: int = 4,
        store_retry_attempts: int = 5,
        pending_grace: float = 30.0,
    ) -> None:
        self._journal = journal
        self._registry = registry
        self._resume = resume
        self._concurrency = max(1, concurrency)
        self._store_retry_attempts = store_retry_attempts
        self._pending_grace = timedelta(seconds=pending_grace)

    async def find_pending(self) -> list[WorkflowInstance]:
        """Return unfinished instances whose workflow is registered here."""
        instances = await retry_store_call(
            lambda: self._journal.list_instances(),
            attempts=self._store_retry_attempts,
            description="Listing unfinished workflows",
        )
        cutoff = utcnow() - self._pending_grace
        unfinished = [
            wf
            for wf in instances
            if wf.status is WorkflowStatus.RUNNING
            or (
                wf.status is WorkflowStatus.PENDING
                and wf.created_at is not None
                and wf.created_at <= cutoff
            )
        ]
        recoverable = []
        for wf in unfinished:
            if wf.workflow_name not in self._registry:
                logger.warning(
                    f"Skipping recovery of {wf.instance_id}: workflow "
                    f"{wf.workflow_name!r} is not registered"
                )
                continue
            recoverable.append(wf)
        return recoverable

    async def recover_all(self) -> int:
        """Resume every recoverable instance; return how many were resumed."""
        pending = await self.find_pending()
        if not pending:
            logger.info("Recovery found no incomplete workflows")
            return 0

        logger.info(f"Recovering {len(pending)} incomplete workflow(s)")
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _recover(wf: WorkflowInstance) -> None:
            async with semaphore:
                await self._recover_one(wf)

        await asyncio.gather(*(_recover(wf) for wf in pending))
        return len(pending)

    async def _recover_one(self, wf: WorkflowInstance) -> Optional[object]:
        logger.info(f"Resuming workflow {wf.workflow_name} instance={wf.instance_id}")
        try:
            return await self._resume(wf)
        except WorkflowSuspendedError:
            logger.info(f"Recovery of {wf.instance_id} suspended by shutdown")
        except WaypointError as exc:
            logger.error(f"Recovery of {wf.instance_id} failed: {exc}")
        except Exception:
            # the engine has already recorded the instance as FAILED
            logger.exception(f"Recovered workflow {wf.instance_id} raised")
        return None
