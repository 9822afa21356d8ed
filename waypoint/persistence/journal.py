"""Typed access to workflow records kept in a log store.

Every record is written once with ``conditional_write``. When a write loses
the race, the record already in the store is returned and callers treat it
as authoritative.

Key layout::

    workflows/{id}/instance          InstanceHeader
    workflows/{id}/running           RunningMarker
    workflows/{id}/outcome           Outcome
    workflows/{id}/cancel            CancelRequest
    workflows/{id}/steps/{seq:08d}   StepRecord
"""

from __future__ import annotations

import logging
from typing import Optional

from ..store import LogStore
from .models import (
    CancelRequest,
    InstanceHeader,
    Outcome,
    RunningMarker,
    StepRecord,
    WorkflowInstance,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

WORKFLOWS_PREFIX = "workflows/"


def instance_prefix(instance_id: str) -> str:
    return f"{WORKFLOWS_PREFIX}{instance_id}/"


def header_key(instance_id: str) -> str:
    return f"{instance_prefix(instance_id)}instance"


def running_key(instance_id: str) -> str:
    return f"{instance_prefix(instance_id)}running"


def outcome_key(instance_id: str) -> str:
    return f"{instance_prefix(instance_id)}outcome"


def cancel_key(instance_id: str) -> str:
    return f"{instance_prefix(instance_id)}cancel"


def steps_prefix(instance_id: str) -> str:
    return f"{instance_prefix(instance_id)}steps/"


def step_key(instance_id: str, sequence: int) -> str:
    return f"{steps_prefix(instance_id)}{sequence:08d}"


class WorkflowJournal:
    """Read and append workflow records."""

    def __init__(self, store: LogStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Instance lifecycle
    async def create_instance(self, header: InstanceHeader) -> InstanceHeader:
        """Persist ``header`` unless the instance exists; return the stored header."""
        result = await self.store.conditional_write(
            header_key(header.instance_id), header.model_dump(mode="json")
        )
        if result.written:
            return header
        return InstanceHeader.model_validate(result.existing)

    async def get_header(self, instance_id: str) -> Optional[InstanceHeader]:
        data = await self.store.read(header_key(instance_id))
        return InstanceHeader.model_validate(data) if data else None

    async def mark_running(self, instance_id: str, executor_id: str) -> RunningMarker:
        marker = RunningMarker(executor_id=executor_id)
        result = await self.store.conditional_write(
            running_key(instance_id), marker.model_dump(mode="json")
        )
        if result.written:
            return marker
        return RunningMarker.model_validate(result.existing)

    async def record_outcome(
        self, instance_id: str, outcome: Outcome
    ) -> tuple[Outcome, bool]:
        """Persist a terminal outcome; return the authoritative one and whether ours won."""
        result = await self.store.conditional_write(
            outcome_key(instance_id), outcome.model_dump(mode="json")
        )
        if result.written:
            return outcome, True
        logger.info(
            f"Outcome for workflow {instance_id} already recorded; keeping stored outcome"
        )
        return Outcome.model_validate(result.existing), False

    async def get_outcome(self, instance_id: str) -> Optional[Outcome]:
        data = await self.store.read(outcome_key(instance_id))
        return Outcome.model_validate(data) if data else None

    async def request_cancel(
        self, instance_id: str, reason: Optional[str] = None
    ) -> None:
        await self.store.conditional_write(
            cancel_key(instance_id), CancelRequest(reason=reason).model_dump(mode="json")
        )

    async def is_cancel_requested(self, instance_id: str) -> bool:
        return await self.store.read(cancel_key(instance_id)) is not None

    # ------------------------------------------------------------------
    # Steps
    async def get_step(self, instance_id: str, sequence: int) -> Optional[StepRecord]:
        data = await self.store.read(step_key(instance_id, sequence))
        return StepRecord.model_validate(data) if data else None

    async def record_step(self, record: StepRecord) -> tuple[StepRecord, bool]:
        """Persist ``record``; return the authoritative record and whether ours won."""
        result = await self.store.conditional_write(
            step_key(record.instance_id, record.sequence),
            record.model_dump(mode="json"),
        )
        if result.written:
            return record, True
        return StepRecord.model_validate(result.existing), False

    async def list_steps(self, instance_id: str) -> list[StepRecord]:
        rows = await self.store.list_by_prefix(steps_prefix(instance_id))
        return [StepRecord.model_validate(value) for _, value in rows]

    # ------------------------------------------------------------------
    # Views
    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Assemble the full instance view, including its steps."""
        rows = await self.store.list_by_prefix(instance_prefix(instance_id))
        instances = _assemble(rows, include_steps=True)
        return instances[0] if instances else None

    async def list_instances(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowInstance]:
        """Return all instances (without steps), optionally filtered by status."""
        rows = await self.store.list_by_prefix(WORKFLOWS_PREFIX)
        instances = _assemble(rows, include_steps=False)
        if status is not None:
            instances = [wf for wf in instances if wf.status == status]
        return instances


def _assemble(
    rows: list[tuple[str, dict]], include_steps: bool
) -> list[WorkflowInstance]:
    grouped: dict[str, dict[str, object]] = {}
    for key, value in rows:
        instance_id, _, record = key[len(WORKFLOWS_PREFIX):].partition("/")
        grouped.setdefault(instance_id, {"steps": []})
        if record.startswith("steps/"):
            if include_steps:
                grouped[instance_id]["steps"].append(StepRecord.model_validate(value))
        else:
            grouped[instance_id][record] = value

    instances: list[WorkflowInstance] = []
    for instance_id, records in grouped.items():
        if "instance" not in records:
            # records without a header are ignored until the header lands
            continue
        header = InstanceHeader.model_validate(records["instance"])
        wf = WorkflowInstance(
            instance_id=instance_id,
            workflow_name=header.workflow_name,
            arguments=header.arguments,
            executor_id=header.executor_id,
            created_at=header.created_at,
            cancel_requested="cancel" in records,
            steps=sorted(records["steps"], key=lambda s: s.sequence),
        )
        if "running" in records:
            marker = RunningMarker.model_validate(records["running"])
            wf.status = WorkflowStatus.RUNNING
            wf.started_at = marker.started_at
        if "outcome" in records:
            outcome = Outcome.model_validate(records["outcome"])
            wf.status = outcome.status
            wf.result = outcome.result
            wf.error = outcome.error
            wf.completed_at = outcome.completed_at
        instances.append(wf)
    return instances
