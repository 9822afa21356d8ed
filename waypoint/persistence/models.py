"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    """Possible states of a workflow instance."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.SUCCEEDED, WorkflowStatus.FAILED)


class CapturedError(BaseModel):
    """Serializable description of an exception."""

    type: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "CapturedError":
        return cls(type=type(exc).__name__, message=str(exc))


class StepRecord(BaseModel):
    """Recorded outcome of one step of one instance."""

    instance_id: str
    step_name: str
    sequence: int
    output: Any = None
    error: Optional[CapturedError] = None
    attempts: int = 1
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def failed(self) -> bool:
        return self.error is not None


class InstanceHeader(BaseModel):
    """Immutable creation record of an instance, including its arguments."""

    instance_id: str
    workflow_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    executor_id: str = "local"
    created_at: datetime = Field(default_factory=utcnow)


class RunningMarker(BaseModel):
    executor_id: str
    started_at: datetime = Field(default_factory=utcnow)


class Outcome(BaseModel):
    """Terminal state of an instance."""

    status: WorkflowStatus
    result: Any = None
    error: Optional[CapturedError] = None
    executor_id: Optional[str] = None
    completed_at: datetime = Field(default_factory=utcnow)


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    requested_at: datetime = Field(default_factory=utcnow)


class WorkflowInstance(BaseModel):
    """Persisted workflow instance data, assembled from its records."""

    instance_id: str
    workflow_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    executor_id: str = "local"
    status: WorkflowStatus = WorkflowStatus.PENDING
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None
    error: Optional[CapturedError] = None
    cancel_requested: bool = False
    steps: list[StepRecord] = Field(default_factory=list)
