"""Persistence layer for waypoint workflows."""

from __future__ import annotations

from .journal import WorkflowJournal
from .models import (
    CancelRequest,
    CapturedError,
    InstanceHeader,
    Outcome,
    RunningMarker,
    StepRecord,
    WorkflowInstance,
    WorkflowStatus,
    utcnow,
)

__all__ = [
    "CancelRequest",
    "CapturedError",
    "InstanceHeader",
    "Outcome",
    "RunningMarker",
    "StepRecord",
    "WorkflowInstance",
    "WorkflowJournal",
    "WorkflowStatus",
    "utcnow",
]
