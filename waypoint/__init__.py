"""Waypoint: durable workflow execution with recorded steps and crash recovery."""

from .config import RuntimeConfig, load_config
from .context import WorkflowContext
from .engine import WorkflowEngine
from .errors import (
    ConfigurationError,
    InstanceConflictError,
    NonDeterminismError,
    RegistrationError,
    RuntimeNotLaunchedError,
    StepExecutionError,
    StoreUnavailableError,
    WaypointError,
    WorkflowCancelledError,
    WorkflowFailedError,
    WorkflowNotFoundError,
    WorkflowSuspendedError,
    WriteConflictError,
)
from .persistence import StepRecord, WorkflowInstance, WorkflowStatus
from .recovery import RecoveryScanner
from .runtime import Runtime, WorkflowFunction, WorkflowHandle
from .steps import StepExecutor, StepOptions
from .store import LogStore, get_store

__version__ = "0.1.0"
__all__ = [
    "ConfigurationError",
    "InstanceConflictError",
    "LogStore",
    "NonDeterminismError",
    "RecoveryScanner",
    "RegistrationError",
    "Runtime",
    "RuntimeConfig",
    "RuntimeNotLaunchedError",
    "StepExecutionError",
    "StepExecutor",
    "StepOptions",
    "StepRecord",
    "StoreUnavailableError",
    "WaypointError",
    "WorkflowCancelledError",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowFailedError",
    "WorkflowFunction",
    "WorkflowHandle",
    "WorkflowInstance",
    "WorkflowNotFoundError",
    "WorkflowStatus",
    "WorkflowSuspendedError",
    "WriteConflictError",
    "get_store",
    "load_config",
]
