"""Exception hierarchy for waypoint runtimes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .persistence.models import CapturedError


class WaypointError(Exception):
    """Base class for all waypoint errors."""


class ConfigurationError(WaypointError):
    """A required runtime option is missing or invalid."""


class StoreUnavailableError(WaypointError):
    """The durable log store could not be reached."""


class WriteConflictError(WaypointError):
    """A conditional write found the key already present.

    Built-in stores report conflicts through ``WriteResult`` instead of
    raising; custom backends may raise this with the existing value.
    """

    def __init__(self, key: str, existing: Optional[dict] = None):
        self.key = key
        self.existing = existing
        super().__init__(f"Key {key!r} already written")


class RegistrationError(WaypointError):
    """A workflow function could not be registered."""


class StepExecutionError(WaypointError):
    """A step function raised; the captured error has been recorded."""

    def __init__(self, step_name: str, error: "CapturedError"):
        self.step_name = step_name
        self.error = error
        super().__init__(f"Step '{step_name}' failed: {error.type}: {error.message}")


class NonDeterminismError(WaypointError):
    """Replay reached a step that does not match the recorded history."""

    def __init__(
        self, instance_id: str, sequence: int, expected: str, actual: str
    ):
        self.instance_id = instance_id
        self.sequence = sequence
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Workflow {instance_id} reached step '{actual}' at sequence {sequence}, "
            f"but the recorded step is '{expected}'"
        )


class InstanceConflictError(WaypointError):
    """An instance id is already used by a different workflow."""


class WorkflowNotFoundError(WaypointError):
    """No workflow instance or definition exists under the given name or id."""


class WorkflowFailedError(WaypointError):
    """A terminal instance is recorded as FAILED."""

    def __init__(self, instance_id: str, error: "CapturedError"):
        self.instance_id = instance_id
        self.error = error
        super().__init__(f"Workflow {instance_id} failed: {error.type}: {error.message}")


class WorkflowCancelledError(WaypointError):
    """The instance was asked to stop before its next step."""


class WorkflowSuspendedError(WaypointError):
    """The runtime is draining; the instance stays RUNNING for recovery."""


class RuntimeNotLaunchedError(WaypointError):
    """The runtime is not accepting invocations."""
