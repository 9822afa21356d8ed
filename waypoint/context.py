"""Per-attempt state handed to workflow bodies."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .errors import NonDeterminismError
from .steps import DEFAULT_STEP_OPTIONS, StepExecutor, StepOptions


def _never() -> bool:
    return False


class WorkflowContext:
    """Step context bound to one workflow instance for one execution attempt.

    Workflow bodies receive it as their first argument and route every unit
    of side-effecting work through :meth:`run_step`::

        async def checkout(ctx: WorkflowContext, order_id: str) -> dict:
            charge = await ctx.run_step("charge", payments.charge, order_id)
            await ctx.run_step("ship", warehouse.ship, order_id)
            return {"charge": charge}
    """

    def __init__(
        self,
        instance_id: str,
        workflow_name: str,
        step_executor: StepExecutor,
        cancel_requested: bool = False,
        draining: Callable[[], bool] = _never,
    ) -> None:
        self.instance_id = instance_id
        self.workflow_name = workflow_name
        self.cancel_requested = cancel_requested
        self.draining = draining
        self.nondeterminism: Optional[NonDeterminismError] = None
        self.logger = logging.getLogger(f"waypoint.workflow.{workflow_name}")
        self._step_executor = step_executor
        self._sequence = 0

    @property
    def steps_reached(self) -> int:
        return self._sequence

    def next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    async def run_step(
        self,
        name: str,
        fn: Callable[..., Any],
        *args: Any,
        options: Optional[StepOptions] = None,
        **kwargs: Any,
    ) -> Any:
        """Run ``fn(*args, **kwargs)`` as the next recorded step.

        If this step was already recorded for the instance, the recorded
        output is returned (or the recorded error raised as
        ``StepExecutionError``) and ``fn`` is not called.
        """
        return await self._step_executor.run_step(
            self, name, fn, args, kwargs, options or DEFAULT_STEP_OPTIONS
        )

    def cancel(self) -> None:
        """Stop the instance before its next step."""
        self.cancel_requested = True
