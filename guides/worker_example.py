"""Minimal waypoint worker.

Registers a one-step sample workflow, launches the runtime (recovering any
workflow a previous process left unfinished) and keeps serving. Set
WAYPOINT_RUN_SAMPLE_WORKFLOW=1 to invoke the sample workflow once on start.

Run it directly::

    WAYPOINT_SYSTEM_DATABASE_URL=sqlite:///tmp/waypoint.db python guides/worker_example.py

or through the CLI::

    waypoint worker run guides.worker_example:runtime
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from waypoint import Runtime, WorkflowContext

logger = logging.getLogger("worker_example")

runtime = Runtime({"name": "waypoint-sample-worker"})


async def step_one() -> str:
    logger.info("sample step completed")
    return "ok"


@runtime.workflow()
async def sample_workflow(ctx: WorkflowContext) -> dict:
    await ctx.run_step("step_one", step_one)
    return {"ok": True}


async def main() -> None:
    store_url = os.getenv("WAYPOINT_SYSTEM_DATABASE_URL")
    if not store_url:
        raise RuntimeError("WAYPOINT_SYSTEM_DATABASE_URL is required")

    runtime.configure({"name": "waypoint-sample-worker", "store_connection": store_url})
    await runtime.launch()
    logger.info("waypoint launched")

    try:
        if os.getenv("WAYPOINT_RUN_SAMPLE_WORKFLOW") == "1":
            result = await sample_workflow()
            logger.info(f"sample workflow result: {result}")
        await asyncio.Event().wait()
    finally:
        await runtime.shutdown()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("waypoint worker failed")
        sys.exit(1)
