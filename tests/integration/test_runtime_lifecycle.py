import asyncio

import pytest

from waypoint import (
    ConfigurationError,
    RegistrationError,
    Runtime,
    RuntimeNotLaunchedError,
    StoreUnavailableError,
    WorkflowCancelledError,
    WorkflowNotFoundError,
    WorkflowStatus,
    WorkflowSuspendedError,
)
from waypoint.persistence import InstanceHeader, WorkflowJournal
from waypoint.store import InMemoryLogStore


class Gate:
    """Lets a test pause a workflow body between two steps."""

    def __init__(self):
        self.reached = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = {}

    def step(self, name):
        async def _run():
            self.calls[name] = self.calls.get(name, 0) + 1
            return f"{name}-done"

        return _run

    async def pause(self):
        self.reached.set()
        await self.release.wait()


def _two_step_workflow(gate):
    async def two_steps(ctx) -> list:
        first = await ctx.run_step("one", gate.step("one"))
        await gate.pause()
        second = await ctx.run_step("two", gate.step("two"))
        return [first, second]

    return two_steps


@pytest.mark.asyncio
async def test_launch_requires_name_and_store():
    with pytest.raises(ConfigurationError):
        await Runtime({"name": "orders"}).launch()
    with pytest.raises(ConfigurationError):
        await Runtime({"store_connection": "memory://"}).launch()


@pytest.mark.asyncio
async def test_invocation_before_launch_is_rejected(make_runtime):
    runtime = make_runtime()

    async def noop(ctx) -> None:
        return None

    fn = runtime.register_workflow(noop)
    with pytest.raises(RuntimeNotLaunchedError):
        await fn()
    with pytest.raises(RuntimeNotLaunchedError):
        await runtime.list_workflows()


class HangingStore(InMemoryLogStore):
    async def connect(self) -> None:
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_unreachable_store_fails_launch(make_runtime):
    runtime = make_runtime(log_store=HangingStore(), connect_timeout=0.05)
    with pytest.raises(StoreUnavailableError):
        await runtime.launch()
    assert not runtime.launched


@pytest.mark.asyncio
async def test_configure_only_before_launch(make_runtime):
    runtime = make_runtime()
    runtime.configure({"name": "renamed", "store_connection": "memory://"})
    assert runtime.config.name == "renamed"

    async with runtime:
        with pytest.raises(ConfigurationError):
            runtime.configure({"name": "again", "store_connection": "memory://"})
        # launching twice is a no-op
        assert await runtime.launch() is runtime


def test_reserved_argument_name_is_rejected(make_runtime):
    async def clash(ctx, instance_id: str) -> None:
        return None

    with pytest.raises(RegistrationError):
        make_runtime().register_workflow(clash)


@pytest.mark.asyncio
async def test_decorated_workflow_runs_and_reports(make_runtime):
    runtime = make_runtime()

    @runtime.workflow(name="greeting")
    async def greet(ctx, who: str, punctuation: str = "!") -> str:
        word = await ctx.run_step("word", lambda: "hello")
        return f"{word} {who}{punctuation}"

    async with runtime:
        handle = await greet.start("ada")
        assert await handle.get_result(timeout=5) == "hello ada!"
        assert await handle.get_status() == WorkflowStatus.SUCCEEDED

        wf = await runtime.get_workflow(handle.instance_id)
        assert wf.workflow_name == "greeting"
        assert wf.arguments == {"who": "ada", "punctuation": "!"}
        assert [s.step_name for s in wf.steps] == ["word"]

        listed = await runtime.list_workflows(WorkflowStatus.SUCCEEDED)
        assert [w.instance_id for w in listed] == [handle.instance_id]

        retrieved = runtime.retrieve(handle.instance_id)
        assert await retrieved.get_result(timeout=5) == "hello ada!"

        with pytest.raises(WorkflowNotFoundError):
            await runtime.get_workflow_status("missing")
        with pytest.raises(ValueError):
            await greet.start("bob", instance_id="bad/id")


@pytest.mark.asyncio
async def test_same_instance_id_runs_body_once(make_runtime):
    runtime = make_runtime()
    runs = 0

    async def charge(ctx, amount: int) -> int:
        nonlocal runs
        runs += 1
        return await ctx.run_step("charge", lambda: amount * 100)

    fn = runtime.register_workflow(charge)
    async with runtime:
        first = await fn(5, instance_id="payment-1")
        second = await fn(5, instance_id="payment-1")

    assert first == second == 500
    assert runs == 1


@pytest.mark.asyncio
async def test_shutdown_drains_and_next_runtime_resumes(make_runtime):
    gate = Gate()
    workflow = _two_step_workflow(gate)

    first = make_runtime("first")
    fn = first.register_workflow(workflow)
    await first.launch()
    handle = await fn.start(instance_id="drained")
    await gate.reached.wait()

    stopping = asyncio.create_task(first.shutdown())
    await asyncio.sleep(0)
    gate.release.set()
    await stopping

    with pytest.raises(WorkflowSuspendedError):
        await handle.get_result()
    assert gate.calls == {"one": 1}

    second = make_runtime("second")
    second.register_workflow(workflow)
    async with second:
        wf = await second.get_workflow("drained")
        assert wf.status == WorkflowStatus.SUCCEEDED
        assert wf.result == ["one-done", "two-done"]

    assert gate.calls == {"one": 1, "two": 1}


@pytest.mark.asyncio
async def test_cancel_stops_before_next_step(make_runtime):
    gate = Gate()
    runtime = make_runtime()
    fn = runtime.register_workflow(_two_step_workflow(gate))

    async with runtime:
        handle = await fn.start(instance_id="to-cancel")
        await gate.reached.wait()
        await runtime.cancel("to-cancel", reason="customer changed their mind")
        gate.release.set()

        with pytest.raises(WorkflowCancelledError):
            await handle.get_result(timeout=5)

        wf = await runtime.get_workflow("to-cancel")
        assert wf.status == WorkflowStatus.FAILED
        assert wf.cancel_requested
        assert wf.error.type == "WorkflowCancelledError"
        assert gate.calls == {"one": 1}

        with pytest.raises(WorkflowNotFoundError):
            await runtime.cancel("missing")


@pytest.mark.asyncio
async def test_recovery_survives_a_store_blip(make_runtime, flaky_store):
    journal = WorkflowJournal(flaky_store)
    await journal.create_instance(InstanceHeader(instance_id="i1", workflow_name="billing"))
    await journal.mark_running("i1", "crashed")
    charges = 0

    async def charge():
        nonlocal charges
        charges += 1
        return "charged"

    async def billing(ctx) -> str:
        return await ctx.run_step("charge", charge)

    runtime = make_runtime(log_store=flaky_store)
    runtime.register_workflow(billing, name="billing")
    flaky_store.write_failures = 1

    async with runtime:
        wf = await runtime.get_workflow("i1")

    assert wf.status == WorkflowStatus.SUCCEEDED
    assert wf.result == "charged"
    assert charges == 1


@pytest.mark.asyncio
async def test_launch_can_be_retried_after_failed_recovery(make_runtime, flaky_store):
    runtime = make_runtime(log_store=flaky_store, store_retry_attempts=2)

    async def ping(ctx) -> str:
        return "pong"

    fn = runtime.register_workflow(ping)
    flaky_store.listing_failures = 2

    with pytest.raises(StoreUnavailableError):
        await runtime.launch()
    assert not runtime.launched
    with pytest.raises(RuntimeNotLaunchedError):
        await fn()

    async with runtime:
        assert runtime.launched
        assert await fn() == "pong"
