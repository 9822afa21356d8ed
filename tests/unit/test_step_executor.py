"""Step executor: recording, replay, conflicts and retries."""

import pytest
from pydantic import BaseModel

from waypoint.context import WorkflowContext
from waypoint.errors import (
    NonDeterminismError,
    StepExecutionError,
    StoreUnavailableError,
    WorkflowCancelledError,
    WorkflowSuspendedError,
)
from waypoint.persistence import StepRecord, WorkflowJournal
from waypoint.steps import StepExecutor, StepOptions


class Counter:
    def __init__(self, result="ok", fail_times=0):
        self.calls = 0
        self.result = result
        self.fail_times = fail_times

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ValueError(f"boom {self.calls}")
        return self.result


def _context(journal, instance_id="wf-1", **kwargs):
    return WorkflowContext(instance_id, "test_workflow", StepExecutor(journal), **kwargs)


@pytest.mark.asyncio
async def test_step_recorded_once_and_replayed(journal):
    step = Counter(result={"total": 3})

    first = await _context(journal).run_step("sum", step)
    replayed = await _context(journal).run_step("sum", step)

    assert first == {"total": 3}
    assert replayed == {"total": 3}
    assert step.calls == 1

    records = await journal.list_steps("wf-1")
    assert len(records) == 1
    assert records[0].step_name == "sum"
    assert records[0].sequence == 1
    assert records[0].output == {"total": 3}


@pytest.mark.asyncio
async def test_sequence_numbers_follow_call_order(journal):
    ctx = _context(journal)
    await ctx.run_step("a", Counter("A"))
    await ctx.run_step("b", Counter("B"))
    await ctx.run_step("a", Counter("A2"))

    records = await journal.list_steps("wf-1")
    assert [(r.sequence, r.step_name, r.output) for r in records] == [
        (1, "a", "A"),
        (2, "b", "B"),
        (3, "a", "A2"),
    ]


@pytest.mark.asyncio
async def test_step_error_is_recorded_and_replayed(journal):
    step = Counter(fail_times=10)

    with pytest.raises(StepExecutionError) as first:
        await _context(journal).run_step("charge", step)
    assert isinstance(first.value.__cause__, ValueError)

    with pytest.raises(StepExecutionError) as replayed:
        await _context(journal).run_step("charge", step)

    assert step.calls == 1
    assert first.value.error == replayed.value.error
    assert replayed.value.error.type == "ValueError"
    assert replayed.value.error.message == "boom 1"
    record = (await journal.list_steps("wf-1"))[0]
    assert record.failed


@pytest.mark.asyncio
async def test_plain_and_lambda_step_functions(journal):
    ctx = _context(journal)

    def add(a, b):
        return a + b

    async def greet(name):
        return f"hello {name}"

    assert await ctx.run_step("add", add, 2, b=3) == 5
    assert await ctx.run_step("greet", lambda: greet("ada")) == "hello ada"


@pytest.mark.asyncio
async def test_replay_with_different_step_name_is_nondeterministic(journal):
    await _context(journal).run_step("reserve", Counter())

    ctx = _context(journal)
    other = Counter()
    with pytest.raises(NonDeterminismError) as exc_info:
        await ctx.run_step("charge", other)

    assert other.calls == 0
    assert exc_info.value.expected == "reserve"
    assert exc_info.value.actual == "charge"
    assert ctx.nondeterminism is exc_info.value


@pytest.mark.asyncio
async def test_conflicting_write_adopts_stored_record(journal):
    async def racing_step():
        # another executor records this step while ours is still running
        await journal.record_step(
            StepRecord(instance_id="wf-1", step_name="pick", sequence=1, output="theirs")
        )
        return "ours"

    result = await _context(journal).run_step("pick", racing_step)

    assert result == "theirs"
    records = await journal.list_steps("wf-1")
    assert [r.output for r in records] == ["theirs"]


@pytest.mark.asyncio
async def test_retries_until_success(journal):
    step = Counter(result="done", fail_times=2)
    options = StepOptions(retries_allowed=True, max_attempts=3, interval_seconds=0)

    result = await _context(journal).run_step("flaky", step, options=options)

    assert result == "done"
    assert step.calls == 3
    record = (await journal.list_steps("wf-1"))[0]
    assert record.attempts == 3
    assert not record.failed


@pytest.mark.asyncio
async def test_retries_exhausted_records_last_error(journal):
    step = Counter(fail_times=10)
    options = StepOptions(retries_allowed=True, max_attempts=2, interval_seconds=0)

    with pytest.raises(StepExecutionError, match="boom 2"):
        await _context(journal).run_step("flaky", step, options=options)

    assert step.calls == 2
    record = (await journal.list_steps("wf-1"))[0]
    assert record.attempts == 2
    assert record.error.message == "boom 2"


@pytest.mark.asyncio
async def test_no_retry_without_retries_allowed(journal):
    step = Counter(fail_times=1)
    with pytest.raises(StepExecutionError):
        await _context(journal).run_step("once", step, options=StepOptions(max_attempts=5))
    assert step.calls == 1


class Quote(BaseModel):
    symbol: str
    price: float


@pytest.mark.asyncio
async def test_result_type_revalidates_replayed_output(journal):
    async def fetch():
        return Quote(symbol="ACME", price=12.5)

    options = StepOptions(result_type=Quote)
    first = await _context(journal).run_step("quote", fetch, options=options)
    replayed = await _context(journal).run_step("quote", fetch, options=options)
    untyped = await _context(journal).run_step("quote", fetch)

    assert first == Quote(symbol="ACME", price=12.5)
    assert replayed == first
    assert untyped == {"symbol": "ACME", "price": 12.5}


@pytest.mark.asyncio
async def test_cancelled_context_runs_no_step(journal):
    step = Counter()
    ctx = _context(journal, cancel_requested=True)

    with pytest.raises(WorkflowCancelledError):
        await ctx.run_step("noop", step)
    assert step.calls == 0


@pytest.mark.asyncio
async def test_durable_cancel_request_is_checked(journal):
    await journal.request_cancel("wf-1", reason="operator")
    step = Counter()

    with pytest.raises(WorkflowCancelledError):
        await _context(journal).run_step("noop", step)
    assert step.calls == 0


@pytest.mark.asyncio
async def test_draining_context_suspends_before_step(journal):
    step = Counter()
    ctx = _context(journal, draining=lambda: True)

    with pytest.raises(WorkflowSuspendedError):
        await ctx.run_step("noop", step)
    assert step.calls == 0
    assert await journal.list_steps("wf-1") == []


@pytest.mark.asyncio
async def test_first_run_returns_the_recorded_form(journal):
    async def pair():
        return (1, 2)

    first = await _context(journal).run_step("pair", pair)
    replayed = await _context(journal).run_step("pair", pair)
    assert first == replayed == [1, 2]

    options = StepOptions(result_type=tuple[int, int])
    typed_first = await _context(journal, instance_id="wf-2").run_step(
        "pair", pair, options=options
    )
    typed_replay = await _context(journal, instance_id="wf-2").run_step(
        "pair", pair, options=options
    )
    assert typed_first == typed_replay == (1, 2)


@pytest.mark.asyncio
async def test_store_blip_while_recording_is_retried(flaky_store):
    journal = WorkflowJournal(flaky_store)
    flaky_store.write_failures = 1
    step = Counter(result="charged")

    assert await _context(journal).run_step("charge", step) == "charged"

    assert step.calls == 1
    records = await journal.list_steps("wf-1")
    assert [(r.step_name, r.output) for r in records] == [("charge", "charged")]


@pytest.mark.asyncio
async def test_store_outage_propagates_without_recording(flaky_store):
    journal = WorkflowJournal(flaky_store)
    flaky_store.write_failures = 10
    ctx = WorkflowContext(
        "wf-1", "test_workflow", StepExecutor(journal, store_retry_attempts=2)
    )

    with pytest.raises(StoreUnavailableError):
        await ctx.run_step("charge", Counter())
    assert flaky_store.write_failures == 8
    assert await journal.list_steps("wf-1") == []
