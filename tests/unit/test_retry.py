import pytest

from waypoint.errors import StoreUnavailableError
from waypoint.utils import retry
from waypoint.utils.retry import compute_backoff, retry_store_call


def test_compute_backoff_grows_exponentially():
    assert compute_backoff(0, base=2.0, jitter=0) == 1.0
    assert compute_backoff(3, base=2.0, jitter=0) == 8.0
    delay = compute_backoff(2, base=1.5, jitter=0.5)
    assert 2.25 <= delay <= 2.75


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []

    async def _record(attempt, base=1.5, jitter=0.5):
        delays.append(attempt)

    monkeypatch.setattr(retry, "schedule_retry", _record)
    return delays


@pytest.mark.asyncio
async def test_retry_store_call_recovers(no_sleep):
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise StoreUnavailableError("connection reset")
        return "rows"

    assert await retry_store_call(flaky, attempts=5) == "rows"
    assert calls == 3
    assert no_sleep == [1, 2]


@pytest.mark.asyncio
async def test_retry_store_call_gives_up(no_sleep):
    calls = 0

    async def down():
        nonlocal calls
        calls += 1
        raise StoreUnavailableError("down")

    with pytest.raises(StoreUnavailableError):
        await retry_store_call(down, attempts=3)
    assert calls == 3


@pytest.mark.asyncio
async def test_retry_store_call_does_not_retry_other_errors(no_sleep):
    async def broken():
        raise ValueError("bad row")

    with pytest.raises(ValueError):
        await retry_store_call(broken, attempts=3)
    assert no_sleep == []
