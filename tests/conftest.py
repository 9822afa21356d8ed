import pytest

from waypoint import Runtime
from waypoint.errors import StoreUnavailableError
from waypoint.persistence import WorkflowJournal
from waypoint.store import InMemoryLogStore
from waypoint.utils import retry


class FlakyLogStore(InMemoryLogStore):
    """In-memory store that fails a set number of calls, like a restarting database."""

    def __init__(self) -> None:
        super().__init__()
        self.write_failures = 0
        self.fail_writes_matching = "/steps/"
        self.listing_failures = 0

    async def conditional_write(self, key, value):
        if self.write_failures and self.fail_writes_matching in key:
            self.write_failures -= 1
            raise StoreUnavailableError("blip")
        return await super().conditional_write(key, value)

    async def list_by_prefix(self, prefix):
        if self.listing_failures:
            self.listing_failures -= 1
            raise StoreUnavailableError("store restarting")
        return await super().list_by_prefix(prefix)


@pytest.fixture
def store():
    return InMemoryLogStore()


@pytest.fixture
def journal(store):
    return WorkflowJournal(store)


@pytest.fixture
def no_backoff(monkeypatch):
    async def _skip(attempt, base=1.5, jitter=0.5):
        return None

    monkeypatch.setattr(retry, "schedule_retry", _skip)


@pytest.fixture
def flaky_store(no_backoff):
    return FlakyLogStore()


@pytest.fixture
def make_runtime(store):
    """Build runtimes that share one store, like processes sharing a database."""

    def _make(executor_id: str = "local", log_store=None, **options) -> Runtime:
        config = {
            "name": "test-app",
            "store_connection": "memory://",
            "executor_id": executor_id,
            **options,
        }
        return Runtime(config, store=log_store or store)

    return _make
