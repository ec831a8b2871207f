"""
Unit tests for the execution store backends

The in-memory and SQL stores run the same contract tests; the Redis store
is exercised against a dict-backed fake client.
"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from flowrunner.database import create_engine, create_session_factory, create_tables
from flowrunner.exceptions import NotFoundError, StoreUnavailableError
from flowrunner.schemas.execution import (
    ACTIVE_STATUSES,
    ExecutionMetrics,
    ExecutionRecord,
    ExecutionStatus,
)
from flowrunner.services.execution_store import (
    InMemoryExecutionStore,
    RedisExecutionStore,
    SqlExecutionStore,
)


BASE_TIME = datetime(2024, 1, 15, 10, 0, 0)


def make_record(
    execution_id: str,
    owner_id: str = "owner-1",
    workflow_id: str = "wf-1",
    minutes: int = 0,
    status: ExecutionStatus = ExecutionStatus.RUNNING,
) -> ExecutionRecord:
    return ExecutionRecord(
        id=execution_id,
        workflow_id=workflow_id,
        workflow_name="Sample",
        owner_id=owner_id,
        status=status,
        start_time=BASE_TIME + timedelta(minutes=minutes),
        metrics=ExecutionMetrics(total_nodes=3),
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_store(request):
    """Each contract test runs against both local backends"""
    if request.param == "memory":
        yield InMemoryExecutionStore()
        return

    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield SqlExecutionStore(create_session_factory(engine))
    await engine.dispose()


# ==================== Contract ====================


@pytest.mark.unit
class TestExecutionStoreContract:
    """Behaviour every store backend must share"""

    @pytest.mark.asyncio
    async def test_insert_then_get(self, any_store):
        record = make_record("exec-1")
        await any_store.insert(record)

        loaded = await any_store.get("exec-1")

        assert loaded.model_dump() == record.model_dump()

    @pytest.mark.asyncio
    async def test_get_missing(self, any_store):
        assert await any_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_duplicate_insert_rejected(self, any_store):
        await any_store.insert(make_record("exec-1"))

        with pytest.raises(ValueError):
            await any_store.insert(make_record("exec-1"))

    @pytest.mark.asyncio
    async def test_update_merges_and_stamps(self, any_store):
        await any_store.insert(make_record("exec-1"))

        updated = await any_store.update("exec-1", {
            "status": ExecutionStatus.PAUSED,
            "progress": 33,
            "current_node": "A1",
        })

        assert updated.status == ExecutionStatus.PAUSED
        assert updated.progress == 33
        assert updated.updated_at > BASE_TIME

        loaded = await any_store.get("exec-1")
        assert loaded.status == ExecutionStatus.PAUSED
        assert loaded.current_node == "A1"
        assert loaded.workflow_name == "Sample"

    @pytest.mark.asyncio
    async def test_update_results_and_metrics(self, any_store):
        await any_store.insert(make_record("exec-1"))

        await any_store.update("exec-1", {
            "metrics": ExecutionMetrics(total_nodes=3, completed_nodes=1, error_count=1),
            "results": {"T1": {"node_id": "T1", "success": True}},
        })

        loaded = await any_store.get("exec-1")
        assert loaded.metrics.completed_nodes == 1
        assert loaded.metrics.error_count == 1
        assert loaded.results["T1"]["success"] is True

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, any_store):
        with pytest.raises(NotFoundError):
            await any_store.update("nope", {"progress": 10})

    @pytest.mark.asyncio
    async def test_conditional_update_skips_terminal_record(self, any_store):
        await any_store.insert(make_record("exec-1", status=ExecutionStatus.CANCELLED))
        before = await any_store.get("exec-1")

        written = await any_store.update(
            "exec-1",
            {"results": {"G1": {"node_id": "G1", "success": True}}},
            only_if=ACTIVE_STATUSES,
        )

        assert written is None
        assert (await any_store.get("exec-1")).model_dump() == before.model_dump()

    @pytest.mark.asyncio
    async def test_conditional_update_applies_when_status_matches(self, any_store):
        await any_store.insert(make_record("exec-1", status=ExecutionStatus.PAUSED))

        written = await any_store.update("exec-1", {"progress": 50}, only_if=ACTIVE_STATUSES)

        assert written.progress == 50
        assert written.status == ExecutionStatus.PAUSED

    @pytest.mark.asyncio
    async def test_update_leaves_other_fields_alone(self, any_store):
        await any_store.insert(make_record("exec-1"))
        await any_store.update("exec-1", {"status": ExecutionStatus.CANCELLED, "end_time": BASE_TIME})

        written = await any_store.update("exec-1", {"progress": 40})

        assert written.status == ExecutionStatus.CANCELLED
        assert written.end_time == BASE_TIME
        assert written.progress == 40

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_progress(self, any_store):
        await any_store.insert(make_record("exec-1"))

        with pytest.raises(ValueError):
            await any_store.update("exec-1", {"progress": 150})

    @pytest.mark.asyncio
    async def test_owner_scoping(self, any_store):
        await any_store.insert(make_record("exec-1", owner_id="alice"))

        assert await any_store.get("exec-1", owner_id="alice") is not None
        assert await any_store.get("exec-1", owner_id="bob") is None

    @pytest.mark.asyncio
    async def test_list_newest_first(self, any_store):
        await any_store.insert(make_record("old", minutes=0))
        await any_store.insert(make_record("new", minutes=10))
        await any_store.insert(make_record("mid", minutes=5))
        await any_store.insert(make_record("foreign", owner_id="other", minutes=20))

        records = await any_store.list("owner-1")

        assert [record.id for record in records] == ["new", "mid", "old"]

    @pytest.mark.asyncio
    async def test_list_filter_and_limit(self, any_store):
        await any_store.insert(make_record("a", workflow_id="wf-a", minutes=0))
        await any_store.insert(make_record("b", workflow_id="wf-b", minutes=1))
        await any_store.insert(make_record("c", workflow_id="wf-a", minutes=2))

        filtered = await any_store.list("owner-1", workflow_id="wf-a")
        limited = await any_store.list("owner-1", limit=2)

        assert [record.id for record in filtered] == ["c", "a"]
        assert [record.id for record in limited] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_ping(self, any_store):
        assert await any_store.ping() is True


@pytest.mark.unit
class TestInMemoryStore:
    """In-memory specifics"""

    @pytest.mark.asyncio
    async def test_returned_records_are_detached(self):
        store = InMemoryExecutionStore()
        await store.insert(make_record("exec-1"))

        loaded = await store.get("exec-1")
        loaded.results["X"] = {"tampered": True}

        assert (await store.get("exec-1")).results == {}


@pytest.mark.unit
class TestSqlStore:
    """SQL specifics"""

    @pytest.mark.asyncio
    async def test_close_runs_hook(self):
        engine = create_engine("sqlite+aiosqlite:///:memory:")
        on_close = AsyncMock()
        store = SqlExecutionStore(create_session_factory(engine), on_close=on_close)

        await store.close()
        await engine.dispose()

        on_close.assert_awaited_once()


# ==================== Redis ====================


class FakePipeline:
    """
    WATCH/MULTI/EXEC over FakeRedis.

    ``get`` yields to the event loop so concurrent updates interleave
    between their read and their write.
    """

    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._watched: Dict[str, int] = {}
        self._queued: List[Tuple[str, str]] = []
        self._buffering = False

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.reset()

    async def watch(self, *keys: str) -> None:
        for key in keys:
            self._watched[key] = self._redis.versions.get(key, 0)

    async def unwatch(self) -> None:
        self._watched = {}

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self._redis.values.get(key)

    def multi(self) -> None:
        self._buffering = True

    def set(self, key: str, value: str) -> "FakePipeline":
        assert self._buffering, "set outside MULTI"
        self._queued.append((key, value))
        return self

    async def execute(self) -> List[bool]:
        try:
            for key, version in self._watched.items():
                if self._redis.versions.get(key, 0) != version:
                    raise WatchError("Watched variable changed.")
            for key, value in self._queued:
                self._redis.store(key, value)
            return [True] * len(self._queued)
        finally:
            await self.reset()

    async def reset(self) -> None:
        self._watched = {}
        self._queued = []
        self._buffering = False


class FakeRedis:
    """Dict-backed stand-in for the handful of redis commands the store uses"""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.versions: Dict[str, int] = {}
        self.sorted_sets: Dict[str, Dict[str, float]] = {}

    def store(self, key: str, value: str) -> None:
        self.values[key] = value
        self.versions[key] = self.versions.get(key, 0) + 1

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def set(self, key: str, value: str, nx: bool = False) -> Optional[bool]:
        if nx and key in self.values:
            return None
        self.store(key, value)
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def mget(self, keys):
        return [self.values.get(key) for key in keys]

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self.sorted_sets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zrange(self, key: str, start: int, end: int, desc: bool = False):
        members = self.sorted_sets.get(key, {})
        ordered = sorted(members, key=lambda member: members[member], reverse=desc)
        return ordered if end == -1 else ordered[start:end + 1]

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis) -> RedisExecutionStore:
    return RedisExecutionStore(fake_redis)


@pytest.mark.unit
class TestRedisStore:
    """Redis backend against a fake client"""

    @pytest.mark.asyncio
    async def test_insert_writes_record_and_index(self, redis_store, fake_redis):
        await redis_store.insert(make_record("exec-1"))

        stored = json.loads(fake_redis.values["execution:exec-1"])
        assert stored["metrics"]["totalNodes"] == 3
        assert "exec-1" in fake_redis.sorted_sets["executions:owner:owner-1"]

    @pytest.mark.asyncio
    async def test_round_trip(self, redis_store):
        record = make_record("exec-1")
        await redis_store.insert(record)

        assert (await redis_store.get("exec-1")).model_dump() == record.model_dump()

    @pytest.mark.asyncio
    async def test_duplicate_insert_rejected(self, redis_store):
        await redis_store.insert(make_record("exec-1"))

        with pytest.raises(ValueError):
            await redis_store.insert(make_record("exec-1"))

    @pytest.mark.asyncio
    async def test_update_and_owner_scoping(self, redis_store):
        await redis_store.insert(make_record("exec-1", owner_id="alice"))

        await redis_store.update("exec-1", {"status": ExecutionStatus.COMPLETED, "progress": 100})

        loaded = await redis_store.get("exec-1", owner_id="alice")
        assert loaded.status == ExecutionStatus.COMPLETED
        assert loaded.progress == 100
        assert await redis_store.get("exec-1", owner_id="bob") is None

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, redis_store):
        with pytest.raises(NotFoundError):
            await redis_store.update("nope", {"progress": 1})

    @pytest.mark.asyncio
    async def test_interleaved_updates_keep_both_changes(self, redis_store):
        await redis_store.insert(make_record("exec-1"))

        await asyncio.gather(
            redis_store.update("exec-1", {"status": ExecutionStatus.CANCELLED, "end_time": BASE_TIME}),
            redis_store.update("exec-1", {"results": {"T1": {"node_id": "T1", "success": True}}}),
        )

        loaded = await redis_store.get("exec-1")
        assert loaded.status == ExecutionStatus.CANCELLED
        assert loaded.end_time == BASE_TIME
        assert list(loaded.results) == ["T1"]

    @pytest.mark.asyncio
    async def test_conditional_update_loses_race_to_stop(self, redis_store):
        await redis_store.insert(make_record("exec-1"))

        stopped, step = await asyncio.gather(
            redis_store.update(
                "exec-1",
                {"status": ExecutionStatus.CANCELLED, "end_time": BASE_TIME},
                only_if=ACTIVE_STATUSES,
            ),
            redis_store.update(
                "exec-1",
                {"results": {"G1": {"node_id": "G1", "success": True}}},
                only_if=ACTIVE_STATUSES,
            ),
        )

        assert stopped.status == ExecutionStatus.CANCELLED
        assert step is None
        assert (await redis_store.get("exec-1")).model_dump() == stopped.model_dump()

    @pytest.mark.asyncio
    async def test_update_skips_terminal_record(self, redis_store, fake_redis):
        await redis_store.insert(make_record("exec-1", status=ExecutionStatus.COMPLETED))
        stored = fake_redis.values["execution:exec-1"]

        assert await redis_store.update("exec-1", {"progress": 10}, only_if=ACTIVE_STATUSES) is None
        assert fake_redis.values["execution:exec-1"] == stored

    @pytest.mark.asyncio
    async def test_list_order_filter_limit(self, redis_store):
        await redis_store.insert(make_record("a", workflow_id="wf-a", minutes=0))
        await redis_store.insert(make_record("b", workflow_id="wf-b", minutes=1))
        await redis_store.insert(make_record("c", workflow_id="wf-a", minutes=2))

        assert [r.id for r in await redis_store.list("owner-1")] == ["c", "b", "a"]
        assert [r.id for r in await redis_store.list("owner-1", workflow_id="wf-a")] == ["c", "a"]
        assert [r.id for r in await redis_store.list("owner-1", limit=1)] == ["c"]
        assert await redis_store.list("nobody") == []

    @pytest.mark.asyncio
    async def test_connection_error_is_store_unavailable(self):
        client = AsyncMock()
        client.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        store = RedisExecutionStore(client)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.get("exec-1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True
        assert exc_info.value.details["backend"] == "redis"

    @pytest.mark.asyncio
    async def test_ping_failure_reports_false(self):
        client = AsyncMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("down"))

        assert await RedisExecutionStore(client).ping() is False
