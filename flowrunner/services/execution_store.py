"""
Execution Store

Durable execution records keyed by execution id. The coordinator's only
persistence surface.

Backends:
- InMemoryExecutionStore: process-local, for development and tests
- SqlExecutionStore: SQLAlchemy async, table ``workflow_executions``
- RedisExecutionStore: JSON value per execution plus a per-owner index

Updates are partial and keyed: only the fields named in ``changes`` are
written, atomically with respect to other updates of the same record.
An optional status precondition (``only_if``) lets writers skip records
that have moved on, e.g. a run step landing after a stop.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Collection, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError
from sqlalchemy import select, text
from sqlalchemy import update as sql_update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from flowrunner.config import Settings
from flowrunner.database import close_db, init_db
from flowrunner.exceptions import NotFoundError, StoreUnavailableError
from flowrunner.logging_config import get_logger
from flowrunner.models.execution import WorkflowExecution
from flowrunner.redis_client import RedisClient
from flowrunner.schemas.execution import ExecutionRecord, ExecutionStatus

StatusFilter = Optional[Collection[ExecutionStatus]]

logger = get_logger(__name__)


class ExecutionStore(ABC):
    """
    Abstract base class for execution record stores.

    Implementations must support concurrent keyed writes from many runs.
    """

    @abstractmethod
    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        """
        Insert a new record.

        Raises:
            ValueError: If a record with the same id exists
        """
        pass

    @abstractmethod
    async def update(
        self,
        execution_id: str,
        changes: Dict[str, Any],
        only_if: StatusFilter = None,
    ) -> Optional[ExecutionRecord]:
        """
        Merge ``changes`` into a record and stamp ``updated_at``.

        Args:
            execution_id: Record to update
            changes: Field name -> new value; other fields are left alone
            only_if: Statuses the record must be in for the write to happen

        Returns:
            The record as written, or None when ``only_if`` did not hold
            (nothing is written in that case)

        Raises:
            NotFoundError: If the record does not exist
        """
        pass

    @abstractmethod
    async def get(self, execution_id: str, owner_id: Optional[str] = None) -> Optional[ExecutionRecord]:
        """
        Get a record by id.

        When ``owner_id`` is given, records owned by someone else are
        reported as missing.
        """
        pass

    @abstractmethod
    async def list(
        self,
        owner_id: str,
        workflow_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ExecutionRecord]:
        """List an owner's records, newest first by start_time."""
        pass

    async def ping(self) -> bool:
        """Check that the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release backend resources."""


def _stamp(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {**changes, "updated_at": datetime.utcnow()}


def _allowed(record: ExecutionRecord, only_if: StatusFilter) -> bool:
    return only_if is None or record.status in only_if


class InMemoryExecutionStore(ExecutionStore):
    """Process-local store. Returned records are detached copies."""

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        async with self._lock:
            if record.id in self._records:
                raise ValueError(f"Execution {record.id} already exists")
            self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update(
        self,
        execution_id: str,
        changes: Dict[str, Any],
        only_if: StatusFilter = None,
    ) -> Optional[ExecutionRecord]:
        async with self._lock:
            current = self._records.get(execution_id)
            if current is None:
                raise NotFoundError("Execution", execution_id)
            if not _allowed(current, only_if):
                return None
            updated = current.apply(_stamp(changes))
            self._records[execution_id] = updated
        return updated.model_copy(deep=True)

    async def get(self, execution_id: str, owner_id: Optional[str] = None) -> Optional[ExecutionRecord]:
        async with self._lock:
            record = self._records.get(execution_id)
            if record is None or (owner_id is not None and record.owner_id != owner_id):
                return None
            return record.model_copy(deep=True)

    async def list(
        self,
        owner_id: str,
        workflow_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ExecutionRecord]:
        async with self._lock:
            records = [
                record for record in self._records.values()
                if record.owner_id == owner_id
                and (workflow_id is None or record.workflow_id == workflow_id)
            ]
        records.sort(key=lambda record: record.start_time, reverse=True)
        return [record.model_copy(deep=True) for record in records[:limit]]


class SqlExecutionStore(ExecutionStore):
    """SQLAlchemy-backed store using one short session per operation."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._session_factory = session_factory
        self._on_close = on_close

    async def close(self) -> None:
        if self._on_close is not None:
            await self._on_close()

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except OperationalError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        try:
            async with self._session_factory() as session:
                if await session.get(WorkflowExecution, record.id) is not None:
                    raise ValueError(f"Execution {record.id} already exists")
                session.add(WorkflowExecution.from_record(record))
                await session.commit()
        except OperationalError as e:
            raise StoreUnavailableError("database", details={"error": str(e)})
        return record

    async def update(
        self,
        execution_id: str,
        changes: Dict[str, Any],
        only_if: StatusFilter = None,
    ) -> Optional[ExecutionRecord]:
        stamped = _stamp(changes)
        try:
            async with self._session_factory() as session:
                row = await session.get(WorkflowExecution, execution_id)
                if row is None:
                    raise NotFoundError("Execution", execution_id)

                # Validate the merged record, then write only the changed columns
                merged = row.to_record().apply(stamped)
                statement = sql_update(WorkflowExecution).where(WorkflowExecution.id == execution_id)
                if only_if is not None:
                    statement = statement.where(
                        WorkflowExecution.status.in_([status.value for status in only_if])
                    )
                result = await session.execute(
                    statement.values(**WorkflowExecution.column_values(merged, stamped))
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount == 0:
                    return None

                row = await session.get(WorkflowExecution, execution_id, populate_existing=True)
                return row.to_record()
        except OperationalError as e:
            raise StoreUnavailableError("database", details={"error": str(e)})

    async def get(self, execution_id: str, owner_id: Optional[str] = None) -> Optional[ExecutionRecord]:
        try:
            async with self._session_factory() as session:
                row = await session.get(WorkflowExecution, execution_id)
        except OperationalError as e:
            raise StoreUnavailableError("database", details={"error": str(e)})

        if row is None or (owner_id is not None and row.owner_id != owner_id):
            return None
        return row.to_record()

    async def list(
        self,
        owner_id: str,
        workflow_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ExecutionRecord]:
        query = select(WorkflowExecution).where(WorkflowExecution.owner_id == owner_id)
        if workflow_id is not None:
            query = query.where(WorkflowExecution.workflow_id == workflow_id)
        query = query.order_by(WorkflowExecution.start_time.desc()).limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except OperationalError as e:
            raise StoreUnavailableError("database", details={"error": str(e)})

        return [row.to_record() for row in rows]


class RedisExecutionStore(ExecutionStore):
    """
    Redis-based execution store.

    Each record is a JSON string; a per-owner sorted set scored by start
    time keeps history queries ordered. Updates are optimistic
    transactions on the record key.
    """

    # Key patterns
    KEY_EXECUTION = "execution:{execution_id}"
    KEY_OWNER_EXECUTIONS = "executions:owner:{owner_id}"

    # Optimistic transaction retries per update
    MAX_WRITE_ATTEMPTS = 10

    def __init__(
        self,
        redis_client: Redis,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._redis = redis_client
        self._on_close = on_close

    async def close(self) -> None:
        if self._on_close is not None:
            await self._on_close()

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    @staticmethod
    def _score(record: ExecutionRecord) -> float:
        return record.start_time.replace(tzinfo=timezone.utc).timestamp()

    async def _read(self, execution_id: str) -> Optional[ExecutionRecord]:
        data = await self._redis.get(self.KEY_EXECUTION.format(execution_id=execution_id))
        if data is None:
            return None
        return ExecutionRecord.from_storage(json.loads(data))

    async def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        try:
            key = self.KEY_EXECUTION.format(execution_id=record.id)
            created = await self._redis.set(key, json.dumps(record.to_storage()), nx=True)
            if not created:
                raise ValueError(f"Execution {record.id} already exists")

            owner_key = self.KEY_OWNER_EXECUTIONS.format(owner_id=record.owner_id)
            await self._redis.zadd(owner_key, {record.id: self._score(record)})
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("redis", details={"error": str(e)})

        logger.debug("Execution record stored", execution_id=record.id)
        return record

    async def update(
        self,
        execution_id: str,
        changes: Dict[str, Any],
        only_if: StatusFilter = None,
    ) -> Optional[ExecutionRecord]:
        """
        Read-merge-write inside WATCH/MULTI.

        A concurrent write to the same key aborts the transaction and the
        merge is retried against the fresh value.
        """
        key = self.KEY_EXECUTION.format(execution_id=execution_id)
        stamped = _stamp(changes)

        try:
            async with self._redis.pipeline(transaction=True) as pipeline:
                for _ in range(self.MAX_WRITE_ATTEMPTS):
                    try:
                        await pipeline.watch(key)
                        data = await pipeline.get(key)
                        if data is None:
                            raise NotFoundError("Execution", execution_id)

                        current = ExecutionRecord.from_storage(json.loads(data))
                        if not _allowed(current, only_if):
                            await pipeline.unwatch()
                            return None

                        updated = current.apply(stamped)
                        pipeline.multi()
                        pipeline.set(key, json.dumps(updated.to_storage()))
                        await pipeline.execute()
                        return updated
                    except WatchError:
                        logger.debug("Execution record changed during update, retrying", execution_id=execution_id)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("redis", details={"error": str(e)})

        raise StoreUnavailableError(
            "redis",
            details={"error": f"update of {execution_id} kept conflicting with concurrent writes"},
        )

    async def get(self, execution_id: str, owner_id: Optional[str] = None) -> Optional[ExecutionRecord]:
        try:
            record = await self._read(execution_id)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("redis", details={"error": str(e)})

        if record is None or (owner_id is not None and record.owner_id != owner_id):
            return None
        return record

    async def list(
        self,
        owner_id: str,
        workflow_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ExecutionRecord]:
        owner_key = self.KEY_OWNER_EXECUTIONS.format(owner_id=owner_id)
        try:
            execution_ids = await self._redis.zrange(owner_key, 0, -1, desc=True)
            if not execution_ids:
                return []
            keys = [self.KEY_EXECUTION.format(execution_id=eid) for eid in execution_ids]
            values = await self._redis.mget(keys)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError("redis", details={"error": str(e)})

        records = []
        for value in values:
            if value is None:
                continue
            record = ExecutionRecord.from_storage(json.loads(value))
            if workflow_id is not None and record.workflow_id != workflow_id:
                continue
            records.append(record)
            if len(records) >= limit:
                break
        return records


async def create_execution_store(config: Settings) -> ExecutionStore:
    """
    Build the store selected by ``STORE_BACKEND``

    Connects the backing service; call ``close()`` on shutdown.
    """
    backend = config.STORE_BACKEND

    if backend == "database":
        session_factory = await init_db(config.DATABASE_URL)
        store: ExecutionStore = SqlExecutionStore(session_factory, on_close=close_db)
    elif backend == "redis":
        client = RedisClient(config.REDIS_URL, max_connections=config.REDIS_MAX_CONNECTIONS)
        await client.connect()
        store = RedisExecutionStore(client.client, on_close=client.close)
    else:
        store = InMemoryExecutionStore()

    logger.info("Execution store ready", backend=backend)
    return store
