"""Durable device record table backed by SQLAlchemy."""
from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import create_engine, delete, not_, select, update
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from voicenotify.exceptions import DuplicateDeviceError, StoreClosedError, StoreIOError
from voicenotify.models.db_models import Base, BluetoothDeviceDB
from voicenotify.models.device import DeviceRecord
from voicenotify.reactive import Flow, Subscription, deliver

logger = logging.getLogger(__name__)

Query = Callable[[], List[DeviceRecord]]


def create_store_engine(url: str, *, echo: bool = False) -> Engine:
    """Build an engine for ``url``, preparing SQLite files and in-memory pools."""
    parsed = make_url(url)
    kwargs: Dict[str, Any] = {"echo": echo}
    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        database = parsed.database
        if not database or database == ":memory:":
            # one shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        else:
            Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(parsed, **kwargs)


class _QueryFlow(Flow[List[DeviceRecord]]):
    def __init__(self, store: "DeviceRecordStore", name: str, query: Query) -> None:
        self._store = store
        self._name = name
        self._query = query

    def subscribe(self, callback: Callable[[List[DeviceRecord]], None]) -> Subscription:
        return self._store._register(self._name, self._query, callback)

    def __repr__(self) -> str:
        return f"<QueryFlow {self._name}>"


class DeviceRecordStore:
    """Keyed table of :class:`DeviceRecord` rows with live query flows.

    All database work runs on one background thread owned by the store. Each
    mutation commits its own transaction and re-runs the queries of active
    subscribers before the awaiting caller resumes, so a caller that reads
    after a write always sees its own write reflected in every flow.
    """

    def __init__(
        self,
        url: str = "sqlite://",
        *,
        echo: bool = False,
        engine: Optional[Engine] = None,
    ) -> None:
        self.url = url
        try:
            self._engine = engine or create_store_engine(url, echo=echo)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreIOError(f"cannot open device store at {url}: {exc}", operation="open") from exc
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="voicenotify-db")
        self._state_lock = threading.Lock()
        self._listeners: Dict[int, Tuple[Query, Callable[[List[DeviceRecord]], None]]] = {}
        self._ids = itertools.count()
        self._closed = False
        logger.debug("Opened device store %s", url)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Reactive queries
    # ------------------------------------------------------------------
    def get_all(self) -> Flow[List[DeviceRecord]]:
        """All records ordered by name."""
        return _QueryFlow(self, "all", self._select_all)

    def get_enabled(self) -> Flow[List[DeviceRecord]]:
        """Records whose ``enabled`` flag is set."""
        return _QueryFlow(self, "enabled", self._select_enabled)

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------
    async def get_by_address(self, address: str) -> Optional[DeviceRecord]:
        return await self._run("get_by_address", self._select_one, address)

    async def list_all(self) -> List[DeviceRecord]:
        return await self._run("list_all", self._select_all)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def insert(self, record: DeviceRecord) -> None:
        await self._run("insert", self._insert, record)

    async def update(self, record: DeviceRecord) -> bool:
        return await self._run("update", self._update, record)

    async def rename(self, address: str, name: str) -> bool:
        """Change only the name of ``address``, leaving ``enabled`` as stored."""
        return await self._run(
            "rename",
            self._execute_write,
            update(BluetoothDeviceDB)
            .where(BluetoothDeviceDB.device_address == address)
            .values(device_name=name),
        )

    async def set_enabled(self, address: str, enabled: bool) -> bool:
        return await self._run(
            "set_enabled",
            self._execute_write,
            update(BluetoothDeviceDB)
            .where(BluetoothDeviceDB.device_address == address)
            .values(is_enabled=enabled),
        )

    async def toggle_enabled(self, address: str) -> bool:
        """Invert ``enabled`` in one statement; ``False`` when no row matched."""
        return await self._run(
            "toggle_enabled",
            self._execute_write,
            update(BluetoothDeviceDB)
            .where(BluetoothDeviceDB.device_address == address)
            .values(is_enabled=not_(BluetoothDeviceDB.is_enabled)),
        )

    async def delete_by_address(self, address: str) -> bool:
        return await self._run(
            "delete_by_address",
            self._execute_write,
            delete(BluetoothDeviceDB).where(BluetoothDeviceDB.device_address == address),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Finish queued work, then release the engine and the I/O thread."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self._listeners.clear()
        self._executor.shutdown(wait=True)
        self._engine.dispose()
        logger.debug("Closed device store %s", self.url)

    # ------------------------------------------------------------------
    # Executor plumbing
    # ------------------------------------------------------------------
    async def _run(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        # a cancelled caller only cancels work that has not started yet
        return await asyncio.wrap_future(self._submit(operation, func, *args))

    def _submit(self, operation: str, func: Callable[..., Any], *args: Any) -> Future:
        with self._state_lock:
            if self._closed:
                raise StoreClosedError("device store is closed", operation=operation)
            return self._executor.submit(self._guarded, operation, func, *args)

    def _guarded(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except SQLAlchemyError as exc:
            logger.error("Device store %s failed: %s", operation, exc)
            raise StoreIOError(str(exc), operation=operation) from exc

    def _register(
        self,
        name: str,
        query: Query,
        callback: Callable[[List[DeviceRecord]], None],
    ) -> Subscription:
        with self._state_lock:
            if self._closed:
                logger.debug("Ignoring %s subscription on closed store %s", name, self.url)
                return Subscription()
            key = next(self._ids)
            self._listeners[key] = (query, callback)
            self._executor.submit(self._emit_initial, key)
        return Subscription(lambda: self._unregister(key))

    def _unregister(self, key: int) -> None:
        with self._state_lock:
            self._listeners.pop(key, None)

    def _emit_initial(self, key: int) -> None:
        with self._state_lock:
            entry = self._listeners.get(key)
        if entry is None:
            return
        query, callback = entry
        try:
            value = query()
        except SQLAlchemyError:
            logger.exception("Initial device query failed")
            return
        deliver(callback, value)

    def _notify(self) -> None:
        with self._state_lock:
            entries = list(self._listeners.values())
        results: Dict[Query, List[DeviceRecord]] = {}
        for query, callback in entries:
            if query not in results:
                try:
                    results[query] = query()
                except SQLAlchemyError:
                    logger.exception("Device query refresh failed")
                    continue
            deliver(callback, results[query])

    # ------------------------------------------------------------------
    # Database work (runs on the store thread)
    # ------------------------------------------------------------------
    def _select_all(self) -> List[DeviceRecord]:
        with self._sessions() as session:
            rows = session.scalars(
                select(BluetoothDeviceDB).order_by(
                    BluetoothDeviceDB.device_name, BluetoothDeviceDB.device_address
                )
            ).all()
            return [row.to_record() for row in rows]

    def _select_enabled(self) -> List[DeviceRecord]:
        with self._sessions() as session:
            rows = session.scalars(
                select(BluetoothDeviceDB)
                .where(BluetoothDeviceDB.is_enabled.is_(True))
                .order_by(BluetoothDeviceDB.device_name, BluetoothDeviceDB.device_address)
            ).all()
            return [row.to_record() for row in rows]

    def _select_one(self, address: str) -> Optional[DeviceRecord]:
        with self._sessions() as session:
            row = session.get(BluetoothDeviceDB, address)
            return row.to_record() if row is not None else None

    def _insert(self, record: DeviceRecord) -> None:
        try:
            with self._sessions.begin() as session:
                session.add(BluetoothDeviceDB.from_record(record))
        except IntegrityError as exc:
            if self._select_one(record.address) is None:
                raise
            raise DuplicateDeviceError(record.address) from exc
        logger.debug("Inserted device %s (%s)", record.address, record.name)
        self._notify()

    def _update(self, record: DeviceRecord) -> bool:
        return self._execute_write(
            update(BluetoothDeviceDB)
            .where(BluetoothDeviceDB.device_address == record.address)
            .values(device_name=record.name, is_enabled=record.enabled)
        )

    def _execute_write(self, statement: Any) -> bool:
        with self._sessions.begin() as session:
            changed = session.execute(
                statement, execution_options={"synchronize_session": False}
            ).rowcount > 0
        if changed:
            logger.debug("Applied %s", statement)
            self._notify()
        return changed

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<DeviceRecordStore {self.url} ({state})>"


__all__ = ["DeviceRecordStore", "create_store_engine"]
