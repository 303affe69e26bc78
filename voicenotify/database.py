"""Ownership of the process-wide device store instance."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, List, Optional

from voicenotify.config import DEFAULT_STORE_TIMEOUT, Settings
from voicenotify.exceptions import StoreUnavailableError
from voicenotify.models.device import DeviceRecord
from voicenotify.reactive import Flow, StateCell
from voicenotify.store import DeviceRecordStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], DeviceRecordStore]


class StoreLifecycleManager:
    """Publish the current :class:`DeviceRecordStore` and the flows built on it.

    The store is built eagerly on construction. :meth:`close_db` and
    :meth:`open_db` swap it out; every projection follows the newest store
    without consumers having to resubscribe.
    """

    def __init__(
        self,
        factory: StoreFactory,
        *,
        timeout: float = DEFAULT_STORE_TIMEOUT,
        eager: bool = True,
    ) -> None:
        self._factory = factory
        self.timeout = timeout
        self._lock = threading.Lock()
        self._cell: StateCell[Optional[DeviceRecordStore]] = StateCell(factory() if eager else None)

        self.store_flow: Flow[DeviceRecordStore] = self._cell.filter_not_none()
        self.devices_flow: Flow[List[DeviceRecord]] = self.store_flow.switch_latest(
            lambda store: store.get_all()
        )
        self.enabled_devices_flow: Flow[List[DeviceRecord]] = self.store_flow.switch_latest(
            lambda store: store.get_enabled()
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, eager: bool = True) -> "StoreLifecycleManager":
        def _build() -> DeviceRecordStore:
            return DeviceRecordStore(settings.database_url, echo=settings.sql_echo)

        return cls(_build, timeout=settings.store_timeout, eager=eager)

    @property
    def current(self) -> Optional[DeviceRecordStore]:
        return self._cell.value

    @property
    def state(self) -> Flow[Optional[DeviceRecordStore]]:
        """Raw current-instance flow, including ``None`` while closed."""
        return self._cell

    def open_db(self) -> DeviceRecordStore:
        """Build a fresh store and publish it, closing the one it replaces."""
        with self._lock:
            store = self._factory()
            previous = self._cell.value
            self._cell.set(store)
        logger.info("Device store opened: %s", store.url)
        if previous is not None and previous is not store:
            previous.close()
        return store

    def close_db(self) -> None:
        with self._lock:
            store = self._cell.value
            if store is None:
                return
            self._cell.set(None)
        store.close()
        logger.info("Device store closed: %s", store.url)

    async def await_current(self, timeout: Optional[float] = None) -> DeviceRecordStore:
        """Return the current store, waiting up to ``timeout`` seconds for one."""
        limit = self.timeout if timeout is None else timeout
        try:
            return await self._cell.await_value(timeout=limit)
        except asyncio.TimeoutError as exc:
            logger.warning("No device store published within %.2fs", limit)
            raise StoreUnavailableError(limit) from exc

    def wait_current(self, timeout: Optional[float] = None) -> DeviceRecordStore:
        """Blocking variant of :meth:`await_current` for synchronous callers."""
        limit = self.timeout if timeout is None else timeout
        try:
            return self._cell.wait(timeout=limit)
        except TimeoutError as exc:
            raise StoreUnavailableError(limit) from exc


_default_manager: Optional[StoreLifecycleManager] = None
_default_lock = threading.Lock()


def default_manager(settings: Optional[Settings] = None) -> StoreLifecycleManager:
    """Return the process-wide manager, creating it on first use."""
    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = StoreLifecycleManager.from_settings(settings or Settings.from_env())
        return _default_manager


__all__ = ["StoreFactory", "StoreLifecycleManager", "default_manager"]
