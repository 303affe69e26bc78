"""Reconciliation of stored notification sources with bonded devices."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from voicenotify.bonded import AdapterStatus, BondedDevice, BondedDeviceSource
from voicenotify.config import DEFAULT_WIRED_LABEL, Settings
from voicenotify.database import StoreLifecycleManager
from voicenotify.exceptions import AccessDeniedError, StoreUnavailableError
from voicenotify.models.device import WIRED_DEVICE_ADDRESS, DeviceRecord
from voicenotify.reactive import Flow
from voicenotify.store import DeviceRecordStore

logger = logging.getLogger(__name__)

SKIP_PERMISSION_DENIED = "permission_denied"
SKIP_BONDED_UNAVAILABLE = "bonded_devices_unavailable"


@dataclass(frozen=True)
class SyncReport:
    """Mutations applied by one reconciliation pass."""

    inserted: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    renamed: Tuple[str, ...] = ()
    wired_created: bool = False
    skipped_reason: Optional[str] = None

    @property
    def mutations(self) -> int:
        return len(self.inserted) + len(self.removed) + len(self.renamed) + int(self.wired_created)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": list(self.inserted),
            "removed": list(self.removed),
            "renamed": list(self.renamed),
            "wired_created": self.wired_created,
            "skipped_reason": self.skipped_reason,
            "mutations": self.mutations,
        }


async def sync_with_bonded_devices(
    store: DeviceRecordStore,
    permission_granted: bool,
    bonded: Optional[Iterable[BondedDevice]],
    *,
    wired_label: str = DEFAULT_WIRED_LABEL,
) -> SyncReport:
    """Converge ``store`` with the bonded device snapshot.

    Adds new devices enabled, removes devices that are no longer bonded and
    follows renames, never touching the enabled flag of a known device. The
    wired entry is created when missing and is never removed. Without
    permission or without a snapshot only the wired entry is maintained.
    """
    existing: Dict[str, DeviceRecord] = {record.address: record for record in await store.list_all()}

    wired_created = False
    if WIRED_DEVICE_ADDRESS not in existing:
        wired = DeviceRecord(address=WIRED_DEVICE_ADDRESS, name=wired_label, enabled=True)
        await store.insert(wired)
        existing[WIRED_DEVICE_ADDRESS] = wired
        wired_created = True

    if not permission_granted:
        logger.warning("Missing Bluetooth permission, cannot sync devices")
        return SyncReport(wired_created=wired_created, skipped_reason=SKIP_PERMISSION_DENIED)
    if bonded is None:
        logger.warning("Bluetooth adapter not available or disabled")
        return SyncReport(wired_created=wired_created, skipped_reason=SKIP_BONDED_UNAVAILABLE)

    names: Dict[str, str] = {
        device.address: device.display_name
        for device in bonded
        if device.address != WIRED_DEVICE_ADDRESS
    }
    existing_addresses = set(existing) - {WIRED_DEVICE_ADDRESS}
    bonded_addresses = set(names)

    removed = sorted(existing_addresses - bonded_addresses)
    for address in removed:
        await store.delete_by_address(address)

    inserted = sorted(bonded_addresses - existing_addresses)
    for address in inserted:
        await store.insert(DeviceRecord(address=address, name=names[address], enabled=True))

    renamed: List[str] = []
    for address in sorted(existing_addresses & bonded_addresses):
        record = existing[address]
        if record.name != names[address]:
            await store.rename(address, names[address])
            renamed.append(address)

    report = SyncReport(
        inserted=tuple(inserted),
        removed=tuple(removed),
        renamed=tuple(renamed),
        wired_created=wired_created,
    )
    if report.mutations:
        logger.info(
            "Bluetooth devices synced: %d added, %d removed, %d renamed",
            len(inserted), len(removed), len(renamed),
        )
    return report


class BluetoothDeviceRepository:
    """Entry point used by the UI layer for notification sources."""

    def __init__(
        self,
        manager: StoreLifecycleManager,
        source: Optional[BondedDeviceSource] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.manager = manager
        self.source = source
        self.settings = settings or Settings()

    @property
    def devices_flow(self) -> Flow[List[DeviceRecord]]:
        return self.manager.devices_flow

    @property
    def enabled_devices_flow(self) -> Flow[List[DeviceRecord]]:
        return self.manager.enabled_devices_flow

    async def current_devices(self, *, enabled_only: bool = False) -> List[DeviceRecord]:
        """Latest value of the device projection."""
        flow = self.enabled_devices_flow if enabled_only else self.devices_flow
        try:
            return await flow.first(timeout=self.manager.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(self.manager.timeout) from exc

    async def sync(self, source: Optional[BondedDeviceSource] = None) -> SyncReport:
        """Query the bonded device source and reconcile the current store."""
        store = await self.manager.await_current()
        permission, snapshot = await self._probe(source or self.source)
        return await sync_with_bonded_devices(
            store,
            permission,
            snapshot,
            wired_label=self.settings.wired_label,
        )

    async def toggle_device(self, address: str) -> bool:
        """Flip the enabled flag of ``address``; unknown addresses are ignored."""
        store = await self.manager.await_current()
        toggled = await store.toggle_enabled(address)
        if not toggled:
            logger.debug("Toggle ignored for unknown device %s", address)
        return toggled

    async def get_device(self, address: str) -> Optional[DeviceRecord]:
        store = await self.manager.await_current()
        return await store.get_by_address(address)

    async def _probe(
        self,
        source: Optional[BondedDeviceSource],
    ) -> Tuple[bool, Optional[Iterable[BondedDevice]]]:
        if source is None:
            logger.debug("No bonded device source configured")
            return True, None
        if not source.has_device_discovery_permission():
            return False, None
        try:
            result = await source.get_bonded_devices()
        except AccessDeniedError:
            logger.exception("Access denied while reading bonded devices")
            return True, None
        if result.status is not AdapterStatus.AVAILABLE and result.reason:
            logger.info("Bonded devices not readable: %s", result.reason)
        return result.permission_granted, result.snapshot


__all__ = [
    "SKIP_BONDED_UNAVAILABLE",
    "SKIP_PERMISSION_DENIED",
    "BluetoothDeviceRepository",
    "SyncReport",
    "sync_with_bonded_devices",
]
