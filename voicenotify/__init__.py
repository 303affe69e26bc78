"""Persisted notification sources synchronized with bonded Bluetooth devices."""
from .bonded import AdapterStatus, BondedDevice, BondedDevicesResult, StaticBondedDeviceSource
from .config import Settings
from .database import StoreLifecycleManager, default_manager
from .exceptions import (
    AccessDeniedError,
    DuplicateDeviceError,
    StoreClosedError,
    StoreIOError,
    StoreUnavailableError,
    VoiceNotifyError,
)
from .models import WIRED_DEVICE_ADDRESS, DeviceRecord
from .repository import BluetoothDeviceRepository, SyncReport, sync_with_bonded_devices
from .store import DeviceRecordStore

__version__ = "0.1.0"

__all__ = [
    "AccessDeniedError",
    "AdapterStatus",
    "BluetoothDeviceRepository",
    "BondedDevice",
    "BondedDevicesResult",
    "DeviceRecord",
    "DeviceRecordStore",
    "DuplicateDeviceError",
    "Settings",
    "StaticBondedDeviceSource",
    "StoreClosedError",
    "StoreIOError",
    "StoreLifecycleManager",
    "StoreUnavailableError",
    "SyncReport",
    "VoiceNotifyError",
    "WIRED_DEVICE_ADDRESS",
    "default_manager",
    "sync_with_bonded_devices",
]
