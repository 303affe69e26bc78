"""Data model for persisted notification sources."""
from .device import WIRED_DEVICE_ADDRESS, DeviceRecord
from .db_models import Base, BluetoothDeviceDB

__all__ = [
    "WIRED_DEVICE_ADDRESS",
    "DeviceRecord",
    "Base",
    "BluetoothDeviceDB",
]
