"""SQLAlchemy table definitions for the device store."""
from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, String
from sqlalchemy.orm import declarative_base

from .device import DeviceRecord

Base = declarative_base()


class BluetoothDeviceDB(Base):  # type: ignore[misc, valid-type]
    """Database row for a notification source."""
    __tablename__ = "bluetooth_devices"
    __table_args__ = (
        Index("index_bluetooth_devices_device_address", "device_address", unique=True),
    )

    device_address = Column(String(255), primary_key=True)
    device_name = Column(String(255), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True, server_default="1")

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "BluetoothDeviceDB":
        return cls(
            device_address=record.address,
            device_name=record.name,
            is_enabled=record.enabled,
        )

    def to_record(self) -> DeviceRecord:
        return DeviceRecord(
            address=self.device_address,
            name=self.device_name,
            enabled=bool(self.is_enabled),
        )

    def __repr__(self) -> str:
        return f"<BluetoothDeviceDB {self.device_name} ({self.device_address})>"


__all__ = ["Base", "BluetoothDeviceDB"]
