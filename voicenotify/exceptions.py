"""Exception hierarchy for voicenotify device storage."""
from __future__ import annotations


class VoiceNotifyError(Exception):
    """Base exception for all voicenotify errors."""


class StoreError(VoiceNotifyError):
    """Failure raised by the device record store."""


class StoreIOError(StoreError):
    """The durable medium failed while executing an operation."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)


class StoreClosedError(StoreIOError):
    """Operation attempted on a store that has been closed."""


class DuplicateDeviceError(StoreError):
    """Insert of an address that already has a record."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"device {address!r} already exists")


class StoreUnavailableError(VoiceNotifyError):
    """No store instance was published before the wait timed out."""

    def __init__(self, timeout: float | None) -> None:
        self.timeout = timeout
        super().__init__(f"no device store available after {timeout}s")


class AccessDeniedError(VoiceNotifyError):
    """The host refused access to the Bluetooth stack."""


__all__ = [
    "VoiceNotifyError",
    "StoreError",
    "StoreIOError",
    "StoreClosedError",
    "DuplicateDeviceError",
    "StoreUnavailableError",
    "AccessDeniedError",
]
