from __future__ import annotations
from dataclasses import dataclass, replace

WIRED_DEVICE_ADDRESS = "__WIRED_DEVICES__"


@dataclass(frozen=True)
class DeviceRecord:
    """A notification source the user can enable or disable.

    The wired entry uses :data:`WIRED_DEVICE_ADDRESS`; every other record is
    keyed by a Bluetooth address.
    """
    address: str
    name: str
    enabled: bool = True

    @property
    def is_wired(self) -> bool:
        return self.address == WIRED_DEVICE_ADDRESS

    def with_enabled(self, enabled: bool) -> "DeviceRecord":
        return replace(self, enabled=enabled)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "name": self.name,
            "enabled": self.enabled,
            "wired": self.is_wired,
        }
