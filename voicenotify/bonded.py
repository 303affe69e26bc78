"""Sources of the host's bonded Bluetooth devices."""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Protocol, Set

from dbus_fast import BusType, Message, MessageType
from dbus_fast.aio import MessageBus
from dbus_fast.errors import AuthError, DBusError

logger = logging.getLogger(__name__)

BLUEZ_SERVICE = "org.bluez"
BLUEZ_ROOT = "/org/bluez"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"

ACCESS_DENIED_ERRORS = frozenset({
	"org.freedesktop.DBus.Error.AccessDenied",
	"org.bluez.Error.NotAuthorized",
	"org.bluez.Error.NotPermitted",
})


@dataclass(frozen=True, slots=True)
class BondedDevice:
	"""One entry of the adapter's bonded device list."""

	address: str
	name: Optional[str] = None

	@property
	def display_name(self) -> str:
		return self.name or self.address

	def to_dict(self) -> Dict[str, Any]:
		return {"address": self.address, "name": self.name}


class AdapterStatus(str, enum.Enum):
	AVAILABLE = "available"
	PERMISSION_DENIED = "permission_denied"
	UNAVAILABLE = "unavailable"


@dataclass(frozen=True, slots=True)
class BondedDevicesResult:
	"""Outcome of a bonded device query."""

	status: AdapterStatus
	devices: FrozenSet[BondedDevice] = field(default_factory=frozenset)
	reason: Optional[str] = None

	@classmethod
	def available(cls, devices: Iterable[BondedDevice]) -> "BondedDevicesResult":
		return cls(AdapterStatus.AVAILABLE, frozenset(devices))

	@classmethod
	def denied(cls, reason: Optional[str] = None) -> "BondedDevicesResult":
		return cls(AdapterStatus.PERMISSION_DENIED, reason=reason)

	@classmethod
	def unavailable(cls, reason: Optional[str] = None) -> "BondedDevicesResult":
		return cls(AdapterStatus.UNAVAILABLE, reason=reason)

	@property
	def permission_granted(self) -> bool:
		return self.status is not AdapterStatus.PERMISSION_DENIED

	@property
	def snapshot(self) -> Optional[FrozenSet[BondedDevice]]:
		"""Bonded devices, or ``None`` unless the adapter answered."""
		if self.status is AdapterStatus.AVAILABLE:
			return self.devices
		return None


class BondedDeviceSource(Protocol):
	def has_device_discovery_permission(self) -> bool:
		...

	async def get_bonded_devices(self) -> BondedDevicesResult:
		...


class StaticBondedDeviceSource:
	"""In-memory bonded device list, e.g. loaded from a JSON snapshot."""

	def __init__(
		self,
		devices: Iterable[BondedDevice] = (),
		*,
		permission: bool = True,
		adapter_available: bool = True,
	) -> None:
		self.devices: FrozenSet[BondedDevice] = frozenset(devices)
		self.permission = permission
		self.adapter_available = adapter_available
		self.queries = 0

	@classmethod
	def from_json(cls, path: str | Path) -> "StaticBondedDeviceSource":
		raw = json.loads(Path(path).read_text(encoding="utf-8"))
		if not isinstance(raw, list):
			raise ValueError("bonded device snapshot must be a JSON list")
		devices = []
		for entry in raw:
			if not isinstance(entry, Mapping) or not entry.get("address"):
				raise ValueError(f"invalid bonded device entry: {entry!r}")
			devices.append(BondedDevice(address=str(entry["address"]), name=entry.get("name") or None))
		return cls(devices)

	def set_devices(self, devices: Iterable[BondedDevice]) -> None:
		self.devices = frozenset(devices)

	def has_device_discovery_permission(self) -> bool:
		return self.permission

	async def get_bonded_devices(self) -> BondedDevicesResult:
		self.queries += 1
		if not self.permission:
			return BondedDevicesResult.denied("permission not granted")
		if not self.adapter_available:
			return BondedDevicesResult.unavailable("adapter not available")
		return BondedDevicesResult.available(self.devices)


def _unwrap(value: Any) -> Any:
	return value.value if hasattr(value, "value") else value


class BluezBondedDeviceSource:
	"""Read paired devices from BlueZ over the system D-Bus.

	A missing bus, a missing ``org.bluez`` service, no adapter or only
	powered-off adapters all report :attr:`AdapterStatus.UNAVAILABLE`.
	D-Bus access denials report :attr:`AdapterStatus.PERMISSION_DENIED` and
	are remembered for :meth:`has_device_discovery_permission`.
	"""

	def __init__(
		self,
		adapter: Optional[str] = None,
		*,
		bus_factory: Optional[Callable[[], Any]] = None,
	) -> None:
		self.adapter = adapter
		self._bus_factory = bus_factory or (lambda: MessageBus(bus_type=BusType.SYSTEM))
		self._permission: Optional[bool] = None

	def has_device_discovery_permission(self) -> bool:
		# unknown until the first query; the query itself settles it
		return self._permission is not False

	async def get_bonded_devices(self) -> BondedDevicesResult:
		try:
			bus = await self._bus_factory().connect()
		except (OSError, AuthError, DBusError) as exc:
			logger.warning("System bus not reachable: %s", exc)
			return BondedDevicesResult.unavailable(f"system bus not reachable: {exc}")

		try:
			reply = await bus.call(
				Message(
					destination=BLUEZ_SERVICE,
					path="/",
					interface=OBJECT_MANAGER_INTERFACE,
					member="GetManagedObjects",
				)
			)
		finally:
			bus.disconnect()

		if reply.message_type == MessageType.ERROR:
			if reply.error_name in ACCESS_DENIED_ERRORS:
				self._permission = False
				logger.warning("BlueZ denied access: %s", reply.error_name)
				return BondedDevicesResult.denied(reply.error_name)
			logger.warning("BlueZ query failed: %s", reply.error_name)
			return BondedDevicesResult.unavailable(reply.error_name)

		self._permission = True
		return self.parse_managed_objects(reply.body[0])

	def parse_managed_objects(self, objects: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> BondedDevicesResult:
		adapters: Dict[str, bool] = {}
		for path, interfaces in objects.items():
			if ADAPTER_INTERFACE not in interfaces:
				continue
			if self.adapter and path != f"{BLUEZ_ROOT}/{self.adapter}":
				continue
			adapters[path] = bool(_unwrap(interfaces[ADAPTER_INTERFACE].get("Powered", False)))

		if not adapters:
			return BondedDevicesResult.unavailable("no Bluetooth adapter")
		powered: Set[str] = {path for path, on in adapters.items() if on}
		if not powered:
			return BondedDevicesResult.unavailable("Bluetooth adapter disabled")

		devices = []
		for path, interfaces in objects.items():
			props = interfaces.get(DEVICE_INTERFACE)
			if not props:
				continue
			adapter_path = _unwrap(props.get("Adapter")) or path.rsplit("/", 1)[0]
			if adapter_path not in powered:
				continue
			paired = _unwrap(props.get("Paired", False)) or _unwrap(props.get("Bonded", False))
			address = _unwrap(props.get("Address"))
			if not paired or not address:
				continue
			devices.append(BondedDevice(address=str(address), name=_unwrap(props.get("Name")) or None))

		logger.debug("BlueZ reports %d bonded device(s)", len(devices))
		return BondedDevicesResult.available(devices)


__all__ = [
	"AdapterStatus",
	"BondedDevice",
	"BondedDeviceSource",
	"BondedDevicesResult",
	"BluezBondedDeviceSource",
	"StaticBondedDeviceSource",
]
