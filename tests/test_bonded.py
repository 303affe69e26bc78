"""Simulation tests for bonded device sources."""
from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from dbus_fast import MessageType, Variant

from voicenotify.bonded import (
    AdapterStatus,
    BluezBondedDeviceSource,
    BondedDevice,
    StaticBondedDeviceSource,
)


def _adapter(powered: bool) -> Dict[str, Any]:
    return {"org.bluez.Adapter1": {"Powered": Variant("b", powered)}}


def _device(address: str, *, name: Optional[str], paired: bool, adapter: str = "/org/bluez/hci0") -> Dict[str, Any]:
    props: Dict[str, Any] = {
        "Address": Variant("s", address),
        "Paired": Variant("b", paired),
        "Adapter": Variant("o", adapter),
    }
    if name is not None:
        props["Name"] = Variant("s", name)
    return {"org.bluez.Device1": props}


class FakeBus:
    """Minimal stand-in for dbus_fast's MessageBus."""

    def __init__(self, reply: Any = None, connect_error: Optional[BaseException] = None) -> None:
        self.reply = reply
        self.connect_error = connect_error
        self.messages: List[Any] = []
        self.disconnected = False

    async def connect(self) -> "FakeBus":
        if self.connect_error is not None:
            raise self.connect_error
        return self

    async def call(self, message: Any) -> Any:
        self.messages.append(message)
        return self.reply

    def disconnect(self) -> None:
        self.disconnected = True


def _reply(objects: Dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(message_type=MessageType.METHOD_RETURN, body=[objects], error_name=None)


class BluezBondedDeviceSourceTest(unittest.IsolatedAsyncioTestCase):
    async def test_returns_paired_devices_of_powered_adapter(self) -> None:
        objects = {
            "/org/bluez/hci0": _adapter(True),
            "/org/bluez/hci0/dev_AA": _device("AA:BB:CC:DD:EE:01", name="Speaker", paired=True),
            "/org/bluez/hci0/dev_BB": _device("AA:BB:CC:DD:EE:02", name=None, paired=True),
            "/org/bluez/hci0/dev_CC": _device("AA:BB:CC:DD:EE:03", name="Stranger", paired=False),
        }
        bus = FakeBus(_reply(objects))
        source = BluezBondedDeviceSource(bus_factory=lambda: bus)

        result = await source.get_bonded_devices()

        self.assertEqual(result.status, AdapterStatus.AVAILABLE)
        self.assertEqual(
            result.devices,
            frozenset({
                BondedDevice("AA:BB:CC:DD:EE:01", "Speaker"),
                BondedDevice("AA:BB:CC:DD:EE:02", None),
            }),
        )
        self.assertTrue(bus.disconnected)
        self.assertEqual(bus.messages[0].member, "GetManagedObjects")
        self.assertTrue(source.has_device_discovery_permission())

    async def test_powered_off_adapter_is_unavailable(self) -> None:
        objects = {
            "/org/bluez/hci0": _adapter(False),
            "/org/bluez/hci0/dev_AA": _device("AA:BB:CC:DD:EE:01", name="Speaker", paired=True),
        }
        source = BluezBondedDeviceSource(bus_factory=lambda: FakeBus(_reply(objects)))
        result = await source.get_bonded_devices()
        self.assertEqual(result.status, AdapterStatus.UNAVAILABLE)
        self.assertIsNone(result.snapshot)
        self.assertTrue(result.permission_granted)

    async def test_adapter_filter_skips_other_adapters(self) -> None:
        objects = {
            "/org/bluez/hci0": _adapter(True),
            "/org/bluez/hci1": _adapter(True),
            "/org/bluez/hci0/dev_AA": _device("AA:BB:CC:DD:EE:01", name="Zero", paired=True),
            "/org/bluez/hci1/dev_BB": _device(
                "AA:BB:CC:DD:EE:02", name="One", paired=True, adapter="/org/bluez/hci1"
            ),
        }
        source = BluezBondedDeviceSource("hci1", bus_factory=lambda: FakeBus(_reply(objects)))
        result = await source.get_bonded_devices()
        self.assertEqual([device.name for device in result.devices], ["One"])

    async def test_no_adapter_is_unavailable(self) -> None:
        source = BluezBondedDeviceSource(bus_factory=lambda: FakeBus(_reply({})))
        result = await source.get_bonded_devices()
        self.assertEqual(result.status, AdapterStatus.UNAVAILABLE)

    async def test_access_denied_reply_reports_permission_denied(self) -> None:
        reply = SimpleNamespace(
            message_type=MessageType.ERROR,
            body=[],
            error_name="org.freedesktop.DBus.Error.AccessDenied",
        )
        source = BluezBondedDeviceSource(bus_factory=lambda: FakeBus(reply))
        result = await source.get_bonded_devices()
        self.assertEqual(result.status, AdapterStatus.PERMISSION_DENIED)
        self.assertFalse(result.permission_granted)
        self.assertFalse(source.has_device_discovery_permission())

    async def test_missing_bluez_service_is_unavailable(self) -> None:
        reply = SimpleNamespace(
            message_type=MessageType.ERROR,
            body=[],
            error_name="org.freedesktop.DBus.Error.ServiceUnknown",
        )
        source = BluezBondedDeviceSource(bus_factory=lambda: FakeBus(reply))
        result = await source.get_bonded_devices()
        self.assertEqual(result.status, AdapterStatus.UNAVAILABLE)
        self.assertEqual(result.reason, "org.freedesktop.DBus.Error.ServiceUnknown")

    async def test_unreachable_bus_is_unavailable(self) -> None:
        bus = FakeBus(connect_error=FileNotFoundError("no system bus socket"))
        source = BluezBondedDeviceSource(bus_factory=lambda: bus)
        result = await source.get_bonded_devices()
        self.assertEqual(result.status, AdapterStatus.UNAVAILABLE)
        self.assertIn("no system bus socket", result.reason)


class StaticBondedDeviceSourceTest(unittest.IsolatedAsyncioTestCase):
    async def test_from_json_reads_snapshot(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp, "bonded.json")
            path.write_text(
                json.dumps([{"address": "AA:1", "name": "Speaker"}, {"address": "BB:2"}]),
                encoding="utf-8",
            )
            source = StaticBondedDeviceSource.from_json(path)

        result = await source.get_bonded_devices()
        self.assertEqual(result.snapshot, frozenset({BondedDevice("AA:1", "Speaker"), BondedDevice("BB:2")}))
        self.assertEqual(BondedDevice("BB:2").display_name, "BB:2")

    def test_from_json_rejects_invalid_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp, "bonded.json")
            path.write_text(json.dumps([{"name": "no address"}]), encoding="utf-8")
            with self.assertRaises(ValueError):
                StaticBondedDeviceSource.from_json(path)

    async def test_denied_and_unavailable_states(self) -> None:
        source = StaticBondedDeviceSource(permission=False)
        self.assertEqual((await source.get_bonded_devices()).status, AdapterStatus.PERMISSION_DENIED)
        source = StaticBondedDeviceSource(adapter_available=False)
        self.assertEqual((await source.get_bonded_devices()).status, AdapterStatus.UNAVAILABLE)


if __name__ == "__main__":
    unittest.main()
