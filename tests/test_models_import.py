"""Simple smoke test to ensure the data model imports correctly."""
from voicenotify.models import WIRED_DEVICE_ADDRESS, BluetoothDeviceDB, DeviceRecord


def test_imports():
    record = DeviceRecord(address="00:11:22:33:44:55", name="Test")
    wired = DeviceRecord(address=WIRED_DEVICE_ADDRESS, name="Wired devices")
    row = BluetoothDeviceDB.from_record(record)
    assert record.enabled is True
    assert not record.is_wired and wired.is_wired
    assert row.to_record() == record
    assert record.with_enabled(False).enabled is False


if __name__ == "__main__":
    test_imports()
    print("models import smoke test: OK")
