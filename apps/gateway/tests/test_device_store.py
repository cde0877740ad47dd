import pytest

from session_gateway.device_store import Device, DeviceStore, DeviceStoreError


@pytest.fixture
def store(tmp_path):
    store = DeviceStore(str(tmp_path / "messages.db"))
    store.open()
    return store


class TestDeviceStore:
    def test_empty_store_gives_unpaired_device(self, store):
        device = store.load()
        assert device == Device()
        assert not device.paired

    def test_save_and_load(self, store):
        store.save(Device(address="123@s.whatsapp.net", identity=b"\x01\x02"))
        device = store.load()
        assert device.paired
        assert device.address == "123@s.whatsapp.net"
        assert device.identity == b"\x01\x02"

    def test_save_replaces(self, store):
        store.save(Device(address="1@s.whatsapp.net", identity=b"a"))
        store.save(Device(address="2@s.whatsapp.net", identity=b"b"))
        assert store.load().address == "2@s.whatsapp.net"

    def test_delete(self, store):
        store.save(Device(address="1@s.whatsapp.net", identity=b"a"))
        store.delete()
        assert not store.load().paired

    def test_survives_reopen(self, store):
        store.save(Device(address="1@s.whatsapp.net", identity=b"a"))
        reopened = DeviceStore(store.path)
        reopened.open()
        assert reopened.load().address == "1@s.whatsapp.net"

    def test_unreachable_path(self, tmp_path):
        store = DeviceStore(str(tmp_path / "missing" / "dir" / "messages.db"))
        with pytest.raises(DeviceStoreError):
            store.open()

    def test_load_without_schema(self, tmp_path):
        store = DeviceStore(str(tmp_path / "fresh.db"))
        with pytest.raises(DeviceStoreError):
            store.load()
