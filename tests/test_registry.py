"""Tests for the device registry."""

import pytest

from voltlink.errors import DeviceNotFound
from voltlink.models import ConnectorStatus, DeviceActivity, NetworkStatus, UnknownStatus
from voltlink.registry import DeviceRegistry
from voltlink.repositories import DeviceRepository


@pytest.mark.unit
class TestDeviceRegistration:
    """Test device registration and provisioning."""

    async def test_register_new_device(self, registry, db_connection):
        """Test that first contact creates the device and its charging log."""
        device = await registry.register_or_get_device(
            "EMT-0001", vendor="Emtek", model="EMT-V1", firmware_version="1.0.0"
        )

        assert device.id is not None
        assert device.serial == "EMT-0001"
        assert device.vendor == "Emtek"
        assert await DeviceRepository(db_connection).log_tables() == ["charging_log_EMT-0001"]

    async def test_register_is_idempotent(self, registry):
        """Test that repeated registration returns the same device."""
        first = await registry.register_or_get_device("EMT-0001", vendor="Emtek")
        second = await registry.register_or_get_device("EMT-0001")

        assert second.id == first.id
        assert second.vendor == "Emtek"
        assert len(await registry.list_devices()) == 1

    async def test_register_refreshes_identity(self, registry):
        """Test that a later boot updates firmware and model."""
        await registry.register_or_get_device("EMT-0001", model="EMT-V1", firmware_version="1.0.0")

        device = await registry.register_or_get_device("EMT-0001", firmware_version="1.1.0")

        assert device.firmware_version == "1.1.0"
        assert device.model == "EMT-V1"

    async def test_provision_device(self, registry, db_connection):
        """Test provisioning a virtual device with details and log."""
        device = await registry.provision_device("EMT-0001")

        assert device.name == "Virtual Wallbox EMT-0001"
        assert device.model == "EMT-V1"
        details = await registry.get_details("EMT-0001")
        assert details.power_w == 0.0
        assert details.temperature_c == 25.0
        assert await DeviceRepository(db_connection).log_tables() == ["charging_log_EMT-0001"]

    async def test_provision_twice_creates_nothing_new(self, registry, db_connection):
        """Test that provisioning is idempotent."""
        first = await registry.provision_device("EMT-0001")
        second = await registry.provision_device("EMT-0001")

        assert second.id == first.id
        repo = DeviceRepository(db_connection)
        assert len(await repo.get_all()) == 1
        assert await repo.log_tables() == ["charging_log_EMT-0001"]
        rows = await (await db_connection.execute("SELECT COUNT(*) FROM device_details")).fetchone()
        assert rows[0] == 1

    async def test_unknown_serial_raises(self, registry):
        """Test that reads for never-seen serials fail."""
        with pytest.raises(DeviceNotFound):
            await registry.get_status("NOPE")
        assert await registry.is_known("NOPE") is False


@pytest.mark.unit
class TestConnectivity:
    """Test online/offline tracking."""

    async def test_mark_online_and_offline(self, registry, clock):
        """Test connectivity transitions and last-seen time."""
        await registry.register_or_get_device("EMT-0001")

        device = await registry.mark_online("EMT-0001")
        assert device.network_status == NetworkStatus.ONLINE
        assert device.last_seen_at == clock.now

        device = await registry.mark_offline("EMT-0001")
        assert device.network_status == NetworkStatus.OFFLINE

    async def test_sweep_offline_uses_last_seen(self, registry, clock):
        """Test that only devices silent past the timeout go offline."""
        await registry.register_or_get_device("EMT-0001")
        await registry.register_or_get_device("EMT-0002")
        await registry.mark_online("EMT-0001")
        await registry.mark_online("EMT-0002")

        clock.advance(60)
        await registry.touch("EMT-0002")
        clock.advance(60)

        stale = await registry.sweep_offline()

        assert stale == ["EMT-0001"]
        assert not (await registry.get_status("EMT-0001")).is_online
        assert (await registry.get_status("EMT-0002")).is_online

    async def test_frame_after_sweep_brings_device_online(self, registry, db_connection, clock):
        """Test that a heartbeat after a timeout restores online status, in memory and storage."""
        await registry.register_or_get_device("EMT-0001")
        await registry.mark_online("EMT-0001")
        clock.advance(120)
        assert await registry.sweep_offline() == ["EMT-0001"]

        device = await registry.touch("EMT-0001")

        assert device.is_online
        assert device.last_seen_at == clock.now
        assert (await registry.get_status("EMT-0001")).is_online
        stored = await DeviceRepository(db_connection).get_by_serial("EMT-0001")
        assert stored.network_status == NetworkStatus.ONLINE
        assert await registry.sweep_offline() == []

    async def test_reset_network_status(self, registry, db_connection):
        """Test that startup flips every device offline, in memory and storage."""
        await registry.register_or_get_device("EMT-0001")
        await registry.mark_online("EMT-0001")

        assert await registry.reset_network_status() == 1

        assert not (await registry.get_status("EMT-0001")).is_online
        stored = await DeviceRepository(db_connection).get_by_serial("EMT-0001")
        assert stored.network_status == NetworkStatus.OFFLINE


@pytest.mark.unit
class TestStatusUpdates:
    """Test connector status storage."""

    async def test_update_connector_status(self, registry):
        """Test that a status update is visible immediately."""
        await registry.register_or_get_device("EMT-0001")

        await registry.update_status("EMT-0001", 1, "Charging")

        assert await registry.get_connector_status("EMT-0001", 1) == ConnectorStatus.CHARGING

    async def test_connector_defaults_to_available(self, registry):
        """Test connectors that never reported."""
        await registry.register_or_get_device("EMT-0001")

        assert await registry.get_connector_status("EMT-0001", 3) == ConnectorStatus.AVAILABLE

    async def test_connector_zero_updates_device_status(self, registry):
        """Test that connector 0 reports the device itself."""
        await registry.register_or_get_device("EMT-0001")

        await registry.update_status("EMT-0001", 0, "Unavailable")

        device = await registry.get_status("EMT-0001")
        assert device.status == ConnectorStatus.UNAVAILABLE

    async def test_unknown_status_is_stored(self, registry, db_connection, clock):
        """Test that unrecognized strings are kept as Unknown and survive a restart."""
        await registry.register_or_get_device("EMT-0001")

        connector = await registry.update_status("EMT-0001", 1, "Hibernating")

        assert connector.status == UnknownStatus("Hibernating")

        reloaded = DeviceRegistry(db_connection, clock=clock)
        status = await reloaded.get_connector_status("EMT-0001", 1)
        assert status.value == "Unknown"
        assert status.raw == "Hibernating"

    async def test_update_unknown_device_raises(self, registry):
        """Test that status for an unknown serial is refused."""
        with pytest.raises(DeviceNotFound):
            await registry.update_status("NOPE", 1, "Available")

    async def test_last_writer_wins(self, registry):
        """Test that the most recent update is the stored status."""
        await registry.register_or_get_device("EMT-0001")

        await registry.update_status("EMT-0001", 1, "Preparing", advisory=True)
        await registry.update_status("EMT-0001", 1, "Available")

        connector = await registry.get_connector("EMT-0001", 1)
        assert connector.status == ConnectorStatus.AVAILABLE
        assert connector.advisory is False


@pytest.mark.unit
class TestEmulatorReadings:
    """Test emulated power and temperature."""

    @pytest.mark.parametrize(
        "watts, expected",
        [(150, DeviceActivity.CHARGING), (50, DeviceActivity.STANDBY), (100, DeviceActivity.STANDBY)],
    )
    async def test_set_power(self, registry, watts, expected):
        """Test that power above 100W means charging."""
        await registry.provision_device("EMT-0001")

        assert await registry.set_power("EMT-0001", watts) == expected
        assert await registry.get_activity("EMT-0001") == expected

    async def test_set_temperature_overheat(self, registry):
        """Test that temperatures above 60C report an error."""
        await registry.provision_device("EMT-0001")
        await registry.set_power("EMT-0001", 7200)

        assert await registry.set_temperature("EMT-0001", 65) == DeviceActivity.ERROR
        assert await registry.set_temperature("EMT-0001", 60) == DeviceActivity.CHARGING

    async def test_set_power_unknown_device(self, registry):
        """Test that emulator updates need a provisioned device."""
        with pytest.raises(DeviceNotFound):
            await registry.set_power("NOPE", 100)

    async def test_set_power_creates_missing_details(self, registry):
        """Test devices registered by boot get a details row on first update."""
        await registry.register_or_get_device("EMT-0001")

        assert await registry.get_activity("EMT-0001") is None
        await registry.set_power("EMT-0001", 500)

        assert await registry.get_activity("EMT-0001") == DeviceActivity.CHARGING
