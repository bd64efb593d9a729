"""Device registry: serial to device identity, connectivity and connector status."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

import aiosqlite

from .errors import DeviceNotFound
from .logging_utils import log_websocket_event
from .models import (
    Connector,
    ConnectorStatus,
    Device,
    DeviceActivity,
    DeviceDetails,
    NetworkStatus,
    ReportedStatus,
    parse_status,
    utcnow,
)
from .models.status import derive_activity
from .repositories import ConnectorRepository, DeviceRepository

logger = logging.getLogger(__name__)

EMULATOR_MODEL = "EMT-V1"
EMULATOR_FIRMWARE = "1.0.0-emulator"
DEFAULT_TEMPERATURE_C = 25.0


class DeviceRegistry:
    """
    Owns device connectivity and status.

    Keeps an in-memory view of every known device (with its connectors) in
    front of the device and connector tables. Reads are served from memory;
    every mutation is written through to the database. Status updates are
    last-writer-wins.
    """

    def __init__(
        self,
        db_connection: aiosqlite.Connection,
        offline_timeout: float = 90.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.device_repo = DeviceRepository(db_connection)
        self.conn_repo = ConnectorRepository(db_connection)
        self.offline_timeout = offline_timeout
        self.clock = clock
        self._devices: dict[str, Device] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, serial: str) -> asyncio.Lock:
        if serial not in self._locks:
            self._locks[serial] = asyncio.Lock()
        return self._locks[serial]

    async def _load(self, serial: str) -> Device | None:
        device = self._devices.get(serial)
        if device is not None:
            return device

        device = await self.device_repo.get_by_serial(serial)
        if device is None:
            return None
        for connector in await self.conn_repo.get_all_for_device(serial):
            device.connectors[connector.connector_id] = connector
        self._devices[serial] = device
        return device

    async def _require(self, serial: str) -> Device:
        device = await self._load(serial)
        if device is None:
            raise DeviceNotFound(serial)
        return device

    async def load_all(self) -> list[Device]:
        """Warm the cache with every stored device."""
        for device in await self.device_repo.get_all():
            await self._load(device.serial)
        return list(self._devices.values())

    async def is_known(self, serial: str) -> bool:
        return await self._load(serial) is not None

    async def register_or_get_device(
        self,
        serial: str,
        vendor: str = "",
        model: str = "",
        firmware_version: str = "",
        protocol: str = "",
    ) -> Device:
        """
        Return the device for a serial, creating it on first contact.

        Identity fields reported by a BootNotification overwrite stored values
        when they are non-empty.
        """
        async with self._lock(serial):
            device = await self._load(serial)
            if device is None:
                await self.device_repo.insert(
                    Device(
                        serial=serial,
                        name=serial,
                        vendor=vendor,
                        model=model,
                        firmware_version=firmware_version,
                        protocol=protocol,
                    )
                )
                await self.device_repo.ensure_log_table(serial)
                logger.info(f"Registered new device {serial}")
                return await self._load(serial)

            if any((vendor, model, firmware_version, protocol)):
                await self.device_repo.update_identity(
                    serial, vendor, model, firmware_version, protocol
                )
                device.vendor = vendor or device.vendor
                device.model = model or device.model
                device.firmware_version = firmware_version or device.firmware_version
                device.protocol = protocol or device.protocol
            return device

    async def provision_device(self, serial: str) -> Device:
        """
        Create a virtual device with its details row and charging log.

        Each step checks before inserting, so repeated calls return the same
        device and create nothing new.
        """
        async with self._lock(serial):
            device = await self._load(serial)
            if device is None:
                await self.device_repo.insert(
                    Device(
                        serial=serial,
                        name=f"Virtual Wallbox {serial}",
                        model=EMULATOR_MODEL,
                        firmware_version=EMULATOR_FIRMWARE,
                        status=ConnectorStatus.AVAILABLE,
                    )
                )
                device = await self._load(serial)
                logger.info(f"Provisioned device {serial} (id={device.id})")
            else:
                logger.info(f"Device {serial} already provisioned (id={device.id})")

            if await self.device_repo.get_details(device.id) is None:
                await self.device_repo.insert_details(
                    DeviceDetails(
                        device_id=device.id,
                        power_w=0.0,
                        temperature_c=DEFAULT_TEMPERATURE_C,
                        last_updated=self.clock(),
                    )
                )

            log_name, created = await self.device_repo.ensure_log_table(serial)
            if created:
                logger.info(f"Created charging log {log_name}")
            return device

    async def ensure_log_table(self, serial: str) -> str:
        await self._require(serial)
        log_name, _ = await self.device_repo.ensure_log_table(serial)
        return log_name

    async def mark_online(self, serial: str) -> Device:
        async with self._lock(serial):
            device = await self._require(serial)
            now = self.clock()
            await self.device_repo.update_network_status(serial, NetworkStatus.ONLINE, now)
            device.network_status = NetworkStatus.ONLINE
            device.last_seen_at = now
            return device

    async def mark_offline(self, serial: str) -> Device:
        async with self._lock(serial):
            device = await self._require(serial)
            await self.device_repo.update_network_status(serial, NetworkStatus.OFFLINE)
            device.network_status = NetworkStatus.OFFLINE
            return device

    async def touch(self, serial: str) -> Device:
        """Record that a frame was just received from the device, bringing it back online."""
        async with self._lock(serial):
            device = await self._require(serial)
            now = self.clock()
            if device.is_online:
                await self.device_repo.update_last_seen(serial, now)
            else:
                await self.device_repo.update_network_status(serial, NetworkStatus.ONLINE, now)
                device.network_status = NetworkStatus.ONLINE
                log_websocket_event(logger, "heartbeat_resumed", cp_id=serial)
            device.last_seen_at = now
            return device

    async def update_status(
        self,
        serial: str,
        connector_id: int,
        status,
        error_code: str = "",
        info: str | None = None,
        advisory: bool = False,
    ) -> Connector:
        """
        Overwrite the current status of a connector (0 is the device itself).

        Unrecognized status strings are stored as Unknown with the raw value
        kept. Raises DeviceNotFound for serials the registry has never seen.
        """
        parsed = parse_status(status)
        async with self._lock(serial):
            device = await self._require(serial)
            if connector_id == 0:
                await self.device_repo.update_status(serial, parsed)
                device.status = parsed

            connector = Connector(
                serial=serial,
                connector_id=connector_id,
                status=parsed,
                error_code=error_code or "",
                info=info or "",
                advisory=advisory,
                updated_at=self.clock(),
            )
            await self.conn_repo.upsert(connector)
            device.connectors[connector_id] = connector
            return connector

    async def get_status(self, serial: str) -> Device:
        return await self._require(serial)

    async def get_connector_status(self, serial: str, connector_id: int) -> ReportedStatus:
        """Current status of a connector; Available if it never reported."""
        device = await self._require(serial)
        connector = device.connectors.get(connector_id)
        if connector is None:
            return ConnectorStatus.AVAILABLE
        return connector.status

    async def get_connector(self, serial: str, connector_id: int) -> Connector | None:
        device = await self._require(serial)
        return device.connectors.get(connector_id)

    async def list_devices(self) -> list[Device]:
        await self.load_all()
        return sorted(self._devices.values(), key=lambda d: d.id or 0)

    async def sweep_offline(self, now: datetime | None = None) -> list[str]:
        """Mark online devices offline when nothing was heard within the timeout."""
        now = now or self.clock()
        cutoff = now - timedelta(seconds=self.offline_timeout)
        stale = [
            device.serial
            for device in list(self._devices.values())
            if device.is_online and (device.last_seen_at is None or device.last_seen_at < cutoff)
        ]
        for serial in stale:
            await self.mark_offline(serial)
            log_websocket_event(logger, "heartbeat_timeout", cp_id=serial)
        return stale

    async def reset_network_status(self) -> int:
        """Mark every device offline; used when the service starts."""
        count = await self.device_repo.mark_all_offline()
        for device in self._devices.values():
            device.network_status = NetworkStatus.OFFLINE
        if count:
            logger.info(f"Reset network status of {count} device(s) to offline")
        return count

    # Emulator surface

    async def _details(self, serial: str) -> tuple[Device, DeviceDetails]:
        device = await self._require(serial)
        details = await self.device_repo.get_details(device.id)
        if details is None:
            details = DeviceDetails(device_id=device.id, last_updated=self.clock())
            await self.device_repo.insert_details(details)
        return device, details

    async def set_power(self, serial: str, watts: float) -> DeviceActivity:
        device, details = await self._details(serial)
        await self.device_repo.set_power(device.id, watts, self.clock())
        activity = derive_activity(watts, details.temperature_c)
        logger.info(f"Set power for {serial} to {watts}W ({activity.value})")
        return activity

    async def set_temperature(self, serial: str, celsius: float) -> DeviceActivity:
        device, details = await self._details(serial)
        await self.device_repo.set_temperature(device.id, celsius, self.clock())
        activity = derive_activity(details.power_w, celsius)
        if activity == DeviceActivity.ERROR:
            logger.warning(f"Temperature for {serial} is {celsius}C, device reports error")
        else:
            logger.info(f"Set temperature for {serial} to {celsius}C")
        return activity

    async def get_details(self, serial: str) -> DeviceDetails | None:
        device = await self._require(serial)
        return await self.device_repo.get_details(device.id)

    async def get_activity(self, serial: str) -> DeviceActivity | None:
        details = await self.get_details(serial)
        if details is None:
            return None
        return derive_activity(details.power_w, details.temperature_c)
