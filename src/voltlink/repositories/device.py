"""Repository for device, device details and charging-log registry rows."""

from datetime import datetime

from ..models import Device, DeviceDetails
from ..models.status import NetworkStatus, ReportedStatus, status_from_storage
from .base import BaseRepository


def log_name_for(serial: str) -> str:
    """Deterministic per-device charging log name."""
    return f"charging_log_{serial}"


class DeviceRepository(BaseRepository):
    """Handles database operations for devices."""

    async def insert(self, device: Device) -> Device:
        """Insert a new device row, ignoring a concurrent insert of the same serial."""
        query = """
            INSERT INTO device (
                serial, name, vendor, model, firmware_version,
                network_status, last_seen_at, status, status_raw, protocol
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(serial) DO NOTHING
        """
        await self._execute_and_commit(
            query,
            (
                device.serial,
                device.name,
                device.vendor,
                device.model,
                device.firmware_version,
                device.network_status.value,
                device.last_seen_at,
                device.status.value,
                device.status.raw if not device.status.is_known else "",
                device.protocol,
            ),
        )
        return await self.get_by_serial(device.serial)

    async def get_by_serial(self, serial: str) -> Device | None:
        """Get device by serial."""
        row = await self._fetchone("SELECT * FROM device WHERE serial = ?", (serial,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_all(self) -> list[Device]:
        """Get all devices."""
        rows = await self._fetchall("SELECT * FROM device ORDER BY id")
        return [self._row_to_model(row) for row in rows]

    async def update_identity(
        self, serial: str, vendor: str, model: str, firmware_version: str, protocol: str
    ):
        """Update vendor/model/firmware from a BootNotification, keeping non-empty values."""
        query = """
            UPDATE device
            SET vendor = COALESCE(NULLIF(?, ''), vendor),
                model = COALESCE(NULLIF(?, ''), model),
                firmware_version = COALESCE(NULLIF(?, ''), firmware_version),
                protocol = COALESCE(NULLIF(?, ''), protocol),
                updated_at = CURRENT_TIMESTAMP
            WHERE serial = ?
        """
        await self._execute_and_commit(query, (vendor, model, firmware_version, protocol, serial))

    async def update_network_status(
        self, serial: str, status: NetworkStatus, last_seen_at: datetime | None = None
    ) -> int:
        """Update connectivity state."""
        query = """
            UPDATE device
            SET network_status = ?,
                last_seen_at = COALESCE(?, last_seen_at),
                updated_at = CURRENT_TIMESTAMP
            WHERE serial = ?
        """
        return await self._execute_and_commit(query, (status.value, last_seen_at, serial))

    async def update_last_seen(self, serial: str, last_seen_at: datetime):
        """Update last-seen timestamp."""
        await self._execute_and_commit(
            "UPDATE device SET last_seen_at = ? WHERE serial = ?", (last_seen_at, serial)
        )

    async def update_status(self, serial: str, status: ReportedStatus):
        """Update device-level (connector 0) status."""
        query = """
            UPDATE device
            SET status = ?,
                status_raw = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE serial = ?
        """
        raw = "" if status.is_known else status.raw
        await self._execute_and_commit(query, (status.value, raw, serial))

    async def mark_all_offline(self) -> int:
        """Flip every online device to offline."""
        return await self._execute_and_commit(
            "UPDATE device SET network_status = 'offline', updated_at = CURRENT_TIMESTAMP "
            "WHERE network_status = 'online'"
        )

    # Details

    async def get_details(self, device_id: int) -> DeviceDetails | None:
        row = await self._fetchone("SELECT * FROM device_details WHERE device_id = ?", (device_id,))
        if row:
            return DeviceDetails(
                device_id=row["device_id"],
                power_w=row["power_w"],
                temperature_c=row["temperature_c"],
                last_updated=row["last_updated"],
            )
        return None

    async def insert_details(self, details: DeviceDetails) -> bool:
        """Insert the details row if absent. Returns True when a row was created."""
        rowcount = await self._execute_and_commit(
            """
            INSERT INTO device_details (device_id, power_w, temperature_c, last_updated)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(device_id) DO NOTHING
            """,
            (details.device_id, details.power_w, details.temperature_c, details.last_updated),
        )
        return rowcount > 0

    async def set_power(self, device_id: int, power_w: float, at: datetime):
        await self._execute_and_commit(
            "UPDATE device_details SET power_w = ?, last_updated = ? WHERE device_id = ?",
            (power_w, at, device_id),
        )

    async def set_temperature(self, device_id: int, temperature_c: float, at: datetime):
        await self._execute_and_commit(
            "UPDATE device_details SET temperature_c = ?, last_updated = ? WHERE device_id = ?",
            (temperature_c, at, device_id),
        )

    # Charging log registry

    async def ensure_log_table(self, serial: str) -> tuple[str, bool]:
        """Register the device's charging log if absent. Returns (name, created)."""
        log_name = log_name_for(serial)
        rowcount = await self._execute_and_commit(
            """
            INSERT INTO charging_log_registry (serial, log_name) VALUES (?, ?)
            ON CONFLICT(serial) DO NOTHING
            """,
            (serial, log_name),
        )
        return log_name, rowcount > 0

    async def log_tables(self) -> list[str]:
        rows = await self._fetchall("SELECT log_name FROM charging_log_registry ORDER BY log_name")
        return [row["log_name"] for row in rows]

    def _row_to_model(self, row) -> Device:
        """Convert database row to Device model."""
        return Device(
            id=row["id"],
            serial=row["serial"],
            name=row["name"],
            vendor=row["vendor"],
            model=row["model"],
            firmware_version=row["firmware_version"],
            network_status=NetworkStatus(row["network_status"]),
            last_seen_at=row["last_seen_at"],
            status=status_from_storage(row["status"], row["status_raw"]),
            protocol=row["protocol"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
