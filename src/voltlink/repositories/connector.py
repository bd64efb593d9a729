"""Repository for connector operations."""

from ..models import Connector
from ..models.status import status_from_storage
from .base import BaseRepository


class ConnectorRepository(BaseRepository):
    """Handles database operations for connectors."""

    async def upsert(self, connector: Connector) -> Connector:
        """Insert or update a connector."""
        query = """
            INSERT INTO connector (
                serial, connector_id, status, status_raw, error_code, info, advisory, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(serial, connector_id) DO UPDATE SET
                status = excluded.status,
                status_raw = excluded.status_raw,
                error_code = excluded.error_code,
                info = excluded.info,
                advisory = excluded.advisory,
                updated_at = CURRENT_TIMESTAMP
            RETURNING id
        """

        connector.id = await self._insert_returning_id(
            query,
            (
                connector.serial,
                connector.connector_id,
                connector.status.value,
                connector.status_raw,
                connector.error_code,
                connector.info,
                int(connector.advisory),
            ),
        )
        return connector

    async def get(self, serial: str, connector_id: int) -> Connector | None:
        """Get connector by device serial and connector ID."""
        row = await self._fetchone(
            "SELECT * FROM connector WHERE serial = ? AND connector_id = ?",
            (serial, connector_id),
        )
        if row:
            return self._row_to_model(row)
        return None

    async def get_all_for_device(self, serial: str) -> list[Connector]:
        """Get all connectors for a device."""
        rows = await self._fetchall(
            "SELECT * FROM connector WHERE serial = ? ORDER BY connector_id", (serial,)
        )
        return [self._row_to_model(row) for row in rows]

    def _row_to_model(self, row) -> Connector:
        """Convert database row to Connector model."""
        return Connector(
            id=row["id"],
            serial=row["serial"],
            connector_id=row["connector_id"],
            status=status_from_storage(row["status"], row["status_raw"]),
            error_code=row["error_code"],
            info=row["info"],
            advisory=bool(row["advisory"]),
            updated_at=row["updated_at"],
        )
