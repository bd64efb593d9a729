"""Repository for meter sample operations."""

from ..models import MeterSample
from .base import BaseRepository


class MeterValueRepository(BaseRepository):
    """Handles database operations for meter samples."""

    async def create_batch(self, samples: list[MeterSample]):
        """Create multiple meter sample records efficiently."""
        if not samples:
            return

        query = """
            INSERT INTO meter_sample (
                session_id, serial, connector_id, timestamp, measurand, value, unit, context
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """

        params = [
            (
                s.session_id,
                s.serial,
                s.connector_id,
                s.timestamp,
                s.measurand,
                s.value,
                s.unit,
                s.context,
            )
            for s in samples
        ]

        await self.conn.executemany(query, params)
        await self.conn.commit()

    async def get_for_session(self, session_id: int, limit: int = 1000) -> list[MeterSample]:
        """Get meter samples for a session, oldest first."""
        rows = await self._fetchall(
            """
            SELECT * FROM meter_sample
            WHERE session_id = ?
            ORDER BY timestamp, id
            LIMIT ?
            """,
            (session_id, limit),
        )
        return [self._row_to_model(row) for row in rows]

    async def get_for_device(self, serial: str, limit: int = 1000) -> list[MeterSample]:
        """Get recent meter samples for a device."""
        rows = await self._fetchall(
            """
            SELECT * FROM meter_sample
            WHERE serial = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (serial, limit),
        )
        return [self._row_to_model(row) for row in rows]

    def _row_to_model(self, row) -> MeterSample:
        """Convert database row to MeterSample model."""
        return MeterSample(
            id=row["id"],
            session_id=row["session_id"],
            serial=row["serial"],
            connector_id=row["connector_id"],
            timestamp=row["timestamp"],
            measurand=row["measurand"],
            value=row["value"],
            unit=row["unit"],
            context=row["context"],
        )
