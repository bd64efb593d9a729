"""Repository for charging session (charging log) operations."""

from ..models import ChargingSession, SessionState
from .base import BaseRepository


class SessionRepository(BaseRepository):
    """Handles database operations for charging sessions."""

    async def create(self, session: ChargingSession) -> ChargingSession:
        """Create a new session row.

        Raises sqlite3.IntegrityError when the connector already has an open
        session.
        """
        query = """
            INSERT INTO charging_log (
                serial, connector_id, user_id, payment_intent_id, state,
                start_time, meter_start_wh, energy_kwh, current_power_w,
                power_peak, rate_per_kwh, cost, remote_start_id,
                device_transaction_id, last_meter_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
        """

        session.id = await self._insert_returning_id(
            query,
            (
                session.serial,
                session.connector_id,
                session.user_id,
                session.payment_intent_id,
                session.state.value,
                session.start_time,
                session.meter_start_wh,
                session.energy_kwh,
                session.current_power_w,
                session.power_peak_w,
                session.rate_per_kwh,
                session.cost,
                session.remote_start_id,
                session.device_transaction_id,
                session.last_meter_at,
            ),
        )
        return session

    async def get_by_id(self, session_id: int) -> ChargingSession | None:
        """Get session by ID."""
        row = await self._fetchone("SELECT * FROM charging_log WHERE id = ?", (session_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_open_for_connector(self, serial: str, connector_id: int) -> ChargingSession | None:
        """Get the open session on a connector."""
        row = await self._fetchone(
            """
            SELECT * FROM charging_log
            WHERE serial = ? AND connector_id = ? AND end_time IS NULL
            ORDER BY id DESC
            LIMIT 1
            """,
            (serial, connector_id),
        )
        if row:
            return self._row_to_model(row)
        return None

    async def get_all_open(self) -> list[ChargingSession]:
        """Get every open session."""
        rows = await self._fetchall("SELECT * FROM charging_log WHERE end_time IS NULL ORDER BY id")
        return [self._row_to_model(row) for row in rows]

    async def get_by_device_transaction_id(
        self, serial: str, device_transaction_id: str
    ) -> ChargingSession | None:
        row = await self._fetchone(
            "SELECT * FROM charging_log WHERE serial = ? AND device_transaction_id = ? "
            "ORDER BY id DESC LIMIT 1",
            (serial, device_transaction_id),
        )
        if row:
            return self._row_to_model(row)
        return None

    async def update_telemetry(self, session: ChargingSession):
        """Persist the metering fields of an open session."""
        query = """
            UPDATE charging_log
            SET energy_kwh = ?,
                current_power_w = ?,
                power_peak = ?,
                cost = ?,
                last_meter_at = ?
            WHERE id = ? AND end_time IS NULL
        """
        await self._execute_and_commit(
            query,
            (
                session.energy_kwh,
                session.current_power_w,
                session.power_peak_w,
                session.cost,
                session.last_meter_at,
                session.id,
            ),
        )

    async def update_device_binding(self, session: ChargingSession):
        """Store the device-side transaction id and meter start."""
        await self._execute_and_commit(
            "UPDATE charging_log SET device_transaction_id = ?, meter_start_wh = ? WHERE id = ?",
            (session.device_transaction_id, session.meter_start_wh, session.id),
        )

    async def set_state(self, session_id: int, state: SessionState):
        await self._execute_and_commit(
            "UPDATE charging_log SET state = ? WHERE id = ? AND end_time IS NULL",
            (state.value, session_id),
        )

    async def close(self, session: ChargingSession) -> bool:
        """Close an open session. Returns False if it was already closed."""
        query = """
            UPDATE charging_log
            SET state = ?,
                end_time = ?,
                energy_kwh = ?,
                current_power_w = ?,
                power_peak = ?,
                cost = ?,
                stop_reason = ?
            WHERE id = ? AND end_time IS NULL
        """
        rowcount = await self._execute_and_commit(
            query,
            (
                SessionState.COMPLETED.value,
                session.end_time,
                session.energy_kwh,
                session.current_power_w,
                session.power_peak_w,
                session.cost,
                session.stop_reason,
                session.id,
            ),
        )
        return rowcount > 0

    async def set_final_energy(
        self, serial: str, energy_kwh: float, power_peak_w: float
    ) -> ChargingSession | None:
        """Write final energy and peak into the device's latest open session."""
        query = """
            UPDATE charging_log
            SET energy_kwh = ?,
                power_peak = ?,
                cost = ? * rate_per_kwh
            WHERE id = (
                SELECT id FROM charging_log
                WHERE serial = ? AND end_time IS NULL
                ORDER BY id DESC
                LIMIT 1
            )
            RETURNING id
        """
        session_id = await self._insert_returning_id(
            query, (energy_kwh, power_peak_w, energy_kwh, serial)
        )
        if session_id is None:
            return None
        return await self.get_by_id(session_id)

    def _row_to_model(self, row) -> ChargingSession:
        """Convert database row to ChargingSession model."""
        return ChargingSession(
            id=row["id"],
            serial=row["serial"],
            connector_id=row["connector_id"],
            user_id=row["user_id"],
            payment_intent_id=row["payment_intent_id"],
            state=SessionState(row["state"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            meter_start_wh=row["meter_start_wh"],
            energy_kwh=row["energy_kwh"],
            current_power_w=row["current_power_w"],
            power_peak_w=row["power_peak"],
            rate_per_kwh=row["rate_per_kwh"],
            cost=row["cost"],
            stop_reason=row["stop_reason"],
            remote_start_id=row["remote_start_id"],
            device_transaction_id=row["device_transaction_id"],
            last_meter_at=row["last_meter_at"],
            created_at=row["created_at"],
        )

