"""Repository for the outbound command log."""

import json
from datetime import datetime

from ..models import CommandRecord
from ..models.status import CommandStatus
from .base import BaseRepository


class CommandRepository(BaseRepository):
    """Handles database operations for command log entries."""

    async def create(self, record: CommandRecord) -> CommandRecord:
        """Record a command as pending before it goes on the wire."""
        query = """
            INSERT INTO command_log (serial, action, payload, status)
            VALUES (?, ?, ?, ?)
            RETURNING id
        """
        record.id = await self._insert_returning_id(
            query,
            (record.serial, record.action, json.dumps(record.payload, default=str), record.status),
        )
        return record

    async def complete(
        self,
        command_id: int,
        status: CommandStatus,
        response: dict | None = None,
        error: str = "",
        completed_at: datetime | None = None,
    ):
        """Store the final outcome of a command."""
        query = """
            UPDATE command_log
            SET status = ?,
                response = ?,
                error = ?,
                completed_at = ?
            WHERE id = ?
        """
        await self._execute_and_commit(
            query,
            (
                status.value,
                json.dumps(response, default=str) if response is not None else None,
                error,
                completed_at or datetime.now(),
                command_id,
            ),
        )

    async def get_by_id(self, command_id: int) -> CommandRecord | None:
        row = await self._fetchone("SELECT * FROM command_log WHERE id = ?", (command_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_for_device(self, serial: str, limit: int = 100) -> list[CommandRecord]:
        """Get recent commands for a device, newest first."""
        rows = await self._fetchall(
            """
            SELECT * FROM command_log
            WHERE serial = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (serial, limit),
        )
        return [self._row_to_model(row) for row in rows]

    def _row_to_model(self, row) -> CommandRecord:
        """Convert database row to CommandRecord model."""
        return CommandRecord(
            id=row["id"],
            serial=row["serial"],
            action=row["action"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            status=row["status"],
            response=json.loads(row["response"]) if row["response"] else None,
            error=row["error"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )
