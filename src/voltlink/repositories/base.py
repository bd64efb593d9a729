"""Base repository class."""

import aiosqlite


class BaseRepository:
    """Base class for all repositories."""

    def __init__(self, connection: aiosqlite.Connection):
        self.conn = connection

    async def _execute_and_commit(self, query: str, params: tuple = ()) -> int:
        """Execute a query, commit, and return the number of affected rows."""
        cursor = await self.conn.execute(query, params)
        rowcount = cursor.rowcount
        await self.conn.commit()
        return rowcount

    async def _insert_returning_id(self, query: str, params: tuple = ()) -> int | None:
        """Execute an INSERT ... RETURNING id and commit."""
        cursor = await self.conn.execute(query, params)
        # Fetch BEFORE committing
        row = await cursor.fetchone()
        await self.conn.commit()
        return row["id"] if row else None

    async def _fetchone(self, query: str, params: tuple = ()) -> aiosqlite.Row | None:
        """Execute query and fetch one row."""
        cursor = await self.conn.execute(query, params)
        return await cursor.fetchone()

    async def _fetchall(self, query: str, params: tuple = ()) -> list[aiosqlite.Row]:
        """Execute query and fetch all rows."""
        cursor = await self.conn.execute(query, params)
        return await cursor.fetchall()
