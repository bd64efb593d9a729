"""SQLite connection and schema setup for the central system."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

# Bumped whenever schema.sql changes shape
SCHEMA_VERSION = 1


def _adapt_datetime(value: datetime) -> str:
    return value.isoformat()


def _convert_datetime(value: bytes) -> datetime:
    return datetime.fromisoformat(value.decode())


# Timestamps are stored as ISO strings; the default adapters are deprecated
sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)


class Database:
    """
    Owns the single aiosqlite connection shared by the repositories.

    The schema is tracked with ``PRAGMA user_version``: a fresh file gets
    schema.sql applied, a file written by a newer release is refused.
    """

    def __init__(self, db_path: str = "voltlink.db"):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None

    async def connect(self) -> aiosqlite.Connection:
        if self.connection is not None:
            return self.connection

        conn = await aiosqlite.connect(self.db_path, detect_types=sqlite3.PARSE_DECLTYPES)
        conn.row_factory = aiosqlite.Row
        for pragma in (
            "journal_mode=WAL",
            "synchronous=NORMAL",
            "foreign_keys=ON",
            # The server process and the emulator CLI may write concurrently
            "busy_timeout=5000",
        ):
            await conn.execute(f"PRAGMA {pragma}")
        self.connection = conn
        return conn

    async def disconnect(self):
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    async def schema_version(self) -> int:
        conn = await self.connect()
        cursor = await conn.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        return row[0]

    async def initialize_schema(self, schema_path: Path | str = SCHEMA_PATH) -> bool:
        """
        Create the tables on an empty database.

        Returns True when the schema was applied, False when it was already
        current.
        """
        version = await self.schema_version()
        if version == SCHEMA_VERSION:
            logger.debug(f"Schema v{version} already present in {self.db_path}")
            return False
        if version > SCHEMA_VERSION:
            raise RuntimeError(
                f"{self.db_path} has schema v{version}, this release supports v{SCHEMA_VERSION}"
            )

        schema_file = Path(schema_path)
        if not schema_file.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        conn = await self.connect()
        await conn.executescript(schema_file.read_text())
        await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await conn.commit()
        logger.info(f"Initialized schema v{SCHEMA_VERSION} in {self.db_path}")
        return True

    async def __aenter__(self) -> aiosqlite.Connection:
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
