"""
Charger emulator for backend testing.

Works directly on the database: provisions virtual wallboxes and sets the
power, temperature and final session energy the backend reads back.

    voltlink-emulator provision EMT-0001
    voltlink-emulator set-power EMT-0001 7200
    voltlink-emulator set-temp EMT-0001 65
    voltlink-emulator set-final-energy EMT-0001 12.5 7200
"""

import argparse
import asyncio
import logging
import sys

from .config import Settings
from .database import Database
from .errors import VoltlinkError
from .logging_utils import log_error, setup_logging
from .models import ChargingSession, Device, DeviceActivity
from .registry import DeviceRegistry
from .repositories import SessionRepository

logger = logging.getLogger("voltlink.emulator")


class ChargerEmulator:
    """Emulator operations on one database."""

    def __init__(self, db_path: str):
        self.db = Database(db_path)
        self.registry: DeviceRegistry | None = None
        self.session_repo: SessionRepository | None = None

    async def open(self):
        await self.db.initialize_schema()
        conn = await self.db.connect()
        self.registry = DeviceRegistry(conn)
        self.session_repo = SessionRepository(conn)

    async def close(self):
        await self.db.disconnect()

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def provision(self, serial: str) -> Device:
        device = await self.registry.provision_device(serial)
        print(f"[SUCCESS] Device {serial} ready with ID {device.id}")
        return device

    async def set_power(self, serial: str, watts: float) -> DeviceActivity:
        activity = await self.registry.set_power(serial, watts)
        print(f"[SUCCESS] Power set to {watts:g}W for {serial}")
        print(f'[INFO] The device now reports "{activity.value}"')
        return activity

    async def set_temperature(self, serial: str, celsius: float) -> DeviceActivity:
        activity = await self.registry.set_temperature(serial, celsius)
        print(f"[SUCCESS] Temperature set to {celsius:g}C for {serial}")
        if activity == DeviceActivity.ERROR:
            print('[WARNING] The device now reports "error" (overheating)')
        return activity

    async def set_final_energy(self, serial: str, kwh: float, peak_w: float) -> ChargingSession | None:
        await self.registry.get_status(serial)
        session = await self.session_repo.set_final_energy(serial, kwh, peak_w)
        if session is None:
            logger.warning(f"No active session found to update for {serial}")
            print("[WARNING] No active session found to update. Was charging started from the app?")
            return None
        print(f"[SUCCESS] Final session data set: {kwh:g}kWh, peak {peak_w:g}W (session {session.id})")
        return session


def build_parser() -> argparse.ArgumentParser:
    defaults = Settings.from_env()
    parser = argparse.ArgumentParser(
        prog="voltlink-emulator",
        description="EV charger emulator for backend testing",
    )
    parser.add_argument(
        "--db",
        default=defaults.db_path,
        help=f"Path to SQLite database file (default: {defaults.db_path})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    provision = subparsers.add_parser("provision", help="Provision a virtual charger")
    provision.add_argument("serial", help="Charger serial number (e.g. EMT-0001)")

    set_power = subparsers.add_parser("set-power", help="Set the charger's power draw")
    set_power.add_argument("serial")
    set_power.add_argument("watts", type=float, help="Power in watts")

    set_temp = subparsers.add_parser("set-temp", help="Set the charger's temperature")
    set_temp.add_argument("serial")
    set_temp.add_argument("celsius", type=float, help="Temperature in degrees Celsius")

    final = subparsers.add_parser(
        "set-final-energy", help="Set final energy and peak power of the open session"
    )
    final.add_argument("serial")
    final.add_argument("kwh", type=float, help="Energy delivered in kWh")
    final.add_argument("peak", type=float, help="Peak power in watts")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        async with ChargerEmulator(args.db) as emulator:
            if args.command == "provision":
                await emulator.provision(args.serial)
            elif args.command == "set-power":
                await emulator.set_power(args.serial, args.watts)
            elif args.command == "set-temp":
                await emulator.set_temperature(args.serial, args.celsius)
            elif args.command == "set-final-energy":
                await emulator.set_final_energy(args.serial, args.kwh, args.peak)
    except VoltlinkError as e:
        logger.error(f"{args.command} failed: {e.message}")
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        log_error(logger, "emulator_error", f"{args.command} failed: {e}", exc_info=e)
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    print("[DONE]")
    return 0


def run():
    """Entry point for console script."""
    # Keep stdout for the [SUCCESS]/[WARNING] lines
    setup_logging("WARNING", stream=sys.stderr)
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
