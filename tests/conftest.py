"""Pytest configuration and fixtures."""

import asyncio
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from voltlink.central import CentralSystem
from voltlink.config import Settings
from voltlink.coordinator import SessionCoordinator
from voltlink.database import Database
from voltlink.gateway import OCPP16, ConnectionGateway
from voltlink.models import Ack
from voltlink.payments import PaymentAuthorizer, PreAuthorization
from voltlink.registry import DeviceRegistry
from voltlink.state_machine import ProtocolStateMachine


class FakeClock:
    """Settable clock passed to components that accept ``clock=``."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeTransport:
    """
    Stand-in for a connected charge point handler.

    ``outcomes`` is consumed one entry per command: an exception instance is
    raised, a string is returned as the ack status. When it runs dry every
    command is answered with ``status``.
    """

    def __init__(self, serial: str, protocol: str = OCPP16, status: str = "Accepted"):
        self.id = serial
        self.protocol = protocol
        self.status = status
        self.outcomes: list = []
        self.delay = 0.0
        self.sent = []
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_command(self, command, timeout):
        self.sent.append(command)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else self.status
            if isinstance(outcome, BaseException):
                raise outcome
            return Ack(action=command.action.value, status=outcome, payload={"status": outcome})
        finally:
            self.in_flight -= 1

    async def close(self):
        self.closed = True

    def actions(self) -> list[str]:
        return [command.action.value for command in self.sent]


class RecordingAuthorizer(PaymentAuthorizer):
    """Payment collaborator that records calls and can decline."""

    def __init__(self, approve: bool = True):
        self.approve = approve
        self.pre_authorizations = []
        self.captures = []

    async def pre_authorize(self, amount, payment_method_id):
        self.pre_authorizations.append((amount, payment_method_id))
        if not self.approve:
            return PreAuthorization(success=False, reason="card declined")
        return PreAuthorization(success=True, payment_intent_id=f"pi_{len(self.pre_authorizations)}")

    async def capture(self, payment_intent_id, amount):
        self.captures.append((payment_intent_id, amount))


@pytest.fixture
async def temp_db():
    """Create a temporary SQLite database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    # Initialize database with schema
    db = Database(db_path)
    await db.initialize_schema()

    yield db

    # Cleanup
    await db.disconnect()
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
async def db_connection(temp_db):
    """Provide a database connection for testing."""
    conn = await temp_db.connect()
    yield conn
    # Connection is cleaned up by temp_db fixture


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(db_connection, clock):
    return DeviceRegistry(db_connection, offline_timeout=90, clock=clock)


@pytest.fixture
def gateway(db_connection):
    return ConnectionGateway(db_connection, command_timeout=0.5)


@pytest.fixture
def state_machine(registry):
    return ProtocolStateMachine(registry)


@pytest.fixture
def payments():
    return RecordingAuthorizer()


@pytest.fixture
def coordinator(db_connection, registry, gateway, state_machine, payments, clock):
    return SessionCoordinator(
        db_connection,
        registry,
        gateway,
        state_machine,
        payments=payments,
        rate_per_kwh=0.30,
        clock=clock,
    )


@pytest.fixture
async def online_device(registry, gateway):
    """A registered, online device with a fake transport attached."""
    await registry.register_or_get_device("EMT-0001", vendor="Emtek", model="EMT-V1")
    await registry.mark_online("EMT-0001")
    transport = FakeTransport("EMT-0001")
    await gateway.attach("EMT-0001", transport)
    return transport


@pytest.fixture
def sample_boot_notification():
    """Sample BootNotification message payload."""
    return {
        "charge_point_vendor": "Emtek",
        "charge_point_model": "EMT-V1",
        "charge_point_serial_number": "EMT-0001",
        "firmware_version": "1.0.0",
    }


@pytest.fixture
def sample_meter_value():
    """Sample MeterValues payload with an energy register and active power."""
    return [
        {
            "timestamp": "2024-05-01T12:05:00Z",
            "sampled_value": [
                {
                    "value": "1500",
                    "measurand": "Energy.Active.Import.Register",
                    "unit": "Wh",
                },
                {"value": "7.2", "measurand": "Power.Active.Import", "unit": "kW"},
                {
                    "value": "2400",
                    "measurand": "Power.Active.Import",
                    "unit": "W",
                    "phase": "L1",
                },
            ],
        }
    ]


@pytest.fixture
async def central(tmp_path):
    """A started central system on a temporary database."""
    settings = Settings(
        db_path=str(tmp_path / "central.db"),
        log_file=None,
        offline_check_interval=3600,
        command_timeout=0.5,
    )
    system = CentralSystem(settings, payments=RecordingAuthorizer())
    await system.start()
    yield system
    await system.stop()
