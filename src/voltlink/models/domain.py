"""Domain models for the central system."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

from .status import (
    ConnectorStatus,
    NetworkStatus,
    ReportedStatus,
    SessionState,
    UnknownStatus,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a datetime without an offset."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


@dataclass
class Connector:
    """Current status of one connector on a device."""

    id: Optional[int] = None
    serial: str = ""
    connector_id: int = 0
    status: ReportedStatus = ConnectorStatus.AVAILABLE
    error_code: str = ""
    info: str = ""
    advisory: bool = False
    updated_at: Optional[datetime] = None

    @property
    def status_raw(self) -> str:
        return self.status.raw if isinstance(self.status, UnknownStatus) else ""


@dataclass
class Device:
    """Represents a charge point known to the registry."""

    id: Optional[int] = None
    serial: str = ""
    name: str = ""
    vendor: str = ""
    model: str = ""
    firmware_version: str = ""
    network_status: NetworkStatus = NetworkStatus.OFFLINE
    last_seen_at: Optional[datetime] = None
    status: ReportedStatus = ConnectorStatus.AVAILABLE
    protocol: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    connectors: dict[int, Connector] = field(default_factory=dict)

    @property
    def is_online(self) -> bool:
        return self.network_status == NetworkStatus.ONLINE


@dataclass
class DeviceDetails:
    """Emulated power and temperature readings for a device."""

    device_id: int
    power_w: float = 0.0
    temperature_c: float = 25.0
    last_updated: Optional[datetime] = None


@dataclass
class ChargingSession:
    """One charging transaction, stored in the charging log."""

    id: Optional[int] = None
    serial: str = ""
    connector_id: int = 1
    user_id: str = ""
    payment_intent_id: Optional[str] = None
    state: SessionState = SessionState.ACTIVE
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    meter_start_wh: float = 0.0
    energy_kwh: float = 0.0
    current_power_w: float = 0.0
    power_peak_w: float = 0.0
    rate_per_kwh: float = 0.30
    cost: float = 0.0
    stop_reason: str = ""
    remote_start_id: Optional[int] = None
    device_transaction_id: Optional[str] = None
    last_meter_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass
class MeterSample:
    """A single sampled value reported by a device."""

    id: Optional[int] = None
    session_id: Optional[int] = None
    serial: str = ""
    connector_id: int = 0
    timestamp: Optional[datetime] = None
    measurand: str = ""
    value: float = 0.0
    unit: str = "Wh"
    context: str = "Sample.Periodic"


@dataclass
class CommandRecord:
    """Persisted lifecycle of an outbound command."""

    id: Optional[int] = None
    serial: str = ""
    action: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    status: str = "pending"
    response: Optional[dict[str, Any]] = None
    error: str = ""
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class SessionSnapshot:
    """Latest known metering state of an open session, served to pollers."""

    transaction_id: int
    serial: str
    connector_id: int
    state: str
    total_energy: float
    current_power: float
    peak_power: float
    estimated_cost: float
    elapsed_seconds: int

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "connectorId": self.connector_id,
            "state": self.state,
            "totalEnergy": self.total_energy,
            "currentPower": self.current_power,
            "peakPower": self.peak_power,
            "estimatedCost": self.estimated_cost,
            "elapsedSeconds": self.elapsed_seconds,
        }
