"""Status vocabularies shared by the registry, state machine and API."""

from dataclasses import dataclass
from enum import Enum

# Emulator thresholds for the device details row
CHARGING_POWER_THRESHOLD_W = 100
OVERHEAT_TEMPERATURE_C = 60

UNKNOWN_STATUS = "Unknown"


class ConnectorStatus(str, Enum):
    """OCPP 1.6 ChargePointStatus values."""

    AVAILABLE = "Available"
    PREPARING = "Preparing"
    CHARGING = "Charging"
    SUSPENDED_EV = "SuspendedEV"
    SUSPENDED_EVSE = "SuspendedEVSE"
    FINISHING = "Finishing"
    RESERVED = "Reserved"
    UNAVAILABLE = "Unavailable"
    FAULTED = "Faulted"

    @property
    def is_known(self) -> bool:
        return True

    @property
    def raw(self) -> str:
        return self.value


@dataclass(frozen=True)
class UnknownStatus:
    """A status string the protocol vocabulary does not define.

    Stored as ``Unknown`` while the raw value reported by the device is kept.
    """

    raw: str

    @property
    def value(self) -> str:
        return UNKNOWN_STATUS

    @property
    def is_known(self) -> bool:
        return False

    def __str__(self) -> str:
        return UNKNOWN_STATUS


ReportedStatus = ConnectorStatus | UnknownStatus


def parse_status(raw) -> ReportedStatus:
    """Parse a reported status, never raising for unrecognized strings."""
    if isinstance(raw, (ConnectorStatus, UnknownStatus)):
        return raw
    text = raw.value if isinstance(raw, Enum) else str(raw or "")
    try:
        return ConnectorStatus(text)
    except ValueError:
        return UnknownStatus(text)


def status_from_storage(value: str, raw: str = "") -> ReportedStatus:
    """Rebuild a status from its persisted (value, raw) pair."""
    if value == UNKNOWN_STATUS:
        return UnknownStatus(raw)
    return parse_status(value)


class NetworkStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class DeviceActivity(str, Enum):
    """Activity derived from the emulated power and temperature readings."""

    CHARGING = "charging"
    STANDBY = "standby"
    ERROR = "error"


def derive_activity(power_w: float, temperature_c: float) -> DeviceActivity:
    if temperature_c > OVERHEAT_TEMPERATURE_C:
        return DeviceActivity.ERROR
    if power_w > CHARGING_POWER_THRESHOLD_W:
        return DeviceActivity.CHARGING
    return DeviceActivity.STANDBY


class SessionState(str, Enum):
    ACTIVE = "active"
    PENDING_STOP = "pending_stop"
    COMPLETED = "completed"


class CommandStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
