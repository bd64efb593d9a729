from .command import Ack, Command, CommandAction, ResetType
from .domain import (
    ChargingSession,
    CommandRecord,
    Connector,
    Device,
    DeviceDetails,
    MeterSample,
    SessionSnapshot,
    as_utc,
    utcnow,
)
from .status import (
    CommandStatus,
    ConnectorStatus,
    DeviceActivity,
    NetworkStatus,
    ReportedStatus,
    SessionState,
    UnknownStatus,
    parse_status,
)

__all__ = [
    "Ack",
    "ChargingSession",
    "Command",
    "CommandAction",
    "CommandRecord",
    "CommandStatus",
    "Connector",
    "ConnectorStatus",
    "Device",
    "DeviceActivity",
    "DeviceDetails",
    "MeterSample",
    "NetworkStatus",
    "ReportedStatus",
    "ResetType",
    "SessionSnapshot",
    "SessionState",
    "UnknownStatus",
    "as_utc",
    "parse_status",
    "utcnow",
]
