"""Frames published by the gateway when a device talks to the central system."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..models import MeterSample


class FrameEvent(str, Enum):
    BOOT_NOTIFICATION = "boot_notification"
    STATUS_FRAME = "status_frame"
    METER_FRAME = "meter_frame"
    TRANSACTION_STARTED = "transaction_started"
    TRANSACTION_STOPPED = "transaction_stopped"
    HEARTBEAT = "heartbeat"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass
class ConnectionFrame:
    serial: str
    protocol: str = "ocpp1.6"
    remote_address: Optional[str] = None


@dataclass
class BootFrame:
    serial: str
    vendor: str = ""
    model: str = ""
    firmware_version: str = ""
    protocol: str = "ocpp1.6"


@dataclass
class HeartbeatFrame:
    serial: str
    timestamp: Optional[datetime] = None


@dataclass
class StatusFrame:
    serial: str
    connector_id: int
    status: str
    error_code: str = ""
    info: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class MeterFrame:
    """
    Sampled values for one connector.

    ``energy_wh`` is the energy register reading (cumulative, Wh) and
    ``power_w`` the active power import, when the device reported them.
    """

    serial: str
    connector_id: int
    transaction_id: Optional[str] = None
    energy_wh: Optional[float] = None
    power_w: Optional[float] = None
    timestamp: Optional[datetime] = None
    samples: list[MeterSample] = field(default_factory=list)


@dataclass
class TransactionStartedFrame:
    serial: str
    connector_id: int
    id_tag: str = ""
    meter_start_wh: float = 0.0
    timestamp: Optional[datetime] = None
    remote_start_id: Optional[int] = None
    device_transaction_id: Optional[str] = None


@dataclass
class TransactionStoppedFrame:
    serial: str
    transaction_id: Optional[int] = None
    meter_stop_wh: Optional[float] = None
    timestamp: Optional[datetime] = None
    reason: str = ""
    device_transaction_id: Optional[str] = None
