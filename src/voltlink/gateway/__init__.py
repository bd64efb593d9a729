from .commands import OCPP16, OCPP201, build_request, response_to_ack
from .connection import ConnectionGateway, Transport
from .events import (
    BootFrame,
    ConnectionFrame,
    FrameEvent,
    HeartbeatFrame,
    MeterFrame,
    StatusFrame,
    TransactionStartedFrame,
    TransactionStoppedFrame,
)

__all__ = [
    "BootFrame",
    "ConnectionFrame",
    "ConnectionGateway",
    "FrameEvent",
    "HeartbeatFrame",
    "MeterFrame",
    "OCPP16",
    "OCPP201",
    "StatusFrame",
    "Transport",
    "TransactionStartedFrame",
    "TransactionStoppedFrame",
    "build_request",
    "response_to_ack",
]
