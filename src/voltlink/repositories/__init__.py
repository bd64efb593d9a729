from .command import CommandRepository
from .connector import ConnectorRepository
from .device import DeviceRepository, log_name_for
from .meter_value import MeterValueRepository
from .session import SessionRepository

__all__ = [
    "CommandRepository",
    "ConnectorRepository",
    "DeviceRepository",
    "MeterValueRepository",
    "SessionRepository",
    "log_name_for",
]
