"""
Voltlink - OCPP central system core with SQLite storage

Tracks charge point connectivity and connector status, dispatches remote
commands over OCPP 1.6 and 2.0.1, and coordinates charging sessions from
authorization to billing handoff.
"""

__version__ = "0.1.0"

from .central import CentralSystem
from .database import Database
from .handlers import VoltlinkChargePoint, VoltlinkChargePointV201
from .server import OCPPServer

__all__ = [
    "CentralSystem",
    "Database",
    "OCPPServer",
    "VoltlinkChargePoint",
    "VoltlinkChargePointV201",
]
