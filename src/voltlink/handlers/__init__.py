from .charge_point import VoltlinkChargePoint
from .charge_point_v201 import VoltlinkChargePointV201

__all__ = ["VoltlinkChargePoint", "VoltlinkChargePointV201"]
