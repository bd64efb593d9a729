"""Parsing of sampled meter values shared by the OCPP 1.6 and 2.0.1 handlers."""

import logging
from datetime import datetime

from ..gateway import MeterFrame
from ..models import MeterSample, as_utc, utcnow

logger = logging.getLogger(__name__)

ENERGY_MEASURAND = "Energy.Active.Import.Register"
POWER_MEASURAND = "Power.Active.Import"


def parse_timestamp(value: str | None) -> datetime:
    """Parse an OCPP timestamp, falling back to now for missing or bad values."""
    if not value:
        return utcnow()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Invalid timestamp {value!r}, using current time")
        return utcnow()
    # Timestamps without an offset are taken as UTC
    return as_utc(parsed)


def _unit_and_scale(sampled: dict) -> tuple[str, float]:
    # 1.6 carries a flat unit, 2.0.1 a unitOfMeasure object with a power-of-ten multiplier
    unit_of_measure = sampled.get("unit_of_measure")
    if isinstance(unit_of_measure, dict):
        return unit_of_measure.get("unit", ""), 10 ** unit_of_measure.get("multiplier", 0)
    return sampled.get("unit", ""), 1


def _normalize(measurand: str, value: float, unit: str) -> float:
    if measurand == ENERGY_MEASURAND and unit == "kWh":
        return value * 1000
    if measurand == POWER_MEASURAND and unit == "kW":
        return value * 1000
    return value


def energy_register_wh(meter_value: list | None) -> float | None:
    """Last energy register reading (Wh) in a meter value list."""
    if not meter_value:
        return None
    return parse_meter_values("", 0, meter_value).energy_wh


def parse_meter_values(
    serial: str,
    connector_id: int,
    meter_value: list,
    transaction_id: str | None = None,
) -> MeterFrame:
    """
    Turn a MeterValues payload into a MeterFrame.

    Every sampled value becomes a MeterSample. The frame also carries the
    latest whole-device energy register (Wh) and active power (W) readings;
    per-phase values are stored but not aggregated.
    """
    frame = MeterFrame(serial=serial, connector_id=connector_id, transaction_id=transaction_id)

    for sample in meter_value or []:
        timestamp = parse_timestamp(sample.get("timestamp"))
        frame.timestamp = timestamp

        for sampled in sample.get("sampled_value", []):
            measurand = sampled.get("measurand") or ENERGY_MEASURAND
            unit, scale = _unit_and_scale(sampled)
            try:
                value = float(sampled.get("value")) * scale
            except (TypeError, ValueError):
                logger.warning(
                    f"Skipping non-numeric {measurand} value {sampled.get('value')!r} from {serial}"
                )
                continue

            frame.samples.append(
                MeterSample(
                    serial=serial,
                    connector_id=connector_id,
                    timestamp=timestamp,
                    measurand=measurand,
                    value=value,
                    unit=unit or ("Wh" if measurand == ENERGY_MEASURAND else ""),
                    context=sampled.get("context") or "Sample.Periodic",
                )
            )

            if sampled.get("phase"):
                continue
            if measurand == ENERGY_MEASURAND:
                frame.energy_wh = _normalize(measurand, value, unit)
            elif measurand == POWER_MEASURAND:
                frame.power_w = _normalize(measurand, value, unit)

    return frame
