"""OCPP 2.0.1 charge point handler."""

import logging

from ocpp.routing import on
from ocpp.v201 import ChargePoint as BaseChargePoint
from ocpp.v201 import call_result

from ..gateway import (
    OCPP201,
    BootFrame,
    ConnectionGateway,
    FrameEvent,
    HeartbeatFrame,
    StatusFrame,
    TransactionStartedFrame,
    TransactionStoppedFrame,
)
from ..models import ConnectorStatus, utcnow
from ..plugins.base import ChargePointPlugin, PluginHook
from .base import HandlerMixin
from .meter import energy_register_wh, parse_meter_values, parse_timestamp

logger = logging.getLogger(__name__)

# 2.0.1 connector statuses onto the 1.6 vocabulary; Occupied is refined below
CONNECTOR_STATUS_MAP = {
    "Available": ConnectorStatus.AVAILABLE,
    "Occupied": ConnectorStatus.PREPARING,
    "Reserved": ConnectorStatus.RESERVED,
    "Unavailable": ConnectorStatus.UNAVAILABLE,
    "Faulted": ConnectorStatus.FAULTED,
}

CHARGING_STATE_MAP = {
    "Charging": ConnectorStatus.CHARGING,
    "SuspendedEV": ConnectorStatus.SUSPENDED_EV,
    "SuspendedEVSE": ConnectorStatus.SUSPENDED_EVSE,
    "EVConnected": ConnectorStatus.PREPARING,
    "Idle": ConnectorStatus.FINISHING,
}


def _charging_status(charging_state: str) -> str:
    mapped = CHARGING_STATE_MAP.get(charging_state)
    return mapped.value if mapped else ConnectorStatus.PREPARING.value


class VoltlinkChargePointV201(HandlerMixin, BaseChargePoint):
    """
    OCPP 2.0.1 ChargePoint implementation.

    EVSE ids are treated as connector ids. TransactionEvent messages are
    split into start, meter, status and stop frames so the rest of the
    system sees the same events as for 1.6 devices.
    """

    protocol = OCPP201

    def __init__(
        self,
        id: str,
        connection,
        gateway: ConnectionGateway,
        plugins: list[ChargePointPlugin] | None = None,
        heartbeat_interval: int = 40,
        response_timeout: int = 30,
    ):
        super().__init__(id, connection, response_timeout=response_timeout)
        self._setup_handler(gateway, plugins, heartbeat_interval)
        self._charging_state: dict[int, str] = {}
        self._transaction_evse: dict[str, int] = {}

    def map_connector_status(self, evse_id: int, connector_status: str):
        """Map a 2.0.1 connector status, keeping unrecognized strings as-is."""
        if connector_status == "Occupied" and evse_id in self._charging_state:
            return _charging_status(self._charging_state[evse_id])
        mapped = CONNECTOR_STATUS_MAP.get(connector_status)
        return mapped.value if mapped else connector_status

    @on("BootNotification")
    async def on_boot_notification(self, charging_station: dict, reason: str, **kwargs):
        message_data = {"charging_station": charging_station, "reason": reason, **kwargs}
        await self._execute_plugin_hooks(PluginHook.BEFORE_BOOT_NOTIFICATION, message_data)

        await self._publish(
            FrameEvent.BOOT_NOTIFICATION,
            BootFrame(
                serial=self.id,
                vendor=charging_station.get("vendor_name", ""),
                model=charging_station.get("model", ""),
                firmware_version=charging_station.get("firmware_version", ""),
                protocol=self.protocol,
            ),
        )

        result = call_result.BootNotification(
            current_time=utcnow().isoformat(),
            interval=self.heartbeat_interval,
            status="Accepted",
        )
        await self._execute_plugin_hooks(PluginHook.AFTER_BOOT_NOTIFICATION, message_data, result)
        return result

    @on("Heartbeat")
    async def on_heartbeat(self, **kwargs):
        await self._execute_plugin_hooks(PluginHook.BEFORE_HEARTBEAT, {})
        now = utcnow()
        await self._publish(FrameEvent.HEARTBEAT, HeartbeatFrame(serial=self.id, timestamp=now))
        result = call_result.Heartbeat(current_time=now.isoformat())
        await self._execute_plugin_hooks(PluginHook.AFTER_HEARTBEAT, {}, result)
        return result

    @on("StatusNotification", skip_schema_validation=True)
    async def on_status_notification(
        self, timestamp: str, connector_status: str, evse_id: int, connector_id: int, **kwargs
    ):
        message_data = {
            "timestamp": timestamp,
            "connector_status": connector_status,
            "evse_id": evse_id,
            "connector_id": connector_id,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_STATUS_NOTIFICATION, message_data)

        await self._publish(
            FrameEvent.STATUS_FRAME,
            StatusFrame(
                serial=self.id,
                connector_id=int(evse_id),
                status=self.map_connector_status(evse_id, connector_status),
                timestamp=parse_timestamp(timestamp),
            ),
        )

        result = call_result.StatusNotification()
        await self._execute_plugin_hooks(PluginHook.AFTER_STATUS_NOTIFICATION, message_data, result)
        return result

    @on("MeterValues")
    async def on_meter_values(self, evse_id: int, meter_value: list, **kwargs):
        message_data = {"evse_id": evse_id, "meter_value": meter_value}
        await self._execute_plugin_hooks(PluginHook.BEFORE_METER_VALUES, message_data)

        await self._publish(FrameEvent.METER_FRAME, parse_meter_values(self.id, evse_id, meter_value))

        result = call_result.MeterValues()
        await self._execute_plugin_hooks(PluginHook.AFTER_METER_VALUES, message_data, result)
        return result

    @on("TransactionEvent")
    async def on_transaction_event(
        self,
        event_type: str,
        timestamp: str,
        trigger_reason: str,
        seq_no: int,
        transaction_info: dict,
        **kwargs,
    ):
        """
        Handle TransactionEvent.

        Started opens (or binds) a session, Updated carries meter values and
        charging state, Ended closes the session.
        """
        message_data = {
            "event_type": event_type,
            "timestamp": timestamp,
            "trigger_reason": trigger_reason,
            "seq_no": seq_no,
            "transaction_info": transaction_info,
            **kwargs,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_TRANSACTION_EVENT, message_data)

        tx_id = transaction_info["transaction_id"]
        evse = kwargs.get("evse") or {}
        if evse.get("id"):
            self._transaction_evse[tx_id] = int(evse["id"])
        evse_id = self._transaction_evse.get(tx_id, 1)
        meter_value = kwargs.get("meter_value")
        id_token = kwargs.get("id_token") or {}
        at = parse_timestamp(timestamp)

        if event_type == "Started":
            await self._publish(
                FrameEvent.TRANSACTION_STARTED,
                TransactionStartedFrame(
                    serial=self.id,
                    connector_id=evse_id,
                    id_tag=id_token.get("id_token", ""),
                    meter_start_wh=energy_register_wh(meter_value) or 0.0,
                    timestamp=at,
                    remote_start_id=transaction_info.get("remote_start_id"),
                    device_transaction_id=tx_id,
                ),
            )

        charging_state = transaction_info.get("charging_state")
        if charging_state and event_type != "Ended":
            self._charging_state[evse_id] = charging_state
            await self._publish(
                FrameEvent.STATUS_FRAME,
                StatusFrame(
                    serial=self.id,
                    connector_id=evse_id,
                    status=_charging_status(charging_state),
                    timestamp=at,
                ),
            )

        if meter_value:
            await self._publish(
                FrameEvent.METER_FRAME, parse_meter_values(self.id, evse_id, meter_value, tx_id)
            )

        if event_type == "Ended":
            self._charging_state.pop(evse_id, None)
            self._transaction_evse.pop(tx_id, None)
            await self._publish(
                FrameEvent.TRANSACTION_STOPPED,
                TransactionStoppedFrame(
                    serial=self.id,
                    meter_stop_wh=energy_register_wh(meter_value),
                    timestamp=at,
                    reason=transaction_info.get("stopped_reason", ""),
                    device_transaction_id=tx_id,
                ),
            )

        if id_token:
            result = call_result.TransactionEvent(id_token_info={"status": "Accepted"})
        else:
            result = call_result.TransactionEvent()

        await self._execute_plugin_hooks(PluginHook.AFTER_TRANSACTION_EVENT, message_data, result)
        return result

    @on("Authorize")
    async def on_authorize(self, id_token: dict, **kwargs):
        message_data = {"id_token": id_token}
        await self._execute_plugin_hooks(PluginHook.BEFORE_AUTHORIZE, message_data)
        result = call_result.Authorize(id_token_info={"status": "Accepted"})
        await self._execute_plugin_hooks(PluginHook.AFTER_AUTHORIZE, message_data, result)
        return result

    @on("FirmwareStatusNotification")
    async def on_firmware_status_notification(self, status: str, **kwargs):
        logger.info(f"Firmware status from {self.id}: {status}")
        result = call_result.FirmwareStatusNotification()
        await self._execute_plugin_hooks(
            PluginHook.AFTER_FIRMWARE_STATUS, {"status": status, **kwargs}, result
        )
        return result

    @on("LogStatusNotification")
    async def on_log_status_notification(self, status: str, **kwargs):
        logger.info(f"Log upload status from {self.id}: {status}")
        result = call_result.LogStatusNotification()
        await self._execute_plugin_hooks(
            PluginHook.AFTER_DIAGNOSTICS_STATUS, {"status": status, **kwargs}, result
        )
        return result
