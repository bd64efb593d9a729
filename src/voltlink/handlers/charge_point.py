"""OCPP 1.6 charge point handler."""

import logging

from ocpp.routing import on
from ocpp.v16 import ChargePoint as BaseChargePoint
from ocpp.v16 import call_result

from ..gateway import (
    OCPP16,
    BootFrame,
    ConnectionGateway,
    FrameEvent,
    HeartbeatFrame,
    StatusFrame,
    TransactionStartedFrame,
    TransactionStoppedFrame,
)
from ..models import utcnow
from ..plugins.base import ChargePointPlugin, PluginHook
from .base import HandlerMixin
from .meter import parse_meter_values, parse_timestamp

logger = logging.getLogger(__name__)


def _first(results: list):
    return next((r for r in results if r is not None), None)


class VoltlinkChargePoint(HandlerMixin, BaseChargePoint):
    """
    OCPP 1.6 ChargePoint implementation.

    Each handled message is published to the gateway as a frame; the
    central system's subscribers update the registry, the state machine
    and the session coordinator.

    Supports a plugin system for extending behavior at various lifecycle hooks.
    """

    protocol = OCPP16

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

    @on("BootNotification")
    async def on_boot_notification(
        self, charge_point_vendor: str, charge_point_model: str, **kwargs
    ):
        """Handle BootNotification: registers the device or refreshes its identity."""
        message_data = {
            "charge_point_vendor": charge_point_vendor,
            "charge_point_model": charge_point_model,
            **kwargs,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_BOOT_NOTIFICATION, message_data)

        await self._publish(
            FrameEvent.BOOT_NOTIFICATION,
            BootFrame(
                serial=self.id,
                vendor=charge_point_vendor,
                model=charge_point_model,
                firmware_version=kwargs.get("firmware_version", ""),
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
    async def on_heartbeat(self):
        """Handle Heartbeat message."""
        message_data = {}
        await self._execute_plugin_hooks(PluginHook.BEFORE_HEARTBEAT, message_data)

        now = utcnow()
        await self._publish(FrameEvent.HEARTBEAT, HeartbeatFrame(serial=self.id, timestamp=now))
        result = call_result.Heartbeat(current_time=now.isoformat())

        await self._execute_plugin_hooks(PluginHook.AFTER_HEARTBEAT, message_data, result)
        return result

    # Schema validation is skipped so vendor-specific status strings reach the registry
    @on("StatusNotification", skip_schema_validation=True)
    async def on_status_notification(
        self, connector_id: int, error_code: str, status: str, **kwargs
    ):
        """
        Handle StatusNotification message.

        Connector 0 reports the status of the charge point itself.
        """
        message_data = {
            "connector_id": connector_id,
            "error_code": error_code,
            "status": status,
            **kwargs,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_STATUS_NOTIFICATION, message_data)

        await self._publish(
            FrameEvent.STATUS_FRAME,
            StatusFrame(
                serial=self.id,
                connector_id=int(connector_id),
                status=status,
                error_code=error_code,
                info=kwargs.get("info"),
                timestamp=parse_timestamp(kwargs.get("timestamp")),
            ),
        )
        result = call_result.StatusNotification()

        await self._execute_plugin_hooks(PluginHook.AFTER_STATUS_NOTIFICATION, message_data, result)
        return result

    @on("StartTransaction")
    async def on_start_transaction(
        self, connector_id: int, id_tag: str, meter_start: int, timestamp: str, **kwargs
    ):
        """
        Handle StartTransaction message.

        The session id assigned by the coordinator is the OCPP transaction id.
        """
        message_data = {
            "connector_id": connector_id,
            "id_tag": id_tag,
            "meter_start": meter_start,
            "timestamp": timestamp,
            **kwargs,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_START_TRANSACTION, message_data)

        session = _first(
            await self._publish(
                FrameEvent.TRANSACTION_STARTED,
                TransactionStartedFrame(
                    serial=self.id,
                    connector_id=connector_id,
                    id_tag=id_tag,
                    meter_start_wh=float(meter_start),
                    timestamp=parse_timestamp(timestamp),
                ),
            )
        )

        if session is None:
            result = call_result.StartTransaction(
                transaction_id=0, id_tag_info={"status": "Invalid"}
            )
        else:
            result = call_result.StartTransaction(
                transaction_id=session.id, id_tag_info={"status": "Accepted"}
            )

        await self._execute_plugin_hooks(PluginHook.AFTER_START_TRANSACTION, message_data, result)
        return result

    @on("StopTransaction")
    async def on_stop_transaction(
        self,
        meter_stop: int,
        timestamp: str,
        transaction_id: int,
        **kwargs,
    ):
        """Handle StopTransaction message."""
        message_data = {
            "meter_stop": meter_stop,
            "timestamp": timestamp,
            "transaction_id": transaction_id,
            **kwargs,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_STOP_TRANSACTION, message_data)

        # Samples recorded during the transaction come first, so the
        # session sees them before it is closed.
        transaction_data = kwargs.get("transaction_data", [])
        if transaction_data:
            frame = parse_meter_values(self.id, 0, transaction_data, str(transaction_id))
            await self._publish(FrameEvent.METER_FRAME, frame)

        await self._publish(
            FrameEvent.TRANSACTION_STOPPED,
            TransactionStoppedFrame(
                serial=self.id,
                transaction_id=transaction_id,
                meter_stop_wh=float(meter_stop),
                timestamp=parse_timestamp(timestamp),
                reason=kwargs.get("reason", ""),
            ),
        )

        result = call_result.StopTransaction(id_tag_info={"status": "Accepted"})

        await self._execute_plugin_hooks(PluginHook.AFTER_STOP_TRANSACTION, message_data, result)
        return result

    @on("MeterValues")
    async def on_meter_values(self, connector_id: int, meter_value: list, **kwargs):
        """Handle MeterValues message."""
        transaction_id = kwargs.get("transaction_id")

        message_data = {
            "connector_id": connector_id,
            "meter_value": meter_value,
            **kwargs,
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_METER_VALUES, message_data)

        frame = parse_meter_values(
            self.id,
            connector_id,
            meter_value,
            str(transaction_id) if transaction_id is not None else None,
        )
        await self._publish(FrameEvent.METER_FRAME, frame)

        result = call_result.MeterValues()

        await self._execute_plugin_hooks(PluginHook.AFTER_METER_VALUES, message_data, result)
        return result

    @on("Authorize")
    async def on_authorize(self, id_tag: str):
        """
        Handle Authorize message.

        All tags are accepted; users are authorized by the web application
        before a remote start is requested.
        """
        message_data = {"id_tag": id_tag}
        await self._execute_plugin_hooks(PluginHook.BEFORE_AUTHORIZE, message_data)

        result = call_result.Authorize(id_tag_info={"status": "Accepted"})

        await self._execute_plugin_hooks(PluginHook.AFTER_AUTHORIZE, message_data, result)
        return result

    @on("DiagnosticsStatusNotification")
    async def on_diagnostics_status_notification(self, status: str, **kwargs):
        logger.info(f"Diagnostics upload status from {self.id}: {status}")
        result = call_result.DiagnosticsStatusNotification()
        await self._execute_plugin_hooks(
            PluginHook.AFTER_DIAGNOSTICS_STATUS, {"status": status, **kwargs}, result
        )
        return result

    @on("FirmwareStatusNotification")
    async def on_firmware_status_notification(self, status: str, **kwargs):
        logger.info(f"Firmware status from {self.id}: {status}")
        result = call_result.FirmwareStatusNotification()
        await self._execute_plugin_hooks(
            PluginHook.AFTER_FIRMWARE_STATUS, {"status": status, **kwargs}, result
        )
        return result
