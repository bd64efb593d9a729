"""Behaviour shared by the OCPP 1.6 and 2.0.1 charge point handlers."""

import asyncio
import json
import logging

from ocpp.exceptions import OCPPError

from ..gateway import OCPP16, ConnectionGateway, FrameEvent, build_request, response_to_ack
from ..logging_utils import log_error, log_ocpp_message
from ..models import Ack, Command
from ..plugins.base import ChargePointPlugin, PluginContext, PluginHook

logger = logging.getLogger(__name__)


class HandlerMixin:
    """
    Mixed into an ``ocpp`` ChargePoint subclass.

    Logs every message in both directions, runs plugin hooks, publishes
    inbound messages as gateway frames and sends gateway commands.
    """

    protocol = OCPP16
    remote_address: str | None = None

    def _setup_handler(
        self,
        gateway: ConnectionGateway,
        plugins: list[ChargePointPlugin] | None,
        heartbeat_interval: int,
    ):
        self.gateway = gateway
        self.heartbeat_interval = heartbeat_interval
        self._request_id = 0

        # Initialize plugin system
        self.plugins: list[ChargePointPlugin] = plugins or []
        self._plugin_hooks: dict[PluginHook, list[tuple[ChargePointPlugin, str]]] = {}
        self._register_plugins()

    async def route_message(self, raw_message: str):
        """Override to log incoming OCPP messages."""
        try:
            message = json.loads(raw_message)
            message_type = message[0]
            message_id = message[1] if len(message) > 1 else None

            if message_type == 2:  # CALL
                log_ocpp_message(
                    logger,
                    direction="received",
                    cp_id=self.id,
                    message_type="CALL",
                    message_id=message_id,
                    action=message[2] if len(message) > 2 else None,
                    payload=message[3] if len(message) > 3 else None,
                )
            elif message_type == 3:  # CALLRESULT
                log_ocpp_message(
                    logger,
                    direction="received",
                    cp_id=self.id,
                    message_type="CALLRESULT",
                    message_id=message_id,
                    payload=message[2] if len(message) > 2 else None,
                )
            elif message_type == 4:  # CALLERROR
                log_ocpp_message(
                    logger,
                    direction="received",
                    cp_id=self.id,
                    message_type="CALLERROR",
                    message_id=message_id,
                    error_code=message[2] if len(message) > 2 else None,
                    error_description=message[3] if len(message) > 3 else None,
                    error_details=message[4] if len(message) > 4 else None,
                )
        except Exception as e:
            log_error(
                logger,
                "message_logging_error",
                f"Failed to log incoming message: {e}",
                cp_id=self.id,
            )

        return await super().route_message(raw_message)

    async def call(self, payload, suppress=True, **kwargs):
        """Override to log outgoing OCPP CALL messages."""
        try:
            payload_dict = payload.to_dict() if hasattr(payload, "to_dict") else vars(payload)
            log_ocpp_message(
                logger,
                direction="sent",
                cp_id=self.id,
                message_type="CALL",
                action=payload.__class__.__name__,
                payload=payload_dict,
            )
        except Exception as e:
            log_error(
                logger,
                "message_logging_error",
                f"Failed to log outgoing message: {e}",
                cp_id=self.id,
            )

        return await super().call(payload, suppress=suppress, **kwargs)

    async def send_command(self, command: Command, timeout: float) -> Ack:
        """
        Send a command on this connection and convert the reply to an Ack.

        Raises TimeoutError when the device does not answer in time and
        OCPPError when it answers with a CALLERROR.
        """
        self._request_id += 1
        request = build_request(self.protocol, command, self._request_id)
        message_data = {
            "action": command.action.value,
            "connector_id": command.connector_id,
            "payload": command.to_dict(),
        }
        await self._execute_plugin_hooks(PluginHook.BEFORE_COMMAND, message_data)

        try:
            response = await asyncio.wait_for(self.call(request, suppress=False), timeout)
        except TimeoutError:
            message_data["outcome"] = "timed_out"
            await self._execute_plugin_hooks(PluginHook.AFTER_COMMAND, message_data)
            raise
        except OCPPError as e:
            message_data["outcome"] = "rejected"
            message_data["error"] = str(e)
            await self._execute_plugin_hooks(PluginHook.AFTER_COMMAND, message_data)
            raise

        ack = response_to_ack(command, response)
        message_data["outcome"] = "acknowledged" if ack.accepted else "rejected"
        await self._execute_plugin_hooks(PluginHook.AFTER_COMMAND, message_data, ack)
        return ack

    async def close(self):
        await self._connection.close()

    async def _publish(self, event: FrameEvent, frame):
        return await self.gateway.publish(event, frame)

    async def on_connect(self):
        """Initialize plugins for this connection."""
        for plugin in self.plugins:
            try:
                await plugin.initialize(self)
            except Exception as e:
                log_error(
                    logger,
                    "plugin_initialize_error",
                    f"Error initializing plugin {plugin.__class__.__name__}: {e}",
                    cp_id=self.id,
                    plugin=plugin.__class__.__name__,
                    exc_info=e,
                )

    async def on_disconnect(self):
        """Handle charge point disconnection."""
        for plugin in self.plugins:
            try:
                await plugin.cleanup(self)
            except Exception as e:
                log_error(
                    logger,
                    "plugin_cleanup_error",
                    f"Error cleaning up plugin {plugin.__class__.__name__}: {e}",
                    cp_id=self.id,
                    plugin=plugin.__class__.__name__,
                    exc_info=e,
                )

    def _register_plugins(self):
        """Register all plugins and build hook mapping."""
        for plugin in self.plugins:
            try:
                hooks = plugin.hooks()
                for hook, method_name in hooks.items():
                    if hook not in self._plugin_hooks:
                        self._plugin_hooks[hook] = []
                    self._plugin_hooks[hook].append((plugin, method_name))
            except Exception as e:
                log_error(
                    logger,
                    "plugin_registration_error",
                    f"Failed to register plugin {plugin.__class__.__name__}: {e}",
                    cp_id=self.id,
                    plugin=plugin.__class__.__name__,
                    exc_info=e,
                )

    async def _execute_plugin_hooks(
        self,
        hook: PluginHook,
        message_data: dict,
        result=None,
    ):
        """
        Execute all registered plugin hooks for a given lifecycle point.

        Args:
            hook: The hook point to execute
            message_data: The message data (kwargs from OCPP handler)
            result: The result from the handler (for AFTER hooks)
        """
        if hook not in self._plugin_hooks:
            return

        context = PluginContext(
            charge_point=self,
            message_data=message_data,
            result=result,
            hook=hook,
        )

        for plugin, method_name in self._plugin_hooks[hook]:
            try:
                method = getattr(plugin, method_name)
                await method(context)
            except Exception as e:
                log_error(
                    logger,
                    "plugin_execution_error",
                    f"Error executing {plugin.__class__.__name__}.{method_name} for hook {hook.value}: {e}",
                    cp_id=self.id,
                    plugin=plugin.__class__.__name__,
                    hook=hook.value,
                    method=method_name,
                    exc_info=e,
                )
