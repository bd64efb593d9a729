"""Audit trail of charger traffic and connections, shipped to Fluentd."""

import asyncio
import dataclasses
from typing import Any

from fluent import sender

from .base import ChargePointPlugin, PluginContext, PluginHook

# Fluentd tag suffix per audited hook
AUDIT_TAGS = {
    PluginHook.AFTER_BOOT_NOTIFICATION: "boot",
    PluginHook.AFTER_HEARTBEAT: "heartbeat",
    PluginHook.AFTER_STATUS_NOTIFICATION: "status",
    PluginHook.AFTER_START_TRANSACTION: "transaction.start",
    PluginHook.AFTER_STOP_TRANSACTION: "transaction.stop",
    PluginHook.AFTER_TRANSACTION_EVENT: "transaction.event",
    PluginHook.AFTER_METER_VALUES: "meter",
    PluginHook.AFTER_AUTHORIZE: "authorize",
    PluginHook.AFTER_FIRMWARE_STATUS: "firmware",
    PluginHook.AFTER_DIAGNOSTICS_STATUS: "diagnostics",
}


def _as_dict(result: Any) -> dict | None:
    """Plain dict of a call_result dataclass (or any object with attributes)."""
    if result is None:
        return None
    if dataclasses.is_dataclass(result):
        return dataclasses.asdict(result)
    if hasattr(result, "__dict__"):
        return {k: v for k, v in vars(result).items() if not k.startswith("_")}
    return None


class _FluentdPlugin(ChargePointPlugin):
    """
    Owns one FluentSender per connection.

    The sender does blocking socket I/O, so every call goes through a worker
    thread. Fluentd being unreachable only costs audit records.
    """

    def __init__(self, tag_prefix: str, host: str, port: int, timeout: float):
        super().__init__()
        self.tag_prefix = tag_prefix
        self.host = host
        self.port = port
        self.timeout = timeout
        self.sender = None

    def _sender_options(self) -> dict:
        return {"host": self.host, "port": self.port, "timeout": self.timeout}

    def _open_sender(self) -> bool:
        try:
            self.sender = sender.FluentSender(self.tag_prefix, **self._sender_options())
        except Exception as e:
            self.logger.error(
                f"Failed to create Fluentd sender for {self.host}:{self.port}: {e}", exc_info=True
            )
            self.sender = None
        return self.sender is not None

    async def _emit(self, tag: str, data: dict):
        if not self.sender:
            return
        try:
            await asyncio.to_thread(self.sender.emit, tag, data)
        except Exception as e:
            self.logger.error(f"Failed to send event to Fluentd (tag={tag}): {e}")

    async def _close_sender(self):
        if not self.sender:
            return
        try:
            await asyncio.to_thread(self.sender.close)
        except Exception as e:
            self.logger.error(f"Error closing Fluentd sender: {e}", exc_info=True)
        self.sender = None

    @staticmethod
    def _with_remote_address(data: dict, charge_point) -> dict:
        remote_address = getattr(charge_point, "remote_address", None)
        if remote_address:
            data["remote_addr"] = remote_address
        return data


class FluentdAuditPlugin(_FluentdPlugin):
    """
    Audits every inbound OCPP message, its response, and every command.

    Records are tagged ``<tag_prefix>.<kind>``: ``ocpp.boot`` for the request
    a charger sent, ``ocpp.boot.response`` for our answer, ``ocpp.command``
    for commands we sent. A record looks like::

        {"type": "ocpp", "cp": "EMT-0001", "dir": "recv",
         "remote_addr": "10.0.0.5",
         "msg": {"connector_id": 1, "status": "Charging", ...}}

    Command records add ``outcome`` (acknowledged, rejected, timed_out) and,
    when the charger answered, its ``status``.
    """

    def __init__(
        self,
        tag_prefix: str = "ocpp",
        host: str = "localhost",
        port: int = 24224,
        timeout: float = 3.0,
        buffer_overflow_handler: Any = None,
        nanosecond_precision: bool = False,
    ):
        super().__init__(tag_prefix, host, port, timeout)
        self.buffer_overflow_handler = buffer_overflow_handler
        self.nanosecond_precision = nanosecond_precision

    def _sender_options(self) -> dict:
        options = super()._sender_options()
        options["buffer_overflow_handler"] = self.buffer_overflow_handler
        options["nanosecond_precision"] = self.nanosecond_precision
        return options

    def hooks(self) -> dict[PluginHook, str]:
        hooks = {hook: "log_message" for hook in AUDIT_TAGS}
        hooks[PluginHook.AFTER_COMMAND] = "log_command"
        return hooks

    async def initialize(self, charge_point):
        self._open_sender()

    async def cleanup(self, charge_point):
        await self._close_sender()

    def _record(self, context: PluginContext, direction: str, message: Any) -> dict:
        data = {
            "type": "ocpp",
            "cp": context.charge_point.id,
            "dir": direction,
            "msg": message,
        }
        return self._with_remote_address(data, context.charge_point)

    async def log_message(self, context: PluginContext):
        tag = AUDIT_TAGS[context.hook]
        await self._emit(tag, self._record(context, "recv", context.message_data))
        if context.result:
            response = self._record(context, "send", _as_dict(context.result))
            await self._emit(f"{tag}.response", response)

    async def log_command(self, context: PluginContext):
        data = self._record(context, "send", context.message_data)
        data["outcome"] = context.message_data.get("outcome")
        ack = context.result
        if ack is not None and ack.status is not None:
            data["status"] = ack.status
        await self._emit("command", data)


class FluentdWebSocketAuditPlugin(_FluentdPlugin):
    """
    Audits connection lifecycle only, tagged ``<tag_prefix>.websocket``::

        {"type": "ws", "cp": "EMT-0001", "event": "connect",
         "protocol": "ocpp1.6", "remote_addr": "10.0.0.5"}
    """

    def __init__(
        self,
        tag_prefix: str = "ocpp",
        host: str = "localhost",
        port: int = 24224,
        timeout: float = 3.0,
    ):
        super().__init__(tag_prefix, host, port, timeout)

    def hooks(self) -> dict[PluginHook, str]:
        return {}

    def _event(self, charge_point, event: str) -> dict:
        data = {
            "type": "ws",
            "cp": charge_point.id,
            "event": event,
            "protocol": getattr(charge_point, "protocol", None),
        }
        return self._with_remote_address(data, charge_point)

    async def initialize(self, charge_point):
        if self._open_sender():
            await self._emit("websocket", self._event(charge_point, "connect"))

    async def cleanup(self, charge_point):
        await self._emit("websocket", self._event(charge_point, "disconnect"))
        await self._close_sender()
