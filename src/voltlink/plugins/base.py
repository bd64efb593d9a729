"""Hook points for code that observes charge point connections."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..handlers.base import HandlerMixin

logger = logging.getLogger(__name__)


class PluginHook(str, Enum):
    """
    Points at which a connection handler calls its plugins.

    BEFORE_* hooks see the inbound payload before frames are published;
    AFTER_* hooks also get the response sent back to the charger. Both
    protocol versions share the hooks: a 2.0.1 TransactionEvent runs the
    transaction_event pair, a 1.6 StartTransaction the start_transaction pair.

    BEFORE_COMMAND/AFTER_COMMAND wrap every outbound command. AFTER_COMMAND
    runs on failure too; ``message_data["outcome"]`` is "acknowledged",
    "rejected" or "timed_out".
    """

    BEFORE_BOOT_NOTIFICATION = "before_boot_notification"
    AFTER_BOOT_NOTIFICATION = "after_boot_notification"

    BEFORE_STATUS_NOTIFICATION = "before_status_notification"
    AFTER_STATUS_NOTIFICATION = "after_status_notification"

    BEFORE_START_TRANSACTION = "before_start_transaction"
    AFTER_START_TRANSACTION = "after_start_transaction"
    BEFORE_STOP_TRANSACTION = "before_stop_transaction"
    AFTER_STOP_TRANSACTION = "after_stop_transaction"
    BEFORE_TRANSACTION_EVENT = "before_transaction_event"
    AFTER_TRANSACTION_EVENT = "after_transaction_event"

    BEFORE_HEARTBEAT = "before_heartbeat"
    AFTER_HEARTBEAT = "after_heartbeat"

    BEFORE_METER_VALUES = "before_meter_values"
    AFTER_METER_VALUES = "after_meter_values"

    BEFORE_AUTHORIZE = "before_authorize"
    AFTER_AUTHORIZE = "after_authorize"

    AFTER_FIRMWARE_STATUS = "after_firmware_status"
    AFTER_DIAGNOSTICS_STATUS = "after_diagnostics_status"

    BEFORE_COMMAND = "before_command"
    AFTER_COMMAND = "after_command"


@dataclass
class PluginContext:
    """
    What a hook gets to see.

    ``message_data`` holds the handler's keyword arguments (snake_case
    payload fields) or, for command hooks, the action, params and outcome.
    ``result`` is the response or Ack, set for AFTER hooks only.
    """

    charge_point: "HandlerMixin"
    message_data: dict[str, Any]
    result: Any = None
    hook: PluginHook | None = None

    @property
    def message_type(self) -> str:
        """Hook name without its before_/after_ prefix, e.g. "boot_notification"."""
        if self.hook is None:
            return ""
        return self.hook.value.split("_", 1)[1]


class ChargePointPlugin(ABC):
    """
    Per-connection observer of OCPP traffic.

    The server builds a fresh set of plugins for each connection, so
    instance state is per charger. A failing hook is logged by the handler
    and never affects the reply sent to the charger.

    Example:
        class RejectedCommandAlert(ChargePointPlugin):
            def hooks(self) -> dict[PluginHook, str]:
                return {PluginHook.AFTER_COMMAND: "on_command"}

            async def on_command(self, context: PluginContext):
                if context.message_data.get("outcome") == "rejected":
                    self.logger.warning(f"{context.charge_point.id} refused {context.message_data['action']}")
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def hooks(self) -> dict[PluginHook, str]:
        """Map each hook this plugin handles to the name of its coroutine method."""

    async def initialize(self, charge_point: "HandlerMixin"):
        """Runs when the charger connects, before any message is handled."""
        _ = charge_point

    async def cleanup(self, charge_point: "HandlerMixin"):
        """Runs after the connection closed."""
        _ = charge_point
