"""Plugin for Prometheus metrics instrumentation."""

import time

from prometheus_client import Counter, Gauge, Histogram

from .base import ChargePointPlugin, PluginContext, PluginHook

ENERGY_MEASURAND = "Energy.Active.Import.Register"
POWER_MEASURAND = "Power.Active.Import"

# Numeric codes for connector status gauges; unrecognized strings map to -1
STATUS_CODES = {
    "Available": 0,
    "Preparing": 1,
    "Charging": 2,
    "SuspendedEVSE": 3,
    "SuspendedEV": 4,
    "Finishing": 5,
    "Reserved": 6,
    "Unavailable": 7,
    "Faulted": 8,
    "Occupied": 9,
}


class PrometheusMetricsPlugin(ChargePointPlugin):
    """
    Exposes Prometheus metrics for the central system.

    This plugin tracks:
    - Service-level metrics (message handling latency)
    - Per-device connection and connector status
    - Errors, boots and disconnects
    - Outbound command outcomes and round-trip latency
    - Session starts, energy register and active power per connector

    Metrics are exposed via the standard prometheus_client registry.
    Use prometheus_client.start_http_server() or generate_latest() to expose /metrics.
    """

    # Class-level metrics, shared by every connection so series survive reconnects

    ocpp_central_up = Gauge(
        "ocpp_central_up",
        "1 if the central system is running, 0 otherwise",
    )

    ocpp_msg_handling_seconds = Histogram(
        "ocpp_msg_handling_seconds",
        "OCPP message handling duration in seconds",
        labelnames=["cp_id", "message_type"],
    )

    ocpp_cp_connected = Gauge(
        "ocpp_cp_connected",
        "1 if WebSocket is open, 0 otherwise",
        labelnames=["cp_id"],
    )

    ocpp_cp_last_heartbeat_ts = Gauge(
        "ocpp_cp_last_heartbeat_ts",
        "Unix timestamp of last heartbeat",
        labelnames=["cp_id"],
    )

    ocpp_cp_last_msg_ts = Gauge(
        "ocpp_cp_last_msg_ts",
        "Unix timestamp of last message received",
        labelnames=["cp_id"],
    )

    ocpp_connector_status = Gauge(
        "ocpp_connector_status",
        "Numeric status code of a connector (0 is the device itself)",
        labelnames=["cp_id", "connector_id"],
    )

    ocpp_cp_disconnects_total = Counter(
        "ocpp_cp_disconnects_total",
        "Total number of disconnections",
        labelnames=["cp_id"],
    )

    ocpp_cp_errors_total = Counter(
        "ocpp_cp_errors_total",
        "Total number of reported connector errors",
        labelnames=["cp_id", "error_type"],
    )

    ocpp_cp_boots_total = Counter(
        "ocpp_cp_boots_total",
        "Total number of boot notifications",
        labelnames=["cp_id"],
    )

    ocpp_commands_total = Counter(
        "ocpp_commands_total",
        "Outbound commands by outcome",
        labelnames=["cp_id", "action", "outcome"],
    )

    ocpp_command_seconds = Histogram(
        "ocpp_command_seconds",
        "Outbound command round trip in seconds",
        labelnames=["cp_id", "action"],
    )

    ocpp_tx_total = Counter(
        "ocpp_tx_total",
        "Total transaction count",
        labelnames=["cp_id"],
    )

    ocpp_connector_energy_wh = Gauge(
        "ocpp_connector_energy_wh",
        "Last energy register reading (Wh)",
        labelnames=["cp_id", "connector_id"],
    )

    ocpp_connector_power_w = Gauge(
        "ocpp_connector_power_w",
        "Last active power import reading (W)",
        labelnames=["cp_id", "connector_id"],
    )

    def __init__(self):
        """Initialize the Prometheus metrics plugin."""
        super().__init__()
        self.ocpp_central_up.set(1)
        self._message_start_times = {}
        self._command_start_times = {}

    def hooks(self) -> dict[PluginHook, str]:
        """Register hooks for all relevant OCPP message types."""
        return {
            PluginHook.BEFORE_BOOT_NOTIFICATION: "before_message",
            PluginHook.AFTER_BOOT_NOTIFICATION: "after_boot_notification",
            PluginHook.BEFORE_HEARTBEAT: "before_message",
            PluginHook.AFTER_HEARTBEAT: "after_heartbeat",
            PluginHook.BEFORE_STATUS_NOTIFICATION: "before_message",
            PluginHook.AFTER_STATUS_NOTIFICATION: "after_status_notification",
            PluginHook.BEFORE_START_TRANSACTION: "before_message",
            PluginHook.AFTER_START_TRANSACTION: "after_start_transaction",
            PluginHook.BEFORE_STOP_TRANSACTION: "before_message",
            PluginHook.AFTER_STOP_TRANSACTION: "after_message",
            PluginHook.BEFORE_TRANSACTION_EVENT: "before_message",
            PluginHook.AFTER_TRANSACTION_EVENT: "after_transaction_event",
            PluginHook.BEFORE_METER_VALUES: "before_message",
            PluginHook.AFTER_METER_VALUES: "after_meter_values",
            PluginHook.BEFORE_AUTHORIZE: "before_message",
            PluginHook.AFTER_AUTHORIZE: "after_message",
            PluginHook.BEFORE_COMMAND: "before_command",
            PluginHook.AFTER_COMMAND: "after_command",
        }

    async def initialize(self, charge_point):
        """Mark the device as connected."""
        cp_id = charge_point.id
        self.ocpp_cp_connected.labels(cp_id=cp_id).set(1)
        self.ocpp_cp_last_msg_ts.labels(cp_id=cp_id).set(time.time())

    async def cleanup(self, charge_point):
        """Mark the device as disconnected and count the disconnect."""
        cp_id = charge_point.id
        self.ocpp_cp_connected.labels(cp_id=cp_id).set(0)
        self.ocpp_cp_disconnects_total.labels(cp_id=cp_id).inc()

    # Hook handlers

    async def before_message(self, context: PluginContext):
        """Record message start time for latency tracking."""
        cp_id = context.charge_point.id
        self._message_start_times[(cp_id, context.message_type)] = time.time()
        self.ocpp_cp_last_msg_ts.labels(cp_id=cp_id).set(time.time())

    async def after_message(self, context: PluginContext):
        """Record message handling duration."""
        cp_id = context.charge_point.id
        key = (cp_id, context.message_type)

        if key in self._message_start_times:
            duration = time.time() - self._message_start_times.pop(key)
            self.ocpp_msg_handling_seconds.labels(
                cp_id=cp_id,
                message_type=context.message_type,
            ).observe(duration)

    async def after_boot_notification(self, context: PluginContext):
        await self.after_message(context)
        self.ocpp_cp_boots_total.labels(cp_id=context.charge_point.id).inc()

    async def after_heartbeat(self, context: PluginContext):
        await self.after_message(context)
        self.ocpp_cp_last_heartbeat_ts.labels(cp_id=context.charge_point.id).set(time.time())

    async def after_status_notification(self, context: PluginContext):
        """Track connector status and reported errors."""
        cp_id = context.charge_point.id
        await self.after_message(context)

        data = context.message_data
        connector_id = data.get("evse_id", data.get("connector_id"))
        status = data.get("status") or data.get("connector_status")
        error_code = data.get("error_code")

        if connector_id is not None and status:
            self.ocpp_connector_status.labels(cp_id=cp_id, connector_id=str(connector_id)).set(
                STATUS_CODES.get(status, -1)
            )

        if error_code and error_code != "NoError":
            self.ocpp_cp_errors_total.labels(cp_id=cp_id, error_type=error_code).inc()

    async def after_start_transaction(self, context: PluginContext):
        await self.after_message(context)
        self.ocpp_tx_total.labels(cp_id=context.charge_point.id).inc()

    async def after_transaction_event(self, context: PluginContext):
        await self.after_message(context)
        data = context.message_data
        if data.get("event_type") == "Started":
            self.ocpp_tx_total.labels(cp_id=context.charge_point.id).inc()
        evse = data.get("evse") or {}
        self._track_meter_values(
            context.charge_point.id, evse.get("id", 1), data.get("meter_value") or []
        )

    async def after_meter_values(self, context: PluginContext):
        await self.after_message(context)
        data = context.message_data
        self._track_meter_values(
            context.charge_point.id,
            data.get("evse_id", data.get("connector_id")),
            data.get("meter_value") or [],
        )

    def _track_meter_values(self, cp_id: str, connector_id, meter_value: list):
        for sample in meter_value:
            for value in sample.get("sampled_value", []):
                if value.get("phase"):
                    continue
                measurand = value.get("measurand") or ENERGY_MEASURAND
                try:
                    numeric_value = float(value.get("value"))
                except (ValueError, TypeError):
                    continue

                unit = value.get("unit") or (value.get("unit_of_measure") or {}).get("unit", "")
                if unit in ("kWh", "kW"):
                    numeric_value *= 1000

                labels = {"cp_id": cp_id, "connector_id": str(connector_id)}
                if measurand == ENERGY_MEASURAND:
                    self.ocpp_connector_energy_wh.labels(**labels).set(numeric_value)
                elif measurand == POWER_MEASURAND:
                    self.ocpp_connector_power_w.labels(**labels).set(numeric_value)

    async def before_command(self, context: PluginContext):
        key = (context.charge_point.id, context.message_data.get("action"))
        self._command_start_times[key] = time.time()

    async def after_command(self, context: PluginContext):
        """Count the command outcome and observe its round trip."""
        cp_id = context.charge_point.id
        action = context.message_data.get("action", "")
        outcome = context.message_data.get("outcome", "unknown")

        self.ocpp_commands_total.labels(cp_id=cp_id, action=action, outcome=outcome).inc()

        started = self._command_start_times.pop((cp_id, action), None)
        if started is not None:
            self.ocpp_command_seconds.labels(cp_id=cp_id, action=action).observe(
                time.time() - started
            )
