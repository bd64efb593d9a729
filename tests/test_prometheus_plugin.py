"""Tests for the Prometheus metrics plugin."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from ocpp.v16 import call_result
from prometheus_client import REGISTRY, generate_latest

from voltlink.handlers import VoltlinkChargePoint, VoltlinkChargePointV201
from voltlink.models import Command
from voltlink.plugins import PrometheusMetricsPlugin


async def create_test_charge_point(cp_id, gateway, plugins=None, handler=VoltlinkChargePoint):
    """Helper to create a connected charge point handler."""
    cp = handler(cp_id, MagicMock(), gateway, plugins=plugins)

    # Initialize plugins (normally done by server)
    await cp.on_connect()

    return cp


def get_metric_value(metric, labels):
    """Helper to get current value of a metric with specific labels."""
    for sample in metric.collect()[0].samples:
        if sample.labels == labels:
            return sample.value
    return None


class TestPrometheusMetricsPlugin:
    """Test the Prometheus metrics plugin."""

    @pytest.mark.asyncio
    async def test_plugin_initialization(self, gateway):
        """Test that metrics are initialized on connection."""
        plugin = PrometheusMetricsPlugin()
        await create_test_charge_point("PROM-INIT", gateway, plugins=[plugin])

        value = get_metric_value(plugin.ocpp_cp_connected, {"cp_id": "PROM-INIT"})
        assert value == 1.0

        samples = list(plugin.ocpp_central_up.collect()[0].samples)
        assert len(samples) > 0
        assert samples[0].value == 1.0

    @pytest.mark.asyncio
    async def test_cleanup_marks_disconnected(self, gateway):
        """Test that cleanup marks the device as disconnected."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-CLEANUP", gateway, plugins=[plugin])

        assert get_metric_value(plugin.ocpp_cp_connected, {"cp_id": "PROM-CLEANUP"}) == 1.0

        await cp.on_disconnect()

        assert get_metric_value(plugin.ocpp_cp_connected, {"cp_id": "PROM-CLEANUP"}) == 0.0
        assert get_metric_value(plugin.ocpp_cp_disconnects_total, {"cp_id": "PROM-CLEANUP"}) == 1.0

    @pytest.mark.asyncio
    async def test_boot_notification_tracking(self, gateway):
        """Test that boot notifications increment the counter."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-BOOT", gateway, plugins=[plugin])

        await cp.on_boot_notification("Emtek", "EMT-V1")

        assert get_metric_value(plugin.ocpp_cp_boots_total, {"cp_id": "PROM-BOOT"}) == 1.0
        handled = get_metric_value(
            plugin.ocpp_msg_handling_seconds,
            {"cp_id": "PROM-BOOT", "message_type": "boot_notification"},
        )
        assert handled == 1.0

    @pytest.mark.asyncio
    async def test_heartbeat_tracking(self, gateway):
        """Test that heartbeat updates the timestamp."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-HB", gateway, plugins=[plugin])

        await cp.on_heartbeat()

        value = get_metric_value(plugin.ocpp_cp_last_heartbeat_ts, {"cp_id": "PROM-HB"})
        assert value is not None
        assert value > 0

    @pytest.mark.asyncio
    async def test_connector_status_tracking(self, gateway):
        """Test that status notifications update the connector gauge."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-STATUS", gateway, plugins=[plugin])

        await cp.on_status_notification(connector_id=1, error_code="NoError", status="Charging")
        await cp.on_status_notification(connector_id=2, error_code="NoError", status="Hibernating")

        charging = get_metric_value(
            plugin.ocpp_connector_status, {"cp_id": "PROM-STATUS", "connector_id": "1"}
        )
        unknown = get_metric_value(
            plugin.ocpp_connector_status, {"cp_id": "PROM-STATUS", "connector_id": "2"}
        )
        assert charging == 2.0
        assert unknown == -1.0

    @pytest.mark.asyncio
    async def test_error_tracking(self, gateway):
        """Test that reported errors are counted, NoError is not."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-ERR", gateway, plugins=[plugin])

        await cp.on_status_notification(connector_id=1, error_code="GroundFailure", status="Faulted")
        await cp.on_status_notification(connector_id=1, error_code="NoError", status="Available")

        value = get_metric_value(
            plugin.ocpp_cp_errors_total, {"cp_id": "PROM-ERR", "error_type": "GroundFailure"}
        )
        assert value == 1.0
        assert (
            get_metric_value(plugin.ocpp_cp_errors_total, {"cp_id": "PROM-ERR", "error_type": "NoError"})
            is None
        )

    @pytest.mark.asyncio
    async def test_transaction_tracking(self, gateway):
        """Test that started transactions are counted."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-TX", gateway, plugins=[plugin])

        await cp.on_start_transaction(
            connector_id=1, id_tag="RFID-1", meter_start=0, timestamp="2024-05-01T12:00:00Z"
        )

        assert get_metric_value(plugin.ocpp_tx_total, {"cp_id": "PROM-TX"}) == 1.0

    @pytest.mark.asyncio
    async def test_meter_values_tracking(self, gateway, sample_meter_value):
        """Test that energy and power gauges use Wh and W."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-METER", gateway, plugins=[plugin])

        await cp.on_meter_values(connector_id=1, meter_value=sample_meter_value)

        labels = {"cp_id": "PROM-METER", "connector_id": "1"}
        assert get_metric_value(plugin.ocpp_connector_energy_wh, labels) == 1500.0
        # The L1 phase sample must not overwrite the total
        assert get_metric_value(plugin.ocpp_connector_power_w, labels) == pytest.approx(7200.0)

    @pytest.mark.asyncio
    async def test_transaction_event_tracking(self, gateway):
        """Test that 2.0.1 transaction events count starts and meter readings."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point(
            "PROM-V201", gateway, plugins=[plugin], handler=VoltlinkChargePointV201
        )

        await cp.on_transaction_event(
            event_type="Started",
            timestamp="2024-05-01T12:00:00Z",
            trigger_reason="RemoteStart",
            seq_no=0,
            transaction_info={"transaction_id": "tx-1"},
            evse={"id": 2},
            meter_value=[
                {
                    "timestamp": "2024-05-01T12:00:00Z",
                    "sampled_value": [
                        {"value": 11.0, "measurand": "Power.Active.Import", "unit_of_measure": {"unit": "kW"}}
                    ],
                }
            ],
        )

        assert get_metric_value(plugin.ocpp_tx_total, {"cp_id": "PROM-V201"}) == 1.0
        power = get_metric_value(plugin.ocpp_connector_power_w, {"cp_id": "PROM-V201", "connector_id": "2"})
        assert power == 11000.0

    @pytest.mark.asyncio
    async def test_command_outcomes(self, gateway):
        """Test that outbound commands are counted by outcome."""
        plugin = PrometheusMetricsPlugin()
        cp = await create_test_charge_point("PROM-CMD", gateway, plugins=[plugin])
        cp.call = AsyncMock(return_value=call_result.Reset(status="Accepted"))

        await cp.send_command(Command.reset("Soft"), timeout=1)

        value = get_metric_value(
            plugin.ocpp_commands_total,
            {"cp_id": "PROM-CMD", "action": "Reset", "outcome": "acknowledged"},
        )
        assert value == 1.0
        latency = get_metric_value(plugin.ocpp_command_seconds, {"cp_id": "PROM-CMD", "action": "Reset"})
        assert latency == 1.0

    @pytest.mark.asyncio
    async def test_metrics_exposition(self, gateway):
        """Test that metrics are registered with the default registry."""
        plugin = PrometheusMetricsPlugin()
        await create_test_charge_point("PROM-EXPO", gateway, plugins=[plugin])

        output = generate_latest(REGISTRY).decode()

        assert 'ocpp_cp_connected{cp_id="PROM-EXPO"} 1.0' in output
        assert "ocpp_central_up 1.0" in output
