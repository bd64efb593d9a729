"""Tests for the Fluentd audit logging plugin."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from ocpp.v16 import call_result

from voltlink.handlers import VoltlinkChargePoint
from voltlink.models import Command
from voltlink.plugins import FluentdAuditPlugin, FluentdWebSocketAuditPlugin


async def create_test_charge_point(cp_id, gateway, plugins=None):
    """Helper to create a connected charge point handler."""
    cp = VoltlinkChargePoint(cp_id, MagicMock(), gateway, plugins=plugins)
    cp.remote_address = "10.0.0.5"

    # Initialize plugins (normally done by server)
    await cp.on_connect()

    return cp


class TestFluentdAuditPlugin:
    """Test the Fluentd audit logging plugin."""

    @pytest.mark.asyncio
    async def test_plugin_initialization(self, gateway):
        """Test that Fluentd sender is initialized."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin(
                tag_prefix="test_ocpp",
                host="test-host",
                port=12345,
            )

            await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            mock_sender_class.assert_called_once_with(
                "test_ocpp",
                host="test-host",
                port=12345,
                timeout=3.0,
                buffer_overflow_handler=None,
                nanosecond_precision=False,
            )

            assert plugin.sender is mock_sender

    @pytest.mark.asyncio
    async def test_sender_failure_disables_logging(self, gateway):
        """Test that a broken sender never breaks message handling."""
        with patch("fluent.sender.FluentSender", side_effect=OSError("no fluentd")):
            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            result = await cp.on_heartbeat()

            assert plugin.sender is None
            assert result.current_time

    @pytest.mark.asyncio
    async def test_boot_notification_logging(self, gateway):
        """Test that boot notifications are logged with their response."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            await cp.on_boot_notification(
                charge_point_vendor="Emtek",
                charge_point_model="EMT-V1",
                firmware_version="1.0.0",
            )

            assert mock_sender.emit.call_count == 2
            recv_call, sent_call = mock_sender.emit.call_args_list

            assert recv_call[0][0] == "boot"
            event_data = recv_call[0][1]
            assert event_data["type"] == "ocpp"
            assert event_data["cp"] == "EMT-0001"
            assert event_data["dir"] == "recv"
            assert event_data["remote_addr"] == "10.0.0.5"
            assert event_data["msg"]["charge_point_vendor"] == "Emtek"
            assert event_data["msg"]["firmware_version"] == "1.0.0"

            assert sent_call[0][0] == "boot.response"
            response_data = sent_call[0][1]
            assert response_data["dir"] == "send"
            assert response_data["msg"]["status"] == "Accepted"

    @pytest.mark.asyncio
    async def test_status_notification_logging(self, gateway):
        """Test that vendor-specific statuses are audited verbatim."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            await cp.on_status_notification(connector_id=1, error_code="NoError", status="Hibernating")

            tag, data = mock_sender.emit.call_args_list[0][0]
            assert tag == "status"
            assert data["msg"]["status"] == "Hibernating"

    @pytest.mark.asyncio
    async def test_meter_values_logging(self, gateway, sample_meter_value):
        """Test that meter values are logged."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            await cp.on_meter_values(connector_id=1, meter_value=sample_meter_value, transaction_id=7)

            tags = [c[0][0] for c in mock_sender.emit.call_args_list]
            assert tags == ["meter", "meter.response"]
            data = mock_sender.emit.call_args_list[0][0][1]
            assert data["msg"]["transaction_id"] == 7
            assert data["msg"]["meter_value"] == sample_meter_value

    @pytest.mark.asyncio
    async def test_command_logging(self, gateway):
        """Test that outbound commands are logged with their outcome."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])
            cp.call = AsyncMock(return_value=call_result.ChangeConfiguration(status="Rejected"))

            await cp.send_command(Command.change_configuration("HeartbeatInterval", "60"), timeout=1)

            tag, data = mock_sender.emit.call_args_list[-1][0]
            assert tag == "command"
            assert data["dir"] == "send"
            assert data["outcome"] == "rejected"
            assert data["msg"]["action"] == "ChangeConfiguration"

    @pytest.mark.asyncio
    async def test_cleanup_closes_sender(self, gateway):
        """Test that sender is closed on cleanup."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            await cp.on_disconnect()

            mock_sender.close.assert_called_once()
            assert plugin.sender is None

    @pytest.mark.asyncio
    async def test_emit_failure_is_swallowed(self, gateway):
        """Test that Fluentd errors don't break message handling."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender.emit.side_effect = ConnectionError("fluentd down")
            mock_sender_class.return_value = mock_sender

            plugin = FluentdAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])

            result = await cp.on_authorize(id_tag="RFID-1")

            assert result.id_tag_info == {"status": "Accepted"}


class TestFluentdWebSocketAuditPlugin:
    """Test the WebSocket connection audit plugin."""

    @pytest.mark.asyncio
    async def test_connection_events(self, gateway):
        """Test that connect and disconnect are both logged."""
        with patch("fluent.sender.FluentSender") as mock_sender_class:
            mock_sender = MagicMock()
            mock_sender_class.return_value = mock_sender

            plugin = FluentdWebSocketAuditPlugin()
            cp = await create_test_charge_point("EMT-0001", gateway, plugins=[plugin])
            await cp.on_disconnect()

            calls = mock_sender.emit.call_args_list
            assert [c[0][0] for c in calls] == ["websocket", "websocket"]
            assert calls[0][0][1] == {
                "type": "ws",
                "cp": "EMT-0001",
                "event": "connect",
                "protocol": "ocpp1.6",
                "remote_addr": "10.0.0.5",
            }
            assert calls[1][0][1]["event"] == "disconnect"
            mock_sender.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_message_hooks(self):
        assert FluentdWebSocketAuditPlugin().hooks() == {}
