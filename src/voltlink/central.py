"""Central system: wires the gateway's frame events into registry, state machine and coordinator."""

import asyncio
import logging

from .auto_stop import AutoStopPolicy
from .config import Settings
from .coordinator import CommandRetryPolicy, SessionCoordinator
from .database import Database
from .errors import CommandRejected, DeviceOffline
from .gateway import (
    BootFrame,
    ConnectionFrame,
    ConnectionGateway,
    FrameEvent,
    HeartbeatFrame,
    MeterFrame,
    StatusFrame,
    TransactionStartedFrame,
    TransactionStoppedFrame,
)
from .logging_utils import log_error
from .models import Ack, Command
from .payments import AcceptAllAuthorizer, HttpPaymentAuthorizer, PaymentAuthorizer
from .registry import DeviceRegistry
from .state_machine import ProtocolStateMachine

logger = logging.getLogger(__name__)


class CentralSystem:
    """
    Owns the database connection and every core component.

    Call ``start()`` once before accepting connections and ``stop()`` on
    shutdown.
    """

    def __init__(self, settings: Settings, payments: PaymentAuthorizer | None = None):
        self.settings = settings
        self.db = Database(settings.db_path)
        self._payments = payments
        self.registry: DeviceRegistry | None = None
        self.gateway: ConnectionGateway | None = None
        self.state_machine: ProtocolStateMachine | None = None
        self.coordinator: SessionCoordinator | None = None
        self._monitor_task: asyncio.Task | None = None

    async def start(self):
        await self.db.initialize_schema()
        conn = await self.db.connect()

        settings = self.settings
        if self._payments is None:
            self._payments = (
                HttpPaymentAuthorizer(settings.payments_url)
                if settings.payments_url
                else AcceptAllAuthorizer()
            )

        self.registry = DeviceRegistry(conn, offline_timeout=settings.offline_timeout)
        self.gateway = ConnectionGateway(conn, command_timeout=settings.command_timeout)
        self.state_machine = ProtocolStateMachine(self.registry)
        self.coordinator = SessionCoordinator(
            conn,
            self.registry,
            self.gateway,
            self.state_machine,
            payments=self._payments,
            rate_per_kwh=settings.rate_per_kwh,
            preauth_amount=settings.preauth_amount,
            retry_policy=CommandRetryPolicy(
                attempts=settings.command_attempts,
                backoff_seconds=settings.command_retry_backoff,
            ),
            auto_stop_policy=AutoStopPolicy(
                min_elapsed=settings.auto_stop_min_elapsed,
                zero_samples=settings.auto_stop_zero_samples,
            ),
        )
        self._subscribe()

        # Nothing is connected yet
        reset = await self.registry.reset_network_status()
        await self.registry.load_all()
        restored = await self.coordinator.restore()
        logger.info(f"Central system ready ({reset} device(s) reset offline, {restored} open session(s))")

        self._monitor_task = asyncio.create_task(self._offline_monitor())

    async def stop(self):
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        if self.gateway is not None:
            await self.gateway.close_all()
        if self.coordinator is not None:
            await self.coordinator.drain()
        if self._payments is not None:
            await self._payments.close()
        await self.db.disconnect()

    def _subscribe(self):
        gateway = self.gateway
        gateway.subscribe(FrameEvent.CONNECTED, self._on_connected)
        gateway.subscribe(FrameEvent.DISCONNECTED, self._on_disconnected)
        gateway.subscribe(FrameEvent.BOOT_NOTIFICATION, self._on_boot)
        gateway.subscribe(FrameEvent.HEARTBEAT, self._on_heartbeat)
        gateway.subscribe(FrameEvent.STATUS_FRAME, self._on_status)
        gateway.subscribe(FrameEvent.METER_FRAME, self._on_meter)
        gateway.subscribe(FrameEvent.TRANSACTION_STARTED, self.coordinator.bind_device_transaction)
        gateway.subscribe(FrameEvent.TRANSACTION_STOPPED, self.coordinator.close_device_transaction)

    # Frame subscribers

    async def _on_connected(self, frame: ConnectionFrame):
        # Devices that never booted are registered by their BootNotification
        if await self.registry.is_known(frame.serial):
            return await self.registry.mark_online(frame.serial)
        return None

    async def _on_disconnected(self, frame: ConnectionFrame):
        if await self.registry.is_known(frame.serial):
            return await self.registry.mark_offline(frame.serial)
        return None

    async def _on_boot(self, frame: BootFrame):
        await self.registry.register_or_get_device(
            frame.serial,
            vendor=frame.vendor,
            model=frame.model,
            firmware_version=frame.firmware_version,
            protocol=frame.protocol,
        )
        return await self.registry.mark_online(frame.serial)

    async def _on_heartbeat(self, frame: HeartbeatFrame):
        return await self.registry.touch(frame.serial)

    async def _on_status(self, frame: StatusFrame):
        await self.registry.touch(frame.serial)
        return await self.state_machine.apply_report(
            frame.serial,
            frame.connector_id,
            frame.status,
            error_code=frame.error_code,
            info=frame.info,
        )

    async def _on_meter(self, frame: MeterFrame):
        await self.registry.touch(frame.serial)
        return await self.coordinator.ingest_meter_frame(frame)

    async def _offline_monitor(self):
        """Periodically mark devices offline whose last heartbeat is too old."""
        while True:
            await asyncio.sleep(self.settings.offline_check_interval)
            try:
                await self.registry.sweep_offline()
            except Exception as e:
                log_error(logger, "offline_monitor_error", f"Offline sweep failed: {e}", exc_info=e)

    # Operator commands

    async def execute_command(self, serial: str, command: Command) -> Ack:
        """
        Send an operator command (reset, unlock, configuration...) to a device.

        Raises CommandRejected when the device does not accept it.
        """
        device = await self.registry.get_status(serial)
        if not device.is_online or not self.gateway.is_connected(serial):
            raise DeviceOffline(serial)

        await self.state_machine.check_command(serial, command)
        marker = self.state_machine.report_marker(serial, command)
        ack = await self.gateway.send(serial, command)
        if not ack.accepted:
            raise CommandRejected(serial, command.action.value, status=ack.status)
        await self.state_machine.apply_command_result(serial, command, ack, since=marker)
        return ack
