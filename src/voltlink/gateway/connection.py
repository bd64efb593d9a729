"""Connection gateway: one live transport per device, command dispatch and frame events."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import aiosqlite
from ocpp.exceptions import OCPPError
from websockets.exceptions import ConnectionClosed

from ..errors import CommandRejected, CommandTimeout, DeviceOffline, VoltlinkError
from ..logging_utils import log_command_event, log_error, log_websocket_event
from ..models import Ack, Command, CommandRecord, CommandStatus, utcnow
from ..repositories import CommandRepository
from .events import ConnectionFrame, FrameEvent

logger = logging.getLogger(__name__)

FrameCallback = Callable[[Any], Awaitable[Any]]


class Transport(Protocol):
    """What the gateway needs from a connected device handler."""

    id: str
    protocol: str

    async def send_command(self, command: Command, timeout: float) -> Ack: ...

    async def close(self) -> None: ...


class ConnectionGateway:
    """
    Tracks the live transport of every connected device.

    At most one transport exists per serial: attaching a new one closes and
    replaces the previous. Commands to the same device are sent one at a time;
    different devices proceed in parallel. The gateway never retries a
    command; retry policy belongs to the caller.
    """

    def __init__(
        self,
        db_connection: aiosqlite.Connection | None = None,
        command_timeout: float = 5.0,
    ):
        self.command_timeout = command_timeout
        self.command_repo = CommandRepository(db_connection) if db_connection is not None else None
        self._transports: dict[str, Transport] = {}
        self._command_locks: dict[str, asyncio.Lock] = {}
        self._subscribers: dict[FrameEvent, list[FrameCallback]] = defaultdict(list)

    def is_connected(self, serial: str) -> bool:
        return serial in self._transports

    def get_transport(self, serial: str) -> Transport | None:
        return self._transports.get(serial)

    @property
    def connected_serials(self) -> list[str]:
        return sorted(self._transports)

    async def attach(self, serial: str, transport: Transport, remote_address: str | None = None):
        """Register the transport of a freshly connected device."""
        previous = self._transports.get(serial)
        self._transports[serial] = transport

        if previous is not None and previous is not transport:
            log_websocket_event(logger, "replaced", cp_id=serial)
            try:
                await previous.close()
            except Exception as e:
                log_error(
                    logger,
                    "transport_close_error",
                    f"Failed to close replaced transport for {serial}: {e}",
                    cp_id=serial,
                    exc_info=e,
                )

        log_websocket_event(logger, "connect", cp_id=serial, protocol=transport.protocol)
        await self.publish(
            FrameEvent.CONNECTED,
            ConnectionFrame(serial=serial, protocol=transport.protocol, remote_address=remote_address),
        )

    async def detach(self, serial: str, transport: Transport) -> bool:
        """Forget a transport. A transport that was already replaced is ignored."""
        if self._transports.get(serial) is not transport:
            return False

        del self._transports[serial]
        log_websocket_event(logger, "disconnect", cp_id=serial)
        await self.publish(
            FrameEvent.DISCONNECTED, ConnectionFrame(serial=serial, protocol=transport.protocol)
        )
        return True

    def subscribe(self, event: FrameEvent, callback: FrameCallback):
        self._subscribers[FrameEvent(event)].append(callback)

    async def publish(self, event: FrameEvent, frame) -> list[Any]:
        """
        Deliver a frame to every subscriber, in subscription order.

        Returns the subscribers' results. A failing subscriber is logged and
        yields None; it never stops delivery to the others.
        """
        results = []
        for callback in self._subscribers.get(FrameEvent(event), []):
            try:
                results.append(await callback(frame))
            except VoltlinkError as e:
                logger.warning(f"Dropped {event.value} frame from {frame.serial}: {e.message}")
                results.append(None)
            except Exception as e:
                log_error(
                    logger,
                    "frame_handler_error",
                    f"Error handling {event.value} frame: {e}",
                    cp_id=getattr(frame, "serial", None),
                    exc_info=e,
                )
                results.append(None)
        return results

    def _lock(self, serial: str) -> asyncio.Lock:
        if serial not in self._command_locks:
            self._command_locks[serial] = asyncio.Lock()
        return self._command_locks[serial]

    async def send(self, serial: str, command: Command, timeout: float | None = None) -> Ack:
        """
        Send a command and wait for the device's answer.

        Raises DeviceOffline when no transport is attached, CommandTimeout when
        no answer arrives before the deadline and CommandRejected when the
        device replies with a CALLERROR. A normal reply is returned as an Ack
        even when its status is not accepted.
        """
        timeout = timeout or self.command_timeout
        action = command.action.value

        if not self.is_connected(serial):
            raise DeviceOffline(serial)

        async with self._lock(serial):
            transport = self._transports.get(serial)
            if transport is None:
                raise DeviceOffline(serial)

            record = await self._record_pending(serial, command)
            try:
                ack = await transport.send_command(command, timeout)
            except TimeoutError:
                await self._record_outcome(record, CommandStatus.TIMED_OUT, error="timeout")
                log_command_event(
                    logger, "timed_out", serial, action, level=logging.WARNING, timeout=timeout
                )
                raise CommandTimeout(serial, action, timeout) from None
            except OCPPError as e:
                await self._record_outcome(record, CommandStatus.REJECTED, error=str(e))
                log_command_event(
                    logger, "rejected", serial, action, level=logging.WARNING, reason=str(e)
                )
                raise CommandRejected(serial, action, reason=getattr(e, "description", str(e))) from e
            except ConnectionClosed as e:
                await self._record_outcome(record, CommandStatus.FAILED, error="connection closed")
                log_command_event(logger, "failed", serial, action, level=logging.WARNING)
                raise DeviceOffline(serial) from e
            except Exception as e:
                await self._record_outcome(record, CommandStatus.FAILED, error=str(e))
                log_command_event(logger, "failed", serial, action, level=logging.ERROR, reason=str(e))
                raise

            status = CommandStatus.ACKNOWLEDGED if ack.accepted else CommandStatus.REJECTED
            await self._record_outcome(record, status, response=ack.payload)
            log_command_event(logger, status.value, serial, action, status=ack.status)
            return ack

    async def _record_pending(self, serial: str, command: Command) -> CommandRecord | None:
        if self.command_repo is None:
            return None
        return await self.command_repo.create(
            CommandRecord(serial=serial, action=command.action.value, payload=command.to_dict())
        )

    async def _record_outcome(
        self,
        record: CommandRecord | None,
        status: CommandStatus,
        response: dict | None = None,
        error: str = "",
    ):
        if record is None or self.command_repo is None:
            return
        await self.command_repo.complete(
            record.id, status, response=response, error=error, completed_at=utcnow()
        )

    async def close_all(self):
        """Close every attached transport."""
        for serial, transport in list(self._transports.items()):
            try:
                await transport.close()
            except Exception as e:
                logger.error(f"Error closing transport for {serial}: {e}")
        self._transports.clear()
