"""Session coordinator: charging session lifecycle, metering and billing handoff."""

import asyncio
import logging
import sqlite3
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import count
from typing import Optional

import aiosqlite

from .auto_stop import AutoStopMonitor, AutoStopPolicy
from .errors import (
    CommandRejected,
    DeviceOffline,
    NoActiveSession,
    SessionAlreadyActive,
    VoltlinkError,
)
from .gateway import ConnectionGateway, MeterFrame, TransactionStartedFrame, TransactionStoppedFrame
from .logging_utils import log_error, log_session_event
from .models import Ack, ChargingSession, Command, SessionSnapshot, SessionState, as_utc, utcnow
from .payments import AcceptAllAuthorizer, PaymentAuthorizer, require_pre_authorization
from .registry import DeviceRegistry
from .repositories import MeterValueRepository, SessionRepository
from .state_machine import ProtocolStateMachine

logger = logging.getLogger(__name__)

AUTO_STOP_REASON = "AutoStop"

# How long a timed-out RemoteStart may still be claimed by a late StartTransaction
PENDING_START_TTL = timedelta(minutes=2)


@dataclass
class CommandRetryPolicy:
    """How often a retryable command failure is retried, and how long to wait in between."""

    attempts: int = 1
    backoff_seconds: float = 1.0


@dataclass
class PendingStart:
    serial: str
    connector_id: int
    user_id: str
    payment_intent_id: Optional[str]
    remote_start_id: int
    created_at: datetime
    session: Optional[ChargingSession] = None


@dataclass
class TelemetryFeed:
    """Latest snapshot per device."""

    _latest: dict[str, SessionSnapshot] = field(default_factory=dict)

    def publish(self, snapshot: SessionSnapshot):
        self._latest[snapshot.serial] = snapshot

    def latest(self, serial: str) -> SessionSnapshot | None:
        return self._latest.get(serial)

    def clear(self, serial: str, transaction_id: int):
        snapshot = self._latest.get(serial)
        if snapshot is not None and snapshot.transaction_id == transaction_id:
            del self._latest[serial]


class SessionCoordinator:
    """
    Owns charging sessions and their metering and cost fields.

    Start and stop requests for one device are serialized by an operation
    lock held across the command round trip. Writes to the session slot
    (telemetry, device-initiated start/stop, close) take a short write lock
    that is never held while waiting on the network, so frames from the
    device are never blocked by a pending command.
    """

    def __init__(
        self,
        db_connection: aiosqlite.Connection,
        registry: DeviceRegistry,
        gateway: ConnectionGateway,
        state_machine: ProtocolStateMachine,
        payments: PaymentAuthorizer | None = None,
        rate_per_kwh: float = 0.30,
        preauth_amount: float = 20.0,
        retry_policy: CommandRetryPolicy | None = None,
        auto_stop_policy: AutoStopPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_repo = SessionRepository(db_connection)
        self.meter_repo = MeterValueRepository(db_connection)
        self.registry = registry
        self.gateway = gateway
        self.state_machine = state_machine
        self.payments = payments or AcceptAllAuthorizer()
        self.rate_per_kwh = rate_per_kwh
        self.preauth_amount = preauth_amount
        self.retry_policy = retry_policy or CommandRetryPolicy()
        self.auto_stop = AutoStopMonitor(auto_stop_policy or AutoStopPolicy())
        self.feed = TelemetryFeed()
        self.clock = clock

        self._active: dict[int, ChargingSession] = {}
        self._pending_starts: dict[tuple[str, int], PendingStart] = {}
        self._op_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._write_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._remote_start_ids = count(int(clock().timestamp()) % 1_000_000)
        self._tasks: set[asyncio.Task] = set()

    # Lookups

    def _open_session(self, serial: str, connector_id: int) -> ChargingSession | None:
        for session in self._active.values():
            if session.serial == serial and session.connector_id == connector_id:
                return session
        return None

    def _latest_open(self, serial: str) -> ChargingSession | None:
        sessions = [s for s in self._active.values() if s.serial == serial]
        return max(sessions, key=lambda s: s.id) if sessions else None

    def _by_device_transaction(self, serial: str, device_transaction_id: str) -> ChargingSession | None:
        for session in self._active.values():
            if session.serial == serial and session.device_transaction_id == device_transaction_id:
                return session
        return None

    def active_sessions(self, serial: str | None = None) -> list[ChargingSession]:
        return sorted(
            (s for s in self._active.values() if serial is None or s.serial == serial),
            key=lambda s: s.id,
        )

    def _pending_start(self, serial: str, connector_id: int, remote_start_id: int | None) -> PendingStart | None:
        now = self.clock()
        for key, pending in list(self._pending_starts.items()):
            if now - pending.created_at > PENDING_START_TTL:
                del self._pending_starts[key]

        if remote_start_id is not None:
            for pending in self._pending_starts.values():
                if pending.serial == serial and pending.remote_start_id == remote_start_id:
                    return pending
        return self._pending_starts.get((serial, connector_id))

    def _snapshot(self, session: ChargingSession, now: datetime) -> SessionSnapshot:
        elapsed = (now - session.start_time).total_seconds() if session.start_time else 0
        return SessionSnapshot(
            transaction_id=session.id,
            serial=session.serial,
            connector_id=session.connector_id,
            state=session.state.value,
            total_energy=round(session.energy_kwh, 3),
            current_power=session.current_power_w,
            peak_power=session.power_peak_w,
            estimated_cost=round(session.cost, 2),
            elapsed_seconds=max(0, int(elapsed)),
        )

    # Commands

    async def _send(self, serial: str, command: Command) -> Ack:
        """Send with the configured retry policy; only retryable failures are retried."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.gateway.send(serial, command)
            except VoltlinkError as e:
                if not e.retryable or attempt >= self.retry_policy.attempts:
                    raise
                logger.info(
                    f"Retrying {command.action.value} to {serial} "
                    f"(attempt {attempt + 1}/{self.retry_policy.attempts})"
                )
                await asyncio.sleep(self.retry_policy.backoff_seconds * attempt)

    async def _create_session(
        self,
        serial: str,
        connector_id: int,
        user_id: str,
        payment_intent_id: str | None = None,
        remote_start_id: int | None = None,
        device_transaction_id: str | None = None,
        meter_start_wh: float = 0.0,
        start_time: datetime | None = None,
    ) -> ChargingSession:
        session = ChargingSession(
            serial=serial,
            connector_id=connector_id,
            user_id=user_id,
            payment_intent_id=payment_intent_id,
            state=SessionState.ACTIVE,
            start_time=as_utc(start_time) if start_time else self.clock(),
            meter_start_wh=meter_start_wh,
            rate_per_kwh=self.rate_per_kwh,
            remote_start_id=remote_start_id,
            device_transaction_id=device_transaction_id,
        )
        try:
            session = await self.session_repo.create(session)
        except sqlite3.IntegrityError:
            # Another open session on this connector exists in storage
            existing = await self.session_repo.get_open_for_connector(serial, connector_id)
            if existing is None:
                raise
            session = existing

        snapshot = self._snapshot(session, self.clock())
        self._active[session.id] = session
        self.feed.publish(snapshot)
        return session

    async def start_session(
        self,
        serial: str,
        connector_id: int = 1,
        user_id: str = "",
        payment_method_id: str | None = None,
        amount: float | None = None,
    ) -> ChargingSession:
        """
        Start a charging session with a RemoteStart.

        The session row is created only once the device acknowledged. A retry
        by the same user while their session is open returns that session.
        """
        device = await self.registry.get_status(serial)
        if not device.is_online or not self.gateway.is_connected(serial):
            raise DeviceOffline(serial)

        async with self._op_locks[serial]:
            existing = self._open_session(serial, connector_id)
            if existing is not None:
                if existing.user_id == user_id:
                    return existing
                raise SessionAlreadyActive(serial, connector_id, existing.id)

            remote_start_id = next(self._remote_start_ids)
            command = Command.remote_start(connector_id, user_id, remote_start_id)
            await self.state_machine.check_command(serial, command)

            preauth = await require_pre_authorization(
                self.payments, amount or self.preauth_amount, payment_method_id
            )

            key = (serial, connector_id)
            pending = PendingStart(
                serial=serial,
                connector_id=connector_id,
                user_id=user_id,
                payment_intent_id=preauth.payment_intent_id,
                remote_start_id=remote_start_id,
                created_at=self.clock(),
            )
            self._pending_starts[key] = pending

            marker = self.state_machine.report_marker(serial, command)
            try:
                ack = await self._send(serial, command)
            except VoltlinkError as e:
                if e.retryable:
                    # Left pending: a late StartTransaction still binds it
                    log_session_event(logger, "start_pending", serial, connector_id=connector_id)
                else:
                    self._pending_starts.pop(key, None)
                raise

            if not ack.accepted:
                self._pending_starts.pop(key, None)
                raise CommandRejected(serial, command.action.value, status=ack.status)

            await self.state_machine.apply_command_result(serial, command, ack, since=marker)

            async with self._write_locks[serial]:
                self._pending_starts.pop(key, None)
                session = pending.session or self._open_session(serial, connector_id)
                if session is None:
                    session = await self._create_session(
                        serial,
                        connector_id,
                        user_id,
                        payment_intent_id=preauth.payment_intent_id,
                        remote_start_id=remote_start_id,
                    )

        log_session_event(
            logger, "started", serial, session.id, connector_id=connector_id, user_id=user_id
        )
        return session

    async def stop_session(
        self, serial: str, transaction_id: int | None = None, reason: str = "Remote"
    ) -> ChargingSession:
        """
        Stop a session with a RemoteStop.

        Targets the given open session, or the most recently opened open
        session of the device. A timeout marks the session pending_stop.
        """
        await self.registry.get_status(serial)

        async with self._op_locks[serial]:
            if transaction_id is not None:
                session = self._active.get(int(transaction_id))
                if session is not None and session.serial != serial:
                    session = None
            else:
                session = self._latest_open(serial)
            if session is None:
                raise NoActiveSession(serial, transaction_id)

            if not self.gateway.is_connected(serial):
                raise DeviceOffline(serial)

            command = Command.remote_stop(
                session.device_transaction_id or session.id, session.connector_id
            )
            marker = self.state_machine.report_marker(serial, command)
            try:
                ack = await self._send(serial, command)
            except VoltlinkError as e:
                if e.retryable:
                    async with self._write_locks[serial]:
                        if session.id in self._active:
                            session.state = SessionState.PENDING_STOP
                            await self.session_repo.set_state(session.id, session.state)
                    log_session_event(logger, "stop_pending", serial, session.id)
                raise

            if not ack.accepted:
                raise CommandRejected(serial, command.action.value, status=ack.status)

            await self.state_machine.apply_command_result(serial, command, ack, since=marker)
            return await self._close(session, reason)

    async def _close(
        self,
        session: ChargingSession,
        reason: str,
        at: datetime | None = None,
        meter_stop_wh: float | None = None,
    ) -> ChargingSession:
        """Close an open session and hand it to billing. Closing twice is a no-op."""
        async with self._write_locks[session.serial]:
            if session.id not in self._active:
                return await self.session_repo.get_by_id(session.id) or session

            if meter_stop_wh is not None and meter_stop_wh >= session.meter_start_wh:
                session.energy_kwh = max(
                    session.energy_kwh, (meter_stop_wh - session.meter_start_wh) / 1000
                )
            session.cost = session.energy_kwh * session.rate_per_kwh
            session.end_time = at or self.clock()
            session.state = SessionState.COMPLETED
            session.stop_reason = reason
            await self.session_repo.close(session)

            del self._active[session.id]
            self.feed.clear(session.serial, session.id)
            self.auto_stop.forget(session.id)

        log_session_event(
            logger,
            "stopped",
            session.serial,
            session.id,
            reason=reason,
            energy_kwh=round(session.energy_kwh, 3),
            cost=round(session.cost, 2),
        )
        await self._hand_off_billing(session)
        return session

    async def _hand_off_billing(self, session: ChargingSession):
        if not session.payment_intent_id:
            return
        try:
            await self.payments.capture(session.payment_intent_id, session.cost)
        except Exception as e:
            log_error(
                logger,
                "billing_handoff_error",
                f"Capture handoff failed for session {session.id}: {e}",
                cp_id=session.serial,
                transaction_id=session.id,
                exc_info=e,
            )

    # Telemetry

    async def record_telemetry(
        self,
        serial: str,
        energy_kwh: float | None,
        power_w: float | None,
        connector_id: int | None = None,
        at: datetime | None = None,
        session_id: int | None = None,
    ) -> SessionSnapshot | None:
        """
        Update the active session's energy, power, peak and cost.

        Returns the new snapshot, or None when no session is open.
        """
        at = as_utc(at) if at else self.clock()
        async with self._write_locks[serial]:
            if session_id is not None:
                session = self._active.get(session_id)
            elif connector_id:
                session = self._open_session(serial, connector_id)
            else:
                session = self._latest_open(serial)
            if session is None:
                logger.debug(f"Telemetry from {serial} without an open session")
                return None

            if energy_kwh is not None:
                session.energy_kwh = max(0.0, energy_kwh)
            if power_w is not None:
                session.current_power_w = power_w
                session.power_peak_w = max(session.power_peak_w, power_w)
            session.cost = session.energy_kwh * session.rate_per_kwh
            session.last_meter_at = at
            await self.session_repo.update_telemetry(session)

            snapshot = self._snapshot(session, at)
            self.feed.publish(snapshot)

        if power_w is not None and self.auto_stop.observe(session.id, power_w, snapshot.elapsed_seconds):
            log_session_event(
                logger, "auto_stop", serial, session.id, elapsed_seconds=snapshot.elapsed_seconds
            )
            task = asyncio.create_task(self._auto_stop(serial, session.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return snapshot

    async def _auto_stop(self, serial: str, session_id: int):
        try:
            await self.stop_session(serial, session_id, reason=AUTO_STOP_REASON)
        except VoltlinkError as e:
            logger.warning(f"Auto-stop of session {session_id} on {serial} failed: {e.message}")
        except Exception as e:
            log_error(
                logger,
                "auto_stop_error",
                f"Auto-stop of session {session_id} failed: {e}",
                cp_id=serial,
                transaction_id=session_id,
                exc_info=e,
            )

    def _session_for_frame(self, frame: MeterFrame) -> ChargingSession | None:
        if frame.transaction_id is not None:
            session = self._by_device_transaction(frame.serial, frame.transaction_id)
            if session is None and frame.transaction_id.isdigit():
                session = self._active.get(int(frame.transaction_id))
            if session is not None and session.serial == frame.serial:
                return session
        if frame.connector_id:
            return self._open_session(frame.serial, frame.connector_id)
        return self._latest_open(frame.serial)

    async def ingest_meter_frame(self, frame: MeterFrame) -> SessionSnapshot | None:
        """Persist the samples of a meter frame and apply its readings to the open session."""
        session = self._session_for_frame(frame)
        session_id = session.id if session else None
        for sample in frame.samples:
            sample.session_id = session_id
        await self.meter_repo.create_batch(frame.samples)

        if session is None or (frame.energy_wh is None and frame.power_w is None):
            return None

        energy_kwh = None
        if frame.energy_wh is not None:
            if frame.energy_wh >= session.meter_start_wh:
                energy_kwh = (frame.energy_wh - session.meter_start_wh) / 1000
            else:
                energy_kwh = frame.energy_wh / 1000
        return await self.record_telemetry(
            frame.serial, energy_kwh, frame.power_w, at=frame.timestamp, session_id=session.id
        )

    async def set_final_energy(
        self, serial: str, energy_kwh: float, power_peak_w: float
    ) -> ChargingSession | None:
        """Write final energy and peak into the device's most recent open session."""
        async with self._write_locks[serial]:
            session = await self.session_repo.set_final_energy(serial, energy_kwh, power_peak_w)
            if session is None:
                logger.warning(f"No active session found to update for {serial}")
                return None

            cached = self._active.get(session.id)
            if cached is not None:
                cached.energy_kwh = session.energy_kwh
                cached.power_peak_w = session.power_peak_w
                cached.cost = session.cost
                self.feed.publish(self._snapshot(cached, self.clock()))

        log_session_event(
            logger, "final_energy", serial, session.id, energy_kwh=energy_kwh, peak_w=power_peak_w
        )
        return session

    # Device-initiated transactions

    async def bind_device_transaction(self, frame: TransactionStartedFrame) -> ChargingSession:
        """
        Reconcile a StartTransaction / TransactionEvent(Started) from the device.

        Binds to the session already open on the connector, or to a pending
        RemoteStart, or opens a new session for a locally started charge.
        Duplicates return the same session.
        """
        serial = frame.serial
        await self.registry.get_status(serial)

        async with self._write_locks[serial]:
            if frame.device_transaction_id:
                known = await self.session_repo.get_by_device_transaction_id(
                    serial, frame.device_transaction_id
                )
                if known is not None and not known.is_open:
                    logger.info(
                        f"Ignoring late start of finished transaction {frame.device_transaction_id} on {serial}"
                    )
                    return known

            pending = self._pending_start(serial, frame.connector_id, frame.remote_start_id)
            connector_id = pending.connector_id if pending else frame.connector_id

            session = self._open_session(serial, connector_id)
            if session is not None:
                changed = False
                if frame.device_transaction_id and not session.device_transaction_id:
                    session.device_transaction_id = frame.device_transaction_id
                    changed = True
                if frame.meter_start_wh and not session.meter_start_wh:
                    session.meter_start_wh = frame.meter_start_wh
                    changed = True
                if changed:
                    await self.session_repo.update_device_binding(session)
                return session

            if pending is not None:
                session = await self._create_session(
                    serial,
                    connector_id,
                    pending.user_id,
                    payment_intent_id=pending.payment_intent_id,
                    remote_start_id=pending.remote_start_id,
                    device_transaction_id=frame.device_transaction_id,
                    meter_start_wh=frame.meter_start_wh,
                    start_time=frame.timestamp,
                )
                # A start_session still waiting on the ack picks the session up from here
                pending.session = session
                if self._pending_starts.get((serial, connector_id)) is pending:
                    del self._pending_starts[(serial, connector_id)]
            else:
                session = await self._create_session(
                    serial,
                    connector_id,
                    frame.id_tag,
                    device_transaction_id=frame.device_transaction_id,
                    meter_start_wh=frame.meter_start_wh,
                    start_time=frame.timestamp,
                )

        log_session_event(
            logger, "started", serial, session.id, connector_id=connector_id, source="device"
        )
        return session

    async def close_device_transaction(self, frame: TransactionStoppedFrame) -> ChargingSession | None:
        """Reconcile a StopTransaction / TransactionEvent(Ended). Unknown or closed transactions are ignored."""
        session = None
        if frame.device_transaction_id:
            session = self._by_device_transaction(frame.serial, frame.device_transaction_id)
        elif frame.transaction_id is not None:
            session = self._active.get(int(frame.transaction_id))

        if session is None or session.serial != frame.serial:
            logger.info(
                f"Ignoring stop of unknown or finished transaction "
                f"{frame.device_transaction_id or frame.transaction_id} on {frame.serial}"
            )
            return None

        return await self._close(
            session, frame.reason or "Local", at=frame.timestamp, meter_stop_wh=frame.meter_stop_wh
        )

    # Reads

    def get_active_snapshot(self, serial: str) -> SessionSnapshot:
        """Live snapshot of the device's most recent open session, from memory."""
        session = self._latest_open(serial)
        if session is None:
            raise NoActiveSession(serial)
        return self._snapshot(session, self.clock())

    def active_transaction_id(self, serial: str) -> int | None:
        session = self._latest_open(serial)
        return session.id if session else None

    # Lifecycle

    async def restore(self) -> int:
        """Reload open sessions from storage."""
        for session in await self.session_repo.get_all_open():
            self._active[session.id] = session
            self.feed.publish(self._snapshot(session, self.clock()))
        if self._active:
            logger.info(f"Restored {len(self._active)} open session(s)")
        return len(self._active)

    async def drain(self):
        """Wait for background auto-stop tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
