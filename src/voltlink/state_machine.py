"""Per-connector protocol state machine."""

import logging

from .errors import ConnectorUnavailable
from .models import Ack, Command, CommandAction, Connector, ConnectorStatus, ReportedStatus
from .registry import DeviceRegistry

logger = logging.getLogger(__name__)

S = ConnectorStatus

# States reachable from anywhere
ANY_STATE_TARGETS = frozenset({S.FAULTED, S.UNAVAILABLE, S.RESERVED})

# Expected transitions. Reports outside this table are still applied but logged.
TRANSITIONS: dict[ConnectorStatus, frozenset[ConnectorStatus]] = {
    S.AVAILABLE: frozenset({S.PREPARING, S.CHARGING}),
    S.PREPARING: frozenset({S.CHARGING, S.AVAILABLE, S.FINISHING, S.SUSPENDED_EV, S.SUSPENDED_EVSE}),
    S.CHARGING: frozenset({S.SUSPENDED_EV, S.SUSPENDED_EVSE, S.FINISHING, S.AVAILABLE}),
    S.SUSPENDED_EV: frozenset({S.CHARGING, S.SUSPENDED_EVSE, S.FINISHING, S.AVAILABLE}),
    S.SUSPENDED_EVSE: frozenset({S.CHARGING, S.SUSPENDED_EV, S.FINISHING, S.AVAILABLE}),
    S.FINISHING: frozenset({S.AVAILABLE, S.PREPARING}),
    S.RESERVED: frozenset({S.AVAILABLE, S.PREPARING}),
    S.UNAVAILABLE: frozenset({S.AVAILABLE, S.PREPARING}),
    S.FAULTED: frozenset({S.AVAILABLE, S.PREPARING, S.CHARGING, S.SUSPENDED_EV, S.SUSPENDED_EVSE, S.FINISHING}),
}

# Connector states that block a RemoteStart
START_BLOCKING = frozenset({S.CHARGING, S.FAULTED, S.UNAVAILABLE})

DEFAULT_CONNECTOR_ID = 1


def is_expected_transition(previous: ReportedStatus, current: ReportedStatus) -> bool:
    if previous == current:
        return True
    if not previous.is_known or not current.is_known:
        return False
    if current in ANY_STATE_TARGETS:
        return True
    return current in TRANSITIONS.get(previous, frozenset())


class ProtocolStateMachine:
    """
    Tracks connector status per device on top of the registry.

    The device is the source of truth: authoritative reports always overwrite
    the current status. Optimistic values inferred from sent commands are
    stored as advisory and replaced by the next report.
    """

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry
        # Count of reports applied per (serial, connector)
        self._report_seq: dict[tuple[str, int | None], int] = {}

    async def apply_report(
        self,
        serial: str,
        connector_id: int,
        status,
        error_code: str = "",
        info: str | None = None,
    ) -> Connector:
        """Apply a StatusNotification. Raises DeviceNotFound for unknown serials."""
        previous = await self.registry.get_connector_status(serial, connector_id)
        connector = await self.registry.update_status(
            serial, connector_id, status, error_code=error_code, info=info
        )
        key = (serial, connector_id)
        self._report_seq[key] = self._report_seq.get(key, 0) + 1
        current = connector.status

        if not current.is_known:
            logger.warning(
                f"Unrecognized status {current.raw!r} on {serial} connector {connector_id}, "
                f"stored as {current.value}"
            )
        elif not is_expected_transition(previous, current):
            logger.warning(
                f"Unexpected transition on {serial} connector {connector_id}: "
                f"{previous.value} -> {current.value}"
            )
        return connector

    async def apply_optimistic(self, serial: str, connector_id: int, status: ConnectorStatus) -> Connector:
        """Record a locally inferred status; the next device report overrides it."""
        return await self.registry.update_status(serial, connector_id, status, advisory=True)

    async def check_command(self, serial: str, command: Command):
        """
        Validate command preconditions against the current connector status.

        Never mutates state. Raises ConnectorUnavailable when a RemoteStart
        targets a connector that is charging, faulted or unavailable.
        """
        if command.action != CommandAction.REMOTE_START_TRANSACTION:
            return

        connector_id = command.connector_id or DEFAULT_CONNECTOR_ID
        status = await self.registry.get_connector_status(serial, connector_id)
        if status in START_BLOCKING:
            raise ConnectorUnavailable(serial, connector_id, status.value)

    @staticmethod
    def _target_connector(command: Command) -> int | None:
        if command.action == CommandAction.REMOTE_START_TRANSACTION:
            return command.connector_id or DEFAULT_CONNECTOR_ID
        return command.connector_id

    def report_marker(self, serial: str, command: Command) -> int:
        """Position in the report stream of the connector a command targets."""
        return self._report_seq.get((serial, self._target_connector(command)), 0)

    async def apply_command_result(
        self, serial: str, command: Command, ack: Ack, since: int | None = None
    ) -> Connector | None:
        """
        Apply the optimistic effect of an acknowledged command.

        ``since`` is the report_marker taken before the command was sent. When
        the device reported the connector in the meantime, its report stands
        and nothing is written.
        """
        if not ack.accepted:
            return None
        if since is not None and self.report_marker(serial, command) != since:
            logger.debug(
                f"Skipping optimistic {command.action.value} status on {serial}: "
                f"connector reported while the command was in flight"
            )
            return None

        connector_id = command.connector_id
        if command.action == CommandAction.REMOTE_START_TRANSACTION:
            return await self.apply_optimistic(serial, connector_id or DEFAULT_CONNECTOR_ID, S.PREPARING)
        if command.action == CommandAction.REMOTE_STOP_TRANSACTION and connector_id is not None:
            return await self.apply_optimistic(serial, connector_id, S.FINISHING)
        if command.action == CommandAction.CHANGE_AVAILABILITY and connector_id is not None:
            target = S.UNAVAILABLE if command.params.get("type") == "Inoperative" else S.AVAILABLE
            return await self.apply_optimistic(serial, connector_id, target)
        return None
