"""Outbound commands and their acknowledgments."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Response statuses that mean the device took the command
ACCEPTED_STATUSES = frozenset({"Accepted", "AcceptedCanceled", "Unlocked", "Scheduled", "RebootRequired"})


class CommandAction(str, Enum):
    REMOTE_START_TRANSACTION = "RemoteStartTransaction"
    REMOTE_STOP_TRANSACTION = "RemoteStopTransaction"
    RESET = "Reset"
    UNLOCK_CONNECTOR = "UnlockConnector"
    CHANGE_CONFIGURATION = "ChangeConfiguration"
    UPDATE_FIRMWARE = "UpdateFirmware"
    GET_DIAGNOSTICS = "GetDiagnostics"
    SET_CHARGING_PROFILE = "SetChargingProfile"
    CHANGE_AVAILABILITY = "ChangeAvailability"
    CLEAR_CACHE = "ClearCache"
    TRIGGER_MESSAGE = "TriggerMessage"


class ResetType(str, Enum):
    HARD = "Hard"
    SOFT = "Soft"


# Device-initiated messages the central system can ask for via TriggerMessage
TRIGGERABLE_MESSAGES = frozenset(
    {
        "BootNotification",
        "Heartbeat",
        "MeterValues",
        "StatusNotification",
        "DiagnosticsStatusNotification",
        "FirmwareStatusNotification",
    }
)


@dataclass
class Command:
    """An instruction for one device, independent of the wire protocol."""

    action: CommandAction
    connector_id: Optional[int] = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def remote_start(
        cls, connector_id: int, id_tag: str, remote_start_id: int | None = None
    ) -> "Command":
        return cls(
            CommandAction.REMOTE_START_TRANSACTION,
            connector_id,
            {"id_tag": id_tag, "remote_start_id": remote_start_id},
        )

    @classmethod
    def remote_stop(cls, transaction_id, connector_id: int | None = None) -> "Command":
        return cls(
            CommandAction.REMOTE_STOP_TRANSACTION,
            connector_id,
            {"transaction_id": transaction_id},
        )

    @classmethod
    def reset(cls, reset_type: ResetType | str) -> "Command":
        return cls(CommandAction.RESET, None, {"type": ResetType(reset_type).value})

    @classmethod
    def unlock(cls, connector_id: int) -> "Command":
        return cls(CommandAction.UNLOCK_CONNECTOR, connector_id)

    @classmethod
    def change_configuration(cls, key: str, value: str) -> "Command":
        return cls(CommandAction.CHANGE_CONFIGURATION, None, {"key": key, "value": value})

    @classmethod
    def change_availability(cls, connector_id: int, availability: str) -> "Command":
        return cls(CommandAction.CHANGE_AVAILABILITY, connector_id, {"type": availability})

    @classmethod
    def clear_cache(cls) -> "Command":
        return cls(CommandAction.CLEAR_CACHE)

    @classmethod
    def update_firmware(cls, location: str, retrieve_date: str, retries: int | None = None) -> "Command":
        return cls(
            CommandAction.UPDATE_FIRMWARE,
            None,
            {"location": location, "retrieve_date": retrieve_date, "retries": retries},
        )

    @classmethod
    def get_diagnostics(cls, location: str) -> "Command":
        return cls(CommandAction.GET_DIAGNOSTICS, None, {"location": location})

    @classmethod
    def set_charging_profile(cls, connector_id: int, profile: dict) -> "Command":
        return cls(CommandAction.SET_CHARGING_PROFILE, connector_id, {"profile": profile})

    @classmethod
    def trigger(cls, message: str, connector_id: int | None = None) -> "Command":
        return cls(CommandAction.TRIGGER_MESSAGE, connector_id, {"requested_message": message})

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in self.params.items() if v is not None}
        if self.connector_id is not None:
            data["connector_id"] = self.connector_id
        return data


@dataclass
class Ack:
    """Acknowledgment payload returned by a device for a command."""

    action: str
    status: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        # Confirmations without a status field (ClearCache in 1.6 has one,
        # UpdateFirmware does not) count as acknowledged.
        return self.status is None or self.status in ACCEPTED_STATUSES
