"""Map protocol-independent commands onto OCPP 1.6 / 2.0.1 requests."""

import dataclasses
from enum import Enum
from typing import Any

from ocpp.v16 import call as call_v16
from ocpp.v201 import call as call_v201

from ..errors import InvalidRequest
from ..models import Ack, Command, CommandAction

OCPP16 = "ocpp1.6"
OCPP201 = "ocpp2.0.1"

RESET_TYPES_V201 = {"Hard": "Immediate", "Soft": "OnIdle"}
TRIGGER_MESSAGES_V201 = {"DiagnosticsStatusNotification": "LogStatusNotification"}

# Component used for ChangeConfiguration keys without an explicit "Component.Variable" form
DEFAULT_COMPONENT_V201 = "OCPPCommCtrlr"


def build_v16_request(command: Command):
    p = command.params
    action = command.action

    if action == CommandAction.REMOTE_START_TRANSACTION:
        return call_v16.RemoteStartTransaction(id_tag=p["id_tag"], connector_id=command.connector_id)
    if action == CommandAction.REMOTE_STOP_TRANSACTION:
        return call_v16.RemoteStopTransaction(transaction_id=int(p["transaction_id"]))
    if action == CommandAction.RESET:
        return call_v16.Reset(type=p["type"])
    if action == CommandAction.UNLOCK_CONNECTOR:
        return call_v16.UnlockConnector(connector_id=command.connector_id)
    if action == CommandAction.CHANGE_CONFIGURATION:
        return call_v16.ChangeConfiguration(key=p["key"], value=str(p["value"]))
    if action == CommandAction.UPDATE_FIRMWARE:
        return call_v16.UpdateFirmware(
            location=p["location"], retrieve_date=p["retrieve_date"], retries=p.get("retries")
        )
    if action == CommandAction.GET_DIAGNOSTICS:
        return call_v16.GetDiagnostics(location=p["location"])
    if action == CommandAction.SET_CHARGING_PROFILE:
        return call_v16.SetChargingProfile(
            connector_id=command.connector_id, cs_charging_profiles=p["profile"]
        )
    if action == CommandAction.CHANGE_AVAILABILITY:
        return call_v16.ChangeAvailability(connector_id=command.connector_id, type=p["type"])
    if action == CommandAction.CLEAR_CACHE:
        return call_v16.ClearCache()
    if action == CommandAction.TRIGGER_MESSAGE:
        return call_v16.TriggerMessage(
            requested_message=p["requested_message"], connector_id=command.connector_id
        )
    raise InvalidRequest(f"Unsupported command {action}")


def _split_configuration_key(key: str) -> tuple[str, str]:
    if "." in key:
        component, variable = key.split(".", 1)
        return component, variable
    return DEFAULT_COMPONENT_V201, key


def build_v201_request(command: Command, request_id: int = 1):
    p = command.params
    action = command.action
    evse = {"id": command.connector_id} if command.connector_id else None

    if action == CommandAction.REMOTE_START_TRANSACTION:
        return call_v201.RequestStartTransaction(
            id_token={"id_token": p["id_tag"], "type": "Central"},
            remote_start_id=p.get("remote_start_id") or request_id,
            evse_id=command.connector_id,
        )
    if action == CommandAction.REMOTE_STOP_TRANSACTION:
        return call_v201.RequestStopTransaction(transaction_id=str(p["transaction_id"]))
    if action == CommandAction.RESET:
        return call_v201.Reset(type=RESET_TYPES_V201[p["type"]])
    if action == CommandAction.UNLOCK_CONNECTOR:
        return call_v201.UnlockConnector(evse_id=command.connector_id, connector_id=1)
    if action == CommandAction.CHANGE_CONFIGURATION:
        component, variable = _split_configuration_key(p["key"])
        return call_v201.SetVariables(
            set_variable_data=[
                {
                    "attribute_value": str(p["value"]),
                    "component": {"name": component},
                    "variable": {"name": variable},
                }
            ]
        )
    if action == CommandAction.UPDATE_FIRMWARE:
        return call_v201.UpdateFirmware(
            request_id=request_id,
            firmware={"location": p["location"], "retrieve_date_time": p["retrieve_date"]},
            retries=p.get("retries"),
        )
    if action == CommandAction.GET_DIAGNOSTICS:
        return call_v201.GetLog(
            log={"remote_location": p["location"]},
            log_type="DiagnosticsLog",
            request_id=request_id,
        )
    if action == CommandAction.SET_CHARGING_PROFILE:
        return call_v201.SetChargingProfile(
            evse_id=command.connector_id or 0, charging_profile=p["profile"]
        )
    if action == CommandAction.CHANGE_AVAILABILITY:
        return call_v201.ChangeAvailability(operational_status=p["type"], evse=evse)
    if action == CommandAction.CLEAR_CACHE:
        return call_v201.ClearCache()
    if action == CommandAction.TRIGGER_MESSAGE:
        message = p["requested_message"]
        return call_v201.TriggerMessage(
            requested_message=TRIGGER_MESSAGES_V201.get(message, message), evse=evse
        )
    raise InvalidRequest(f"Unsupported command {action}")


def build_request(protocol: str, command: Command, request_id: int = 1):
    if protocol == OCPP201:
        return build_v201_request(command, request_id)
    return build_v16_request(command)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def response_to_ack(command: Command, response) -> Ack:
    """Convert a call_result payload into an Ack."""
    if dataclasses.is_dataclass(response):
        payload = {k: _plain(v) for k, v in dataclasses.asdict(response).items() if v is not None}
    else:
        payload = dict(response or {})

    status = payload.get("status")
    # SetVariables answers per variable
    if status is None and payload.get("set_variable_result"):
        status = payload["set_variable_result"][0].get("attribute_status")

    return Ack(action=command.action.value, status=_plain(status), payload=payload)
