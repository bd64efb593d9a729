"""HTTP status and command API (Starlette, served by uvicorn)."""

import json
import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .central import CentralSystem
from .errors import InvalidRequest, NoActiveSession, VoltlinkError
from .models import Command, Device, ResetType
from .models.command import TRIGGERABLE_MESSAGES

logger = logging.getLogger(__name__)

AVAILABILITY_TYPES = ("Operative", "Inoperative")


async def _body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise InvalidRequest("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return body


def _int_field(body: dict, name: str, default: int | None = None, required: bool = False) -> int | None:
    value = body.get(name)
    if value is None:
        if required:
            raise InvalidRequest(f"{name} is required")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"{name} must be an integer")


def _str_field(body: dict, name: str, required: bool = True) -> str | None:
    value = body.get(name)
    if value is None or value == "":
        if required:
            raise InvalidRequest(f"{name} is required")
        return None
    return str(value)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _connector_json(connector) -> dict:
    data = {
        "connectorId": connector.connector_id,
        "status": connector.status.value,
        "errorCode": connector.error_code,
        "advisory": connector.advisory,
        "updatedAt": _iso(connector.updated_at),
    }
    if connector.status_raw:
        data["statusRaw"] = connector.status_raw
    return data


class StatusAPI:
    """Request handlers bound to a running central system."""

    def __init__(self, central: CentralSystem):
        self.central = central

    async def _device_json(self, device: Device) -> dict:
        coordinator = self.central.coordinator
        activity = await self.central.registry.get_activity(device.serial)
        data = {
            "serial": device.serial,
            "name": device.name,
            "model": device.model,
            "firmwareVersion": device.firmware_version,
            "protocol": device.protocol,
            "status": device.status.value,
            "networkStatus": device.network_status.value,
            "lastSeen": _iso(device.last_seen_at),
            "activity": activity.value if activity else None,
            "connectors": [
                _connector_json(c) for _, c in sorted(device.connectors.items()) if c.connector_id
            ],
        }
        transaction_id = coordinator.active_transaction_id(device.serial)
        if transaction_id is not None:
            data["activeTransactionId"] = transaction_id
        return data

    async def health(self, request: Request):
        return JSONResponse({"ok": True})

    async def devices(self, request: Request):
        devices = await self.central.registry.list_devices()
        return JSONResponse([await self._device_json(d) for d in devices])

    async def status(self, request: Request):
        device = await self.central.registry.get_status(request.path_params["serial"])
        return JSONResponse(await self._device_json(device))

    async def start(self, request: Request):
        serial = request.path_params["serial"]
        body = await _body(request)
        amount = body.get("amount")
        if amount is not None:
            try:
                amount = float(amount)
            except (TypeError, ValueError):
                raise InvalidRequest("amount must be a number")

        session = await self.central.coordinator.start_session(
            serial,
            connector_id=_int_field(body, "connectorId", default=1),
            user_id=_str_field(body, "userId"),
            payment_method_id=_str_field(body, "paymentMethodId", required=False),
            amount=amount,
        )
        return JSONResponse({"success": True, "transactionId": session.id})

    async def stop(self, request: Request):
        serial = request.path_params["serial"]
        body = await _body(request)
        session = await self.central.coordinator.stop_session(
            serial, transaction_id=_int_field(body, "transactionId")
        )
        return JSONResponse(
            {
                "success": True,
                "transactionId": session.id,
                "totalEnergy": round(session.energy_kwh, 3),
                "cost": round(session.cost, 2),
            }
        )

    async def _execute(self, serial: str, command: Command):
        ack = await self.central.execute_command(serial, command)
        return JSONResponse({"success": True, "status": ack.status})

    async def reset(self, request: Request):
        body = await _body(request)
        try:
            reset_type = ResetType(body.get("type", ResetType.SOFT.value))
        except ValueError:
            raise InvalidRequest("type must be Hard or Soft")
        return await self._execute(request.path_params["serial"], Command.reset(reset_type))

    async def unlock(self, request: Request):
        body = await _body(request)
        connector_id = _int_field(body, "connectorId", required=True)
        return await self._execute(request.path_params["serial"], Command.unlock(connector_id))

    async def configure(self, request: Request):
        body = await _body(request)
        value = body.get("value")
        if value is None:
            raise InvalidRequest("value is required")
        command = Command.change_configuration(_str_field(body, "key"), str(value))
        return await self._execute(request.path_params["serial"], command)

    async def availability(self, request: Request):
        body = await _body(request)
        availability = body.get("type")
        if availability not in AVAILABILITY_TYPES:
            raise InvalidRequest("type must be Operative or Inoperative")
        command = Command.change_availability(
            _int_field(body, "connectorId", default=0), availability
        )
        return await self._execute(request.path_params["serial"], command)

    async def clear_cache(self, request: Request):
        return await self._execute(request.path_params["serial"], Command.clear_cache())

    async def trigger(self, request: Request):
        body = await _body(request)
        message = _str_field(body, "message")
        if message not in TRIGGERABLE_MESSAGES:
            raise InvalidRequest(f"message must be one of {', '.join(sorted(TRIGGERABLE_MESSAGES))}")
        command = Command.trigger(message, _int_field(body, "connectorId"))
        return await self._execute(request.path_params["serial"], command)

    async def active_session(self, request: Request):
        snapshot = self.central.coordinator.get_active_snapshot(request.path_params["serial"])
        return JSONResponse(snapshot.to_dict())

    async def telemetry(self, request: Request):
        """Last snapshot published for the device; observers poll this."""
        serial = request.path_params["serial"]
        snapshot = self.central.coordinator.feed.latest(serial)
        if snapshot is None:
            raise NoActiveSession(serial)
        return JSONResponse(snapshot.to_dict())


async def voltlink_error(request: Request, exc: VoltlinkError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app(central: CentralSystem, debug: bool = False) -> Starlette:
    api = StatusAPI(central)
    routes = [
        Route("/health", endpoint=api.health),
        Route("/devices", endpoint=api.devices),
        Route("/status/{serial}", endpoint=api.status),
        Route("/command/{serial}/start", endpoint=api.start, methods=["POST"]),
        Route("/command/{serial}/stop", endpoint=api.stop, methods=["POST"]),
        Route("/command/{serial}/reset", endpoint=api.reset, methods=["POST"]),
        Route("/command/{serial}/unlock", endpoint=api.unlock, methods=["POST"]),
        Route("/command/{serial}/configure", endpoint=api.configure, methods=["POST"]),
        Route("/command/{serial}/availability", endpoint=api.availability, methods=["POST"]),
        Route("/command/{serial}/clear-cache", endpoint=api.clear_cache, methods=["POST"]),
        Route("/command/{serial}/trigger", endpoint=api.trigger, methods=["POST"]),
        Route("/session/{serial}/active", endpoint=api.active_session),
        Route("/session/{serial}/telemetry", endpoint=api.telemetry),
    ]
    return Starlette(
        debug=debug,
        routes=routes,
        exception_handlers={VoltlinkError: voltlink_error},
    )
