"""Error taxonomy for the central system.

Every error carries a stable ``code``, the HTTP status the API answers with,
and whether the caller may retry the same request.
"""


class VoltlinkError(Exception):
    """Base class for all errors raised by the central system."""

    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        data = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        data.update({k: v for k, v in self.details.items() if v is not None})
        return data


class InvalidRequest(VoltlinkError):
    code = "invalid_request"
    status_code = 400


class DeviceNotFound(VoltlinkError):
    code = "device_not_found"
    status_code = 404

    def __init__(self, serial: str):
        super().__init__(f"Device {serial} not found", serial=serial)
        self.serial = serial


class DeviceOffline(VoltlinkError):
    code = "device_offline"
    status_code = 409

    def __init__(self, serial: str):
        super().__init__(f"Device {serial} is not connected", serial=serial)
        self.serial = serial


class CommandTimeout(VoltlinkError):
    """Command was sent but not acknowledged before the deadline."""

    code = "command_timeout"
    status_code = 504
    retryable = True

    def __init__(self, serial: str, action: str, timeout: float):
        super().__init__(
            f"{action} to {serial} was not acknowledged within {timeout:g}s",
            serial=serial,
            action=action,
        )
        self.serial = serial
        self.action = action
        self.timeout = timeout


class CommandRejected(VoltlinkError):
    """Device answered, but refused the command or replied with a CALLERROR."""

    code = "command_rejected"
    status_code = 409

    def __init__(self, serial: str, action: str, status: str | None = None, reason: str = ""):
        message = f"{action} rejected by {serial}"
        if status:
            message += f" (status={status})"
        if reason:
            message += f": {reason}"
        super().__init__(message, serial=serial, action=action, status=status)
        self.serial = serial
        self.action = action
        self.status = status


class ConnectorUnavailable(VoltlinkError):
    code = "connector_unavailable"
    status_code = 409

    def __init__(self, serial: str, connector_id: int, status: str):
        super().__init__(
            f"Connector {connector_id} on {serial} is {status}",
            serial=serial,
            connector_id=connector_id,
            status=status,
        )
        self.status = status


class SessionAlreadyActive(VoltlinkError):
    code = "session_already_active"
    status_code = 409

    def __init__(self, serial: str, connector_id: int, transaction_id: int | None):
        super().__init__(
            f"Connector {connector_id} on {serial} already has an open session",
            serial=serial,
            connector_id=connector_id,
            transaction_id=transaction_id,
        )


class NoActiveSession(VoltlinkError):
    code = "no_active_session"
    status_code = 404

    def __init__(self, serial: str, transaction_id: int | None = None):
        super().__init__(
            "No active session found to update",
            serial=serial,
            transaction_id=transaction_id,
        )
        self.serial = serial


class PaymentDeclined(VoltlinkError):
    code = "payment_declined"
    status_code = 402

    def __init__(self, reason: str = ""):
        super().__init__(f"Payment pre-authorization failed{': ' + reason if reason else ''}")
