"""WebSocket server for OCPP charge point connections."""

import asyncio
import logging
from collections.abc import Callable

import websockets
from prometheus_client import start_http_server
from websockets.asyncio.server import ServerConnection

from .central import CentralSystem
from .gateway import OCPP16, OCPP201
from .handlers import VoltlinkChargePoint, VoltlinkChargePointV201
from .logging_utils import log_error, log_websocket_event
from .plugins import ChargePointPlugin

logger = logging.getLogger(__name__)

SUBPROTOCOLS = [OCPP201, OCPP16]
PATH_PREFIXES = ("ocpp", "ws")

HANDLERS = {
    OCPP16: VoltlinkChargePoint,
    OCPP201: VoltlinkChargePointV201,
}


def parse_serial(path: str) -> str | None:
    """Extract the serial from /ocpp/{serial} or /ws/{serial}."""
    path_parts = path.split("?", 1)[0].strip("/").split("/")
    if len(path_parts) != 2 or path_parts[0] not in PATH_PREFIXES:
        return None
    return path_parts[1] or None


class OCPPServer:
    """
    OCPP WebSocket server that manages charge point connections.

    The server accepts connections at /ocpp/{serial} (or /ws/{serial}),
    negotiates ocpp2.0.1 or ocpp1.6 and creates the matching handler. The
    handler is attached to the central system's gateway for the lifetime of
    the connection.
    """

    def __init__(
        self,
        central: CentralSystem,
        host: str = "0.0.0.0",
        port: int = 9000,
        metrics_port: int | None = None,
        plugin_factory: Callable[[], list[ChargePointPlugin]] | None = None,
        ping_interval: int | None = 20,
        heartbeat_interval: int = 40,
    ):
        self.central = central
        self.host = host
        self.port = port
        self.metrics_port = metrics_port
        self.plugin_factory = plugin_factory or list
        self.ping_interval = ping_interval
        self.heartbeat_interval = heartbeat_interval
        self.charge_points: dict[str, VoltlinkChargePoint | VoltlinkChargePointV201] = {}
        self._server = None

    async def on_connect(self, connection: ServerConnection):
        """
        Handle new WebSocket connection.

        Extracts the serial from the URL path and runs the protocol handler
        until the connection closes.
        """
        serial = parse_serial(connection.request.path)
        if serial is None:
            logger.warning(
                f"Invalid connection path: {connection.request.path}. "
                "Expected format: /ocpp/{{serial}}"
            )
            await connection.close(1002, "Invalid path format")
            return

        protocol = connection.subprotocol or OCPP16
        handler_class = HANDLERS.get(protocol)
        if handler_class is None:
            logger.warning(f"Unsupported subprotocol {protocol!r} from {serial}")
            await connection.close(1002, "Unsupported subprotocol")
            return

        remote_address = None
        if connection.remote_address:
            remote_address = str(connection.remote_address[0])

        charge_point = handler_class(
            serial,
            connection,
            self.central.gateway,
            plugins=self.plugin_factory(),
            heartbeat_interval=self.heartbeat_interval,
        )
        charge_point.remote_address = remote_address
        self.charge_points[serial] = charge_point

        gateway = self.central.gateway
        try:
            await gateway.attach(serial, charge_point, remote_address=remote_address)
            await charge_point.on_connect()

            # Start listening for messages
            await charge_point.start()

        except websockets.exceptions.ConnectionClosed:
            log_websocket_event(logger, "closed", cp_id=serial)
        except Exception as e:
            log_error(
                logger,
                "connection_error",
                f"Error handling charge point {serial}: {e}",
                cp_id=serial,
                exc_info=e,
            )
        finally:
            await gateway.detach(serial, charge_point)
            await charge_point.on_disconnect()
            if self.charge_points.get(serial) is charge_point:
                del self.charge_points[serial]

    async def start(self):
        """Start listening for connections. Returns once the socket is bound."""
        logger.info(f"Starting OCPP server on {self.host}:{self.port}")

        if self.metrics_port:
            start_http_server(self.metrics_port)
            logger.info(f"Prometheus metrics on http://{self.host}:{self.metrics_port}/metrics")

        self._server = await websockets.serve(
            self.on_connect,
            self.host,
            self.port,
            subprotocols=SUBPROTOCOLS,
            ping_interval=self.ping_interval,
        )
        logger.info(f"OCPP server listening on ws://{self.host}:{self.port}/ocpp/{{serial}}")

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started on port 0)."""
        return self._server.sockets[0].getsockname()[1]

    async def stop(self):
        """Stop accepting connections and close every open one."""
        logger.info("Stopping OCPP server")
        if self._server is not None:
            self._server.close()
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=5)
            except TimeoutError:
                logger.warning("Timed out waiting for connections to close")
            self._server = None
        self.charge_points.clear()
        logger.info("OCPP server stopped")
