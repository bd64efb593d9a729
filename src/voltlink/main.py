"""Main entry point for the Voltlink central system."""

import argparse
import asyncio
import logging
import sys

from uvicorn import Config, Server

from .api import create_app
from .central import CentralSystem
from .config import Settings
from .logging_utils import log_error, setup_logging
from .plugins import FluentdAuditPlugin, FluentdWebSocketAuditPlugin, PrometheusMetricsPlugin
from .server import OCPPServer


def parse_fluentd_endpoint(parser: argparse.ArgumentParser, endpoint: str) -> tuple[str, int]:
    if ":" not in endpoint:
        parser.error("--fluentd-endpoint must be in host:port format (e.g., localhost:24224)")
    host, port_str = endpoint.rsplit(":", 1)
    if not host:
        parser.error("--fluentd-endpoint host cannot be empty")
    try:
        return host, int(port_str)
    except ValueError:
        parser.error(f"Invalid port in --fluentd-endpoint: {endpoint}")


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Voltlink - OCPP central system with SQLite storage")
    parser.add_argument(
        "--host",
        default=defaults.host,
        help=f"Host to bind the OCPP WebSocket server (default: {defaults.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help=f"Port to bind the OCPP WebSocket server (default: {defaults.port})",
    )
    parser.add_argument(
        "--api-host",
        default=defaults.api_host,
        help=f"Host to bind the HTTP API (default: {defaults.api_host})",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=defaults.api_port,
        help=f"Port to bind the HTTP API (default: {defaults.api_port})",
    )
    parser.add_argument(
        "--db",
        default=defaults.db_path,
        help=f"Path to SQLite database file (default: {defaults.db_path})",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=f"Logging level (default: {defaults.log_level})",
    )
    parser.add_argument(
        "--log-file",
        default=defaults.log_file,
        help=f"JSON log file, empty to disable (default: {defaults.log_file})",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=defaults.metrics_port,
        help="Port for Prometheus metrics HTTP server (default: disabled)",
    )
    parser.add_argument(
        "--disable-websocket-ping",
        action="store_true",
        help="Disable WebSocket ping/pong messages (useful for chargers that don't handle pings well)",
    )
    parser.add_argument(
        "--heartbeat-interval",
        type=int,
        default=defaults.heartbeat_interval,
        help=f"OCPP heartbeat interval in seconds (default: {defaults.heartbeat_interval})",
    )
    parser.add_argument(
        "--offline-timeout",
        type=float,
        default=defaults.offline_timeout,
        help=f"Seconds without a frame before a device is marked offline (default: {defaults.offline_timeout:g})",
    )
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=defaults.command_timeout,
        help=f"Seconds to wait for a command acknowledgment (default: {defaults.command_timeout:g})",
    )
    parser.add_argument(
        "--command-attempts",
        type=int,
        default=defaults.command_attempts,
        help=f"Attempts for start/stop commands that time out (default: {defaults.command_attempts})",
    )
    parser.add_argument(
        "--rate-per-kwh",
        type=float,
        default=defaults.rate_per_kwh,
        help=f"Price per kWh used for session cost (default: {defaults.rate_per_kwh:g})",
    )
    parser.add_argument(
        "--payments-url",
        default=defaults.payments_url,
        help="Base URL of the payments service (default: accept all locally)",
    )
    parser.add_argument(
        "--fluentd-endpoint",
        default=defaults.fluentd_endpoint,
        help="Fluentd endpoint in host:port format (e.g., localhost:24224). If provided, enables Fluentd audit logging.",
    )
    parser.add_argument(
        "--fluentd-tag",
        default=defaults.fluentd_tag,
        help=f"Tag prefix for Fluentd events (default: {defaults.fluentd_tag})",
    )
    return parser


def settings_from_args(args: argparse.Namespace, defaults: Settings) -> Settings:
    return Settings(
        host=args.host,
        port=args.port,
        api_host=args.api_host,
        api_port=args.api_port,
        db_path=args.db,
        log_level=args.log_level,
        log_file=args.log_file or None,
        heartbeat_interval=args.heartbeat_interval,
        offline_timeout=args.offline_timeout,
        offline_check_interval=defaults.offline_check_interval,
        ping_interval=None if args.disable_websocket_ping else defaults.ping_interval,
        command_timeout=args.command_timeout,
        command_attempts=args.command_attempts,
        command_retry_backoff=defaults.command_retry_backoff,
        rate_per_kwh=args.rate_per_kwh,
        preauth_amount=defaults.preauth_amount,
        payments_url=args.payments_url,
        auto_stop_min_elapsed=defaults.auto_stop_min_elapsed,
        auto_stop_zero_samples=defaults.auto_stop_zero_samples,
        metrics_port=args.metrics_port,
        fluentd_endpoint=args.fluentd_endpoint,
        fluentd_tag=args.fluentd_tag,
    )


async def main():
    """Main application entry point."""
    defaults = Settings.from_env()
    parser = build_parser(defaults)
    args = parser.parse_args()
    settings = settings_from_args(args, defaults)

    fluentd_host = fluentd_port = None
    if settings.fluentd_endpoint:
        fluentd_host, fluentd_port = parse_fluentd_endpoint(parser, settings.fluentd_endpoint)

    setup_logging(settings.log_level, settings.log_file)
    logger = logging.getLogger(__name__)

    # Log startup as structured event
    logger.info(
        "System starting",
        extra={
            "event_type": "system_startup",
            "event_data": {
                "database": settings.db_path,
                "websocket_endpoint": f"ws://{settings.host}:{settings.port}/ocpp/{{serial}}",
                "api_endpoint": f"http://{settings.api_host}:{settings.api_port}",
                "metrics_endpoint": f"http://{settings.host}:{settings.metrics_port}/metrics"
                if settings.metrics_port
                else None,
                "payments_url": settings.payments_url,
                "fluentd_enabled": settings.fluentd_endpoint is not None,
                "fluentd_endpoint": settings.fluentd_endpoint,
            },
        },
    )

    # Plugins are created per connection; metric series are shared class attributes
    def create_plugins():
        plugins = []
        if settings.metrics_port:
            plugins.append(PrometheusMetricsPlugin())
        if settings.fluentd_endpoint:
            plugins.extend(
                [
                    FluentdAuditPlugin(
                        tag_prefix=settings.fluentd_tag,
                        host=fluentd_host,
                        port=fluentd_port,
                        timeout=3.0,
                    ),
                    FluentdWebSocketAuditPlugin(
                        tag_prefix=settings.fluentd_tag,
                        host=fluentd_host,
                        port=fluentd_port,
                    ),
                ]
            )
        return plugins

    central = CentralSystem(settings)
    server = OCPPServer(
        central,
        host=settings.host,
        port=settings.port,
        metrics_port=settings.metrics_port,
        plugin_factory=create_plugins,
        ping_interval=settings.ping_interval,
        heartbeat_interval=settings.heartbeat_interval,
    )
    api_server = Server(
        Config(
            create_app(central),
            host=settings.api_host,
            port=settings.api_port,
            loop="asyncio",
            log_config=None,
        )
    )

    reason = "stopped"
    try:
        await central.start()
        await server.start()
        # Returns when uvicorn receives SIGINT/SIGTERM
        await api_server.serve()
        reason = "signal"
    except KeyboardInterrupt:
        reason = "SIGINT"
    except Exception as e:
        log_error(logger, "server_error", f"Server error: {e}", exc_info=e)
        raise
    finally:
        logger.info(
            "System shutting down",
            extra={"event_type": "system_shutdown", "event_data": {"reason": reason}},
        )
        await server.stop()
        await central.stop()


def run():
    """Entry point for console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete")
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
