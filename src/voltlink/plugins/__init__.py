"""Plugin framework for extending charge point handler behavior."""

from .base import ChargePointPlugin, PluginContext, PluginHook
from .fluentd_audit import FluentdAuditPlugin, FluentdWebSocketAuditPlugin
from .prometheus_metrics import PrometheusMetricsPlugin

__all__ = [
    "ChargePointPlugin",
    "FluentdAuditPlugin",
    "FluentdWebSocketAuditPlugin",
    "PluginContext",
    "PluginHook",
    "PrometheusMetricsPlugin",
]
