"""
Monitoring module for the partition manager.

Prometheus metrics for maintenance runs, operator results and per-table
partition health.
"""

from .metrics_collector import MetricsCollector
from .maintenance_metrics import MaintenanceMetricsCollector

__all__ = [
    'MetricsCollector',
    'MaintenanceMetricsCollector',
]
