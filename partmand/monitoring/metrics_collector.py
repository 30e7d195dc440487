"""
Base metrics collector for the partition manager.

Provides the registry handling, metric factories and timed collection shared
by concrete collectors.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsCollector(ABC):
    """
    Base class for metrics collectors.

    Subclasses declare their metrics in ``_initialize_metrics`` and gather
    values in ``collect_metrics``; ``collect`` wraps the latter with duration
    and error tracking.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional Prometheus registry. A private registry is created if None.
        """
        self.registry = registry or CollectorRegistry()
        self.logger = structlog.get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._last_collection_time = 0.0
        self._collection_count = 0

        collector_type = self.__class__.__name__.lower()
        self._collection_duration = Histogram(
            f'partmand_collection_duration_seconds_{collector_type}',
            'Time spent collecting metrics',
            registry=self.registry
        )
        self._collection_errors = Counter(
            f'partmand_collection_errors_total_{collector_type}',
            'Total number of metrics collection errors',
            ['error_type'],
            registry=self.registry
        )

        self._initialize_metrics()

    @abstractmethod
    def _initialize_metrics(self) -> None:
        """Initialize collector-specific metrics. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def collect_metrics(self) -> Dict[str, Any]:
        """
        Collect metrics asynchronously. Must be implemented by subclasses.

        Returns:
            Dictionary containing collected metrics data
        """
        pass

    async def collect(self) -> Dict[str, Any]:
        """Run ``collect_metrics`` with duration and error tracking."""
        start_time = time.time()
        try:
            metrics_data = await self.collect_metrics()
        except Exception as e:
            self._collection_errors.labels(error_type=type(e).__name__).inc()
            self.logger.error("Error collecting metrics", error=str(e))
            raise

        duration = time.time() - start_time
        self._collection_duration.observe(duration)
        self._last_collection_time = time.time()
        self._collection_count += 1
        self.logger.debug("Metrics collected", count=len(metrics_data), duration_seconds=round(duration, 4))
        return metrics_data

    def export(self) -> bytes:
        """Registry contents in the Prometheus text exposition format."""
        return generate_latest(self.registry)

    def create_counter(self, name: str, description: str,
                       labelnames: Optional[List[str]] = None) -> Counter:
        return Counter(name, description, labelnames or [], registry=self.registry)

    def create_histogram(self, name: str, description: str,
                         labelnames: Optional[List[str]] = None,
                         buckets: Optional[List[float]] = None) -> Histogram:
        if buckets is None:
            return Histogram(name, description, labelnames or [], registry=self.registry)
        return Histogram(name, description, labelnames or [], buckets=buckets, registry=self.registry)

    def create_gauge(self, name: str, description: str,
                     labelnames: Optional[List[str]] = None) -> Gauge:
        return Gauge(name, description, labelnames or [], registry=self.registry)
