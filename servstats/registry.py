"""Metrics registry owning the meter provider and the instrument caches.

Ad hoc counters and up-down counters are created on first use under one lock.
Latency histograms belong to a fixed set created by ``init_histograms`` and are
read without locking, since timers record far more often than counters change.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Sequence

from opentelemetry import metrics as otel_metrics
from opentelemetry.metrics import Counter, Histogram, Meter, UpDownCounter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader

from servstats.categories import HISTOGRAM_UNIT, LATENCY_NAMES
from servstats.config import ServstatsConfig
from servstats.exporter import build_meter_provider, build_metric_readers, stop_scrape_servers

logger = logging.getLogger(__name__)

Attributes = Optional[Mapping[str, str]]


class Metrics:
    """
    Registry of metric instruments for one process.

    Lifecycle: construct, ``init`` once at boot, record from any thread,
    ``shutdown`` once. A registry that was never initialized, or was shut
    down, silently discards every write.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._config = ServstatsConfig()
        self._provider: Optional[MeterProvider] = None
        self._scrape_servers: List[Any] = []
        self._shut_down = False
        self._counters: Dict[str, Counter] = {}
        self._up_down_counters: Dict[str, UpDownCounter] = {}
        self._latency_histograms: Dict[str, Histogram] = {}

    @property
    def enabled(self) -> bool:
        return self._provider is not None

    @property
    def config(self) -> ServstatsConfig:
        return self._config

    def init(
        self,
        config: Optional[ServstatsConfig] = None,
        readers: Optional[Sequence[MetricReader]] = None,
        provider: Optional[MeterProvider] = None,
    ) -> None:
        """
        Install the exporters and seed the latency histograms.

        Supported usage is a single call at boot. Calling again replaces the
        provider; calling after ``shutdown`` does nothing.

        Args:
            config: Configuration selecting the exporters (defaults to ServstatsConfig())
            readers: Explicit metric readers, used instead of the configured exporters
            provider: Ready-made meter provider, used as-is instead of building one
        """
        if self._shut_down:
            logger.warning("Metrics registry was shut down and cannot be re-initialized")
            return

        config = config or ServstatsConfig()
        if config.logging.debug:
            logging.getLogger("servstats").setLevel(logging.DEBUG)

        if self._provider is not None:
            logger.warning("Metrics registry initialized twice; replacing meter provider")
            # Release the old pipeline first so its scrape port is free again.
            self._release(*self._detach())

        servers: List[Any] = []
        if provider is None:
            if readers is None:
                readers, servers = build_metric_readers(config.exporters)
            if not readers:
                logger.info("No metrics exporter enabled; metrics disabled")
                self._config = config
                return
            provider = build_meter_provider(config, readers)

        if config.meter.install_global:
            _install_global_provider(provider)

        with self._lock:
            self._config = config
            self._provider = provider
            self._scrape_servers.extend(servers)

        self.init_histograms()
        logger.info(
            "Metrics initialized: meter=%s stream=%s scrape=%s",
            config.meter.name,
            config.exporters.enable_stream_exporter,
            config.exporters.enable_scrape_exporter,
        )

    def init_histograms(self) -> None:
        """Create every predefined latency histogram that is not there yet."""
        meter = self.get_meter()
        if meter is None:
            return

        with self._lock:
            histograms = dict(self._latency_histograms)
            for name in LATENCY_NAMES:
                if name not in histograms:
                    histograms[name] = meter.create_histogram(
                        name,
                        unit=HISTOGRAM_UNIT,
                        description=f"{name} latency",
                    )
            # Swapped as a whole so lock-free readers never see a partial map.
            self._latency_histograms = histograms

    def shutdown(self) -> None:
        """Detach the provider. The registry stays inert afterwards."""
        with self._lock:
            self._shut_down = True
        self._release(*self._detach())
        logger.info("Metrics shut down")

    def _detach(self):
        """Take the provider, scrape servers and instruments out of the registry."""
        with self._lock:
            provider, self._provider = self._provider, None
            servers, self._scrape_servers = self._scrape_servers, []
            # Instruments of a detached provider are no longer collected.
            self._counters = {}
            self._up_down_counters = {}
            self._latency_histograms = {}
        return provider, servers

    @staticmethod
    def _release(provider: Optional[MeterProvider], servers: List[Any]) -> None:
        if provider is not None:
            try:
                provider.shutdown()
            except Exception:
                logger.warning("Error while shutting down meter provider", exc_info=True)
        stop_scrape_servers(servers)

    def get_meter(self) -> Optional[Meter]:
        """Current meter, or None when no provider is attached."""
        provider = self._provider
        if provider is None:
            return None
        return provider.get_meter(
            self._config.meter.name,
            self._config.meter.version,
            self._config.meter.schema_url,
        )

    def add_counter(self, name: str, value: float, attributes: Attributes = None) -> None:
        """
        Add ``value`` to the counter ``name``, creating it on first use.

        Args:
            name: Counter name
            value: Non-negative increment
            attributes: Dimensional labels for this measurement
        """
        with self._lock:
            meter = self.get_meter()
            if meter is None:
                return
            try:
                counter = self._counters.get(name)
                if counter is None:
                    counter = meter.create_counter(name)
                    self._counters[name] = counter
                counter.add(value, attributes=dict(attributes or {}))
            except Exception:
                logger.debug("Failed to record counter %s", name, exc_info=True)

    def add_up_down_counter(self, name: str, value: int, attributes: Attributes = None) -> None:
        """Add a signed delta to the up-down counter ``name``, creating it on first use."""
        with self._lock:
            meter = self.get_meter()
            if meter is None:
                return
            try:
                counter = self._up_down_counters.get(name)
                if counter is None:
                    counter = meter.create_up_down_counter(name)
                    self._up_down_counters[name] = counter
                counter.add(int(value), attributes=dict(attributes or {}))
            except Exception:
                logger.debug("Failed to record up-down counter %s", name, exc_info=True)

    def latency_histogram(self, name: str) -> Optional[Histogram]:
        # No lock: the map is only ever replaced, never mutated in place.
        return self._latency_histograms.get(name)


# Set once the process-wide OpenTelemetry provider has been installed;
# the API refuses to override it afterwards.
_global_provider_installed = False
_global_lock = threading.Lock()


def _install_global_provider(provider: MeterProvider) -> None:
    global _global_provider_installed
    with _global_lock:
        if _global_provider_installed:
            logger.warning(
                "Global meter provider already installed; the new provider is only used by this registry"
            )
            return
        otel_metrics.set_meter_provider(provider)
        _global_provider_installed = True


# Default registry (initialized by servstats.auto)
_default_metrics = Metrics()


def get_metrics() -> Metrics:
    """Return the process-default registry."""
    return _default_metrics


def set_metrics(registry: Metrics) -> None:
    """Override the process-default registry (primarily for tests)."""
    global _default_metrics
    _default_metrics = registry


def add_counter(name: str, value: float = 1.0, attributes: Attributes = None) -> None:
    """
    Add to a counter on the default registry.

    Example:
        >>> from servstats import add_counter
        >>> add_counter("player_logins", 1, {"world": "main"})
    """
    _default_metrics.add_counter(name, value, attributes)


def add_up_down_counter(name: str, value: int, attributes: Attributes = None) -> None:
    """Add a signed delta to an up-down counter on the default registry."""
    _default_metrics.add_up_down_counter(name, value, attributes)
