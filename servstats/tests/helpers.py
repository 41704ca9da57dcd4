"""Shared helpers for reading back metrics from an in-memory pipeline."""

from __future__ import annotations

import socket

from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from servstats.config import ExporterConfig, MeterConfig, ScrapeExporterOptions, ServstatsConfig
from servstats.registry import Metrics


def isolated_config() -> ServstatsConfig:
    """Configuration that never touches the global OpenTelemetry provider."""
    return ServstatsConfig(meter=MeterConfig(install_global=False))


def in_memory_registry():
    """Return (registry, reader) wired through a real SDK meter provider."""
    reader = InMemoryMetricReader()
    registry = Metrics()
    registry.init(isolated_config(), readers=[reader])
    return registry, reader


def find_metric(reader: InMemoryMetricReader, name: str):
    data = reader.get_metrics_data()
    if data is None:
        return None
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    return metric
    return None


def data_points(reader: InMemoryMetricReader, name: str):
    metric = find_metric(reader, name)
    if metric is None:
        return []
    return list(metric.data.data_points)


def free_port() -> int:
    """A TCP port on 127.0.0.1 that nothing listens on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def scrape_config(port: int, stream: bool = False) -> ServstatsConfig:
    """Scrape exporter bound to 127.0.0.1:port, global provider untouched."""
    return ServstatsConfig(
        exporters=ExporterConfig(
            enable_scrape_exporter=True,
            enable_stream_exporter=stream,
            scrape_exporter=ScrapeExporterOptions(host="127.0.0.1", port=port),
        ),
        meter=MeterConfig(install_global=False),
    )
