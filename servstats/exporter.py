"""Metric reader factories for the stream and scrape backends."""

from __future__ import annotations

import logging
import sys
from typing import Any, List, Optional, Sequence, Tuple

from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import Histogram, MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.metrics.view import ExponentialBucketHistogramAggregation, View
from opentelemetry.sdk.resources import Resource
from prometheus_client import start_http_server

from servstats.categories import HISTOGRAM_UNIT, LATENCY_NAMES
from servstats.config import (
    ExporterConfig,
    ScrapeExporterOptions,
    ServstatsConfig,
    StreamReaderOptions,
)

logger = logging.getLogger(__name__)


def build_stream_reader(options: StreamReaderOptions) -> PeriodicExportingMetricReader:
    """Periodic push reader writing to stdout or stderr."""
    out = sys.stderr if options.output == "stderr" else sys.stdout
    return PeriodicExportingMetricReader(
        exporter=ConsoleMetricExporter(out=out),
        export_interval_millis=options.export_interval_millis,
        export_timeout_millis=options.export_timeout_millis,
    )


def build_scrape_reader(options: ScrapeExporterOptions) -> Tuple[PrometheusMetricReader, Any]:
    """
    Pull reader plus the HTTP server Prometheus scrapes.

    Returns:
        Tuple of (reader, server). The server must be passed to
        ``stop_scrape_servers`` once the provider is shut down.

    Raises:
        OSError: If the HTTP server cannot bind to host:port
    """
    # Bind first: a busy port then leaves no collector registered behind.
    server, _thread = start_http_server(options.port, addr=options.host)
    reader = PrometheusMetricReader(disable_target_info=options.disable_target_info)
    logger.info("Scrape endpoint listening on %s", options.url)
    return reader, server


def build_metric_readers(config: ExporterConfig) -> Tuple[List[MetricReader], List[Any]]:
    """
    Build the readers selected by the exporter configuration.

    Returns:
        Tuple of (readers, scrape servers). Both lists are empty when no
        backend is enabled, or when the scrape endpoint cannot be bound.
    """
    readers: List[MetricReader] = []
    servers: List[Any] = []

    if config.enable_stream_exporter:
        readers.append(build_stream_reader(config.stream_reader))

    if config.enable_scrape_exporter:
        try:
            reader, server = build_scrape_reader(config.scrape_exporter)
        except OSError:
            logger.error(
                "Cannot bind scrape endpoint %s; metrics disabled",
                config.scrape_exporter.url,
                exc_info=True,
            )
            for built in readers:
                built.shutdown()
            return [], []
        readers.append(reader)
        servers.append(server)

    return readers, servers


def latency_views(config: ServstatsConfig) -> List[View]:
    """Exponential bucket aggregation for each predefined latency histogram."""
    return [
        View(
            instrument_type=Histogram,
            instrument_name=name,
            meter_name=config.meter.name,
            instrument_unit=HISTOGRAM_UNIT,
            description=f"{name} latency",
            aggregation=ExponentialBucketHistogramAggregation(
                max_size=config.histograms.max_buckets,
                max_scale=config.histograms.max_scale,
            ),
        )
        for name in LATENCY_NAMES
    ]


def build_meter_provider(
    config: ServstatsConfig,
    readers: Sequence[MetricReader],
    resource: Optional[Resource] = None,
) -> MeterProvider:
    """Create an SDK meter provider wired to the given readers."""
    if resource is None:
        attrs = {}
        if config.meter.service_name:
            attrs["service.name"] = config.meter.service_name
        resource = Resource.create(attrs)

    return MeterProvider(
        metric_readers=list(readers),
        resource=resource,
        views=latency_views(config),
    )


def stop_scrape_servers(servers: Sequence[Any]) -> None:
    for server in servers:
        try:
            server.shutdown()
            server.server_close()
        except OSError:
            logger.debug("Failed to stop scrape server", exc_info=True)
