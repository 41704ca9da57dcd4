"""Boot-time helpers wiring configuration into the default registry."""

from __future__ import annotations

import atexit
import logging
import threading
from typing import Any, Dict, Optional

from servstats import config as sdk_config
from servstats.registry import Metrics, get_metrics

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_atexit_registered = False


def init(
    *,
    config_file: Optional[str] = None,
    load_env: bool = True,
    enable_scrape_exporter: Optional[bool] = None,
    enable_stream_exporter: Optional[bool] = None,
    scrape_host: Optional[str] = None,
    scrape_port: Optional[int] = None,
    stream_interval_millis: Optional[int] = None,
    debug: Optional[bool] = None,
    registry: Optional[Metrics] = None,
) -> Metrics:
    """
    Load configuration and initialize the metrics registry.

    Explicit parameters take precedence over environment variables, which take
    precedence over the config file. Call once during server boot.

    Example:
        >>> import servstats
        >>> servstats.init(enable_scrape_exporter=True, scrape_port=9464)

    Returns:
        The initialized registry (the process default unless one is passed)

    Raises:
        ConfigError: If the merged configuration is invalid
    """
    global _atexit_registered

    if load_env:
        sdk_config.load_dotenv()

    overrides = _build_overrides(
        enable_scrape_exporter=enable_scrape_exporter,
        enable_stream_exporter=enable_stream_exporter,
        scrape_host=scrape_host,
        scrape_port=scrape_port,
        stream_interval_millis=stream_interval_millis,
        debug=debug,
    )
    cfg = sdk_config.load_config(config_file=config_file, overrides=overrides)

    registry = registry or get_metrics()
    with _init_lock:
        registry.init(cfg)
        if registry is get_metrics() and not _atexit_registered:
            atexit.register(shutdown)
            _atexit_registered = True
    return registry


def shutdown() -> None:
    """Shut down the default registry for good. Safe to call more than once."""
    get_metrics().shutdown()


def _build_overrides(
    *,
    enable_scrape_exporter: Optional[bool],
    enable_stream_exporter: Optional[bool],
    scrape_host: Optional[str],
    scrape_port: Optional[int],
    stream_interval_millis: Optional[int],
    debug: Optional[bool],
) -> Dict[str, Any]:
    exporters: Dict[str, Any] = {}
    if enable_scrape_exporter is not None:
        exporters["enable_scrape_exporter"] = enable_scrape_exporter
    if enable_stream_exporter is not None:
        exporters["enable_stream_exporter"] = enable_stream_exporter

    scrape: Dict[str, Any] = {}
    if scrape_host is not None:
        scrape["host"] = scrape_host
    if scrape_port is not None:
        scrape["port"] = scrape_port
    if scrape:
        exporters["scrape_exporter"] = scrape

    if stream_interval_millis is not None:
        exporters["stream_reader"] = {"export_interval_millis": stream_interval_millis}

    overrides: Dict[str, Any] = {}
    if exporters:
        overrides["exporters"] = exporters
    if debug is not None:
        overrides["logging"] = {"debug": debug}
    return overrides
