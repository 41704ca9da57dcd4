"""In-process metrics for long-running servers: counters and scoped latency timers."""

from servstats.auto import init, shutdown
from servstats.config import ServstatsConfig, ExporterConfig, load_config
from servstats.errors import ServstatsError, ConfigError, UnknownCategoryError
from servstats.registry import (
    Metrics,
    get_metrics,
    set_metrics,
    add_counter,
    add_up_down_counter,
)
from servstats.latency import (
    ScopedLatency,
    method_latency,
    script_latency,
    query_latency,
    task_latency,
    lock_latency,
    method_name,
    timed,
)

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("servstats")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback when running from a source checkout


__all__ = [
    "__version__",
    "init",
    "shutdown",
    "ServstatsConfig",
    "ExporterConfig",
    "load_config",
    "ServstatsError",
    "ConfigError",
    "UnknownCategoryError",
    "Metrics",
    "get_metrics",
    "set_metrics",
    "add_counter",
    "add_up_down_counter",
    "ScopedLatency",
    "method_latency",
    "script_latency",
    "query_latency",
    "task_latency",
    "lock_latency",
    "method_name",
    "timed",
]
