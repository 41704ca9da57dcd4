"""Predefined latency categories.

Every category maps to one histogram created up front by
``Metrics.init_histograms`` and to the attribute key the call-site name is
recorded under.
"""

from __future__ import annotations

from typing import Dict, NamedTuple, Tuple

HISTOGRAM_UNIT = "us"


class LatencyCategory(NamedTuple):
    histogram: str
    scope_key: str


LATENCY_CATEGORIES: Dict[str, LatencyCategory] = {
    "method": LatencyCategory("method_latency", "method"),
    "lua": LatencyCategory("lua_latency", "scope"),
    "query": LatencyCategory("query_latency", "truncated_query"),
    "task": LatencyCategory("task_latency", "task"),
    "lock": LatencyCategory("lock_latency", "scope"),
}

LATENCY_NAMES: Tuple[str, ...] = tuple(c.histogram for c in LATENCY_CATEGORIES.values())
