"""Scoped latency timers.

A ``ScopedLatency`` records the time between its construction and its stop
into one of the predefined latency histograms, exactly once:

    with task_latency("decay_items"):
        run_decay()

Leaving the block by any path (return, exception, or an explicit earlier
``stop()``) produces a single sample.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from opentelemetry import context as otel_context
from opentelemetry.context import Context
from opentelemetry.metrics import Histogram

from servstats.categories import LATENCY_CATEGORIES, LATENCY_NAMES
from servstats.errors import UnknownCategoryError
from servstats.registry import Metrics, get_metrics

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


class ScopedLatency:
    """Measures one operation and records its duration in microseconds."""

    def __init__(
        self,
        histogram: Optional[Histogram],
        attributes: Optional[Mapping[str, str]] = None,
        context: Optional[Context] = None,
        registry: Optional[Metrics] = None,
    ) -> None:
        self._begin = time.perf_counter_ns()
        self._histogram = histogram
        self._attributes: Dict[str, str] = dict(attributes or {})
        self._context = context if context is not None else otel_context.get_current()
        self._registry = registry
        self._stopped = False

    @classmethod
    def for_histogram(
        cls,
        name: str,
        histogram_name: str,
        scope_key: str,
        registry: Optional[Metrics] = None,
    ) -> "ScopedLatency":
        """
        Timer recording into one of the predefined latency histograms.

        Args:
            name: Call-site name, recorded under ``scope_key``
            histogram_name: One of LATENCY_NAMES
            scope_key: Attribute key for ``name``
            registry: Registry to look the histogram up in (defaults to the process registry)

        Raises:
            UnknownCategoryError: If ``histogram_name`` is not a predefined latency histogram
        """
        if histogram_name not in LATENCY_NAMES:
            raise UnknownCategoryError(
                f"Unknown latency histogram: {histogram_name}",
                details={"known": list(LATENCY_NAMES)},
            )
        registry = registry or get_metrics()
        return cls(
            registry.latency_histogram(histogram_name),
            attributes={scope_key: name},
            registry=registry,
        )

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def attributes(self) -> Dict[str, str]:
        return dict(self._attributes)

    def stop(self) -> Optional[float]:
        """
        Record the elapsed time. Only the first call has any effect.

        Returns:
            Elapsed microseconds on the first call, None afterwards
        """
        if self._stopped:
            return None
        elapsed = (time.perf_counter_ns() - self._begin) / 1000.0
        self._stopped = True

        if self._histogram is None:
            return elapsed
        if self._registry is not None and not self._registry.enabled:
            return elapsed
        try:
            self._histogram.record(elapsed, attributes=self._attributes, context=self._context)
        except Exception:
            logger.debug("Failed to record latency sample", exc_info=True)
        return elapsed

    def __enter__(self) -> "ScopedLatency":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def category_timer(category: str) -> Callable[..., ScopedLatency]:
    """
    Build the timer factory for a predefined latency category.

    Raises:
        UnknownCategoryError: If ``category`` is not in LATENCY_CATEGORIES
    """
    try:
        entry = LATENCY_CATEGORIES[category]
    except KeyError:
        raise UnknownCategoryError(
            f"Unknown latency category: {category}",
            details={"known": sorted(LATENCY_CATEGORIES)},
        ) from None

    def factory(name: str, registry: Optional[Metrics] = None) -> ScopedLatency:
        return ScopedLatency.for_histogram(name, entry.histogram, entry.scope_key, registry=registry)

    factory.__name__ = entry.histogram
    factory.__qualname__ = entry.histogram
    factory.__doc__ = f"Scoped timer recording into {entry.histogram} under the '{entry.scope_key}' attribute."
    return factory


method_latency = category_timer("method")
script_latency = category_timer("lua")
query_latency = category_timer("query")
task_latency = category_timer("task")
lock_latency = category_timer("lock")


def timed(category: str, name: Optional[str] = None) -> Callable[[F], F]:
    """
    Decorator timing every call of the wrapped function.

    Usage:
        @timed("method")
        def save_player(player):
            ...

    Args:
        category: Latency category (method, lua, query, task, lock)
        name: Recorded name (defaults to the function's qualified name)
    """
    factory = category_timer(category)

    def decorator(func: F) -> F:
        label = name or func.__qualname__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with factory(label):
                return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def method_name(signature: str) -> str:
    """
    Short label from a function signature string.

    >>> method_name("void Game::playerMove(uint32_t playerId, Direction dir)")
    'Game::playerMove'
    """
    bracket = signature.rfind("(")
    if bracket == -1:
        bracket = len(signature)
    space = signature.rfind(" ", 0, bracket) + 1
    return signature[space:bracket]
