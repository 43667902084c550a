"""Process-wide counters, gauges and latency histograms.

Series are keyed by a dotted name plus optional labels, for example
``METRICS.increment("plans.built", action="stake", family="v4")``. The
Prometheus export turns the dots into underscores and renders labels as
``{key="value"}``.
"""

from __future__ import annotations

import math
import re
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from statistics import mean
from typing import Deque, Dict, Iterable, Iterator, List, MutableMapping, Tuple

_METRIC_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_:]")
_QUANTILES = (("p50", 0.5), ("p90", 0.9), ("p99", 0.99))

Labels = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, Labels]


def _sanitize_metric_name(name: str) -> str:
    """Return a Prometheus-safe metric name."""

    sanitized = _METRIC_SANITIZE_RE.sub("_", name)
    if not sanitized:
        return "_"
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def _labels(values: Dict[str, object]) -> Labels:
    return tuple(sorted((key, str(value)) for key, value in values.items()))


def _series_name(name: str, labels: Labels) -> str:
    if not labels:
        return name
    return name + "[" + ",".join(f"{key}={value}" for key, value in labels) + "]"


def _render_labels(labels: Labels, extra: Labels = ()) -> str:
    pairs = labels + extra
    if not pairs:
        return ""
    return "{" + ",".join(f'{_sanitize_metric_name(key)}="{value}"' for key, value in pairs) + "}"


class MetricsRegistry:
    """Counters, gauges and bounded histograms keyed by name and labels."""

    def __init__(self, *, max_hist_samples: int = 1024) -> None:
        self._lock = threading.RLock()
        self._counters: MutableMapping[SeriesKey, float] = defaultdict(float)
        self._gauges: MutableMapping[SeriesKey, float] = {}
        self._histograms: MutableMapping[SeriesKey, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_hist_samples)
        )

    def increment(self, name: str, amount: float = 1.0, **labels: object) -> None:
        with self._lock:
            self._counters[(name, _labels(labels))] += amount

    def get(self, name: str, **labels: object) -> float:
        with self._lock:
            return self._counters.get((name, _labels(labels)), 0.0)

    def gauge(self, name: str, value: float, **labels: object) -> None:
        with self._lock:
            self._gauges[(name, _labels(labels))] = float(value)

    def observe(self, name: str, value: float, **labels: object) -> None:
        with self._lock:
            self._histograms[(name, _labels(labels))].append(float(value))

    @contextmanager
    def timer(self, name: str, **labels: object) -> Iterator[None]:
        """Observe the wall-clock duration of the wrapped block in seconds."""

        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - start, **labels)

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """Plain-dict view; labelled series appear as ``name[key=value,...]``."""

        with self._lock:
            return {
                "counters": {_series_name(*key): value for key, value in self._counters.items()},
                "gauges": {_series_name(*key): value for key, value in self._gauges.items()},
                "histograms": {
                    _series_name(*key): self._histogram_stats(values) for key, values in self._histograms.items()
                },
            }

    def export_prometheus(self) -> str:
        with self._lock:
            counters = sorted(self._counters.items())
            gauges = sorted(self._gauges.items())
            histograms = sorted((key, self._histogram_stats(values)) for key, values in self._histograms.items())
        lines = self._export_scalars(counters, "counter") + self._export_scalars(gauges, "gauge")
        typed = set()
        for (name, labels), stats in histograms:
            if not stats:
                continue
            base = _sanitize_metric_name(name)
            if base not in typed:
                lines.append(f"# TYPE {base} summary")
                typed.add(base)
            for quantile, _ in _QUANTILES:
                lines.append(f"{base}{_render_labels(labels, (('quantile', quantile),))} {stats[quantile]}")
            lines.append(f"{base}_count{_render_labels(labels)} {stats['count']}")
            lines.append(f"{base}_avg{_render_labels(labels)} {stats['avg']}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    @staticmethod
    def _export_scalars(series: Iterable[Tuple[SeriesKey, float]], kind: str) -> List[str]:
        lines: List[str] = []
        typed = set()
        for (name, labels), value in series:
            base = _sanitize_metric_name(name)
            if base not in typed:
                lines.append(f"# TYPE {base} {kind}")
                typed.add(base)
            lines.append(f"{base}{_render_labels(labels)} {value}")
        return lines

    def _histogram_stats(self, values: Iterable[float]) -> Dict[str, float]:
        data = sorted(values)
        if not data:
            return {}
        stats = {"count": float(len(data)), "avg": mean(data)}
        for label, percentile in _QUANTILES:
            index = max(int(math.ceil(percentile * len(data))) - 1, 0)
            stats[label] = float(data[min(index, len(data) - 1)])
        return stats


METRICS = MetricsRegistry()


__all__ = ["METRICS", "MetricsRegistry"]
