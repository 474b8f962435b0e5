"""
In-process metrics with Prometheus text exposition.

Series are keyed by name plus an optional label set, so one counter covers
every outcome of a pipeline stage:

    metrics.inc("webhook_messages_total", outcome="duplicate")
    metrics.get("webhook_messages_total", outcome="duplicate")

Rendered under GET /metrics as `autopause_webhook_messages_total{outcome="duplicate"} 1`.
"""

from __future__ import annotations

import time
from collections import defaultdict

NAMESPACE = "autopause"

Labels = tuple[tuple[str, str], ...]


def _labels(labels: dict[str, str]) -> Labels:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _series(name: str, labels: Labels) -> str:
    full = f"{NAMESPACE}_{name}"
    if not labels:
        return full
    rendered = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{full}{{{rendered}}}"


class MetricsCollector:
    def __init__(self) -> None:
        self._counters: dict[str, dict[Labels, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[Labels, float]] = defaultdict(dict)
        self._started = time.monotonic()

    def inc(self, name: str, value: int = 1, **labels: str) -> None:
        self._counters[name][_labels(labels)] += value

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        self._gauges[name][_labels(labels)] = value

    def get(self, name: str, **labels: str) -> int | float:
        """Value of one series; counters without a match read as 0."""
        key = _labels(labels)
        if name in self._gauges and key in self._gauges[name]:
            return self._gauges[name][key]
        if name in self._counters:
            return self._counters[name].get(key, 0)
        return 0

    def total(self, name: str) -> int:
        """Sum of a counter across all of its label sets."""
        return sum(self._counters.get(name, {}).values())

    def to_prometheus(self) -> str:
        lines: list[str] = []
        for kind, families in (("counter", self._counters), ("gauge", self._gauges)):
            for name in sorted(families):
                lines.append(f"# TYPE {NAMESPACE}_{name} {kind}")
                for labels, value in sorted(families[name].items()):
                    lines.append(f"{_series(name, labels)} {value}")
        lines.append(f"# TYPE {NAMESPACE}_uptime_seconds gauge")
        lines.append(f"{NAMESPACE}_uptime_seconds {time.monotonic() - self._started:.1f}")
        return "\n".join(lines) + "\n"
