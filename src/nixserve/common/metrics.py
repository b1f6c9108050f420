"""Metrics utilities for exposing Prometheus-formatted data."""

from __future__ import annotations

import threading
from typing import Dict


class Counter:
    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value += amount

    def render(self) -> str:
        return f"# HELP {self.name} {self.description}\n# TYPE {self.name} counter\n{self.name} {self._value}\n"


class Gauge:
    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self._value += amount

    def dec(self, amount: float = 1.0) -> None:
        self._value -= amount

    def render(self) -> str:
        return f"# HELP {self.name} {self.description}\n# TYPE {self.name} gauge\n{self.name} {self._value}\n"


class Histogram:
    def __init__(self, name: str, buckets: list[float], description: str = "") -> None:
        self.name = name
        self.description = description
        self._buckets = sorted(buckets)
        self._counts = {b: 0 for b in self._buckets}
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            for bucket in self._buckets:
                if value <= bucket:
                    self._counts[bucket] += 1

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} histogram"]
        for bucket in self._buckets:
            lines.append(f'{self.name}_bucket{{le="{bucket}"}} {self._counts[bucket]}')
        lines.append(f'{self.name}_bucket{{le="+Inf"}} {self._count}')
        lines.append(f"{self.name}_sum {self._sum}")
        lines.append(f"{self.name}_count {self._count}")
        return "\n".join(lines) + "\n"


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: Dict[str, object] = {}

    def register(self, metric):
        # Re-registering by name returns the existing metric so app factories can run repeatedly.
        existing = self._metrics.get(metric.name)
        if existing is not None:
            return existing
        self._metrics[metric.name] = metric
        return metric

    def render(self) -> str:
        return "\n".join(metric.render() for metric in self._metrics.values()) + "\n"


GLOBAL_REGISTRY = MetricsRegistry()
