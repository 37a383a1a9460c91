"""
In-process counters rendered in the Prometheus text format.

Only counters are needed here: every signal we export is "how many times did
X happen" (transitions, gate denials, provider outcomes). Series are keyed by
their label values; label names are fixed when the counter is declared.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Tuple


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace("\"", "\\\"")


class Counter:
    def __init__(self, name: str, documentation: str, label_names: Tuple[str, ...] = ()):
        self.name = name
        self.documentation = documentation
        self.label_names = tuple(label_names)
        self._series: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Dict[str, object]) -> Tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(f"{self.name} expects labels {self.label_names}, got {tuple(sorted(labels))}")
        return tuple(str(labels[name]) for name in self.label_names)

    def inc(self, amount: float = 1.0, **labels) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        key = self._key(labels)
        with self._lock:
            self._series[key] = self._series.get(key, 0.0) + amount

    def value(self, **labels) -> float:
        key = self._key(labels)
        with self._lock:
            return self._series.get(key, 0.0)

    def render(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.documentation}", f"# TYPE {self.name} counter"]
        with self._lock:
            series = sorted(self._series.items())
        for values, count in series:
            if self.label_names:
                pairs = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, values))
                lines.append(f"{self.name}{{{pairs}}} {count}")
            else:
                lines.append(f"{self.name} {count}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._series.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, documentation: str, label_names: Tuple[str, ...] = ()) -> Counter:
        with self._lock:
            existing = self._counters.get(name)
            if existing is None:
                existing = self._counters[name] = Counter(name, documentation, label_names)
            elif existing.label_names != tuple(label_names):
                raise ValueError(f"{name} already registered with labels {existing.label_names}")
            return existing

    def export_prometheus(self) -> str:
        with self._lock:
            counters = list(self._counters.values())
        lines: List[str] = []
        for counter in counters:
            lines.extend(counter.render())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            counters = list(self._counters.values())
        for counter in counters:
            counter.reset()


METRICS = MetricsRegistry()

subscription_transitions_total = METRICS.counter(
    "subscription_transitions_total",
    "Subscription state changes by transition.",
    ("transition",),
)
gate_denied_total = METRICS.counter(
    "gate_denied_total",
    "AI tutor requests refused by the gate, by reason.",
    ("reason",),
)
ai_requests_total = METRICS.counter(
    "ai_requests_total",
    "Chat completion attempts by outcome.",
    ("outcome",),
)
