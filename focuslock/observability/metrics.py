"""
Process-local metrics.

The scheduler, services, notifier and API bump the module-level instruments
below. /api/metrics renders the registry as Prometheus exposition text and
/api/health embeds to_dict(). Values reset on restart; nothing is persisted.
"""

import threading
from collections import deque

LabelKey = tuple[tuple[str, str], ...]


def _key(labels: dict) -> LabelKey:
    return tuple(sorted((name, str(value)) for name, value in labels.items()))


def _fmt_labels(key: LabelKey) -> str:
    if not key:
        return ""
    return "{%s}" % ",".join(f'{name}="{value}"' for name, value in key)


class _Instrument:
    kind = ""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._lock = threading.Lock()

    def header(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.description}"] if self.description else []
        lines.append(f"# TYPE {self.name} {self.kind}")
        return lines


class Counter(_Instrument):
    """Monotonic count, kept per label combination."""

    kind = "counter"

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._series: dict[LabelKey, int] = {}

    def inc(self, amount: int = 1, **labels: str) -> None:
        key = _key(labels)
        with self._lock:
            self._series[key] = self._series.get(key, 0) + amount

    def get(self, **labels: str) -> int:
        with self._lock:
            return self._series.get(_key(labels), 0)

    @property
    def value(self) -> int:
        with self._lock:
            return sum(self._series.values())

    def exposition(self) -> list[str]:
        with self._lock:
            series = sorted(self._series.items()) or [((), 0)]
        return self.header() + [f"{self.name}{_fmt_labels(k)} {v}" for k, v in series]

    def snapshot(self) -> dict:
        return {"type": self.kind, "value": self.value}


class Gauge(_Instrument):
    kind = "gauge"

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._value = 0.0

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.inc(-amount)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def exposition(self) -> list[str]:
        return self.header() + [f"{self.name} {self.value}"]

    def snapshot(self) -> dict:
        return {"type": self.kind, "value": self.value}


class Histogram(_Instrument):
    """
    Duration summary. count and sum cover every observation; avg is taken
    over the last *window* samples only.
    """

    kind = "summary"

    def __init__(self, name: str, description: str = "", window: int = 1000):
        super().__init__(name, description)
        self._recent: deque[float] = deque(maxlen=window)
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        with self._lock:
            self._recent.append(value)
            self._count += 1
            self._sum += value

    @property
    def count(self) -> int:
        return self._count

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def avg(self) -> float:
        with self._lock:
            return sum(self._recent) / len(self._recent) if self._recent else 0.0

    def exposition(self) -> list[str]:
        with self._lock:
            count, total = self._count, self._sum
        return self.header() + [f"{self.name}_count {count}", f"{self.name}_sum {total}"]

    def snapshot(self) -> dict:
        return {"type": "histogram", "count": self.count, "sum": self.sum, "avg": self.avg}


class MetricsRegistry:
    def __init__(self) -> None:
        self._instruments: dict[str, _Instrument] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, cls: type, name: str, description: str):
        with self._lock:
            existing = self._instruments.get(name)
            if existing is None:
                existing = self._instruments[name] = cls(name, description)
            elif not isinstance(existing, cls):
                raise ValueError(f"metric {name!r} already registered as {existing.kind}")
            return existing

    def counter(self, name: str, description: str = "") -> Counter:
        return self._get_or_create(Counter, name, description)

    def gauge(self, name: str, description: str = "") -> Gauge:
        return self._get_or_create(Gauge, name, description)

    def histogram(self, name: str, description: str = "") -> Histogram:
        return self._get_or_create(Histogram, name, description)

    def _sorted(self) -> list[_Instrument]:
        with self._lock:
            return [self._instruments[name] for name in sorted(self._instruments)]

    def to_prometheus(self) -> str:
        lines: list[str] = []
        for instrument in self._sorted():
            lines.extend(instrument.exposition())
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, dict]:
        return {instrument.name: instrument.snapshot() for instrument in self._sorted()}


REGISTRY = MetricsRegistry()

scheduler_ticks = REGISTRY.counter("scheduler_ticks_total", "Scheduler ticks run")
scheduler_sweep_errors = REGISTRY.counter(
    "scheduler_sweep_errors_total", "Per-task failures inside a sweep"
)
scheduler_tick_duration = REGISTRY.histogram(
    "scheduler_tick_duration_seconds", "Wall time of one scheduler tick"
)
task_transitions = REGISTRY.counter("task_transitions_total", "Task status transitions")
session_transitions = REGISTRY.counter("session_transitions_total", "Session status transitions")
proofs_submitted = REGISTRY.counter("proofs_submitted_total", "Proof submissions by outcome")
notifications_published = REGISTRY.counter(
    "notifications_published_total", "Events published to the live channel"
)
push_deliveries = REGISTRY.counter("push_deliveries_total", "Push attempts by status")
live_subscribers = REGISTRY.gauge("live_subscribers", "Open live-channel subscriptions")
api_requests = REGISTRY.counter("api_requests_total", "Total API requests")
api_errors = REGISTRY.counter("api_errors_total", "API requests answered with a domain error")
