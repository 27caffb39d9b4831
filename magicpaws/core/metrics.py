"""In-process counters exported in Prometheus text format at /metrics."""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _number(value: float) -> str:
    return str(int(value)) if value.is_integer() else repr(value)


class Counter:
    def __init__(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names or ())
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> Tuple[str, ...]:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def samples(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} counter"]
        with self._lock:
            items = sorted(self._values.items())
        for key, value in items:
            label_part = ""
            if self.label_names:
                label_part = "{" + ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, key)) + "}"
            lines.append(f"{self.name}{label_part} {_number(value)}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self.counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        with self._lock:
            if name not in self.counters:
                self.counters[name] = Counter(name, help_text, label_names)
            return self.counters[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for counter in list(self.counters.values()):
            lines.extend(counter.samples())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for counter in self.counters.values():
            counter.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", "HTTP requests by method, route and status", ["method", "path", "status"]
)
access_decisions_total = METRICS.counter(
    "access_decisions_total", "Lesson access decisions by outcome and reason", ["outcome", "reason"]
)
tier_purchases_total = METRICS.counter(
    "tier_purchases_total", "Tier fulfilment attempts (created or duplicate)", ["result"]
)
billing_webhooks_total = METRICS.counter(
    "billing_webhooks_total", "Processed Stripe webhook events by type", ["event_type"]
)
reminder_emails_total = METRICS.counter(
    "reminder_emails_total", "Booking reminder outcomes (sent, skipped, failed)", ["result"]
)


# Ids in paths: uuids, numeric ids and Stripe-style ids such as cus_123
_ID_SEGMENT = re.compile(r"^([0-9]+|[0-9a-fA-F-]{32,36}|[a-z]{2,5}_[A-Za-z0-9]+)$")


def normalize_path(path: str) -> str:
    """Collapse id segments to :id so route labels stay bounded."""
    segments = [":id" if _ID_SEGMENT.match(s) else s for s in path.split("/") if s]
    return "/" + "/".join(segments)
