"""Prometheus-compatible metrics for the AirLink session server.

Exposes /metrics in Prometheus text exposition format.
Rendered by hand; no client library.

Tracked metrics:
- airlink_sessions_created_total (counter, by data type)
- airlink_matches_total (counter)
- airlink_match_misses_total (counter)
- airlink_match_races_lost_total (counter)
- airlink_completions_total (counter)
- airlink_expirations_total (counter)
- airlink_decrypt_fallbacks_total (counter)
- airlink_guidance_total (counter, by template id)
- airlink_match_latency_seconds (histogram)
- airlink_active_subscribers (gauge)
"""

from __future__ import annotations

import threading
import time
from collections import Counter


class _Histogram:
    """Simple histogram with configurable buckets."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            for i, b in enumerate(self.buckets):
                if value <= b:
                    self.bucket_counts[i] += 1
                    break

    def render(self, name: str, help_text: str) -> str:
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} histogram",
        ]
        with self._lock:
            cumulative = 0
            for i, b in enumerate(self.buckets):
                cumulative += self.bucket_counts[i]
                lines.append(f'{name}_bucket{{le="{b}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return "\n".join(lines)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for the session protocol."""

    def __init__(self):
        self._sessions_created: Counter = Counter()
        self._guidance: Counter = Counter()
        self._matches = 0
        self._misses = 0
        self._races_lost = 0
        self._completions = 0
        self._expirations = 0
        self._decrypt_fallbacks = 0
        self._active_subscribers = 0
        self._lock = threading.Lock()

        # Match latency: store round-trips, 1ms to 2.5s
        self._match_latency = _Histogram(
            [0.001, 0.005, 0.010, 0.050, 0.100, 0.250, 0.500, 1.0, 2.5]
        )

        self._start_time = time.time()

    def record_session_created(self, data_type: str):
        with self._lock:
            self._sessions_created[data_type] += 1

    def record_match(self, latency_seconds: float):
        with self._lock:
            self._matches += 1
        self._match_latency.observe(latency_seconds)

    def record_match_miss(self):
        with self._lock:
            self._misses += 1

    def record_lost_race(self):
        with self._lock:
            self._races_lost += 1

    def record_completion(self):
        with self._lock:
            self._completions += 1

    def record_expiration(self):
        with self._lock:
            self._expirations += 1

    def record_decrypt_fallback(self):
        with self._lock:
            self._decrypt_fallbacks += 1

    def record_guidance(self, template_id: str):
        with self._lock:
            self._guidance[template_id] += 1

    def set_subscribers(self, count: int):
        self._active_subscribers = count

    def _counter(self, lines: list[str], name: str, help_text: str, value: int):
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} counter")
        lines.append(f"{name} {value}")
        lines.append("")

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines: list[str] = []

        uptime = time.time() - self._start_time
        lines.append("# HELP airlink_uptime_seconds Time since server start")
        lines.append("# TYPE airlink_uptime_seconds gauge")
        lines.append(f"airlink_uptime_seconds {uptime:.1f}")
        lines.append("")

        lines.append("# HELP airlink_sessions_created_total Sessions created by payload type")
        lines.append("# TYPE airlink_sessions_created_total counter")
        with self._lock:
            for name, count in sorted(self._sessions_created.items()):
                lines.append(f'airlink_sessions_created_total{{data_type="{name}"}} {count}')
        lines.append("")

        with self._lock:
            counters = [
                ("airlink_matches_total", "Receivers that claimed a waiting session", self._matches),
                ("airlink_match_misses_total", "Match attempts with no waiting session", self._misses),
                ("airlink_match_races_lost_total", "Match attempts beaten by another receiver", self._races_lost),
                ("airlink_completions_total", "Sessions marked completed", self._completions),
                ("airlink_expirations_total", "Sessions marked expired", self._expirations),
                ("airlink_decrypt_fallbacks_total", "Payloads served from plaintext after a decrypt failure", self._decrypt_fallbacks),
            ]
        for name, help_text, value in counters:
            self._counter(lines, name, help_text, value)

        lines.append("# HELP airlink_guidance_total Template guidance requests by template")
        lines.append("# TYPE airlink_guidance_total counter")
        with self._lock:
            for name, count in sorted(self._guidance.items()):
                lines.append(f'airlink_guidance_total{{template="{name}"}} {count}')
        lines.append("")

        lines.append(self._match_latency.render(
            "airlink_match_latency_seconds",
            "Time from signature query to a won match"
        ))
        lines.append("")

        lines.append("# HELP airlink_active_subscribers Current session update subscribers")
        lines.append("# TYPE airlink_active_subscribers gauge")
        lines.append(f"airlink_active_subscribers {self._active_subscribers}")
        lines.append("")

        return "\n".join(lines) + "\n"

    @property
    def sessions_created(self) -> dict[str, int]:
        with self._lock:
            return dict(self._sessions_created)

    @property
    def matches(self) -> int:
        return self._matches

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def races_lost(self) -> int:
        return self._races_lost
