"""Fingertip path recording. One object owns the point buffer.

The recorder applies the capture policy of the drawing flow:
- at most one point every 30 ms
- auto-stop after 1.5 s without a new point, or after a hard time limit
- on stop, emit the signature if more than 10 points were drawn
- the buffer is cleared on every stop, cancel or emission

Paths can be saved to JSON and replayed for reproducible tests and demos.

Usage:
    recorder = GestureRecorder(on_complete=lambda sig, pts: ...)
    recorder.start()
    # For each tracking frame:
    recorder.feed_landmarks(landmarks, timestamp_ms)
    # From a timer:
    recorder.poll(now_ms)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

import numpy as np

from airlink.config import AirLinkConfig
from airlink.signature import Point, generate_signature

logger = logging.getLogger("airlink.recorder")

INDEX_TIP = 8  # MediaPipe hand landmark index

GestureCallback = Callable[[str, list[Point]], None]


@dataclass
class RecordingResult:
    """What a finished recording produced."""
    signature: str  # empty when the path was too short
    points: list[Point]
    reason: str  # "stopped", "idle", "timeout"

    @property
    def ok(self) -> bool:
        return bool(self.signature)


class GestureRecorder:
    """Accumulates one fingertip path with an explicit start/stop lifecycle.

    Args:
        on_complete: Called with (signature, points) when a recording ends
            with a usable signature.
        min_interval_ms: Drop points closer together than this.
        idle_timeout_ms: Auto-stop after this long without a point.
        max_duration_ms: Auto-stop after this long in total (0 disables).
        min_points: A stopped path needs more than this many points to emit.
        mirror: Flip x so the path reads like a selfie view.
    """

    def __init__(
        self,
        on_complete: Optional[GestureCallback] = None,
        min_interval_ms: int = 30,
        idle_timeout_ms: int = 1500,
        max_duration_ms: int = 10000,
        min_points: int = 10,
        mirror: bool = True,
    ):
        self.on_complete = on_complete
        self.min_interval_ms = min_interval_ms
        self.idle_timeout_ms = idle_timeout_ms
        self.max_duration_ms = max_duration_ms
        self.min_points = min_points
        self.mirror = mirror

        self._points: list[Point] = []
        self._recording = False
        self._started_at: Optional[int] = None
        self._last_point_at: Optional[int] = None

    @classmethod
    def from_config(
        cls, config: AirLinkConfig, on_complete: Optional[GestureCallback] = None, **kwargs
    ) -> GestureRecorder:
        """Build a recorder with the capture timings from ``config``."""
        return cls(
            on_complete=on_complete,
            min_interval_ms=config.min_interval_ms,
            idle_timeout_ms=config.idle_timeout_ms,
            max_duration_ms=config.max_duration_ms,
            **kwargs,
        )

    def start(self, now_ms: Optional[int] = None):
        """Begin a new recording, discarding anything left over."""
        self._reset()
        self._recording = True
        self._started_at = now_ms

    def stop(self, reason: str = "stopped") -> RecordingResult:
        """End the recording and emit the signature if the path is long enough."""
        points = list(self._points)
        was_recording = self._recording
        self._reset()

        signature = ""
        if was_recording and len(points) > self.min_points:
            signature = generate_signature(points)

        result = RecordingResult(signature=signature, points=points, reason=reason)
        if result.ok:
            logger.debug("Recording %s with %d points -> %s", reason, len(points), signature)
            if self.on_complete:
                self.on_complete(signature, points)
        elif was_recording:
            logger.debug("Recording %s with %d points, too short to sign", reason, len(points))
        return result

    def cancel(self):
        """Throw the current path away. Nothing is emitted."""
        if self._recording:
            logger.debug("Recording cancelled (%d points discarded)", len(self._points))
        self._reset()

    def add_point(self, x: float, y: float, timestamp: int) -> bool:
        """Offer a fingertip position. Returns True if it was kept."""
        if not self._recording:
            return False

        if self._started_at is None:
            self._started_at = timestamp

        if self._last_point_at is not None and timestamp - self._last_point_at <= self.min_interval_ms:
            return False

        self._points.append(Point(x=float(x), y=float(y), timestamp=int(timestamp)))
        self._last_point_at = timestamp
        return True

    def feed_landmarks(self, landmarks: np.ndarray, timestamp: int) -> bool:
        """Offer a (21, 2|3) hand landmark array; the index fingertip is recorded."""
        tip = landmarks[INDEX_TIP]
        x = 1.0 - float(tip[0]) if self.mirror else float(tip[0])
        return self.add_point(x, float(tip[1]), timestamp)

    def poll(self, now_ms: int) -> Optional[RecordingResult]:
        """Check the auto-stop timers. Returns a result if the recording ended."""
        if not self._recording:
            return None

        if self._last_point_at is not None and now_ms - self._last_point_at >= self.idle_timeout_ms:
            return self.stop("idle")

        if (
            self.max_duration_ms > 0
            and self._started_at is not None
            and now_ms - self._started_at >= self.max_duration_ms
        ):
            return self.stop("timeout")

        return None

    def _reset(self):
        self._points = []
        self._recording = False
        self._started_at = None
        self._last_point_at = None

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def point_count(self) -> int:
        return len(self._points)

    @property
    def points(self) -> list[Point]:
        return list(self._points)


def save_path(points: list[Point], path: str | Path, signature: Optional[str] = None):
    """Save a recorded path to JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "version": 1,
        "point_count": len(points),
        "signature": signature if signature is not None else generate_signature(points),
        "points": [p.to_dict() for p in points],
    }

    with open(path, "w") as f:
        json.dump(data, f)


class PathPlayer:
    """Replays a saved path into a recorder (or anything taking points).

    Usage:
        player = PathPlayer.load("star.json")
        recorder.start()
        for point in player.play():
            recorder.add_point(point.x, point.y, point.timestamp)
    """

    def __init__(self, points: list[Point]):
        self._points = points

    @classmethod
    def load(cls, path: str | Path) -> PathPlayer:
        """Load a path from JSON. Accepts a saved recording or a bare point list."""
        with open(path) as f:
            data = json.load(f)

        raw = data["points"] if isinstance(data, dict) else data
        points = []
        for i, p in enumerate(raw):
            if isinstance(p, dict):
                points.append(Point.from_dict(p))
            else:
                ts = int(p[2]) if len(p) > 2 else i * 33
                points.append(Point(x=float(p[0]), y=float(p[1]), timestamp=ts))
        return cls(points)

    @property
    def points(self) -> list[Point]:
        return list(self._points)

    @property
    def point_count(self) -> int:
        return len(self._points)

    @property
    def duration_ms(self) -> int:
        if len(self._points) < 2:
            return 0
        return self._points[-1].timestamp - self._points[0].timestamp

    def play(self) -> Iterator[Point]:
        yield from self._points

    def replay_into(self, recorder: GestureRecorder) -> RecordingResult:
        """Feed the path through a recorder in recorded time.

        The recorder's idle and duration limits apply: if one of them ends
        the recording early, the rest of the path is not replayed.
        """
        recorder.start()
        for point in self._points:
            result = recorder.poll(point.timestamp)
            if result is not None:
                return result
            recorder.add_point(point.x, point.y, point.timestamp)
        return recorder.stop()
