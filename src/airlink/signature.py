"""Gesture signatures: reduce a fingertip path to a short direction string.

A path is normalized to its bounding box (position and size drop out),
subsampled to at most 16 points, and each step between samples is
quantized into one of 8 compass directions. The digits form the signature
that two devices compare to pair up.

Rotation, mirroring and drawing speed are NOT normalized away: the same
shape drawn tilted produces a different signature.

Usage:
    sig = generate_signature(points)
    if not sig:
        # fewer than 10 points, keep recording
        ...
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Union

import numpy as np

SIGNATURE_MIN_POINTS = 10
SIGNATURE_SAMPLE_SIZE = 16
DIRECTION_BUCKETS = 8

_BUCKET_WIDTH = math.pi / 4


@dataclass(frozen=True)
class Point:
    """A single fingertip sample, normalized to the camera frame."""
    x: float  # 0–1
    y: float  # 0–1
    timestamp: int = 0  # milliseconds

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> Point:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            timestamp=int(data.get("timestamp", 0)),
        )


PathLike = Union[Sequence[Point], Sequence[Sequence[float]], np.ndarray]


def as_xy(points: PathLike | Iterable) -> np.ndarray:
    """Coerce a path into an (N, 2) float64 array of x/y coordinates.

    Accepts Point objects, dicts with x/y keys, (x, y[, t]) tuples or an
    (N, 2|3) array. Timestamps are dropped, and so are samples with a
    NaN or infinite coordinate (tracker dropouts).
    """
    if isinstance(points, np.ndarray):
        arr = points.astype(np.float64, copy=False)
        if arr.ndim != 2 or arr.shape[1] < 2:
            if arr.size == 0:
                return np.zeros((0, 2), dtype=np.float64)
            raise ValueError(f"Expected an (N, 2) path, got shape {arr.shape}")
        arr = arr[:, :2]
    else:
        rows = []
        for p in points:
            if isinstance(p, Point):
                rows.append((p.x, p.y))
            elif isinstance(p, dict):
                rows.append((float(p["x"]), float(p["y"])))
            else:
                rows.append((float(p[0]), float(p[1])))

        if not rows:
            return np.zeros((0, 2), dtype=np.float64)
        arr = np.array(rows, dtype=np.float64)

    return arr[np.isfinite(arr).all(axis=1)]


def normalize_points(points: PathLike) -> np.ndarray:
    """Map a path into the unit square using its bounding box.

    An axis with zero extent is divided by 1 instead, so a perfectly
    horizontal or vertical stroke still normalizes.
    """
    pts = as_xy(points)
    if len(pts) == 0:
        return pts

    lo = pts.min(axis=0)
    span = pts.max(axis=0) - lo
    span = np.where(span == 0, 1.0, span)
    return (pts - lo) / span


def _subsample(normalized: np.ndarray) -> np.ndarray:
    # Short paths (fewer than 16 points) keep every point.
    step = max(1, len(normalized) // SIGNATURE_SAMPLE_SIZE)
    return normalized[::step][:SIGNATURE_SAMPLE_SIZE]


def quantize_direction(dx: float, dy: float) -> int:
    """Quantize a step into one of 8 direction buckets of width pi/4.

    Bucket 0 points along -x, 2 along -y, 4 along +x and 6 along +y.
    Halfway angles round up.
    """
    angle = math.atan2(dy, dx)
    return int(math.floor((angle + math.pi) / _BUCKET_WIDTH + 0.5)) % DIRECTION_BUCKETS


def generate_signature(points: PathLike) -> str:
    """Compute the direction signature of a path.

    Returns:
        A string over '0'..'7' of length (samples - 1), at most 15
        characters. Empty string if the path has fewer than 10 points.
    """
    pts = as_xy(points)
    if len(pts) < SIGNATURE_MIN_POINTS:
        return ""

    sampled = _subsample(normalize_points(pts))
    deltas = np.diff(sampled, axis=0)

    return "".join(
        str(quantize_direction(float(dx), float(dy))) for dx, dy in deltas
    )
