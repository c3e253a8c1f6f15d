"""Shape templates and path-to-template scoring for drawing guidance.

The catalog is a closed set of named shapes. A user's path is normalized to
its bounding box, both polylines are resampled to 32 points at constant arc
length, and the mean index-aligned distance is turned into a similarity in
[0, 1]. There is no alignment search: the shape must be traced start-to-end
in the template's direction and orientation.

Usage:
    result = find_best_match(points)
    if result and result.is_actionable:
        print(f"Looks like a {result.template.name} ({result.similarity:.2f})")
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from airlink.signature import PathLike, as_xy, normalize_points

RESAMPLE_POINTS = 32
MATCH_MIN_POINTS = 5
MATCH_FLOOR = 0.5
ACTIONABLE_SIMILARITY = 0.7


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True)
class GestureTemplate:
    """A reference shape, pre-normalized to the unit square."""
    id: str
    name: str
    icon: str
    points: tuple[tuple[float, float], ...]
    difficulty: Difficulty

    def as_array(self) -> np.ndarray:
        return np.array(self.points, dtype=np.float64)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "difficulty": self.difficulty.value,
            "points": [{"x": x, "y": y} for x, y in self.points],
        }


@dataclass
class TemplateMatch:
    """Best template for a path and how closely the path follows it."""
    template: GestureTemplate
    similarity: float  # 0–1, higher = better match

    @property
    def is_actionable(self) -> bool:
        """Whether the match is strong enough to act on as feedback."""
        return self.similarity >= ACTIONABLE_SIMILARITY

    def to_dict(self) -> dict:
        return {
            "template_id": self.template.id,
            "name": self.template.name,
            "similarity": round(self.similarity, 4),
            "actionable": self.is_actionable,
        }


def _circle_points(steps: int = 32) -> tuple[tuple[float, float], ...]:
    pts = []
    for i in range(steps + 1):
        angle = (i / steps) * math.pi * 2 - math.pi / 2
        pts.append((0.5 + 0.4 * math.cos(angle), 0.5 + 0.4 * math.sin(angle)))
    return tuple(pts)


def _heart_points(steps: int = 40) -> tuple[tuple[float, float], ...]:
    pts = []
    for i in range(steps + 1):
        t = (i / steps) * math.pi * 2
        x = 16 * math.sin(t) ** 3
        y = 13 * math.cos(t) - 5 * math.cos(2 * t) - 2 * math.cos(3 * t) - math.cos(4 * t)
        pts.append(((x + 16) / 32, 1 - (y + 17) / 34))
    return tuple(pts)


class TemplateCatalog(Enum):
    """The built-in shape catalog. Fixed for the lifetime of the process."""

    STAR = GestureTemplate(
        id="star",
        name="Star",
        icon="⭐",
        difficulty=Difficulty.MEDIUM,
        points=(
            (0.5, 0.0), (0.62, 0.38), (1.0, 0.38), (0.69, 0.62),
            (0.81, 1.0), (0.5, 0.75), (0.19, 1.0), (0.31, 0.62),
            (0.0, 0.38), (0.38, 0.38), (0.5, 0.0),
        ),
    )
    HEART = GestureTemplate(
        id="heart",
        name="Heart",
        icon="❤️",
        difficulty=Difficulty.MEDIUM,
        points=_heart_points(),
    )
    CIRCLE = GestureTemplate(
        id="circle",
        name="Circle",
        icon="⭕",
        difficulty=Difficulty.EASY,
        points=_circle_points(),
    )
    CHECK = GestureTemplate(
        id="check",
        name="Checkmark",
        icon="✓",
        difficulty=Difficulty.EASY,
        points=((0.0, 0.5), (0.35, 1.0), (1.0, 0.0)),
    )
    TRIANGLE = GestureTemplate(
        id="triangle",
        name="Triangle",
        icon="△",
        difficulty=Difficulty.EASY,
        points=((0.5, 0.0), (1.0, 1.0), (0.0, 1.0), (0.5, 0.0)),
    )
    ZIGZAG = GestureTemplate(
        id="zigzag",
        name="Zigzag",
        icon="⚡",
        difficulty=Difficulty.HARD,
        points=((0.3, 0.0), (0.7, 0.25), (0.3, 0.5), (0.7, 0.75), (0.3, 1.0)),
    )

    @classmethod
    def templates(cls) -> list[GestureTemplate]:
        return [member.value for member in cls]

    @classmethod
    def get(cls, template_id: str) -> Optional[GestureTemplate]:
        """Look up a template by its id, e.g. ``"star"``."""
        for member in cls:
            if member.value.id == template_id:
                return member.value
        return None


def _resample_path(points: np.ndarray, n_points: int = RESAMPLE_POINTS) -> np.ndarray:
    """Resample a polyline to exactly ``n_points`` at constant arc length.

    Walks the segments accumulating length; each time the accumulated length
    reaches ``total / (n_points - 1)`` an interpolated point is emitted and
    the walk restarts from it. Short output (float drift) is padded with the
    last point.
    """
    if len(points) == 0:
        return np.zeros((0, 2), dtype=np.float64)

    pts = [np.asarray(p, dtype=np.float64) for p in points]
    if len(pts) == 1:
        return np.tile(pts[0], (n_points, 1))

    total = float(np.sum(np.linalg.norm(np.diff(points, axis=0), axis=1)))
    if total < 1e-12:
        return np.tile(pts[0], (n_points, 1))

    interval = total / (n_points - 1)
    resampled = [pts[0]]
    accumulated = 0.0
    i = 1

    while len(resampled) < n_points and i < len(pts):
        delta = pts[i] - pts[i - 1]
        seg_len = float(np.hypot(delta[0], delta[1]))

        if accumulated + seg_len >= interval:
            t = (interval - accumulated) / seg_len
            new_point = pts[i - 1] + t * delta
            resampled.append(new_point)
            pts = [new_point] + pts[i:]
            i = 1
            accumulated = 0.0
        else:
            accumulated += seg_len
            i += 1

    while len(resampled) < n_points:
        resampled.append(pts[-1])

    return np.array(resampled, dtype=np.float64)


def match_template(points: PathLike, template: GestureTemplate) -> float:
    """Score how closely a path follows a template.

    Returns:
        Similarity in [0, 1]; 0 when the path has fewer than 5 points.
        A mean per-point offset of half the canvas scores 0.
    """
    user = as_xy(points)
    if len(user) < MATCH_MIN_POINTS:
        return 0.0

    user_resampled = _resample_path(normalize_points(user), RESAMPLE_POINTS)
    tmpl_resampled = _resample_path(template.as_array(), RESAMPLE_POINTS)

    mean_distance = float(np.mean(np.linalg.norm(user_resampled - tmpl_resampled, axis=1)))
    return max(0.0, 1.0 - mean_distance * 2.0)


def score_all(
    points: PathLike, catalog: Optional[Iterable[GestureTemplate]] = None
) -> list[TemplateMatch]:
    """Score a path against every template, best first."""
    if catalog is None:
        templates = TemplateCatalog.templates()
    else:
        templates = [t.value if isinstance(t, TemplateCatalog) else t for t in catalog]
    scores = [TemplateMatch(t, match_template(points, t)) for t in templates]
    scores.sort(key=lambda m: m.similarity, reverse=True)
    return scores


def find_best_match(
    points: PathLike,
    catalog: Optional[Iterable[GestureTemplate]] = None,
    floor: float = MATCH_FLOOR,
) -> Optional[TemplateMatch]:
    """Find the template a path most resembles.

    Only reports a match whose similarity is strictly above ``floor``. Callers
    should still check ``is_actionable`` before treating it as feedback.
    """
    if len(as_xy(points)) < MATCH_MIN_POINTS:
        return None

    scores = score_all(points, catalog)
    best = scores[0] if scores else None

    if best is not None and best.similarity > floor:
        return best
    return None


def guide(points: PathLike, template: GestureTemplate) -> TemplateMatch:
    """Score a path against the one template the user chose to trace."""
    return TemplateMatch(template, match_template(points, template))
