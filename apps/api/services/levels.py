"""Level thresholds derived from lifetime earned points."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


# (level, minimum lifetime earned points, benefits)
LEVEL_THRESHOLDS = (
    (1, 0, ("Basic features",)),
    (2, 500, ("Basic features", "Premium templates")),
    (3, 1500, ("Basic features", "Premium templates", "AI analysis")),
    (4, 3000, ("Basic features", "Premium templates", "AI analysis", "Priority support")),
    (5, 6000, ("All features", "Dedicated support", "Custom services")),
)


def level_for_points(lifetime_points: int) -> int:
    """Return the level reached with the given lifetime earned points."""
    points = max(int(lifetime_points or 0), 0)
    current = LEVEL_THRESHOLDS[0][0]
    for level, min_points, _benefits in LEVEL_THRESHOLDS:
        if points >= min_points:
            current = level
    return current


def next_level_threshold(lifetime_points: int) -> Optional[Dict[str, int]]:
    """Return the next level and the points still missing, or None at max level."""
    points = max(int(lifetime_points or 0), 0)
    for level, min_points, _benefits in LEVEL_THRESHOLDS:
        if points < min_points:
            return {"level": level, "min_points": min_points, "points_needed": min_points - points}
    return None


def level_table() -> List[Dict[str, Any]]:
    return [
        {"level": level, "min_points": min_points, "benefits": list(benefits)}
        for level, min_points, benefits in LEVEL_THRESHOLDS
    ]
