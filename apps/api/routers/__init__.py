"""Routers package."""

from . import (
    health,
    points,
    ai,
)
