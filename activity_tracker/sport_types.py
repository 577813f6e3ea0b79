"""Utilities for classifying supported sport types."""

from __future__ import annotations

from enum import Enum
from typing import Any

from .errors import ValidationError

__all__ = ["SportType", "normalize_sport_type", "parse_sport_type"]


class SportType(str, Enum):
    """Sports supported by the backend ``sport_type`` enum."""

    SKI = "ski"
    BIKE = "bike"
    OFFROAD = "offroad"
    HIKE = "hike"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    SportType.SKI: "Skiing",
    SportType.BIKE: "Dirt Biking",
    SportType.OFFROAD: "Off-Roading",
    SportType.HIKE: "Hiking",
}

_ALIASES = {
    "skiing": SportType.SKI,
    "dirtbike": SportType.BIKE,
    "dirtbiking": SportType.BIKE,
    "biking": SportType.BIKE,
    "offroading": SportType.OFFROAD,
    "hiking": SportType.HIKE,
}


def normalize_sport_type(value: Any) -> str | None:
    """Return a lowercase sport key with separators removed, or ``None``.

    UI labels arrive as ``"Off-Roading"`` or ``"dirt biking"`` as often as the
    enum value itself, so spaces, hyphens and underscores are dropped before
    comparison.
    """

    if value is None:
        return None
    normalized = str(value).strip().lower()
    for sep in (" ", "-", "_"):
        normalized = normalized.replace(sep, "")
    return normalized or None


def parse_sport_type(value: Any) -> SportType:
    """Resolve ``value`` to a :class:`SportType`.

    Raises:
        ValidationError: If the value is empty or not a supported sport.
    """

    if isinstance(value, SportType):
        return value
    normalized = normalize_sport_type(value)
    if normalized is None:
        raise ValidationError("Sport type is required")
    for sport in SportType:
        if sport.value == normalized:
            return sport
    alias = _ALIASES.get(normalized)
    if alias is None:
        raise ValidationError(f"Unsupported sport type: {value!r}")
    return alias
