"""Noise filter deciding which raw fixes represent genuine movement."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from ..config import FILTER_MIN_ELAPSED_SECONDS, FILTER_MIN_MOVEMENT_M
from ..models import AcceptedFix, RawFix
from .geo import distance_between

__all__ = [
    "FilterConfig",
    "Accept",
    "RejectStationary",
    "RejectTooSoon",
    "FilterVerdict",
    "FixFilter",
]


@dataclass(frozen=True, slots=True)
class FilterConfig:
    """Thresholds applied by :class:`FixFilter`."""

    min_elapsed_s: float = field(default_factory=lambda: FILTER_MIN_ELAPSED_SECONDS)
    min_movement_m: float = field(default_factory=lambda: FILTER_MIN_MOVEMENT_M)


@dataclass(frozen=True, slots=True)
class Accept:
    distance_m: float
    elapsed_s: float


@dataclass(frozen=True, slots=True)
class RejectStationary:
    distance_m: float
    threshold_m: float


@dataclass(frozen=True, slots=True)
class RejectTooSoon:
    elapsed_s: float


FilterVerdict = Union[Accept, RejectStationary, RejectTooSoon]


def _accuracy_or_zero(value: Optional[float]) -> float:
    if value is None or value < 0:
        return 0.0
    return value


class FixFilter:
    """Classify a candidate fix against the previously accepted one.

    The filter is a pure function of the two fixes. It never raises; missing
    optional fields degrade to neutral defaults so that absent accuracy does
    not block movement detection.
    """

    def __init__(self, config: FilterConfig | None = None) -> None:
        self.config = config or FilterConfig()

    def movement_threshold_m(self, previous: RawFix, candidate: RawFix) -> float:
        summed = _accuracy_or_zero(previous.accuracy_m) + _accuracy_or_zero(
            candidate.accuracy_m
        )
        return max(self.config.min_movement_m, summed)

    def evaluate(
        self, previous: AcceptedFix | None, candidate: RawFix
    ) -> FilterVerdict:
        if previous is None:
            return Accept(distance_m=0.0, elapsed_s=0.0)
        elapsed_s = (candidate.timestamp - previous.timestamp).total_seconds()
        # Out-of-order fixes (negative elapsed) land here as well.
        if elapsed_s < self.config.min_elapsed_s:
            return RejectTooSoon(elapsed_s=elapsed_s)
        distance_m = distance_between(previous.fix.latlon, candidate.latlon)
        threshold_m = self.movement_threshold_m(previous.fix, candidate)
        if distance_m < threshold_m:
            return RejectStationary(distance_m=distance_m, threshold_m=threshold_m)
        return Accept(distance_m=distance_m, elapsed_s=elapsed_s)
