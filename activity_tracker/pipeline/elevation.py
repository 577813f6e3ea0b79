"""Running elevation statistics."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

__all__ = ["ElevationStats", "ElevationTracker"]


@dataclass(frozen=True, slots=True)
class ElevationStats:
    """Altitude extremes and accumulated gain for a session.

    ``reference_altitude_m`` is the altitude of the last accepted fix and is
    the baseline for gain; ``current_altitude_m`` follows every
    altitude-bearing fix, accepted or not.
    """

    min_altitude_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    gain_m: float = 0.0
    # Loss is not accumulated yet; always reported as 0.
    loss_m: float = 0.0
    reference_altitude_m: Optional[float] = None
    current_altitude_m: Optional[float] = None

    @property
    def vertical_drop_m(self) -> float:
        if self.min_altitude_m is None or self.max_altitude_m is None:
            return 0.0
        return self.max_altitude_m - self.min_altitude_m


class ElevationTracker:
    """Fold altitudes into :class:`ElevationStats` values."""

    @staticmethod
    def delta(stats: ElevationStats, altitude: Optional[float]) -> float:
        """Signed change from the last accepted altitude, 0 when unknown."""

        if altitude is None or stats.reference_altitude_m is None:
            return 0.0
        return altitude - stats.reference_altitude_m

    def update(
        self,
        stats: ElevationStats,
        altitude: Optional[float],
        *,
        accumulate_gain: bool = True,
    ) -> ElevationStats:
        """Return ``stats`` refined by ``altitude``.

        Rejected fixes pass ``accumulate_gain=False``: they refine the extremes
        and the displayed altitude but never move the gain baseline.
        """

        if altitude is None:
            return stats
        min_alt = altitude if stats.min_altitude_m is None else min(stats.min_altitude_m, altitude)
        max_alt = altitude if stats.max_altitude_m is None else max(stats.max_altitude_m, altitude)
        updated = replace(
            stats,
            min_altitude_m=min_alt,
            max_altitude_m=max_alt,
            current_altitude_m=altitude,
        )
        if not accumulate_gain:
            return updated
        gain = stats.gain_m + max(0.0, self.delta(stats, altitude))
        return replace(updated, gain_m=gain, reference_altitude_m=altitude)
