"""Replay recorded fixes through a tracking session.

Used to reproduce a session offline from a CSV export: the fixes are fed in
order through a :class:`ReplayLocationProvider`, duration ticks are derived
from the fix timestamps, and everything is persisted in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .clock import ManualClock
from .config import MPS_TO_KMH, TRACKPOINT_COLUMN_ORDER
from .gateways.memory import InMemoryBroadcastChannel, InMemoryPersistenceGateway
from .models import AcceptedFix, ActivitySummary, RawFix
from .providers import ReplayLocationProvider
from .session.aggregator import TrackerConfig, TrackingSession
from .session.dispatcher import InlineDispatcher
from .session.state import FixCounters
from .sport_types import SportType

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ReplayResult",
    "load_fixes_csv",
    "fixes_from_frame",
    "replay_fixes",
    "summary_rows",
    "trackpoint_rows",
    "write_replay_workbook",
]

# Accepted spellings for each RawFix field, first match wins.
_COLUMN_ALIASES: Dict[str, Sequence[str]] = {
    "timestamp": ("timestamp", "time", "recorded_at", "geotime"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lon", "lng"),
    "altitude_m": ("altitude_m", "altitude", "alt", "elevation"),
    "reported_speed_mps": ("speed_mps", "speed", "reported_speed_mps"),
    "accuracy_m": ("accuracy_m", "accuracy", "horizontal_accuracy_m", "horizontalaccuracy"),
}
_REQUIRED = ("timestamp", "latitude", "longitude")


@dataclass(slots=True)
class ReplayResult:
    summary: ActivitySummary
    accepted: List[AcceptedFix]
    counters: FixCounters
    fixes_read: int


def _resolve_columns(columns: Iterable[str]) -> Dict[str, str]:
    lookup = {str(col).strip().lower(): str(col) for col in columns}
    resolved: Dict[str, str] = {}
    for field_name, aliases in _COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in lookup:
                resolved[field_name] = lookup[alias]
                break
    missing = [name for name in _REQUIRED if name not in resolved]
    if missing:
        raise ValueError(f"CSV is missing required columns: {', '.join(missing)}")
    return resolved


def _parse_timestamps(series: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(series):
        # Epoch milliseconds, as exported by most phone loggers.
        return pd.to_datetime(series, unit="ms", utc=True, errors="coerce")
    return pd.to_datetime(series, utc=True, errors="coerce")


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def fixes_from_frame(frame: pd.DataFrame) -> List[RawFix]:
    """Convert a DataFrame of fixes into ordered :class:`RawFix` objects.

    Rows with an unparseable time or coordinate are skipped.
    """

    columns = _resolve_columns(frame.columns)
    timestamps = _parse_timestamps(frame[columns["timestamp"]])
    fixes: List[RawFix] = []
    skipped = 0
    for index, row in frame.iterrows():
        stamp = timestamps.loc[index]
        lat = _optional_float(row[columns["latitude"]])
        lon = _optional_float(row[columns["longitude"]])
        if pd.isna(stamp) or lat is None or lon is None:
            skipped += 1
            continue
        fixes.append(
            RawFix(
                latitude=lat,
                longitude=lon,
                timestamp=stamp.to_pydatetime(),
                altitude_m=_optional_float(row[columns["altitude_m"]])
                if "altitude_m" in columns
                else None,
                reported_speed_mps=_optional_float(row[columns["reported_speed_mps"]])
                if "reported_speed_mps" in columns
                else None,
                accuracy_m=_optional_float(row[columns["accuracy_m"]])
                if "accuracy_m" in columns
                else None,
            )
        )
    if skipped:
        LOGGER.warning("Skipped %d rows with missing time or coordinates", skipped)
    fixes.sort(key=lambda fix: fix.timestamp)
    return fixes


def load_fixes_csv(path: str | Path) -> List[RawFix]:
    frame = pd.read_csv(path)
    LOGGER.info("Loaded %d rows from %s", len(frame), path)
    return fixes_from_frame(frame)


def replay_fixes(
    fixes: Sequence[RawFix],
    sport_type: SportType | str,
    *,
    config: TrackerConfig | None = None,
    gateway: InMemoryPersistenceGateway | None = None,
    share_live: bool = False,
) -> ReplayResult:
    """Run ``fixes`` through a fresh session and return its final summary."""

    if not fixes:
        raise ValueError("No fixes to replay")
    # Ticks are derived from fix timestamps instead of the wall clock.
    config = replace(config or TrackerConfig(), tick_interval_s=None)
    clock = ManualClock(fixes[0].timestamp)
    provider = ReplayLocationProvider()
    gateway = gateway or InMemoryPersistenceGateway()
    session = TrackingSession(
        provider,
        gateway,
        broadcast=InMemoryBroadcastChannel() if share_live else None,
        clock=clock,
        config=config,
        dispatcher=InlineDispatcher(),
    )
    session.start(sport_type, share_live=share_live)
    tick_at = clock.now()
    for fix in fixes:
        while (fix.timestamp - tick_at).total_seconds() >= 1.0:
            tick_at = clock.advance(1.0)
            session.tick()
        provider.push(fix)
        session.drain()
    summary = session.stop()
    state = session.state
    return ReplayResult(
        summary=summary,
        accepted=list(state.accepted_fixes),
        counters=state.counters,
        fixes_read=len(fixes),
    )


def format_duration(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS``."""

    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def summary_rows(result: ReplayResult) -> List[Dict[str, Any]]:
    summary = result.summary
    counters = result.counters
    rows: List[tuple[str, Any]] = [
        ("Sport", summary.sport_type.display_name),
        ("Started", summary.started_at.isoformat()),
        ("Ended", summary.ended_at.isoformat()),
        ("Duration", format_duration(summary.total_time_s)),
        ("Moving Time", format_duration(summary.moving_time_s)),
        ("Distance (km)", round(summary.total_distance_m / 1000.0, 3)),
        ("Avg Speed (km/h)", round(summary.average_speed_mps * MPS_TO_KMH, 2)),
        ("Max Speed (km/h)", round(summary.max_speed_mps * MPS_TO_KMH, 2)),
        ("Elevation Gain (m)", round(summary.elevation_gain_m, 1)),
        ("Elevation Loss (m)", round(summary.elevation_loss_m, 1)),
        ("Vertical Drop (m)", round(summary.vertical_drop_m, 1)),
        ("Min Altitude (m)", summary.min_altitude_m),
        ("Max Altitude (m)", summary.max_altitude_m),
        ("Fixes Read", result.fixes_read),
        ("Trackpoints", summary.trackpoint_count),
        ("Rejected Too Soon", counters.too_soon),
        ("Rejected Stationary", counters.stationary),
        ("Rejected Outlier", counters.outlier),
    ]
    return [{"Metric": name, "Value": value} for name, value in rows]


def trackpoint_rows(accepted: Iterable[AcceptedFix]) -> List[Dict[str, Any]]:
    rows = []
    for fix in accepted:
        recorded: datetime = fix.timestamp
        rows.append(
            {
                "Recorded At": recorded.isoformat(),
                "Latitude": fix.latitude,
                "Longitude": fix.longitude,
                "Altitude (m)": fix.altitude_m,
                "Distance From Previous (m)": round(fix.distance_from_previous_m, 2),
                "Speed (km/h)": round(fix.fused_speed_kmh, 2),
                "Elevation Delta (m)": round(fix.elevation_delta_m, 2),
            }
        )
    return rows


def write_replay_workbook(result: ReplayResult, output_path: str | Path) -> Path:
    """Write Summary and Trackpoints sheets to an ``.xlsx`` workbook."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary_df = pd.DataFrame(summary_rows(result), columns=["Metric", "Value"])
    points_df = pd.DataFrame(
        trackpoint_rows(result.accepted), columns=TRACKPOINT_COLUMN_ORDER
    )
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        summary_df.to_excel(writer, sheet_name="Summary", index=False)
        points_df.to_excel(writer, sheet_name="Trackpoints", index=False)
    LOGGER.info("Replay workbook written to %s (%d trackpoints)", path, len(points_df))
    return path
