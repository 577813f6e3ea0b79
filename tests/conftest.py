"""Global pytest fixtures & helpers.

Adds project root to path and provides reusable fix builders and session
fixtures so scenario tests don't repeat the wiring.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from activity_tracker.clock import ManualClock
from activity_tracker.errors import TrackingError
from activity_tracker.gateways.memory import (
    InMemoryBroadcastChannel,
    InMemoryPersistenceGateway,
)
from activity_tracker.models import AcceptedFix, RawFix
from activity_tracker.providers import ReplayLocationProvider
from activity_tracker.session import (
    InlineDispatcher,
    SessionStatus,
    TrackerConfig,
    TrackingSession,
)

T0 = datetime(2024, 2, 10, 9, 0, 0, tzinfo=timezone.utc)

# Meters per degree of latitude on the 6,371 km sphere.
M_PER_DEG_LAT = 6_371_000.0 * 3.141592653589793 / 180.0


# --- Factory helpers -------------------------------------------------
def make_fix(
    seconds: float = 0.0,
    lat: float = 0.0,
    lon: float = 0.0,
    *,
    altitude: float | None = None,
    speed: float | None = None,
    accuracy: float | None = None,
):
    return RawFix(
        latitude=lat,
        longitude=lon,
        timestamp=T0 + timedelta(seconds=seconds),
        altitude_m=altitude,
        reported_speed_mps=speed,
        accuracy_m=accuracy,
    )


def north_of(meters: float, lat: float = 0.0) -> float:
    """Latitude ``meters`` north of ``lat``."""
    return lat + meters / M_PER_DEG_LAT


def accepted(fix: RawFix) -> AcceptedFix:
    return AcceptedFix(
        fix=fix, distance_from_previous_m=0.0, fused_speed_mps=0.0, elevation_delta_m=0.0
    )


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def gateway():
    return InMemoryPersistenceGateway()


@pytest.fixture
def broadcast():
    return InMemoryBroadcastChannel()


@pytest.fixture
def provider():
    return ReplayLocationProvider()


@pytest.fixture
def make_session(provider, gateway, broadcast, clock):
    created = []

    def _make(**kwargs):
        kwargs.setdefault("broadcast", broadcast)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("config", TrackerConfig(tick_interval_s=None))
        kwargs.setdefault("dispatcher", InlineDispatcher())
        session = TrackingSession(
            kwargs.pop("provider", provider),
            kwargs.pop("gateway", gateway),
            **kwargs,
        )
        created.append(session)
        return session

    yield _make

    for session in created:
        if session.status in (SessionStatus.TRACKING, SessionStatus.PAUSED):
            try:
                session.stop()
            except TrackingError:
                pass


@pytest.fixture
def session(make_session):
    """A started ski session driven synchronously (no ticker thread)."""
    s = make_session()
    s.start("ski")
    return s
