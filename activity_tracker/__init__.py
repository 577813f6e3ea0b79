"""Live GPS activity tracking package."""

from .main import main
from .models import AcceptedFix, ActivitySummary, LiveSnapshot, RawFix
from .session import TrackerConfig, TrackingSession
from .sport_types import SportType
from .errors import (
    PermissionDeniedError,
    PersistenceWriteError,
    TrackingError,
    TransientGpsError,
    ValidationError,
)

__all__ = [
    "main",
    "AcceptedFix",
    "ActivitySummary",
    "LiveSnapshot",
    "RawFix",
    "TrackerConfig",
    "TrackingSession",
    "SportType",
    "PermissionDeniedError",
    "PersistenceWriteError",
    "TrackingError",
    "TransientGpsError",
    "ValidationError",
]
