"""Session lifecycle: state, subscriptions and the tracking aggregator."""

from .aggregator import TrackerConfig, TrackingSession
from .dispatcher import BackgroundDispatcher, InlineDispatcher
from .state import FixCounters, FixDecision, SessionState, SessionStatus
from .subscriptions import ActiveSubscriptions, Ticker

__all__ = [
    "ActiveSubscriptions",
    "BackgroundDispatcher",
    "FixCounters",
    "FixDecision",
    "InlineDispatcher",
    "SessionState",
    "SessionStatus",
    "Ticker",
    "TrackerConfig",
    "TrackingSession",
]
