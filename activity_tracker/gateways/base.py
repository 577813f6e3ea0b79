"""Contracts for the persistence and live broadcast collaborators."""

from __future__ import annotations

from datetime import datetime
import secrets
from typing import Protocol

from ..config import SHARE_CODE_BYTES
from ..models import AcceptedFix, ActivitySummary
from ..sport_types import SportType

__all__ = ["PersistenceGateway", "BroadcastChannel", "generate_share_code"]


def generate_share_code(nbytes: int = SHARE_CODE_BYTES) -> str:
    """Return a random URL-safe code viewers use to find a live session."""

    return secrets.token_urlsafe(max(1, nbytes))


class PersistenceGateway(Protocol):
    """Durable store for activities and their trackpoints.

    Every method may raise :class:`~activity_tracker.errors.PersistenceWriteError`.
    """

    def create_activity(self, sport_type: SportType, started_at: datetime) -> str: ...

    def append_trackpoint(self, activity_id: str, fix: AcceptedFix) -> None: ...

    def finalize_activity(self, activity_id: str, summary: ActivitySummary) -> None: ...


class BroadcastChannel(Protocol):
    """Best-effort push of accepted fixes to live viewers.

    ``open_share`` registers the session under a fresh share code and returns
    it; ``close_share`` marks it inactive so viewers see the session ended.
    """

    def open_share(self, activity_id: str) -> str: ...

    def publish(self, session_id: str, fix: AcceptedFix) -> None: ...

    def close_share(self, activity_id: str, ended_at: datetime) -> None: ...
