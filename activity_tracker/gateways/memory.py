"""In-process gateway implementations used by the replay tool and tests."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
import threading
from typing import Any, Dict, List, Optional, Tuple
import uuid

from ..errors import PersistenceWriteError
from ..models import AcceptedFix, ActivitySummary
from ..sport_types import SportType
from .base import generate_share_code

__all__ = ["InMemoryPersistenceGateway", "InMemoryBroadcastChannel"]


class InMemoryPersistenceGateway:
    """Thread-safe store keeping activity rows and trackpoints in dicts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.activities: Dict[str, Dict[str, Any]] = {}
        self.trackpoints: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.summaries: Dict[str, ActivitySummary] = {}
        self.finalize_calls = 0

    def create_activity(self, sport_type: SportType, started_at: datetime) -> str:
        activity_id = str(uuid.uuid4())
        with self._lock:
            self.activities[activity_id] = {
                "id": activity_id,
                "sport_type": sport_type.value,
                "start_time": started_at.isoformat(),
                "end_time": started_at.isoformat(),
                "total_distance_m": 0.0,
            }
        return activity_id

    def append_trackpoint(self, activity_id: str, fix: AcceptedFix) -> None:
        with self._lock:
            if activity_id not in self.activities:
                raise PersistenceWriteError(f"Unknown activity {activity_id}")
            self.trackpoints[activity_id].append(fix.to_record(activity_id))

    def finalize_activity(self, activity_id: str, summary: ActivitySummary) -> None:
        with self._lock:
            self.finalize_calls += 1
            row = self.activities.get(activity_id)
            if row is None:
                raise PersistenceWriteError(f"Unknown activity {activity_id}")
            row.update(summary.to_record())
            self.summaries[activity_id] = summary


class InMemoryBroadcastChannel:
    """Collects published fixes per session and tracks open shares."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.messages: List[Tuple[str, AcceptedFix]] = []
        self.live_sessions: Dict[str, Dict[str, Any]] = {}

    def open_share(self, activity_id: str) -> str:
        with self._lock:
            code = generate_share_code()
            while code in self.live_sessions:
                code = generate_share_code()
            self.live_sessions[code] = {
                "activity_id": activity_id,
                "share_code": code,
                "is_active": True,
                "ended_at": None,
            }
        return code

    def close_share(self, activity_id: str, ended_at: datetime) -> None:
        with self._lock:
            for row in self.live_sessions.values():
                if row["activity_id"] == activity_id and row["is_active"]:
                    row["is_active"] = False
                    row["ended_at"] = ended_at.isoformat()

    def find_by_code(self, share_code: str) -> Optional[Dict[str, Any]]:
        """Return the live session row while it is active, like a viewer lookup."""

        with self._lock:
            row = self.live_sessions.get(share_code)
            if row is None or not row["is_active"]:
                return None
            return dict(row)

    def publish(self, session_id: str, fix: AcceptedFix) -> None:
        with self._lock:
            self.messages.append((session_id, fix))

    def for_session(self, session_id: str) -> List[AcceptedFix]:
        with self._lock:
            return [fix for sid, fix in self.messages if sid == session_id]
