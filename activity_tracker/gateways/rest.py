"""Persistence and broadcast over the backend's REST endpoints.

Activities and trackpoints are stored through PostgREST-style table
endpoints (``/rest/v1/<table>``); live fixes go to the realtime broadcast
endpoint. Column names match the backend schema.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, Optional

import requests
from requests import Session

from ..config import (
    BACKEND_ACCESS_TOKEN,
    BACKEND_API_KEY,
    BACKEND_URL,
    BACKEND_USER_ID,
    REQUEST_TIMEOUT,
)
from ..errors import PersistenceWriteError
from ..models import AcceptedFix, ActivitySummary
from ..sport_types import SportType
from .base import generate_share_code
from .http import create_default_session, extract_error

__all__ = ["RestClient", "RestPersistenceGateway", "RestBroadcastChannel"]


class RestClient:
    """Thin authenticated wrapper around a ``requests`` session."""

    def __init__(
        self,
        base_url: str = BACKEND_URL,
        *,
        api_key: str = BACKEND_API_KEY,
        access_token: str = BACKEND_ACCESS_TOKEN,
        session: Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required (set BACKEND_URL)")
        self._log = logging.getLogger(self.__class__.__name__)
        self.base_url = base_url.rstrip("/")
        self._session = session or create_default_session()
        self._timeout = timeout
        self._headers: Dict[str, str] = {}
        if api_key:
            self._headers["apikey"] = api_key
        token = access_token or api_key
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def request(
        self,
        method: str,
        path: str,
        context: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> requests.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.base_url}{path}"
        self._log.debug("%s %s params=%s", method, url, params)
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise PersistenceWriteError(f"{context} failed: {exc}") from exc
        if response.status_code >= 400:
            detail = extract_error(response)
            message = f"{context} failed (status {response.status_code})"
            if detail:
                message = f"{message} | {detail}"
            raise PersistenceWriteError(message)
        return response


class RestPersistenceGateway:
    """Store activities in the ``activities``/``trackpoints`` tables."""

    def __init__(
        self,
        client: RestClient | None = None,
        *,
        user_id: str = BACKEND_USER_ID,
    ) -> None:
        self._client = client or RestClient()
        self._user_id = user_id

    def create_activity(self, sport_type: SportType, started_at: datetime) -> str:
        stamp = started_at.isoformat()
        payload: Dict[str, Any] = {
            "sport_type": sport_type.value,
            "start_time": stamp,
            "end_time": stamp,
        }
        if self._user_id:
            payload["user_id"] = self._user_id
        response = self._client.request(
            "POST",
            "/rest/v1/activities",
            "Create activity",
            json=payload,
            prefer="return=representation",
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise PersistenceWriteError("Create activity returned invalid JSON") from exc
        row = data[0] if isinstance(data, list) and data else data
        if not isinstance(row, dict) or not row.get("id"):
            raise PersistenceWriteError("Create activity response missing id")
        return str(row["id"])

    def append_trackpoint(self, activity_id: str, fix: AcceptedFix) -> None:
        self._client.request(
            "POST",
            "/rest/v1/trackpoints",
            f"Append trackpoint activity={activity_id}",
            json=fix.to_record(activity_id),
            prefer="return=minimal",
        )

    def finalize_activity(self, activity_id: str, summary: ActivitySummary) -> None:
        self._client.request(
            "PATCH",
            "/rest/v1/activities",
            f"Finalize activity={activity_id}",
            params={"id": f"eq.{activity_id}"},
            json=summary.to_record(),
            prefer="return=minimal",
        )


class RestBroadcastChannel:
    """Publish accepted fixes on a per-session realtime topic.

    Shares are rows in the ``live_sessions`` table; viewers resolve a share
    code to the activity while ``is_active`` is true.
    """

    def __init__(
        self,
        client: RestClient | None = None,
        *,
        user_id: str = BACKEND_USER_ID,
        event: str = "trackpoint",
    ) -> None:
        self._client = client or RestClient()
        self._user_id = user_id
        self._event = event

    def open_share(self, activity_id: str) -> str:
        share_code = generate_share_code()
        payload: Dict[str, Any] = {
            "activity_id": activity_id,
            "share_code": share_code,
            "is_active": True,
        }
        if self._user_id:
            payload["user_id"] = self._user_id
        self._client.request(
            "POST",
            "/rest/v1/live_sessions",
            f"Open live session activity={activity_id}",
            json=payload,
            prefer="return=minimal",
        )
        return share_code

    def close_share(self, activity_id: str, ended_at: datetime) -> None:
        self._client.request(
            "PATCH",
            "/rest/v1/live_sessions",
            f"Close live session activity={activity_id}",
            params={"activity_id": f"eq.{activity_id}", "is_active": "eq.true"},
            json={"is_active": False, "ended_at": ended_at.isoformat()},
            prefer="return=minimal",
        )

    @staticmethod
    def topic(session_id: str) -> str:
        return f"live-tracking:{session_id}"

    def publish(self, session_id: str, fix: AcceptedFix) -> None:
        record = fix.to_record(session_id)
        self._client.request(
            "POST",
            "/realtime/v1/api/broadcast",
            f"Broadcast session={session_id}",
            json={
                "messages": [
                    {
                        "topic": self.topic(session_id),
                        "event": self._event,
                        "payload": record,
                    }
                ]
            },
        )
