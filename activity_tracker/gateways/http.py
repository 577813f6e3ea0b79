"""HTTP session factory and response helpers for backend calls."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_default_session", "extract_error"]


def _build_retry() -> Retry:
    # Trackpoint writes are best-effort and must not be retried.
    return Retry(total=0, connect=0, read=0, status=0, raise_on_status=False)


def create_default_session() -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
    )
    return session


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return a compact string with backend error info if present."""

    if resp is None:
        return None
    data = _safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts: List[str] = []
    for key in ("message", "code", "details", "hint"):
        value = data.get(key)
        if value:
            parts.append(str(value))
    return " | ".join(parts) if parts else None


def _safe_json(resp: requests.Response) -> Optional[Any]:
    try:
        return resp.json()
    except ValueError as exc:  # pragma: no cover - logging path
        logging.debug(
            "Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc
        )
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed
