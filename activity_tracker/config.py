"""Central configuration for the activity tracker.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Secrets are read from environment variables (optionally
via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Fix filtering
# ---------------------------------------------------------------------------
# Mean Earth radius used by the Haversine distance.
EARTH_RADIUS_M = 6_371_000.0

# Fixes closer together in time than this are rejected as too soon.
FILTER_MIN_ELAPSED_SECONDS = _env_float("FILTER_MIN_ELAPSED_SECONDS", 3.0)

# Lower bound of the movement threshold. The effective threshold is the larger
# of this value and the summed horizontal accuracy of both fixes.
FILTER_MIN_MOVEMENT_M = _env_float("FILTER_MIN_MOVEMENT_M", 15.0)


# ---------------------------------------------------------------------------
# Speed estimation
# ---------------------------------------------------------------------------
# Fused speeds outside [floor, ceiling] are treated as outliers (km/h).
SPEED_FLOOR_KMH = _env_float("SPEED_FLOOR_KMH", 1.5)
SPEED_CEILING_KMH = _env_float("SPEED_CEILING_KMH", 150.0)

MPS_TO_KMH = 3.6


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------
# Interval (seconds) between duration ticks.
TICK_INTERVAL_SECONDS = _env_float("TICK_INTERVAL_SECONDS", 1.0)

# Options passed to the location provider on subscribe.
LOCATION_HIGH_ACCURACY = _env_bool("LOCATION_HIGH_ACCURACY", True)
LOCATION_MAX_FIX_AGE_MS = _env_int("LOCATION_MAX_FIX_AGE_MS", 0)
LOCATION_TIMEOUT_MS = _env_int("LOCATION_TIMEOUT_MS", 5000)

# Threads used for fire-and-forget trackpoint writes and live broadcasts.
BACKGROUND_MAX_WORKERS = _env_int("BACKGROUND_MAX_WORKERS", 2)

# Bytes of entropy in a live-session share code (URL-safe, about 4/3 chars per byte).
SHARE_CODE_BYTES = _env_int("SHARE_CODE_BYTES", 6)


# ---------------------------------------------------------------------------
# Backend settings
# ---------------------------------------------------------------------------
# Base URL of the managed backend (PostgREST + realtime endpoints).
BACKEND_URL = os.getenv("BACKEND_URL", "")

# API key and user token pulled from the environment. Do not hardcode secrets.
BACKEND_API_KEY = os.getenv("BACKEND_API_KEY", "")
BACKEND_ACCESS_TOKEN = os.getenv("BACKEND_ACCESS_TOKEN", "")

# Owner of created activities (the authenticated user).
BACKEND_USER_ID = os.getenv("BACKEND_USER_ID", "")

# HTTP session pool sizes for concurrent requests.
HTTP_POOL_CONNECTIONS = 10
HTTP_POOL_MAXSIZE = 10

# Request timeout in seconds.
REQUEST_TIMEOUT = _env_float("REQUEST_TIMEOUT", 10.0)


# ---------------------------------------------------------------------------
# Replay tool
# ---------------------------------------------------------------------------
# Default workbook name for replay output.
REPLAY_OUTPUT_FILE = "activity_replay"

# Append _YYYYMMDD_HHMMSS to the output name when True.
REPLAY_OUTPUT_TIMESTAMP_ENABLED = _env_bool("REPLAY_OUTPUT_TIMESTAMP_ENABLED", True)

# Keep the trackpoint sheet in a fixed column order.
TRACKPOINT_COLUMN_ORDER = [
    "Recorded At",
    "Latitude",
    "Longitude",
    "Altitude (m)",
    "Distance From Previous (m)",
    "Speed (km/h)",
    "Elevation Delta (m)",
]
