"""Central error types used across the application."""

from __future__ import annotations


class TrackingError(RuntimeError):
    """Base error for tracking session failures."""


class ValidationError(TrackingError, ValueError):
    """Raised when a sport type or session parameter is malformed."""


class SessionStateError(TrackingError):
    """Raised when a lifecycle transition is not valid from the current state."""


class LocationError(TrackingError):
    """Base error reported by a location provider."""


class PermissionDeniedError(LocationError):
    """Raised when location access is denied; fatal to the session."""


class TransientGpsError(LocationError):
    """Raised for recoverable GPS failures (timeouts, signal loss)."""


class PersistenceWriteError(TrackingError):
    """Raised when the persistence gateway fails to store a record."""


__all__ = [
    "TrackingError",
    "ValidationError",
    "SessionStateError",
    "LocationError",
    "PermissionDeniedError",
    "TransientGpsError",
    "PersistenceWriteError",
]
