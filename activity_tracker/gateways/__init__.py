"""Persistence and live broadcast collaborators."""

from .base import BroadcastChannel, PersistenceGateway, generate_share_code
from .memory import InMemoryBroadcastChannel, InMemoryPersistenceGateway
from .rest import RestBroadcastChannel, RestClient, RestPersistenceGateway

__all__ = [
    "BroadcastChannel",
    "PersistenceGateway",
    "InMemoryBroadcastChannel",
    "InMemoryPersistenceGateway",
    "RestBroadcastChannel",
    "RestClient",
    "RestPersistenceGateway",
    "generate_share_code",
]
