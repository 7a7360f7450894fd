"""
CostKitchen - Collaborator Bridges

Integration layer for:
- Remote Data Service (PostgREST over httpx)
- Local Cache Store (SQLAlchemy)
- Identity Provider (in-process session events)
- Connectivity Probe (HTTP health check)
"""

from .base import (
    ConnectivityProbe,
    IdentityProvider,
    LocalCacheStore,
    RemoteCollection,
    RemoteDataService,
    SessionEvent,
    SessionEventType,
)

__all__ = [
    "ConnectivityProbe",
    "IdentityProvider",
    "LocalCacheStore",
    "RemoteCollection",
    "RemoteDataService",
    "SessionEvent",
    "SessionEventType",
]
