"""In-memory collaborators for local development and tests."""

from costkitchen.services.mocks.local import InMemoryCacheStore, StaticConnectivityProbe
from costkitchen.services.mocks.remote import InMemoryCollection, InMemoryRemoteDataService

__all__ = [
    "InMemoryCacheStore",
    "InMemoryCollection",
    "InMemoryRemoteDataService",
    "StaticConnectivityProbe",
]
