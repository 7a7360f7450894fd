"""
CostKitchen - Error Taxonomy

A missing identity is the logged-out state and has no error class.
"""

from typing import Optional


class CostKitchenError(Exception):
    """Base class for state-core errors."""
    pass


class RemoteServiceError(CostKitchenError):
    """Raised by remote data service adapters on transport or API failure."""
    
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CacheError(CostKitchenError):
    """Raised by local cache adapters when the cache cannot be read or written."""
    pass


class MutationFailure(CostKitchenError):
    """A remote create/update/delete/persist was rejected or could not be sent."""
    pass


class ValidationFailure(CostKitchenError, ValueError):
    """Malformed input. Raised before any optimistic state is applied."""
    
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class EntityNotFound(CostKitchenError, LookupError):
    """Raised when an entity id does not resolve in the current dataset."""
    pass


class SessionTimeout(CostKitchenError):
    """The session expired after inactivity and was signed out."""
    pass


class AuthenticationFailed(CostKitchenError):
    """Credentials were rejected."""
    pass

