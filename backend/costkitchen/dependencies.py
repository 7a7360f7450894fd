"""Dependency injection helpers for FastAPI."""

from typing import Union

from fastapi import Depends, HTTPException, status

from costkitchen.core.errors import SessionTimeout
from costkitchen.models.dataset import ConfirmedId, PendingId, parse_entity_id
from costkitchen.services.kitchen import KitchenSession, get_kitchen


def kitchen_session() -> KitchenSession:
    """The process-wide kitchen session. Overridden in tests."""
    return get_kitchen()


async def active_kitchen(kitchen: KitchenSession = Depends(kitchen_session)) -> KitchenSession:
    """Kitchen session of a signed-in, non-expired user; records activity."""
    if not await kitchen.identity.is_authenticated():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        await kitchen.guard.ensure_active()
    except SessionTimeout as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    return kitchen


def entity_id(kitchen: KitchenSession, text: str) -> Union[ConfirmedId, PendingId]:
    """Parse a path id; a pending id that has since been confirmed maps to its confirmed id."""
    try:
        parsed = parse_entity_id(text)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return kitchen.mutations.confirmed_id(parsed) or parsed
