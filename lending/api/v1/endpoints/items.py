# lending/api/v1/endpoints/items.py
from fastapi import APIRouter, Depends, Path, Request
from loguru import logger

from lending.core.engine import LendingEngine
from lending.core.rate_limiter import limiter
from lending.core.security import get_current_active_user
from lending.db.database import get_engine
from lending.models.item import Item, StatusChange, StatusHistory, StatusRecommendations
from lending.models.user import User

router = APIRouter(tags=["Items"])


@router.patch(
    "/{item_id}/status",
    response_model=StatusChange,
    summary="Change item status (Staff/Admin)",
)
@limiter.limit("60/minute")
async def update_item_status(
    request: Request,
    payload: Item.StatusUpdate,
    item_id: str = Path(..., description="Item id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    logger.info(
        f"User '{current_user.username}' requesting status {payload.status.value} for item {item_id}"
        f"{' (force)' if payload.force_update else ''}"
    )
    return await engine.items.apply_transition(
        item_id, payload.status, current_user, reason=payload.reason, force=payload.force_update
    )


@router.get(
    "/{item_id}/status",
    response_model=StatusHistory,
    summary="Item status history (Staff/Admin)",
)
@limiter.limit("120/minute")
async def get_item_status_history(
    request: Request,
    item_id: str = Path(..., description="Item id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.items.status_history(item_id, current_user)


@router.get(
    "/{item_id}/status/recommendations",
    response_model=StatusRecommendations,
    summary="Suggested status corrections for an item (Staff/Admin)",
)
@limiter.limit("120/minute")
async def get_item_status_recommendations(
    request: Request,
    item_id: str = Path(..., description="Item id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.items.recommendations(item_id, current_user)
