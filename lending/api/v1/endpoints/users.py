# lending/api/v1/endpoints/users.py
from typing import List

from fastapi import APIRouter, Depends, Path, Request

from lending.core.engine import LendingEngine
from lending.core.rate_limiter import limiter
from lending.core.security import get_current_active_user
from lending.db.database import get_engine
from lending.models.reputation import ReputationEntry
from lending.models.user import User

router = APIRouter(tags=["Users"])


@router.get("/me", response_model=User.Response, summary="Current user profile")
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user


@router.get(
    "/{user_id}/reputation",
    response_model=List[ReputationEntry.Response],
    summary="Trust score ledger of a user, newest first",
)
@limiter.limit("60/minute")
async def get_user_reputation(
    request: Request,
    user_id: str = Path(..., description="User id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.ledger.history(user_id, current_user)
