"""Current-user endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from api.deps import current_store, current_user
from lib.models import UsageResponse
from lib.quota import QuotaGate
from lib.store import SessionStore

router = APIRouter(prefix="/api", tags=["users"])


@router.get("/me", response_model=UsageResponse)
async def get_me(
    user_id: str = Depends(current_user),
    store: SessionStore = Depends(current_store),
):
    """Plan and token usage for the caller, after any pending monthly reset."""
    ledger, limit = await QuotaGate(store).usage(user_id)
    if ledger is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UsageResponse(id=user_id, plan=ledger.plan, token_usage=ledger.token_usage, max_tokens=limit)
