"""Models for the per-user token ledger and plans."""

from datetime import datetime
from typing import Optional, Union

from pydantic import Field

from .common import CamelModel


class PlanConfig(CamelModel):
    plan: str
    monthly_limit: int = Field(..., description="-1 means unlimited")


class UserLedger(CamelModel):
    user_id: str
    plan: str = "free"
    token_usage: int = 0
    # Kept loose: stored values may be strings of any shape and are parsed lazily.
    last_reset_date: Optional[Union[datetime, str]] = None


class QuotaCheck(CamelModel):
    allowed: bool
    remaining: Optional[int] = None
    error: Optional[str] = None


class UsageResponse(CamelModel):
    id: str
    plan: str
    token_usage: int
    max_tokens: int
