"""Monthly token quota with lazy reset.

Token amounts are not model-reported usage. They are estimated from character
counts: ``ceil((prompt chars + completion chars) / CHARS_PER_TOKEN)``. This
estimate is what users see on their usage meter and what the limits are
enforced against.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Optional

from lib.errors import QuotaExceeded
from lib.models import QuotaCheck, UserLedger
from lib.store import SessionStore

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
UNLIMITED = -1
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def estimate_tokens(prompt_chars: int, completion_chars: int = 0) -> int:
    """Approximate token count for a request/response pair.

    Args:
        prompt_chars: Characters sent (history plus system instruction).
        completion_chars: Characters streamed back. Negative counts are treated as 0.

    Returns:
        ``ceil((prompt_chars + completion_chars) / CHARS_PER_TOKEN)``.
    """
    return math.ceil((max(prompt_chars, 0) + max(completion_chars, 0)) / CHARS_PER_TOKEN)


def parse_reset_date(value) -> datetime:
    """Coerce a stored reset date to an aware datetime; epoch when unparsable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
    else:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaGate:
    """Pre-flight and post-hoc token accounting against a plan's monthly limit."""

    def __init__(self, store: SessionStore, clock: Callable[[], datetime] = _utc_now):
        self.store = store
        self.clock = clock

    async def load_ledger(self, user_id: str) -> Optional[UserLedger]:
        """Fetch a ledger, applying (and persisting) the monthly reset if due."""
        ledger = await self.store.get_ledger(user_id)
        if ledger is None:
            return None

        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        last_reset = parse_reset_date(ledger.last_reset_date).astimezone(timezone.utc)
        now_utc = now.astimezone(timezone.utc)
        if (last_reset.year, last_reset.month) != (now_utc.year, now_utc.month):
            logger.info(
                "Resetting token usage for %s (%d used since %s)",
                user_id, ledger.token_usage, last_reset.date(),
            )
            ledger.token_usage = 0
            ledger.last_reset_date = now
            await self.store.save_ledger(ledger)
        return ledger

    async def can_consume(self, user_id: str, requested_amount: int = 0) -> QuotaCheck:
        """Check whether ``requested_amount`` tokens fit in the user's remaining quota.

        Applies the lazy monthly reset first. Nothing is charged.

        Args:
            user_id: Ledger owner.
            requested_amount: Estimated tokens for the upcoming request.

        Returns:
            QuotaCheck. ``remaining`` is None for unlimited plans; ``error`` is
            "User not found", "Invalid plan" or "Monthly token limit exceeded"
            when the request is refused.
        """
        ledger = await self.load_ledger(user_id)
        if ledger is None:
            return QuotaCheck(allowed=False, error="User not found")

        plan = await self.store.get_plan(ledger.plan)
        if plan is None:
            return QuotaCheck(allowed=False, error="Invalid plan")

        if plan.monthly_limit == UNLIMITED:
            return QuotaCheck(allowed=True)

        remaining = plan.monthly_limit - ledger.token_usage
        if remaining < requested_amount:
            return QuotaCheck(allowed=False, remaining=remaining, error="Monthly token limit exceeded")
        return QuotaCheck(allowed=True, remaining=remaining)

    async def consume(self, user_id: str, amount: int) -> UserLedger:
        """Record ``amount`` tokens, all or nothing.

        Args:
            user_id: Ledger owner.
            amount: Tokens to add to the month's usage.

        Returns:
            The updated ledger.

        Raises:
            QuotaExceeded: The amount does not fit; the ledger is left unchanged.
        """
        check = await self.can_consume(user_id, amount)
        if not check.allowed:
            raise QuotaExceeded(check.error or "Monthly token limit exceeded", remaining=check.remaining)

        ledger = await self.store.get_ledger(user_id)
        ledger.token_usage += amount
        await self.store.save_ledger(ledger)
        return ledger

    async def usage(self, user_id: str) -> tuple[Optional[UserLedger], int]:
        """Ledger after lazy reset plus the plan's limit (100,000 when unknown)."""
        ledger = await self.load_ledger(user_id)
        plan = await self.store.get_plan(ledger.plan) if ledger else None
        return ledger, plan.monthly_limit if plan else 100_000
