"""
Quota ledger.

Owns the read-check-update cycle of a user's daily usage record:

1. admit  - read today's usage and decide whether the request may proceed
2. commit - after a successful completion, merge the new token counts back

The day key is fixed at admission, so a request that straddles midnight is
charged to the day it was admitted on. Commits are conditional writes on the
version read at admission; on conflict the delta is re-applied to the fresh
record and the write retried, so concurrent requests never lose usage.
"""

from dataclasses import dataclass, replace
from typing import Optional

from .budget import remaining_quota
from .day_key import DayKeyDeriver
from .errors import StorageError
from ..log import get_logger
from ..storage.models import UsageRecord
from ..storage.repository import UsageStore, usage_key

logger = get_logger(__name__)

MAX_COMMIT_ATTEMPTS = 5


@dataclass(frozen=True)
class Admission:
    """Outcome of admission for one request."""
    user: str
    day_key: str
    allowed: bool
    usage: UsageRecord

    @property
    def key(self) -> str:
        """Store key the request is charged to."""
        return usage_key(self.user, self.day_key)


class QuotaLedger:
    """Enforces and records per-user daily token usage."""

    def __init__(self, store: UsageStore, daily_limit: int, deriver: Optional[DayKeyDeriver] = None):
        if daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")
        self.store = store
        self.daily_limit = daily_limit
        self.deriver = deriver or DayKeyDeriver()

    def admit(self, user: str) -> Admission:
        """Load today's usage for user and decide admission.

        Has no side effects; calling it twice without a commit in between
        gives the same answer.
        """
        day_key = self.deriver.derive()
        usage = self.store.get(usage_key(user, day_key))
        allowed = usage.total_tokens < self.daily_limit
        if not allowed:
            logger.info("Denied %s on %s: %d/%d tokens used",
                        user, day_key, usage.total_tokens, self.daily_limit)
        return Admission(user=user, day_key=day_key, allowed=allowed, usage=usage)

    def commit(self, admission: Admission, input_tokens: int, output_tokens: int) -> UsageRecord:
        """Add a completed call's token counts to the admitted record.

        Args:
            admission: The admission this request was granted
            input_tokens: Prompt tokens reported by the upstream
            output_tokens: Completion tokens reported by the upstream

        Returns:
            The merged record as stored

        Raises:
            ValueError: If the admission was a denial or counts are negative
            StorageError: If the write kept conflicting
        """
        if not admission.allowed:
            raise ValueError("cannot commit usage for a denied request")
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token counts must be >= 0")

        key = admission.key
        metadata = {"email": admission.user, "day": admission.day_key}
        prior = admission.usage
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            merged = prior.add(input_tokens, output_tokens)
            if self.store.set(key, merged, expected_version=prior.version, metadata=metadata):
                return replace(merged, version=prior.version + 1)
            logger.warning("Concurrent update of %s (attempt %d/%d), retrying",
                           key, attempt, MAX_COMMIT_ATTEMPTS)
            prior = self.store.get(key)

        logger.error("Giving up on commit for %s after %d attempts", key, MAX_COMMIT_ATTEMPTS)
        raise StorageError("Could not record token usage, please retry")

    def remaining(self, usage: UsageRecord) -> int:
        """Tokens left today given usage."""
        return remaining_quota(usage, self.daily_limit)
