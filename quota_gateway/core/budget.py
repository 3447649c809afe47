"""
Output budget allocation.

Derives the max_tokens ceiling for the next completion from what is left of
the user's daily quota.
"""

from ..storage.models import UsageRecord

RESERVED_INPUT_HEADROOM = 64
MIN_OUTPUT = 64
MAX_OUTPUT = 512


def remaining_quota(usage: UsageRecord, daily_limit: int) -> int:
    """Tokens left for the day, never negative."""
    return max(0, daily_limit - usage.total_tokens)


def allocate_output_tokens(usage: UsageRecord, daily_limit: int) -> int:
    """Compute the output-token ceiling for the upcoming call.

    Headroom is held back for the prompt. The MIN_OUTPUT floor means a
    nearly exhausted user still gets a short answer, so the day's total can
    overshoot the limit by up to MIN_OUTPUT plus the prompt size.

    Args:
        usage: The user's usage for today, as read at admission
        daily_limit: Daily token limit

    Returns:
        Value in [MIN_OUTPUT, MAX_OUTPUT]
    """
    remaining = remaining_quota(usage, daily_limit)
    return max(MIN_OUTPUT, min(MAX_OUTPUT, remaining - RESERVED_INPUT_HEADROOM))
