"""UTC time helpers shared by the models and the order workflow.

Every stored timestamp is timezone-aware UTC; columns use
``default=utc_now`` and workflow code stamps ``accepted_at``,
``paid_at`` and friends with the same function.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_millis(moment: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch for ``moment`` (default: now)."""
    moment = moment or utc_now()
    if moment.tzinfo is None:
        # SQLite hands back naive values; they were written as UTC
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)
