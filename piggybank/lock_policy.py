"""
Lock duration policy.

Adding funds can only push the unlock time out, never pull it in:
effective = max(current_unlock, now + chosen_duration).
"""

import time
from dataclasses import dataclass
from typing import Optional

from .rules import get_lock_duration


@dataclass(frozen=True)
class UnlockProjection:
    current_unlock: int      # 0 when there is no vault yet
    candidate_unlock: int    # now + duration
    effective_unlock: int
    extended: bool           # effective_unlock moved past current_unlock


def candidate_unlock_time(duration, now: Optional[int] = None) -> int:
    """now + D for the chosen duration."""
    duration = get_lock_duration(duration)
    if now is None:
        now = int(time.time())
    return now + duration.seconds


def effective_unlock_time(current_unlock: int, duration, now: Optional[int] = None) -> int:
    return project_unlock(current_unlock, duration, now).effective_unlock


def project_unlock(current_unlock: int, duration, now: Optional[int] = None) -> UnlockProjection:
    """
    Project the unlock time after a deposit.

    For a new vault pass current_unlock=0; the result is simply now + D.
    """
    candidate = candidate_unlock_time(duration, now)
    effective = max(current_unlock, candidate)
    return UnlockProjection(
        current_unlock=current_unlock,
        candidate_unlock=candidate,
        effective_unlock=effective,
        extended=effective > current_unlock,
    )
