"""
PIGGYBANK RULES - mirrored from the PiggyBank contract

The contract enforces these; the client only reproduces them so that
previews match what the chain will do. Changing a value here without a
contract upgrade makes every projected figure wrong.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Final

from .errors import InvalidInput


# ============================================================
# VAULT RULES - immutable at runtime
# ============================================================

@dataclass(frozen=True)
class VaultRules:
    """Frozen dataclass = truly immutable at runtime."""

    # --- EMERGENCY WITHDRAWAL ---
    # payout = amount * 9 / 10 in uint256 math (truncates)
    PENALTY_NUMERATOR: Final[int] = 1
    PENALTY_DENOMINATOR: Final[int] = 10
    PENALTY_PERCENT: Final[int] = 10

    # --- COUNTDOWN ---
    TICK_INTERVAL_SECONDS: Final[float] = 1.0
    NO_LOCK_TEXT: Final[str] = "No lock period"
    UNLOCKED_TEXT: Final[str] = "Unlocked!"

    # --- AUDIT TRAIL ---
    UNKNOWN_TIME_TEXT: Final[str] = "Unknown time"
    UNKNOWN_BLOCK_TEXT: Final[str] = "Unknown"
    EMPTY_HISTORY_TEXT: Final[str] = "No transactions found for your address."

    # --- EVENTS ---
    EVENTS_FROM_BLOCK: Final[int] = 0


VAULT_RULES = VaultRules()


# ============================================================
# LOCK DURATIONS - closed set, selectable when creating a vault
# ============================================================

class LockDuration(str, Enum):
    """Named lock durations offered to the user. Value = wire name."""
    ONE_HOUR = "1hour"
    ONE_DAY = "1day"
    ONE_WEEK = "1week"
    ONE_MONTH = "1month"
    ONE_YEAR = "1year"

    @property
    def seconds(self) -> int:
        return LOCK_DURATION_SECONDS[self]

    @property
    def label(self) -> str:
        return LOCK_DURATION_LABELS[self]


# Exhaustive: every LockDuration must appear here (checked at import).
LOCK_DURATION_SECONDS: Final[dict] = {
    LockDuration.ONE_HOUR: 3_600,
    LockDuration.ONE_DAY: 86_400,
    LockDuration.ONE_WEEK: 604_800,
    LockDuration.ONE_MONTH: 2_592_000,   # 30 days
    LockDuration.ONE_YEAR: 31_536_000,   # 365 days
}

LOCK_DURATION_LABELS: Final[dict] = {
    LockDuration.ONE_HOUR: "1 Hour",
    LockDuration.ONE_DAY: "1 Day",
    LockDuration.ONE_WEEK: "1 Week",
    LockDuration.ONE_MONTH: "1 Month",
    LockDuration.ONE_YEAR: "1 Year",
}

DEFAULT_LOCK_DURATION: Final[LockDuration] = LockDuration.ONE_DAY

if set(LOCK_DURATION_SECONDS) != set(LockDuration) or set(LOCK_DURATION_LABELS) != set(LockDuration):
    raise RuntimeError("LockDuration mapping is not exhaustive")


def get_lock_duration(name) -> LockDuration:
    """Resolve a wire name (or LockDuration) to a LockDuration. Raises InvalidInput if unknown."""
    if isinstance(name, LockDuration):
        return name
    try:
        return LockDuration(name)
    except ValueError:
        raise InvalidInput(
            f"Unknown lock duration: {name!r}. Supported: {[d.value for d in LockDuration]}"
        ) from None
