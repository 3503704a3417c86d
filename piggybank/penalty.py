"""
Emergency withdrawal penalty.

Must agree with the contract's uint256 math to the wei: payout is
amount * 9 / 10 truncated, the remainder goes to the penalty.
"""

from dataclasses import dataclass

from .errors import InvalidInput
from .rules import VAULT_RULES


@dataclass(frozen=True)
class PenaltyQuote:
    amount: int    # gross vault amount (wei)
    penalty: int   # kept by the contract
    payout: int    # sent to the owner


def calculate_penalty(amount: int) -> PenaltyQuote:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInput(f"Amount must be an integer wei value, got {amount!r}")
    if amount < 0:
        raise InvalidInput(f"Amount must be non-negative, got {amount}")

    keep = VAULT_RULES.PENALTY_DENOMINATOR - VAULT_RULES.PENALTY_NUMERATOR
    payout = (amount * keep) // VAULT_RULES.PENALTY_DENOMINATOR
    return PenaltyQuote(amount=amount, penalty=amount - payout, payout=payout)
