"""
Vault State Projector - raw contract record -> display facts

getPiggyBank(address) returns (amount, unlockTime, isUnlocked, exists).
The projector turns that tuple into what the UI needs: whether to show the
"create" form or the "manage" panel, the formatted amount, the unlock time
and which write actions are currently allowed.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .units import format_ether, format_timestamp


class VaultAction(str, Enum):
    CREATE = "create"
    ADD_FUNDS = "add_funds"
    WITHDRAW = "withdraw"
    EMERGENCY_WITHDRAW = "emergency_withdraw"


@dataclass(frozen=True)
class VaultRecord:
    """Read-only snapshot of the contract's record for one account."""
    amount: int = 0          # wei
    unlock_time: int = 0     # unix seconds, 0 = never locked
    is_unlocked: bool = False
    exists: bool = False

    @classmethod
    def from_contract(cls, raw) -> "VaultRecord":
        amount, unlock_time, is_unlocked, exists = raw
        return cls(
            amount=int(amount),
            unlock_time=int(unlock_time),
            is_unlocked=bool(is_unlocked),
            exists=bool(exists),
        )

    def is_unlocked_at(self, now: int) -> bool:
        return self.exists and now >= self.unlock_time


NO_VAULT = VaultRecord()


@dataclass(frozen=True)
class VaultView:
    has_vault: bool
    amount: int
    display_amount: str
    is_unlocked: bool
    unlock_timestamp: Optional[int]
    unlock_time_text: Optional[str]
    actions: tuple[VaultAction, ...]

    @property
    def mode(self) -> str:
        """'manage' when a vault exists, otherwise 'create'."""
        return "manage" if self.has_vault else "create"


def allowed_actions(has_vault: bool, is_unlocked: bool) -> tuple[VaultAction, ...]:
    if not has_vault:
        return (VaultAction.CREATE,)
    if is_unlocked:
        return (VaultAction.ADD_FUNDS, VaultAction.WITHDRAW)
    return (VaultAction.ADD_FUNDS, VaultAction.EMERGENCY_WITHDRAW)


def project_vault(record: VaultRecord, now: Optional[int] = None) -> VaultView:
    """
    Derive the display view. No side effects.

    is_unlocked is the ledger flag OR the local-clock check, so a snapshot
    read while locked flips to unlocked once the unlock time passes without
    waiting for the next read. It never flips back.
    """
    if not record.exists:
        return VaultView(
            has_vault=False,
            amount=0,
            display_amount="0",
            is_unlocked=False,
            unlock_timestamp=None,
            unlock_time_text=None,
            actions=allowed_actions(False, False),
        )

    if now is None:
        now = int(time.time())
    is_unlocked = record.is_unlocked or record.is_unlocked_at(now)
    unlock_ts = record.unlock_time if record.unlock_time > 0 else None

    return VaultView(
        has_vault=True,
        amount=record.amount,
        display_amount=format_ether(record.amount),
        is_unlocked=is_unlocked,
        unlock_timestamp=unlock_ts,
        unlock_time_text=format_timestamp(unlock_ts) if unlock_ts else None,
        actions=allowed_actions(True, is_unlocked),
    )
