"""
Vault Session - one account's view of its PiggyBank

Holds the latest snapshot read from the ledger and everything derived from
it: projected vault view, audit trail, countdown. Write actions are validated
locally first (amount, duration, vault state); only valid actions reach the
ledger.

Snapshots are replaced wholesale, never patched. Every successful write bumps
the write generation and triggers a full re-read. A snapshot read before the
latest write is stale: view()/history() refuse to serve it until refresh()
succeeds.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .countdown import CountdownEngine, CountdownReading
from .errors import PreconditionViolation, StaleDataFailure, TransactionFailure
from .events import AuditEntry, EventKind, aggregate_events
from .lock_policy import UnlockProjection, project_unlock
from .penalty import PenaltyQuote, calculate_penalty
from .projector import VaultAction, VaultRecord, VaultView, project_vault
from .rules import DEFAULT_LOCK_DURATION, LockDuration, get_lock_duration
from .units import parse_deposit_amount

logger = logging.getLogger("piggybank.session")


@dataclass(frozen=True)
class VaultSnapshot:
    account: str
    record: VaultRecord
    ledger_time_left: int
    balance: int
    deposits: tuple
    withdrawals: tuple
    emergencies: tuple
    fetched_at: float
    generation: int


@dataclass(frozen=True)
class DepositPreview:
    action: VaultAction
    amount: int
    duration: LockDuration
    unlock: UnlockProjection


class VaultSession:
    """
    Usage:
        session = VaultSession(ledger, ledger.account)
        await session.refresh()
        session.view().has_vault
        await session.add_funds("0.05")
        session.close()
    """

    def __init__(
        self,
        ledger,
        account: str,
        clock: Callable[[], float] = time.time,
        countdown: Optional[CountdownEngine] = None,
    ):
        self.ledger = ledger
        self.account = account
        self._clock = clock
        self.countdown = countdown or CountdownEngine(clock=clock)

        self._snapshot: Optional[VaultSnapshot] = None
        self._write_generation: int = 0
        self._refresh_count: int = 0
        self._last_refresh_error: str = ""

    # ============================================================
    # READ SIDE
    # ============================================================

    def _now(self) -> int:
        return int(self._clock())

    async def refresh(self) -> VaultSnapshot:
        """Full re-read of vault record, time-left, wallet balance and all three event streams."""
        generation = self._write_generation
        try:
            record, time_left, balance, deposits, withdrawals, emergencies = await asyncio.gather(
                self.ledger.read_vault(self.account),
                self.ledger.read_time_left(self.account),
                self.ledger.read_balance(self.account),
                self.ledger.read_events(EventKind.DEPOSIT, self.account),
                self.ledger.read_events(EventKind.WITHDRAWAL, self.account),
                self.ledger.read_events(EventKind.EMERGENCY_WITHDRAWAL, self.account),
            )
        except Exception as e:
            self._last_refresh_error = f"{type(e).__name__}: {e}"
            raise

        snapshot = VaultSnapshot(
            account=self.account,
            record=record,
            ledger_time_left=int(time_left),
            balance=int(balance),
            deposits=tuple(deposits),
            withdrawals=tuple(withdrawals),
            emergencies=tuple(emergencies),
            fetched_at=self._clock(),
            generation=generation,
        )
        # A write may have landed while we were reading; keep the newer snapshot.
        if self._snapshot is None or snapshot.generation >= self._snapshot.generation:
            self._snapshot = snapshot
        self._refresh_count += 1
        self._last_refresh_error = ""

        current = self._snapshot
        self.countdown.set_target(
            current.record.unlock_time if current.record.exists else 0,
            # The ledger may already report unlocked while the local clock lags behind.
            unlocked=current.record.exists and current.record.is_unlocked,
        )
        logger.debug(
            f"Refreshed {self.account[:10]}...: exists={record.exists} amount={record.amount} "
            f"unlock={record.unlock_time} events={len(deposits)}/{len(withdrawals)}/{len(emergencies)}"
        )
        return current

    @property
    def is_stale(self) -> bool:
        return self._snapshot is None or self._snapshot.generation < self._write_generation

    @property
    def snapshot(self) -> VaultSnapshot:
        """Current snapshot. Raises StaleDataFailure if it predates the last write."""
        if self._snapshot is None:
            raise StaleDataFailure(-1, self._write_generation)
        if self._snapshot.generation < self._write_generation:
            raise StaleDataFailure(self._snapshot.generation, self._write_generation)
        return self._snapshot

    def view(self) -> VaultView:
        return project_vault(self.snapshot.record, self._now())

    def history(self) -> list[AuditEntry]:
        snap = self.snapshot
        return aggregate_events(snap.deposits, snap.withdrawals, snap.emergencies, account=self.account)

    def countdown_reading(self) -> CountdownReading:
        if self.is_stale:
            raise StaleDataFailure(
                self._snapshot.generation if self._snapshot else -1, self._write_generation
            )
        return self.countdown.reading

    # ============================================================
    # VALIDATION
    # ============================================================

    def require(self, action: VaultAction) -> VaultView:
        """Raise PreconditionViolation unless `action` is valid for the current vault."""
        view = self.view()
        if action in view.actions:
            return view

        if action is VaultAction.CREATE:
            reason = "a vault already exists for this account; add funds instead"
        elif not view.has_vault:
            reason = "no vault exists for this account"
        elif action is VaultAction.WITHDRAW:
            reason = f"vault is locked until {view.unlock_time_text}"
        elif action is VaultAction.EMERGENCY_WITHDRAW:
            reason = "vault is already unlocked; withdraw without penalty instead"
        else:
            reason = "not allowed in the current vault state"
        raise PreconditionViolation(action.value, reason)

    # ============================================================
    # PREVIEWS
    # ============================================================

    def preview_create(self, amount, duration=DEFAULT_LOCK_DURATION) -> DepositPreview:
        wei = parse_deposit_amount(amount)
        duration = get_lock_duration(duration)
        self.require(VaultAction.CREATE)
        return DepositPreview(
            action=VaultAction.CREATE,
            amount=wei,
            duration=duration,
            unlock=project_unlock(0, duration, self._now()),
        )

    def preview_add_funds(self, amount, duration=DEFAULT_LOCK_DURATION) -> DepositPreview:
        """Projected unlock after adding funds; it never moves earlier."""
        wei = parse_deposit_amount(amount)
        duration = get_lock_duration(duration)
        view = self.require(VaultAction.ADD_FUNDS)
        return DepositPreview(
            action=VaultAction.ADD_FUNDS,
            amount=wei,
            duration=duration,
            unlock=project_unlock(view.unlock_timestamp or 0, duration, self._now()),
        )

    def preview_emergency_withdraw(self) -> PenaltyQuote:
        view = self.require(VaultAction.EMERGENCY_WITHDRAW)
        return calculate_penalty(view.amount)

    # ============================================================
    # WRITE ACTIONS
    # ============================================================

    async def create_vault(self, amount, duration=DEFAULT_LOCK_DURATION):
        wei = parse_deposit_amount(amount)
        duration = get_lock_duration(duration)
        self.require(VaultAction.CREATE)

        logger.info(f"Creating vault: {wei} wei locked for {duration.label}")
        result = await self.ledger.create_vault(duration.seconds, wei)
        return await self._after_write(VaultAction.CREATE, result)

    async def add_funds(self, amount):
        wei = parse_deposit_amount(amount)
        self.require(VaultAction.ADD_FUNDS)

        logger.info(f"Adding funds: {wei} wei")
        result = await self.ledger.add_funds(wei)
        return await self._after_write(VaultAction.ADD_FUNDS, result)

    async def withdraw(self):
        view = self.require(VaultAction.WITHDRAW)

        logger.info(f"Withdrawing {view.display_amount} ETH")
        result = await self.ledger.withdraw()
        return await self._after_write(VaultAction.WITHDRAW, result)

    async def emergency_withdraw(self, confirm_penalty: bool = False):
        """Early withdrawal. Caller must pass confirm_penalty=True after showing the 10% penalty."""
        view = self.require(VaultAction.EMERGENCY_WITHDRAW)
        if not confirm_penalty:
            raise PreconditionViolation(
                VaultAction.EMERGENCY_WITHDRAW.value,
                "the 10% penalty must be confirmed before an emergency withdrawal",
            )

        quote = calculate_penalty(view.amount)
        logger.warning(
            f"Emergency withdrawal before {view.unlock_time_text}: {quote.amount} wei, "
            f"penalty {quote.penalty} wei, payout {quote.payout} wei"
        )
        result = await self.ledger.emergency_withdraw()
        return await self._after_write(VaultAction.EMERGENCY_WITHDRAW, result)

    async def _after_write(self, action: VaultAction, result):
        if not result.success:
            logger.warning(f"{action.value} rejected by ledger: {result.error}")
            raise TransactionFailure(action.value, result)

        self._write_generation += 1
        try:
            await self.refresh()
        except Exception as e:
            logger.warning(
                f"Re-read after {action.value} failed, view stays stale until next refresh: {e}"
            )
        return result

    # ============================================================
    # LIFECYCLE / STATUS
    # ============================================================

    def close(self) -> None:
        self.countdown.stop()

    def get_status(self) -> dict:
        return {
            "account": self.account,
            "has_snapshot": self._snapshot is not None,
            "stale": self.is_stale,
            "write_generation": self._write_generation,
            "refresh_count": self._refresh_count,
            "last_refresh_error": self._last_refresh_error,
            "countdown_ticking": self.countdown.ticking,
        }
