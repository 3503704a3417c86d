import asyncio

import pytest

from piggybank.countdown import CountdownState
from piggybank.errors import (
    InvalidInput, LedgerUnavailable, PreconditionViolation, StaleDataFailure, TransactionFailure,
)
from piggybank.events import EventKind
from piggybank.projector import VaultAction
from piggybank.rules import LockDuration

from conftest import ACCOUNT, NOW, ONE_ETH


def test_view_before_first_read_is_stale(session):
    with pytest.raises(StaleDataFailure):
        session.view()


def test_refresh_without_vault(session, ledger):
    asyncio.run(session.refresh())
    view = session.view()
    assert view.has_vault is False
    assert view.actions == (VaultAction.CREATE,)
    assert session.history() == []
    assert session.countdown_reading().state is CountdownState.NO_LOCK


def test_refresh_locked_vault_sets_countdown(session, locked_ledger):
    asyncio.run(session.refresh())
    assert session.snapshot.ledger_time_left == 86_400
    reading = session.countdown_reading()
    assert reading.state is CountdownState.COUNTING
    assert reading.text == "1d 0h 0m 0s"


def test_create_vault_then_reread(session, ledger, clock):
    async def scenario():
        await session.refresh()
        return await session.create_vault("0.5", LockDuration.ONE_WEEK)

    result = asyncio.run(scenario())
    assert result.success
    assert ledger.calls == [("create", 604_800, ONE_ETH // 2)]

    view = session.view()
    assert view.has_vault
    assert view.amount == ONE_ETH // 2
    assert view.unlock_timestamp == NOW + 604_800
    entries = session.history()
    assert [e.kind for e in entries] == [EventKind.DEPOSIT]


def test_invalid_amount_never_reaches_ledger(session, ledger):
    asyncio.run(session.refresh())
    for bad in ["", "0", "-1", "abc"]:
        with pytest.raises(InvalidInput):
            asyncio.run(session.create_vault(bad))
    assert ledger.calls == []


def test_unknown_duration_rejected(session, ledger):
    asyncio.run(session.refresh())
    with pytest.raises(InvalidInput):
        asyncio.run(session.create_vault("1", "forever"))
    assert ledger.calls == []


def test_create_when_vault_exists_is_precondition(session, locked_ledger):
    asyncio.run(session.refresh())
    with pytest.raises(PreconditionViolation):
        asyncio.run(session.create_vault("1"))
    assert locked_ledger.calls == []


def test_add_funds_without_vault_is_precondition(session, ledger):
    asyncio.run(session.refresh())
    with pytest.raises(PreconditionViolation):
        asyncio.run(session.add_funds("1"))
    assert ledger.calls == []


def test_withdraw_while_locked_is_precondition(session, locked_ledger):
    asyncio.run(session.refresh())
    with pytest.raises(PreconditionViolation) as exc:
        asyncio.run(session.withdraw())
    assert exc.value.action == "withdraw"
    assert locked_ledger.calls == []


def test_emergency_while_unlocked_is_precondition(session, unlocked_ledger):
    asyncio.run(session.refresh())
    assert session.view().is_unlocked
    with pytest.raises(PreconditionViolation):
        asyncio.run(session.emergency_withdraw(confirm_penalty=True))
    assert unlocked_ledger.calls == []


def test_withdraw_when_unlocked(session, unlocked_ledger):
    async def scenario():
        await session.refresh()
        return await session.withdraw()

    assert asyncio.run(scenario()).success
    assert session.view().has_vault is False
    assert session.history()[0].kind is EventKind.WITHDRAWAL


def test_emergency_requires_confirmation(session, locked_ledger):
    asyncio.run(session.refresh())
    with pytest.raises(PreconditionViolation):
        asyncio.run(session.emergency_withdraw())
    assert locked_ledger.calls == []


def test_emergency_withdraw_confirmed(session, locked_ledger):
    async def scenario():
        await session.refresh()
        return await session.emergency_withdraw(confirm_penalty=True)

    assert asyncio.run(scenario()).success
    entry = session.history()[0]
    assert entry.kind is EventKind.EMERGENCY_WITHDRAWAL
    assert entry.payout == ONE_ETH * 9 // 10


def test_transaction_failure_surfaces_verbatim(session, unlocked_ledger):
    unlocked_ledger.fail_next_write = "execution reverted: Still locked"

    async def scenario():
        await session.refresh()
        await session.withdraw()

    with pytest.raises(TransactionFailure) as exc:
        asyncio.run(scenario())
    assert str(exc.value) == "execution reverted: Still locked"
    assert exc.value.result.success is False
    # no retry
    assert unlocked_ledger.calls == [("withdraw",)]
    # no write succeeded, old snapshot still valid
    assert session.view().has_vault


def test_failed_reread_after_write_leaves_view_stale(session, locked_ledger):
    async def scenario():
        await session.refresh()
        locked_ledger.fail_reads = True
        return await session.add_funds("1")

    assert asyncio.run(scenario()).success
    assert session.is_stale
    with pytest.raises(StaleDataFailure):
        session.view()
    with pytest.raises(StaleDataFailure):
        session.history()

    locked_ledger.fail_reads = False
    asyncio.run(session.refresh())
    assert session.view().amount == 2 * ONE_ETH


def test_read_failure_propagates(session, ledger):
    ledger.fail_reads = True
    with pytest.raises(LedgerUnavailable):
        asyncio.run(session.refresh())
    assert "rpc down" in session.get_status()["last_refresh_error"]


def test_add_funds_preview_never_shortens(session, locked_ledger):
    asyncio.run(session.refresh())
    preview = session.preview_add_funds("0.1", LockDuration.ONE_HOUR)
    assert preview.unlock.effective_unlock == NOW + 86_400
    assert preview.unlock.extended is False

    preview = session.preview_add_funds("0.1", LockDuration.ONE_MONTH)
    assert preview.unlock.effective_unlock == NOW + 2_592_000
    assert preview.unlock.extended is True


def test_add_funds_matches_preview(session, locked_ledger):
    locked_ledger.add_funds_duration = LockDuration.ONE_WEEK.seconds

    async def scenario():
        await session.refresh()
        preview = session.preview_add_funds("0.25", LockDuration.ONE_WEEK)
        await session.add_funds("0.25")
        return preview

    preview = asyncio.run(scenario())
    assert session.view().unlock_timestamp == preview.unlock.effective_unlock


def test_preview_create(session, ledger):
    asyncio.run(session.refresh())
    preview = session.preview_create("1", "1hour")
    assert preview.amount == ONE_ETH
    assert preview.unlock.effective_unlock == NOW + 3600


def test_preview_emergency(session, locked_ledger):
    asyncio.run(session.refresh())
    quote = session.preview_emergency_withdraw()
    assert quote.payout == ONE_ETH * 9 // 10
    assert quote.payout + quote.penalty == ONE_ETH


def test_lock_expiry_switches_allowed_actions(session, locked_ledger, clock):
    asyncio.run(session.refresh())
    assert VaultAction.EMERGENCY_WITHDRAW in session.view().actions

    clock.now += 86_400
    view = session.view()
    assert view.is_unlocked
    assert VaultAction.WITHDRAW in view.actions
    assert session.countdown_reading().state is CountdownState.UNLOCKED


def test_close_stops_countdown(session, locked_ledger):
    async def scenario():
        await session.refresh()
        assert session.countdown.ticking
        session.close()
        await asyncio.sleep(0)
        return session.countdown.ticking

    assert asyncio.run(scenario()) is False


def test_status(session, ledger):
    asyncio.run(session.refresh())
    status = session.get_status()
    assert status["account"] == ACCOUNT
    assert status["stale"] is False
    assert status["refresh_count"] == 1


def test_wallet_balance_follows_deposits(session, ledger):
    async def scenario():
        await session.refresh()
        assert session.snapshot.balance == 10 * ONE_ETH
        await session.create_vault("2", LockDuration.ONE_HOUR)

    asyncio.run(scenario())
    assert session.snapshot.balance == 8 * ONE_ETH


def test_ledger_unlock_ahead_of_local_clock(session, locked_ledger):
    locked_ledger.chain_skew = 86_400
    asyncio.run(session.refresh())

    view = session.view()
    assert view.is_unlocked is True
    assert VaultAction.WITHDRAW in view.actions
    reading = session.countdown_reading()
    assert reading.state is CountdownState.UNLOCKED
    assert reading.target == view.unlock_timestamp
