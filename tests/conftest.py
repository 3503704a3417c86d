import pytest

from piggybank.chain import ChainTxResult
from piggybank.events import DepositEvent, EmergencyWithdrawalEvent, EventKind, WithdrawalEvent
from piggybank.projector import NO_VAULT, VaultRecord
from piggybank.session import VaultSession

ACCOUNT = "0x" + "ab" * 20
NOW = 1_700_000_000
ONE_ETH = 10 ** 18


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> float:
        return float(self.now)


class FakeLedger:
    """In-memory stand-in for PiggyBankLedger that behaves like the contract."""

    def __init__(self, clock: FakeClock, account: str = ACCOUNT):
        self.clock = clock
        self.account = account
        self.record = NO_VAULT
        self.events = {kind: [] for kind in EventKind}
        self.calls = []
        self.block = 100
        self.fail_reads = False
        self.fail_next_write = ""
        self.add_funds_duration = 86_400
        self.reads = 0
        self.balance = 10 * ONE_ETH
        # seconds the chain clock runs ahead of the client clock
        self.chain_skew = 0

    # --- reads ---

    def _read(self):
        self.reads += 1
        if self.fail_reads:
            from piggybank.errors import LedgerUnavailable
            raise LedgerUnavailable("rpc down")

    async def read_vault(self, account):
        self._read()
        rec = self.record
        if rec.exists:
            chain_now = self.clock.now + self.chain_skew
            rec = VaultRecord(rec.amount, rec.unlock_time, chain_now >= rec.unlock_time, True)
        return rec

    async def read_time_left(self, account):
        self._read()
        if not self.record.exists:
            return 0
        return max(0, self.record.unlock_time - self.clock.now)

    async def read_balance(self, account):
        self._read()
        return self.balance

    async def read_events(self, kind, account, from_block=0):
        self._read()
        return list(self.events[kind])

    # --- writes ---

    def _tx(self, action):
        if self.fail_next_write:
            error, self.fail_next_write = self.fail_next_write, ""
            return ChainTxResult(success=False, action=action, error=error)
        self.block += 1
        return ChainTxResult(success=True, action=action, tx_hash=f"0x{self.block:064x}", block_number=self.block)

    async def create_vault(self, lock_duration_seconds, deposit_amount):
        self.calls.append(("create", lock_duration_seconds, deposit_amount))
        result = self._tx("create")
        if result.success:
            unlock = self.clock.now + lock_duration_seconds
            self.record = VaultRecord(deposit_amount, unlock, False, True)
            self.balance -= deposit_amount
            self.events[EventKind.DEPOSIT].append(
                DepositEvent(self.account, deposit_amount, unlock, self.block, self.clock.now))
        return result

    async def add_funds(self, deposit_amount):
        self.calls.append(("add_funds", deposit_amount))
        result = self._tx("add_funds")
        if result.success:
            unlock = max(self.record.unlock_time, self.clock.now + self.add_funds_duration)
            self.record = VaultRecord(self.record.amount + deposit_amount, unlock, False, True)
            self.balance -= deposit_amount
            self.events[EventKind.DEPOSIT].append(
                DepositEvent(self.account, deposit_amount, unlock, self.block, self.clock.now))
        return result

    async def withdraw(self):
        self.calls.append(("withdraw",))
        result = self._tx("withdraw")
        if result.success:
            self.events[EventKind.WITHDRAWAL].append(
                WithdrawalEvent(self.account, self.record.amount, self.block, self.clock.now))
            self.balance += self.record.amount
            self.record = NO_VAULT
        return result

    async def emergency_withdraw(self):
        self.calls.append(("emergency_withdraw",))
        result = self._tx("emergency_withdraw")
        if result.success:
            self.events[EventKind.EMERGENCY_WITHDRAWAL].append(
                EmergencyWithdrawalEvent(self.account, self.record.amount, self.block, self.clock.now))
            self.balance += self.record.amount - self.record.amount // 10
            self.record = NO_VAULT
        return result

    def get_explorer_url(self, tx_hash):
        return f"https://explorer.test/tx/{tx_hash}"

    def get_status(self):
        return {"initialized": True, "fake": True}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return FakeLedger(clock)


@pytest.fixture
def session(ledger, clock):
    s = VaultSession(ledger, ACCOUNT, clock=clock)
    yield s
    s.close()


@pytest.fixture
def locked_ledger(ledger, clock):
    ledger.record = VaultRecord(ONE_ETH, clock.now + 86_400, False, True)
    return ledger


@pytest.fixture
def unlocked_ledger(ledger, clock):
    ledger.record = VaultRecord(ONE_ETH, clock.now - 10, True, True)
    return ledger
