"""
PiggyBank error taxonomy.

Local validation errors (InvalidInput, PreconditionViolation) are raised
before anything is sent to the ledger. TransactionFailure wraps the ledger's
own verdict and is never retried. StaleDataFailure and LedgerUnavailable are
about the read side: the snapshot cannot be trusted right now.
"""


class VaultError(Exception):
    """Base class for every error raised by the piggybank client."""
    pass


class InvalidInput(VaultError):
    """Deposit amount or lock duration rejected before any write attempt."""
    pass


class PreconditionViolation(VaultError):
    """Action not valid for the current vault state. Never sent on-chain."""

    def __init__(self, action: str, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"{action}: {reason}")


class TransactionFailure(VaultError):
    """The ledger rejected or reverted a write. Carries the raw result."""

    def __init__(self, action: str, result):
        self.action = action
        self.result = result
        super().__init__(result.error or f"{action} failed")


class StaleDataFailure(VaultError):
    """Snapshot predates the latest successful write and must be re-read."""

    def __init__(self, snapshot_generation: int, write_generation: int):
        self.snapshot_generation = snapshot_generation
        self.write_generation = write_generation
        super().__init__(
            f"snapshot generation {snapshot_generation} is older than "
            f"write generation {write_generation}"
        )


class LedgerUnavailable(VaultError):
    """A read against the ledger failed (RPC down, timeout, bad response)."""
    pass
