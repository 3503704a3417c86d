"""
Event Aggregator - one audit trail from three event streams

The contract emits Deposit, Withdrawal and PiggyBankSmashed (emergency)
events. Each is read separately and comes back ordered within its own
stream. aggregate_events() merges them into a single most-recent-first
list of AuditEntry.

Ordering: (block_number, stream_ordinal) descending. Entries without block
metadata are still pending and sort as most recent. Equal keys keep the
deposit -> withdrawal -> emergency stream order, so output is deterministic.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Iterable, Optional, Union

from .errors import InvalidInput
from .penalty import calculate_penalty
from .rules import VAULT_RULES
from .units import format_ether, format_timestamp


class EventKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    EMERGENCY_WITHDRAWAL = "emergency_withdrawal"


# ============================================================
# RAW EVENT RECORDS (immutable, as read from the chain)
# ============================================================

@dataclass(frozen=True)
class DepositEvent:
    account: str
    amount: int
    unlock_time: int
    block_number: Optional[int] = None
    block_timestamp: Optional[int] = None

    kind: ClassVar[EventKind] = EventKind.DEPOSIT


@dataclass(frozen=True)
class WithdrawalEvent:
    account: str
    amount: int
    block_number: Optional[int] = None
    block_timestamp: Optional[int] = None

    kind: ClassVar[EventKind] = EventKind.WITHDRAWAL


@dataclass(frozen=True)
class EmergencyWithdrawalEvent:
    account: str
    amount: int    # gross, before penalty
    block_number: Optional[int] = None
    block_timestamp: Optional[int] = None

    kind: ClassVar[EventKind] = EventKind.EMERGENCY_WITHDRAWAL


EventRecord = Union[DepositEvent, WithdrawalEvent, EmergencyWithdrawalEvent]


# ============================================================
# AUDIT ENTRY (display projection)
# ============================================================

@dataclass(frozen=True)
class AuditEntry:
    kind: EventKind
    account: str
    amount: int
    block_number: Optional[int]
    block_timestamp: Optional[int]
    stream_ordinal: int
    title: str
    lines: tuple[str, ...]
    time_text: str
    block_text: str
    # Deposit only
    unlock_time: Optional[int] = None
    # Emergency withdrawal only
    payout: Optional[int] = None
    penalty: Optional[int] = None

    @property
    def confirmed(self) -> bool:
        return self.block_number is not None

    @property
    def sort_key(self) -> tuple[Optional[int], int]:
        return (self.block_number, self.stream_ordinal)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "account": self.account,
            "amount_wei": str(self.amount),
            "amount_eth": format_ether(self.amount),
            "block_number": self.block_number,
            "block_timestamp": self.block_timestamp,
            "title": self.title,
            "lines": list(self.lines),
            "time": self.time_text,
            "block": self.block_text,
            "unlock_time": self.unlock_time,
            "payout_wei": str(self.payout) if self.payout is not None else None,
            "penalty_wei": str(self.penalty) if self.penalty is not None else None,
        }


def render_entry(record: EventRecord, ordinal: int) -> AuditEntry:
    """Project one raw event into its display entry."""
    time_text = (
        format_timestamp(record.block_timestamp)
        if record.block_timestamp else VAULT_RULES.UNKNOWN_TIME_TEXT
    )
    block_text = (
        str(record.block_number)
        if record.block_number is not None else VAULT_RULES.UNKNOWN_BLOCK_TEXT
    )
    common = dict(
        kind=record.kind,
        account=record.account,
        amount=record.amount,
        block_number=record.block_number,
        block_timestamp=record.block_timestamp,
        stream_ordinal=ordinal,
        time_text=time_text,
        block_text=block_text,
    )

    if isinstance(record, DepositEvent):
        return AuditEntry(
            title="Deposit",
            lines=(
                f"Amount: {format_ether(record.amount)} ETH",
                f"Unlocks: {format_timestamp(record.unlock_time)}",
            ),
            unlock_time=record.unlock_time,
            **common,
        )

    if isinstance(record, WithdrawalEvent):
        return AuditEntry(
            title="Withdrawal",
            lines=(f"Amount: {format_ether(record.amount)} ETH",),
            **common,
        )

    if isinstance(record, EmergencyWithdrawalEvent):
        quote = calculate_penalty(record.amount)
        return AuditEntry(
            title="Emergency Withdrawal",
            lines=(
                f"Total Amount: {format_ether(record.amount)} ETH "
                f"({VAULT_RULES.PENALTY_PERCENT}% penalty applied)",
                f"Received: {format_ether(quote.payout)} ETH",
            ),
            payout=quote.payout,
            penalty=quote.penalty,
            **common,
        )

    raise InvalidInput(f"Unknown event record: {record!r}")


def _recency_key(entry: AuditEntry) -> tuple[int, int, int]:
    # Pending (no block yet) beats any confirmed block.
    if entry.block_number is None:
        return (1, 0, entry.stream_ordinal)
    return (0, entry.block_number, entry.stream_ordinal)


def _check_stream(records: Iterable[EventRecord], expected: type, account: Optional[str]) -> list:
    records = list(records or ())
    for record in records:
        if not isinstance(record, expected):
            raise InvalidInput(
                f"{expected.__name__} stream contains {type(record).__name__}"
            )
        if account and record.account.lower() != account.lower():
            raise InvalidInput(
                f"{expected.__name__} for {record.account} in stream for {account}"
            )
    return records


def aggregate_events(
    deposits: Iterable[DepositEvent],
    withdrawals: Iterable[WithdrawalEvent],
    emergencies: Iterable[EmergencyWithdrawalEvent],
    account: Optional[str] = None,
) -> list[AuditEntry]:
    """
    Merge the three streams into one list, most recent first.

    Pure: the same three inputs always give an equal output list. Streams are
    assumed disjoint by kind, so nothing is deduplicated.
    """
    streams = (
        _check_stream(deposits, DepositEvent, account),
        _check_stream(withdrawals, WithdrawalEvent, account),
        _check_stream(emergencies, EmergencyWithdrawalEvent, account),
    )

    entries = [
        render_entry(record, ordinal)
        for stream in streams
        for ordinal, record in enumerate(stream)
    ]
    # sorted() is stable, and reverse=True keeps equal keys in input order
    return sorted(entries, key=_recency_key, reverse=True)
