"""Ether amount and timestamp formatting shared by the projector and the audit trail."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from web3 import Web3

from .errors import InvalidInput


def parse_deposit_amount(value) -> int:
    """
    Turn user input (ETH as str/Decimal, or wei as int) into a positive wei amount.

    Strings and Decimals are read as ETH ("0.1" -> 10**17 wei).
    Plain ints are already wei.
    """
    if isinstance(value, bool):
        raise InvalidInput(f"Invalid deposit amount: {value!r}")

    if isinstance(value, int):
        wei = value
    else:
        try:
            eth = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidInput(f"Invalid deposit amount: {value!r}") from None
        if not eth.is_finite():
            raise InvalidInput(f"Invalid deposit amount: {value!r}")
        numerator, denominator = eth.as_integer_ratio()
        if (numerator * 10 ** 18) % denominator:
            raise InvalidInput(f"Deposit amount {value!r} is not a whole number of wei")
        try:
            wei = int(Web3.to_wei(eth, "ether"))
        except ValueError as e:
            raise InvalidInput(f"Invalid deposit amount: {value!r} ({e})") from None

    if wei <= 0:
        raise InvalidInput(f"Deposit amount must be positive, got {value!r}")
    return wei


def format_ether(wei: int) -> str:
    """Format a wei amount as ETH without trailing zeros ("100000000000000000" -> "0.1")."""
    eth = Web3.from_wei(wei, "ether")
    text = format(Decimal(eth), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_timestamp(ts: int) -> str:
    """Unix seconds -> "YYYY-MM-DD HH:MM:SS UTC"."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
