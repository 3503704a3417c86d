#!/usr/bin/env python3
"""
Inspect a PiggyBank vault

One-shot read of an account's vault: projected state, countdown, the
emergency-withdrawal penalty and the full audit trail. Read-only, nothing
is signed or sent.

Usage:
    python scripts/inspect_vault.py                          # Account from .env
    python scripts/inspect_vault.py --account 0xabc...       # Any account
    python scripts/inspect_vault.py --chain sepolia --json   # Machine-readable
    python scripts/inspect_vault.py --preview-add 0.05 --duration 1week
"""

import os
import sys
import json
import asyncio
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

load_dotenv(ROOT / ".env")

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("piggybank.inspect")

from eth_account import Account

from piggybank.chain import CHAIN_DEFAULTS, PiggyBankLedger
from piggybank.errors import VaultError
from piggybank.rules import DEFAULT_LOCK_DURATION, LockDuration, VAULT_RULES
from piggybank.session import VaultSession
from piggybank.units import format_ether, format_timestamp


def resolve_account(account: str, private_key: str = "") -> str:
    """Account to inspect: the explicit address, else the one behind the signing key."""
    if account:
        return account
    if not private_key:
        return ""
    try:
        return Account.from_key(private_key).address
    except Exception as e:
        logger.error(f"Invalid ACCOUNT_PRIVATE_KEY: {e}")
        return ""


def build_report(session: VaultSession, preview_add: str = "", duration: str = DEFAULT_LOCK_DURATION.value) -> dict:
    """Collect everything worth printing from a refreshed session."""
    view = session.view()
    reading = session.countdown_reading()

    report = {
        "account": session.account,
        "balance_eth": format_ether(session.snapshot.balance),
        "has_vault": view.has_vault,
        "amount_eth": view.display_amount,
        "is_unlocked": view.is_unlocked,
        "unlock_time": view.unlock_time_text,
        "countdown": reading.text,
        "actions": [a.value for a in view.actions],
        "emergency": None,
        "preview_add": None,
        "history": [e.to_dict() for e in session.history()],
    }

    if view.has_vault and not view.is_unlocked:
        quote = session.preview_emergency_withdraw()
        report["emergency"] = {
            "penalty_eth": format_ether(quote.penalty),
            "payout_eth": format_ether(quote.payout),
        }

    if preview_add and view.has_vault:
        preview = session.preview_add_funds(preview_add, duration)
        report["preview_add"] = {
            "amount_eth": format_ether(preview.amount),
            "duration": preview.duration.value,
            "unlock_time": format_timestamp(preview.unlock.effective_unlock),
            "extended": preview.unlock.extended,
        }

    return report


def print_report(report: dict) -> None:
    print()
    print("=" * 64)
    print("   PIGGYBANK -- VAULT INSPECTION")
    print("=" * 64)
    print(f"  Account: {report['account']}")
    print(f"  Balance: {report['balance_eth']} ETH")
    print()

    if not report["has_vault"]:
        print("  No vault for this account. Create one to start saving.")
    else:
        print(f"  {'Savings':<18} {report['amount_eth']} ETH")
        print(f"  {'Status':<18} {'unlocked' if report['is_unlocked'] else 'locked'}")
        print(f"  {'Unlocks':<18} {report['unlock_time'] or '-'}")
        print(f"  {'Time remaining':<18} {report['countdown']}")
        if report["emergency"]:
            em = report["emergency"]
            print(f"  {'Emergency payout':<18} {em['payout_eth']} ETH (penalty {em['penalty_eth']} ETH)")
    print(f"  {'Allowed actions':<18} {', '.join(report['actions'])}")

    if report["preview_add"]:
        pa = report["preview_add"]
        change = "extends lock" if pa["extended"] else "lock unchanged"
        print()
        print(f"  Add {pa['amount_eth']} ETH for {pa['duration']}: unlock {pa['unlock_time']} ({change})")

    print()
    print("-" * 55)
    print("  Transaction History")
    print("-" * 55)
    if not report["history"]:
        print(f"  {VAULT_RULES.EMPTY_HISTORY_TEXT}")
    for entry in report["history"]:
        print(f"  [{entry['block']:>8}] {entry['time']:<24} {entry['title']}")
        for line in entry["lines"]:
            print(f"             {line}")
    print()


async def _inspect(args) -> dict:
    account = resolve_account(args.account, os.getenv("ACCOUNT_PRIVATE_KEY", ""))
    if not account:
        raise SystemExit("No account to inspect: pass --account or set ACCOUNT_ADDRESS / ACCOUNT_PRIVATE_KEY")

    # Read-only: the key only names the account, it is never handed to the ledger.
    ledger = PiggyBankLedger()
    ok = ledger.initialize(
        contract_address=args.address,
        chain=args.chain,
        watch_address=account,
    )
    if not ok:
        raise SystemExit("Could not connect to the PiggyBank contract (see log above)")

    session = VaultSession(ledger, ledger.account)
    try:
        await session.refresh()
        return build_report(session, args.preview_add, args.duration)
    finally:
        session.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect a PiggyBank vault")
    parser.add_argument("--chain", default=os.getenv("PIGGYBANK_CHAIN", "localhost"),
                        choices=list(CHAIN_DEFAULTS.keys()),
                        help="Target chain (default: PIGGYBANK_CHAIN or localhost)")
    parser.add_argument("--address", default=os.getenv("PIGGYBANK_ADDRESS", ""),
                        help="PiggyBank contract address (default: PIGGYBANK_ADDRESS)")
    parser.add_argument("--account", default=os.getenv("ACCOUNT_ADDRESS", ""),
                        help="Account to inspect (default: ACCOUNT_ADDRESS, else derived from ACCOUNT_PRIVATE_KEY)")
    parser.add_argument("--preview-add", default="",
                        help="Also preview adding this much ETH")
    parser.add_argument("--duration", default=DEFAULT_LOCK_DURATION.value,
                        choices=[d.value for d in LockDuration],
                        help="Lock duration for --preview-add (default: 1day)")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    args = parser.parse_args()

    try:
        report = asyncio.run(_inspect(args))
    except VaultError as e:
        logger.error(f"Inspection failed: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print_report(report)


if __name__ == "__main__":
    main()
