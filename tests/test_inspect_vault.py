import argparse
import asyncio

import pytest

from scripts import inspect_vault
from scripts.inspect_vault import build_report, print_report, resolve_account

from conftest import ACCOUNT

# Well-known local devnet account #0
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _args(account=""):
    return argparse.Namespace(
        chain="localhost",
        address="0x" + "11" * 20,
        account=account,
        preview_add="",
        duration="1day",
    )


def test_explicit_account_wins():
    assert resolve_account(ACCOUNT, DEV_KEY) == ACCOUNT


def test_account_derived_from_key():
    assert resolve_account("", DEV_KEY) == DEV_ADDRESS


def test_no_account_and_no_key():
    assert resolve_account("", "") == ""


def test_invalid_key_gives_no_account():
    assert resolve_account("", "0x1234") == ""


def test_key_only_env_reaches_ledger_read_only(monkeypatch):
    seen = {}

    def fake_initialize(self, **kwargs):
        seen.update(kwargs)
        return False

    monkeypatch.delenv("ACCOUNT_ADDRESS", raising=False)
    monkeypatch.setenv("ACCOUNT_PRIVATE_KEY", DEV_KEY)
    monkeypatch.setattr(inspect_vault.PiggyBankLedger, "initialize", fake_initialize)

    with pytest.raises(SystemExit):
        asyncio.run(inspect_vault._inspect(_args()))
    assert seen["watch_address"] == DEV_ADDRESS
    assert "private_key" not in seen


def test_no_account_configured_exits(monkeypatch):
    monkeypatch.delenv("ACCOUNT_PRIVATE_KEY", raising=False)
    with pytest.raises(SystemExit, match="No account to inspect"):
        asyncio.run(inspect_vault._inspect(_args()))


def test_report_for_locked_vault(session, locked_ledger):
    asyncio.run(session.refresh())
    report = build_report(session, preview_add="0.5", duration="1week")
    assert report["has_vault"] is True
    assert report["balance_eth"] == "10"
    assert report["emergency"] == {"penalty_eth": "0.1", "payout_eth": "0.9"}
    assert report["preview_add"]["extended"] is True
    assert report["preview_add"]["duration"] == "1week"


def test_report_without_vault_prints_empty_history(session, ledger, capsys):
    asyncio.run(session.refresh())
    report = build_report(session)
    assert report["emergency"] is None
    assert report["preview_add"] is None

    print_report(report)
    out = capsys.readouterr().out
    assert "No transactions found for your address." in out
    assert "Balance: 10 ETH" in out
