"""
PiggyBank Ledger - On-Chain Read/Write Layer

The contract is the source of truth. This module reads the vault record, the
wallet balance and the event history for an account and submits the four
write actions.

Design:
- Sync Web3 calls wrapped in asyncio.run_in_executor() (web3.py async is fragile)
- Embedded minimal ABI: only the functions and events we use, no compiled JSON needed
- Gas estimation + 20% buffer, nonce auto from chain
- Writes never raise: failure -> log warning -> ChainTxResult(success=False)
- Reads raise LedgerUnavailable so the session keeps its previous snapshot
- Read-only mode when no private key is configured
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import LedgerUnavailable
from .events import (
    EventKind, EventRecord, DepositEvent, WithdrawalEvent, EmergencyWithdrawalEvent,
)
from .projector import VaultRecord
from .rules import VAULT_RULES

logger = logging.getLogger("piggybank.chain")


# ============================================================
# CHAIN DEFAULTS
# ============================================================

CHAIN_DEFAULTS = {
    "localhost": {
        "rpc": "http://127.0.0.1:8545",
        "chain_id": 31337,
        "explorer": "",
        "native_symbol": "ETH",
    },
    "sepolia": {
        "rpc": "https://ethereum-sepolia-rpc.publicnode.com",
        "chain_id": 11155111,
        "explorer": "https://sepolia.etherscan.io",
        "native_symbol": "ETH",
    },
    "base": {
        "rpc": "https://mainnet.base.org",
        "chain_id": 8453,
        "explorer": "https://basescan.org",
        "native_symbol": "ETH",
    },
}


# ============================================================
# MINIMAL ABI
# ============================================================

PIGGYBANK_ABI = [
    # getPiggyBank(address) → (amount, unlockTime, isUnlocked, exists)
    {
        "inputs": [{"name": "user", "type": "address"}],
        "name": "getPiggyBank",
        "outputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "unlockTime", "type": "uint256"},
            {"name": "isUnlocked", "type": "bool"},
            {"name": "exists", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    # getTimeLeft(address) → seconds until unlock (0 once unlocked)
    {
        "inputs": [{"name": "user", "type": "address"}],
        "name": "getTimeLeft",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # createPiggyBank(uint256 lockDuration) payable
    {
        "inputs": [{"name": "_lockDuration", "type": "uint256"}],
        "name": "createPiggyBank",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    # addFunds() payable; unlock = max(current, now + duration)
    {
        "inputs": [],
        "name": "addFunds",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    # withdraw(); only after unlock
    {
        "inputs": [],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # emergencyWithdraw(); before unlock, 10% penalty
    {
        "inputs": [],
        "name": "emergencyWithdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "unlockTime", "type": "uint256"},
        ],
        "name": "Deposit",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "Withdrawal",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "PiggyBankSmashed",
        "type": "event",
    },
]

# EventKind → contract event name
EVENT_NAMES = {
    EventKind.DEPOSIT: "Deposit",
    EventKind.WITHDRAWAL: "Withdrawal",
    EventKind.EMERGENCY_WITHDRAWAL: "PiggyBankSmashed",
}


# ============================================================
# RESULT TYPE
# ============================================================

@dataclass
class ChainTxResult:
    """Result of an on-chain transaction attempt."""
    success: bool
    action: str = ""
    tx_hash: str = ""
    chain: str = ""
    error: str = ""
    block_number: int = 0
    gas_used: int = 0
    gas_price_wei: int = 0       # effectiveGasPrice from receipt
    gas_cost_native: float = 0.0  # gas_used * gas_price in ETH


def event_from_log(kind: EventKind, log_entry, block_timestamp: Optional[int] = None) -> EventRecord:
    """Convert a decoded web3 event log into our immutable event record."""
    args = log_entry["args"]
    block_number = log_entry.get("blockNumber")
    if block_number is not None:
        block_number = int(block_number)

    if kind is EventKind.DEPOSIT:
        return DepositEvent(
            account=args["user"],
            amount=int(args["amount"]),
            unlock_time=int(args["unlockTime"]),
            block_number=block_number,
            block_timestamp=block_timestamp,
        )
    if kind is EventKind.WITHDRAWAL:
        return WithdrawalEvent(
            account=args["user"],
            amount=int(args["amount"]),
            block_number=block_number,
            block_timestamp=block_timestamp,
        )
    return EmergencyWithdrawalEvent(
        account=args["user"],
        amount=int(args["amount"]),
        block_number=block_number,
        block_timestamp=block_timestamp,
    )


# ============================================================
# LEDGER
# ============================================================

class PiggyBankLedger:
    """
    Reads and writes one deployed PiggyBank contract.

    Usage:
        ledger = PiggyBankLedger()
        if ledger.initialize(contract_address, chain="sepolia", private_key=key):
            record = await ledger.read_vault(ledger.account)
            result = await ledger.withdraw()
    """

    def __init__(self):
        self._initialized: bool = False
        self._w3 = None
        self._contract = None
        self._chain: str = ""
        self._chain_id_int: int = 0
        self._explorer: str = ""
        self._contract_address: str = ""
        self._private_key: str = ""
        self._account: str = ""

        self._last_error: str = ""
        self._tx_count: int = 0

    def initialize(
        self,
        contract_address: str,
        chain: str = "localhost",
        private_key: str = "",
        watch_address: str = "",
        rpc_url: Optional[str] = None,
    ) -> bool:
        """
        Connect to the chain and bind the contract.

        Args:
            contract_address: Deployed PiggyBank address
            chain: Key in CHAIN_DEFAULTS
            private_key: Signing key (from .env ACCOUNT_PRIVATE_KEY); empty = read-only
            watch_address: Account to read when running read-only
            rpc_url: Optional RPC override; falls back to <CHAIN>_RPC_URL, then the chain default
        """
        try:
            from web3 import Web3
            from eth_account import Account
        except ImportError:
            logger.warning("web3/eth_account not installed, ledger disabled")
            return False

        chain_cfg = CHAIN_DEFAULTS.get(chain)
        if not chain_cfg:
            logger.warning(f"Unknown chain '{chain}'. Supported: {list(CHAIN_DEFAULTS)}")
            return False

        if not contract_address:
            logger.warning("No PIGGYBANK_ADDRESS, ledger disabled")
            return False

        if private_key:
            try:
                self._account = Account.from_key(private_key).address
                self._private_key = private_key
            except Exception as e:
                logger.error(f"Invalid ACCOUNT_PRIVATE_KEY: {e}")
                return False
        elif watch_address:
            try:
                self._account = Web3.to_checksum_address(watch_address)
            except ValueError as e:
                logger.error(f"Invalid ACCOUNT_ADDRESS: {e}")
                return False
        else:
            logger.warning("No ACCOUNT_PRIVATE_KEY or ACCOUNT_ADDRESS, nothing to watch")
            return False

        rpc = rpc_url or os.getenv(f"{chain.upper()}_RPC_URL", chain_cfg["rpc"])

        try:
            w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": 30}))
            if not w3.is_connected():
                logger.warning(f"Cannot connect to {chain} RPC ({rpc})")
                return False

            self._contract_address = Web3.to_checksum_address(contract_address)
            self._contract = w3.eth.contract(address=self._contract_address, abi=PIGGYBANK_ABI)
            self._w3 = w3
        except Exception as e:
            logger.warning(f"Failed to initialize {chain}: {e}")
            return False

        self._chain = chain
        self._chain_id_int = chain_cfg["chain_id"]
        self._explorer = chain_cfg["explorer"]
        self._initialized = True

        mode = "read-write" if self._private_key else "read-only"
        logger.info(
            f"Ledger connected: {chain} | piggybank={self._contract_address[:10]}... | "
            f"account={self._account[:10]}... | {mode}"
        )
        return True

    @property
    def account(self) -> str:
        return self._account

    @property
    def can_sign(self) -> bool:
        return bool(self._private_key)

    # ============================================================
    # READS
    # ============================================================

    async def _read(self, label: str, fn):
        if not self._initialized:
            raise LedgerUnavailable("ledger not initialized")
        try:
            return await asyncio.get_running_loop().run_in_executor(None, fn)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"{label} failed on {self._chain}: {error}")
            self._last_error = f"{label}: {error}"
            raise LedgerUnavailable(f"{label} failed: {error}") from e

    async def read_vault(self, account: str) -> VaultRecord:
        """getPiggyBank(account)."""
        def _call():
            from web3 import Web3
            return self._contract.functions.getPiggyBank(Web3.to_checksum_address(account)).call()

        raw = await self._read("getPiggyBank", _call)
        return VaultRecord.from_contract(raw)

    async def read_time_left(self, account: str) -> int:
        """getTimeLeft(account), seconds."""
        def _call():
            from web3 import Web3
            return self._contract.functions.getTimeLeft(Web3.to_checksum_address(account)).call()

        return int(await self._read("getTimeLeft", _call))

    async def read_balance(self, account: str) -> int:
        """Wallet balance in wei, i.e. what the account could still deposit."""
        def _call():
            from web3 import Web3
            return self._w3.eth.get_balance(Web3.to_checksum_address(account))

        return int(await self._read("get_balance", _call))

    async def read_events(
        self,
        kind: EventKind,
        account: str,
        from_block: int = VAULT_RULES.EVENTS_FROM_BLOCK,
    ) -> list[EventRecord]:
        """
        All events of one kind for an account, in chain order.
        Each record is annotated with its block timestamp when the block is available.
        """
        event_name = EVENT_NAMES[kind]

        def _fetch():
            from web3 import Web3
            event = getattr(self._contract.events, event_name)()
            logs = event.get_logs(
                argument_filters={"user": Web3.to_checksum_address(account)},
                from_block=from_block,
            )

            block_times: dict[int, Optional[int]] = {}
            records = []
            for log_entry in logs:
                block_number = log_entry.get("blockNumber")
                if block_number is not None and block_number not in block_times:
                    try:
                        block_times[block_number] = int(self._w3.eth.get_block(block_number)["timestamp"])
                    except Exception as e:
                        logger.debug(f"get_block({block_number}) failed: {e}")
                        block_times[block_number] = None
                records.append(event_from_log(kind, log_entry, block_times.get(block_number)))
            return records

        records = await self._read(f"{event_name} logs", _fetch)
        logger.debug(f"Read {len(records)} {event_name} events for {account[:10]}...")
        return records

    # ============================================================
    # WRITES
    # ============================================================

    async def _send_tx(self, action: str, tx_fn, value: int = 0) -> ChainTxResult:
        """
        Build, sign, and send a transaction. Handles gas estimation + nonce.

        Args:
            action: Label for logs and the result
            tx_fn: A web3 contract function call (e.g., contract.functions.withdraw())
            value: wei attached to the call (payable functions only)

        Returns:
            ChainTxResult with tx_hash on success, error on failure
        """
        if not self._initialized:
            return ChainTxResult(success=False, action=action, error="ledger not initialized")
        if not self._private_key:
            return ChainTxResult(success=False, action=action, chain=self._chain,
                                 error="no signing key (read-only mode)")

        w3 = self._w3

        try:
            def _execute():
                nonce = w3.eth.get_transaction_count(self._account)
                tx = tx_fn.build_transaction({
                    "from": self._account,
                    "nonce": nonce,
                    "value": value,
                    "gasPrice": w3.eth.gas_price,
                    "chainId": self._chain_id_int,
                })

                # Gas estimation + 20% buffer
                try:
                    gas_estimate = w3.eth.estimate_gas(tx)
                    tx["gas"] = int(gas_estimate * 1.2)
                except Exception as gas_err:
                    logger.warning(f"Gas estimation failed for {action}, using default 200k: {gas_err}")
                    tx["gas"] = 200_000

                signed = w3.eth.account.sign_transaction(tx, self._private_key)
                tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)

                receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
                return receipt, tx_hash.hex()

            receipt, tx_hash_hex = await asyncio.get_running_loop().run_in_executor(
                None, _execute
            )

            if receipt["status"] == 1:
                self._tx_count += 1
                gas_used = receipt.get("gasUsed", 0)
                gas_price_wei = receipt.get("effectiveGasPrice", 0)
                gas_cost_native = (gas_used * gas_price_wei) / 1e18 if gas_price_wei else 0.0
                logger.info(
                    f"TX SUCCESS [{action}]: {tx_hash_hex[:16]}... | "
                    f"gas={gas_used} | cost={gas_cost_native:.8f} ETH"
                )
                return ChainTxResult(
                    success=True,
                    action=action,
                    tx_hash=tx_hash_hex,
                    chain=self._chain,
                    block_number=receipt.get("blockNumber", 0),
                    gas_used=gas_used,
                    gas_price_wei=gas_price_wei,
                    gas_cost_native=gas_cost_native,
                )

            error = f"TX reverted: {tx_hash_hex}"
            logger.warning(f"TX FAILED [{action}]: {error}")
            self._last_error = error
            return ChainTxResult(
                success=False,
                action=action,
                tx_hash=tx_hash_hex,
                chain=self._chain,
                error=error,
            )

        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"TX ERROR [{action}]: {error}")
            self._last_error = error
            return ChainTxResult(success=False, action=action, chain=self._chain, error=error)

    async def create_vault(self, lock_duration_seconds: int, deposit_amount: int) -> ChainTxResult:
        """createPiggyBank(lockDuration) with deposit_amount wei attached."""
        if not self._initialized:
            return ChainTxResult(success=False, action="create", error="ledger not initialized")
        tx_fn = self._contract.functions.createPiggyBank(lock_duration_seconds)
        return await self._send_tx("create", tx_fn, value=deposit_amount)

    async def add_funds(self, deposit_amount: int) -> ChainTxResult:
        """addFunds() with deposit_amount wei attached."""
        if not self._initialized:
            return ChainTxResult(success=False, action="add_funds", error="ledger not initialized")
        return await self._send_tx("add_funds", self._contract.functions.addFunds(), value=deposit_amount)

    async def withdraw(self) -> ChainTxResult:
        if not self._initialized:
            return ChainTxResult(success=False, action="withdraw", error="ledger not initialized")
        return await self._send_tx("withdraw", self._contract.functions.withdraw())

    async def emergency_withdraw(self) -> ChainTxResult:
        if not self._initialized:
            return ChainTxResult(success=False, action="emergency_withdraw", error="ledger not initialized")
        return await self._send_tx("emergency_withdraw", self._contract.functions.emergencyWithdraw())

    # ============================================================
    # STATUS
    # ============================================================

    def get_explorer_url(self, tx_hash: str) -> str:
        """Block explorer URL for a transaction, empty on local chains."""
        explorer = self._explorer or CHAIN_DEFAULTS.get(self._chain, {}).get("explorer", "")
        if not explorer or not tx_hash:
            return ""
        return f"{explorer}/tx/{tx_hash}"

    def get_status(self) -> dict:
        """Status for health endpoint / debugging."""
        return {
            "initialized": self._initialized,
            "chain": self._chain,
            "contract": self._contract_address,
            "account": self._account[:10] + "..." if self._account else "",
            "can_sign": self.can_sign,
            "tx_count": self._tx_count,
            "last_error": self._last_error,
        }
