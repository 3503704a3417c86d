"""
PiggyBank - main entry point

Initializes the ledger and the account session, wires them into the API,
starts the server. One file to understand how everything connects.

Usage:
    python main.py              # Start the server
    uvicorn main:app            # Or via uvicorn directly
"""

import os
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    import re as _re
    _PATTERN = _re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("piggybank.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from piggybank.chain import PiggyBankLedger, CHAIN_DEFAULTS
from piggybank.errors import LedgerUnavailable
from piggybank.session import VaultSession
from piggybank.units import format_ether
from api.server import create_app


# ============================================================
# WIRING
# ============================================================

CHAIN = os.getenv("PIGGYBANK_CHAIN", "localhost")

ledger = PiggyBankLedger()
ledger_ready = ledger.initialize(
    contract_address=os.getenv("PIGGYBANK_ADDRESS", ""),
    chain=CHAIN,
    private_key=os.getenv("ACCOUNT_PRIVATE_KEY", ""),
    watch_address=os.getenv("ACCOUNT_ADDRESS", ""),
)
if not ledger_ready:
    logger.warning(
        f"Ledger not ready (chain={CHAIN}, supported={list(CHAIN_DEFAULTS)}). "
        "Every read will answer 503 until configuration is fixed."
    )

session = VaultSession(ledger, ledger.account)


@asynccontextmanager
async def lifespan(app):
    """Startup and shutdown."""
    logger.info("=" * 60)
    logger.info(f"PiggyBank client starting | chain={CHAIN} | account={ledger.account or '-'}")
    logger.info("=" * 60)

    if ledger_ready:
        try:
            await session.refresh()
            view = session.view()
            logger.info(f"Wallet balance: {format_ether(session.snapshot.balance)} ETH")
            if view.has_vault:
                logger.info(
                    f"Vault: {view.display_amount} ETH | "
                    f"{'unlocked' if view.is_unlocked else 'locked until ' + str(view.unlock_time_text)}"
                )
            else:
                logger.info("No vault for this account yet")
        except LedgerUnavailable as e:
            logger.warning(f"Initial read failed, will retry on first request: {e}")

    yield

    # Shutdown
    logger.info("PiggyBank client shutting down...")
    session.close()
    logger.info("Goodbye.")


def create_piggybank_app():
    """Create the fully wired FastAPI app."""
    app = create_app(session=session, ledger=ledger)
    app.router.lifespan_context = lifespan
    return app


# ============================================================
# ENTRY POINT
# ============================================================

app = create_piggybank_app()

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("DEV", "").lower() in ("1", "true", "yes")

    logger.info(f"Starting server on {host}:{port} (reload={reload})")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=LOG_LEVEL.lower(),
    )
