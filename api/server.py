"""
PiggyBank API Server - FastAPI Backend

Endpoints:
- GET  /health                   Liveness + ledger/session status
- GET  /vault                    Projected vault view (create vs manage mode) + wallet balance
- GET  /countdown                Time remaining until unlock
- GET  /history                  Audit trail, most recent first
- GET  /preview/create           Projected unlock for a new vault
- GET  /preview/add-funds        Projected unlock after adding funds
- GET  /preview/emergency        Penalty + payout for an early withdrawal
- POST /refresh                  Re-read everything from the chain
- POST /vault                    Create a vault (deposit + lock duration)
- POST /vault/funds              Add funds
- POST /vault/withdraw           Withdraw after unlock
- POST /vault/emergency-withdraw Withdraw early, 10% penalty (must confirm)

Write endpoints report the ledger's verdict as-is. Nothing is retried.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from piggybank.errors import (
    InvalidInput, LedgerUnavailable, PreconditionViolation, StaleDataFailure,
    TransactionFailure, VaultError,
)
from piggybank.rules import DEFAULT_LOCK_DURATION, LockDuration, VAULT_RULES
from piggybank.units import format_ether, format_timestamp

logger = logging.getLogger("piggybank.api")


# ============================================================
# MODELS
# ============================================================

class VaultResponse(BaseModel):
    account: str
    has_vault: bool
    mode: str
    amount_wei: str
    amount_eth: str
    is_unlocked: bool
    unlock_timestamp: Optional[int] = None
    unlock_time: Optional[str] = None
    actions: list[str]
    ledger_time_left: int = 0
    balance_wei: str = "0"
    balance_eth: str = "0"


class CountdownResponse(BaseModel):
    state: str
    target: int
    remaining: int
    days: int
    hours: int
    minutes: int
    seconds: int
    text: str


class HistoryResponse(BaseModel):
    entries: list[dict]
    message: str = ""


class CreateVaultRequest(BaseModel):
    amount_eth: str = Field(..., max_length=64)
    lock_duration: LockDuration = DEFAULT_LOCK_DURATION


class AddFundsRequest(BaseModel):
    amount_eth: str = Field(..., max_length=64)


class EmergencyWithdrawRequest(BaseModel):
    confirm_penalty: bool = False


class ActionResponse(BaseModel):
    success: bool
    action: str
    tx_hash: str = ""
    explorer_url: str = ""
    block_number: int = 0
    vault: Optional[VaultResponse] = None


class DepositPreviewResponse(BaseModel):
    action: str
    amount_wei: str
    amount_eth: str
    lock_duration: str
    current_unlock: int
    effective_unlock: int
    effective_unlock_time: str
    extended: bool


class PenaltyPreviewResponse(BaseModel):
    amount_wei: str
    penalty_wei: str
    payout_wei: str
    amount_eth: str
    penalty_eth: str
    payout_eth: str
    penalty_percent: int


# ============================================================
# SERVER FACTORY
# ============================================================

@asynccontextmanager
async def _default_lifespan(app):
    yield
    app.state.session.close()


def create_app(session, ledger=None) -> FastAPI:
    """
    Create FastAPI app wired to one VaultSession.

    ledger: optional, only used for /health status and explorer links.
    The default lifespan stops the session's countdown on shutdown; main.py
    replaces it with one that also does the initial read.
    """
    app = FastAPI(
        title="PiggyBank",
        description="Time-locked savings vault, mirrored from the chain.",
        version="0.1.0",
        lifespan=_default_lifespan,
    )
    app.state.session = session

    # CORS: allow all in dev, restrict in production via CORS_ORIGINS env var
    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _raise_http(e: VaultError):
        if isinstance(e, InvalidInput):
            raise HTTPException(400, str(e))
        if isinstance(e, PreconditionViolation):
            raise HTTPException(409, str(e))
        if isinstance(e, TransactionFailure):
            raise HTTPException(502, str(e))
        if isinstance(e, (LedgerUnavailable, StaleDataFailure)):
            raise HTTPException(503, str(e))
        raise HTTPException(500, str(e))

    async def _fresh(read):
        """Run a read against the snapshot; one re-read if it is stale."""
        try:
            return read()
        except StaleDataFailure:
            logger.info("Snapshot stale, re-reading from chain")
        try:
            await session.refresh()
            return read()
        except VaultError as e:
            _raise_http(e)

    def _vault_response() -> VaultResponse:
        view = session.view()
        return VaultResponse(
            account=session.account,
            has_vault=view.has_vault,
            mode=view.mode,
            amount_wei=str(view.amount),
            amount_eth=view.display_amount,
            is_unlocked=view.is_unlocked,
            unlock_timestamp=view.unlock_timestamp,
            unlock_time=view.unlock_time_text,
            actions=[a.value for a in view.actions],
            ledger_time_left=session.snapshot.ledger_time_left,
            balance_wei=str(session.snapshot.balance),
            balance_eth=format_ether(session.snapshot.balance),
        )

    async def _run_action(action: str, make_coro) -> ActionResponse:
        try:
            if session.is_stale:
                # Validate against a current snapshot, never a stale one.
                await session.refresh()
            result = await make_coro()
        except VaultError as e:
            if isinstance(e, TransactionFailure):
                logger.warning(f"{action} failed: {e}")
            _raise_http(e)
        except Exception as e:
            logger.error(f"{action} endpoint error: {e}", exc_info=True)
            raise HTTPException(500, "internal error")

        vault = None
        if not session.is_stale:
            vault = _vault_response()
        return ActionResponse(
            success=result.success,
            action=action,
            tx_hash=result.tx_hash,
            explorer_url=ledger.get_explorer_url(result.tx_hash) if ledger else "",
            block_number=result.block_number,
            vault=vault,
        )

    def _deposit_preview(preview) -> DepositPreviewResponse:
        return DepositPreviewResponse(
            action=preview.action.value,
            amount_wei=str(preview.amount),
            amount_eth=format_ether(preview.amount),
            lock_duration=preview.duration.value,
            current_unlock=preview.unlock.current_unlock,
            effective_unlock=preview.unlock.effective_unlock,
            effective_unlock_time=format_timestamp(preview.unlock.effective_unlock),
            extended=preview.unlock.extended,
        )

    # ============================================================
    # ROUTES
    # ============================================================

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "session": session.get_status(),
            "ledger": ledger.get_status() if ledger else None,
        }

    @app.get("/vault", response_model=VaultResponse)
    async def vault():
        return await _fresh(_vault_response)

    @app.get("/countdown", response_model=CountdownResponse)
    async def countdown():
        reading = await _fresh(session.countdown_reading)
        return CountdownResponse(
            state=reading.state.value,
            target=reading.target,
            remaining=reading.remaining,
            days=reading.days,
            hours=reading.hours,
            minutes=reading.minutes,
            seconds=reading.seconds,
            text=reading.text,
        )

    @app.get("/history", response_model=HistoryResponse)
    async def history():
        entries = await _fresh(session.history)
        return HistoryResponse(
            entries=[e.to_dict() for e in entries],
            message="" if entries else VAULT_RULES.EMPTY_HISTORY_TEXT,
        )

    @app.get("/preview/create", response_model=DepositPreviewResponse)
    async def preview_create(amount_eth: str, lock_duration: LockDuration = DEFAULT_LOCK_DURATION):
        try:
            preview = await _fresh(lambda: session.preview_create(amount_eth, lock_duration))
        except VaultError as e:
            _raise_http(e)
        return _deposit_preview(preview)

    @app.get("/preview/add-funds", response_model=DepositPreviewResponse)
    async def preview_add_funds(amount_eth: str, lock_duration: LockDuration = DEFAULT_LOCK_DURATION):
        try:
            preview = await _fresh(lambda: session.preview_add_funds(amount_eth, lock_duration))
        except VaultError as e:
            _raise_http(e)
        return _deposit_preview(preview)

    @app.get("/preview/emergency", response_model=PenaltyPreviewResponse)
    async def preview_emergency():
        try:
            quote = await _fresh(session.preview_emergency_withdraw)
        except VaultError as e:
            _raise_http(e)
        return PenaltyPreviewResponse(
            amount_wei=str(quote.amount),
            penalty_wei=str(quote.penalty),
            payout_wei=str(quote.payout),
            amount_eth=format_ether(quote.amount),
            penalty_eth=format_ether(quote.penalty),
            payout_eth=format_ether(quote.payout),
            penalty_percent=VAULT_RULES.PENALTY_PERCENT,
        )

    @app.post("/refresh", response_model=VaultResponse)
    async def refresh():
        try:
            await session.refresh()
        except VaultError as e:
            _raise_http(e)
        return _vault_response()

    @app.post("/vault", response_model=ActionResponse)
    async def create_vault(req: CreateVaultRequest):
        return await _run_action("create", lambda: session.create_vault(req.amount_eth, req.lock_duration))

    @app.post("/vault/funds", response_model=ActionResponse)
    async def add_funds(req: AddFundsRequest):
        return await _run_action("add_funds", lambda: session.add_funds(req.amount_eth))

    @app.post("/vault/withdraw", response_model=ActionResponse)
    async def withdraw():
        return await _run_action("withdraw", session.withdraw)

    @app.post("/vault/emergency-withdraw", response_model=ActionResponse)
    async def emergency_withdraw(req: EmergencyWithdrawRequest):
        return await _run_action(
            "emergency_withdraw",
            lambda: session.emergency_withdraw(confirm_penalty=req.confirm_penalty),
        )

    return app
