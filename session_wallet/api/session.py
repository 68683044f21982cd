"""
Session API

Endpoints for the session wallet lifecycle:
- Start (or restore) a session and register the owner's addresses
- Fund the session from the owner's wallet
- Balances, spend usage and transfer status
- Revoke (refund + erase keys)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..core.chain_types import Chain, normalize_chain
from ..core.errors import ErrorCategory, SessionWalletError
from ..runtime import SessionRuntime, get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["session"])


# ============================================================================
# Request Models
# ============================================================================


class StartSessionRequest(BaseModel):
    """Owner wallets that fund the session and receive refunds."""
    model_config = ConfigDict(populate_by_name=True)

    sol_owner: Optional[str] = Field(default=None, alias="solOwner")
    eth_owner: Optional[str] = Field(default=None, alias="ethOwner")


class FundSessionRequest(BaseModel):
    """A funding transfer the owner's wallet has already broadcast."""
    model_config = ConfigDict(populate_by_name=True)

    chain: str = Field(..., description="solana or ethereum")
    amount: Decimal = Field(..., gt=0, description="Amount in whole coins")
    tx_id: str = Field(..., alias="txId", description="Signature / hash of the funding transfer")


# ============================================================================
# Helpers
# ============================================================================


_STATUS_CODES = {
    ErrorCategory.CONFIG: 500,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.SECURITY: 403,
    ErrorCategory.SESSION: 409,
    ErrorCategory.NETWORK: 502,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.INSUFFICIENT_FUNDS: 422,
    ErrorCategory.REJECTED: 422,
    ErrorCategory.PROVIDER: 502,
}


def http_error(error: SessionWalletError) -> HTTPException:
    return HTTPException(status_code=_STATUS_CODES.get(error.category, 500), detail=error.to_dict())


def _chain(value: str) -> Chain:
    try:
        return normalize_chain(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _session_summary(runtime: SessionRuntime) -> Dict[str, Any]:
    manager = runtime.manager
    summary: Dict[str, Any] = {"status": manager.status.value, "addresses": {}, "limits": {}}
    if manager.is_active:
        summary["addresses"] = {chain.value: manager.address(chain) for chain in manager.adapters}
        summary["limits"] = {chain.value: usage.to_dict() for chain, usage in manager.usage().items()}
    return summary


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/start")
async def start_session(
    request: StartSessionRequest,
    runtime: SessionRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Start or restore the session; idempotent while it is active."""
    try:
        if request.sol_owner:
            runtime.funding_signer.set_owner(Chain.SOLANA, request.sol_owner)
        if request.eth_owner:
            runtime.funding_signer.set_owner(Chain.ETHEREUM, request.eth_owner)
        await runtime.ensure_session()
    except SessionWalletError as e:
        raise http_error(e)
    return _session_summary(runtime)


@router.get("")
async def get_session(runtime: SessionRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    summary = _session_summary(runtime)
    summary["monitor"] = runtime.monitor.status()
    return summary


@router.post("/fund")
async def fund_session(
    request: FundSessionRequest,
    runtime: SessionRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Wait for the owner's funding transfer to reach finality."""
    chain = _chain(request.chain)
    try:
        runtime.funding_signer.submitted(chain, request.tx_id)
        try:
            confirmation = await runtime.manager.fund(chain, request.amount)
        finally:
            # No-op once the manager consumed it
            runtime.funding_signer.discard(chain, request.tx_id)
    except SessionWalletError as e:
        logger.warning(f"Funding {chain.value} failed: {e.message}")
        raise http_error(e)
    return confirmation.to_dict()


@router.get("/balances")
async def get_balances(runtime: SessionRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Per-chain balances; a chain whose read failed is null."""
    try:
        balances = await runtime.manager.balances()
    except SessionWalletError as e:
        raise http_error(e)
    return {chain.value: balance.to_dict() if balance else None for chain, balance in balances.items()}


@router.get("/usage")
async def get_usage(runtime: SessionRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        usage = runtime.manager.usage()
    except SessionWalletError as e:
        raise http_error(e)
    return {chain.value: u.to_dict() for chain, u in usage.items()}


@router.get("/transfers/{chain}/{tx_id}")
async def get_transfer_status(
    chain: str,
    tx_id: str,
    runtime: SessionRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """On-chain status of a transfer, e.g. before retrying an ambiguous one."""
    resolved = _chain(chain)
    try:
        status = await runtime.manager.transfer_status(resolved, tx_id)
    except SessionWalletError as e:
        raise http_error(e)
    return {"chain": resolved.value, "txId": tx_id, "status": status.value}


@router.post("/revoke")
async def revoke_session(runtime: SessionRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Refund residual balances to the owner and erase the session keys."""
    try:
        result = await runtime.manager.revoke()
    except SessionWalletError as e:
        raise http_error(e)
    await runtime.monitor.stop()
    return result.to_dict()
