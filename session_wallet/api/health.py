import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..runtime import SessionRuntime, get_runtime

router = APIRouter()


@router.get("/healthz")
async def health_check(runtime: SessionRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Health check endpoint that verifies each chain's RPC endpoint"""
    chains = list(runtime.adapters)
    results = await asyncio.gather(*(runtime.adapters[c].health_check() for c in chains))
    ledger_status = {chain.value: result for chain, result in zip(chains, results)}

    healthy = sum(1 for status in ledger_status.values() if status["healthy"])

    return {
        "status": "healthy" if healthy == len(ledger_status) else "degraded",
        "session": runtime.manager.status.value,
        "ledgers": ledger_status,
        "available_ledgers": healthy,
        "total_ledgers": len(ledger_status),
    }
