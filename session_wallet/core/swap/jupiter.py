"""
Jupiter Swap Service for Solana.

Quotes token swaps through the Jupiter aggregator and fetches the
serialized swap transaction for the session key to sign. Routing is
Jupiter's business; this service only applies the safety checks
(supported tokens, slippage, maximum price impact).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from ..errors import NetworkError, SwapQuoteError, ValidationError
from ..execution.amounts import scale_to_atomic
from .models import SwapQuote, SwapTransaction, resolve_token

if TYPE_CHECKING:
    from ...config import Settings

logger = logging.getLogger(__name__)


class JupiterSwapService:
    """
    Usage:
        service = JupiterSwapService()
        quote = await service.get_quote("SOL", "USDC", Decimal("0.01"))
        swap = await service.get_swap_transaction(quote, session_address)
    """

    name = "jupiter"

    def __init__(
        self,
        api_url: str = "https://quote-api.jup.ag/v6",
        slippage_bps: int = 50,
        max_price_impact_pct: float = 2.0,
        timeout_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._slippage_bps = slippage_bps
        self._max_price_impact_pct = max_price_impact_pct
        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "JupiterSwapService":
        return cls(
            api_url=settings.jupiter_api_url,
            slippage_bps=settings.swap_slippage_bps,
            max_price_impact_pct=settings.swap_max_price_impact_pct,
            timeout_s=settings.rpc_timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get_quote(
        self,
        input_symbol: str,
        output_symbol: str,
        amount: Decimal,
        slippage_bps: Optional[int] = None,
    ) -> SwapQuote:
        """
        Quote swapping ``amount`` of the input token.

        Raises:
            ValidationError: Unknown token, identical tokens, bad amount.
            SwapQuoteError: Jupiter refused, or the price impact is too high.
            NetworkError: Jupiter is unreachable.
        """
        input_token = resolve_token(input_symbol)
        output_token = resolve_token(output_symbol)
        if input_token == output_token:
            raise ValidationError("Input and output tokens must differ")
        atomic = scale_to_atomic(amount, input_token.decimals)
        slippage = self._slippage_bps if slippage_bps is None else slippage_bps

        params = {
            "inputMint": input_token.mint,
            "outputMint": output_token.mint,
            "amount": str(atomic),
            "slippageBps": str(slippage),
        }
        data = await self._request("GET", "/quote", params=params)

        try:
            price_impact = float(data.get("priceImpactPct") or 0)
            quote = SwapQuote(
                input_token=input_token,
                output_token=output_token,
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                other_amount_threshold=int(data.get("otherAmountThreshold") or data["outAmount"]),
                slippage_bps=int(data.get("slippageBps", slippage)),
                price_impact_pct=price_impact,
                route_labels=[
                    step.get("swapInfo", {}).get("label", "")
                    for step in data.get("routePlan") or []
                ],
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SwapQuoteError(f"Jupiter Quote API returned an unexpected response: {e}") from e

        if quote.price_impact_pct > self._max_price_impact_pct:
            raise SwapQuoteError(
                f"Safety Alert: Price impact is {quote.price_impact_pct}%, which exceeds the "
                f"safety limit of {self._max_price_impact_pct}%. Transaction aborted.",
                details={"priceImpactPct": quote.price_impact_pct, "limit": self._max_price_impact_pct},
            )

        logger.info(
            f"Jupiter quote: {quote.input_amount} {input_token.symbol} -> "
            f"{quote.output_amount} {output_token.symbol} (impact {quote.price_impact_pct}%)"
        )
        return quote

    async def get_swap_transaction(self, quote: SwapQuote, user_public_key: str) -> SwapTransaction:
        """Fetch the serialized transaction executing ``quote`` for ``user_public_key``."""
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        data = await self._request("POST", "/swap", json=body)

        serialized = data.get("swapTransaction")
        if not serialized:
            raise SwapQuoteError("Jupiter Swap API returned no transaction")
        last_valid = data.get("lastValidBlockHeight")
        return SwapTransaction(
            quote=quote,
            serialized=serialized,
            last_valid_block_height=int(last_valid) if last_valid is not None else None,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        client = await self._get_client()
        url = f"{self._api_url}{path}"
        try:
            response = await client.request(method, url, timeout=self._timeout_s, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise NetworkError(f"Cannot reach Jupiter: {e}", provider=self.name, request_sent=False) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Jupiter request failed: {e}", provider=self.name) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            label = "Quote" if path == "/quote" else "Swap"
            raise SwapQuoteError(
                f"Jupiter {label} API Error: {error or response.reason_phrase or response.status_code}",
                details={"status": response.status_code},
            )
        if not isinstance(data, dict):
            raise SwapQuoteError("Jupiter returned a non-object response")
        return data


__all__ = ["JupiterSwapService"]
