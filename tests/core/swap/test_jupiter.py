import json
from decimal import Decimal

import httpx
import pytest

from session_wallet.core.errors import NetworkError, SwapQuoteError, ValidationError
from session_wallet.core.swap import SUPPORTED_TOKENS, JupiterSwapService, WRAPPED_SOL_MINT

USDC_MINT = SUPPORTED_TOKENS["USDC"].mint


def quote_payload(**overrides):
    payload = {
        "inputMint": WRAPPED_SOL_MINT,
        "outputMint": USDC_MINT,
        "inAmount": "10000000",
        "outAmount": "1500000",
        "otherAmountThreshold": "1492500",
        "slippageBps": 50,
        "priceImpactPct": "0.01",
        "routePlan": [{"swapInfo": {"label": "Orca"}}, {"swapInfo": {"label": "Raydium"}}],
    }
    payload.update(overrides)
    return payload


def make_service(handler, **kwargs) -> JupiterSwapService:
    return JupiterSwapService(
        api_url="https://jup.test/v6/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_quote_sends_mints_and_atomic_amount():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=quote_payload())

    quote = await make_service(handler).get_quote("sol", "usdc", Decimal("0.01"))

    params = requests[0].url.params
    assert requests[0].url.path == "/v6/quote"
    assert params["inputMint"] == WRAPPED_SOL_MINT
    assert params["outputMint"] == USDC_MINT
    assert params["amount"] == "10000000"
    assert params["slippageBps"] == "50"
    assert quote.input_amount == Decimal("0.01")
    assert quote.output_amount == Decimal("1.5")
    assert quote.route_labels == ["Orca", "Raydium"]
    assert quote.sol_value == Decimal("0.01")


@pytest.mark.asyncio
async def test_buying_sol_is_valued_by_output():
    def handler(request):
        return httpx.Response(200, json=quote_payload(inAmount="1500000", outAmount="10000000"))

    quote = await make_service(handler).get_quote("USDC", "SOL", Decimal("1.5"))
    assert quote.sol_value == Decimal("0.01")


@pytest.mark.asyncio
async def test_price_impact_above_limit_aborts():
    def handler(request):
        return httpx.Response(200, json=quote_payload(priceImpactPct="3.5"))

    with pytest.raises(SwapQuoteError) as exc:
        await make_service(handler, max_price_impact_pct=2.0).get_quote("SOL", "USDC", Decimal("0.01"))
    assert exc.value.message == (
        "Safety Alert: Price impact is 3.5%, which exceeds the safety limit of 2.0%. Transaction aborted."
    )


@pytest.mark.asyncio
async def test_api_error_is_surfaced():
    def handler(request):
        return httpx.Response(400, json={"error": "Could not find any route"})

    with pytest.raises(SwapQuoteError) as exc:
        await make_service(handler).get_quote("SOL", "USDC", Decimal("0.01"))
    assert exc.value.message == "Jupiter Quote API Error: Could not find any route"


@pytest.mark.asyncio
async def test_unreachable_api_is_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError):
        await make_service(handler).get_quote("SOL", "USDC", Decimal("0.01"))


@pytest.mark.asyncio
@pytest.mark.parametrize("pair", [("SOL", "SOL"), ("SOL", "DOGE")])
async def test_bad_pairs_never_reach_jupiter(pair):
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ValidationError):
        await make_service(handler).get_quote(pair[0], pair[1], Decimal("1"))


@pytest.mark.asyncio
async def test_swap_transaction_posts_quote_back():
    bodies = []

    def handler(request):
        if request.url.path.endswith("/quote"):
            return httpx.Response(200, json=quote_payload())
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"swapTransaction": "AQID", "lastValidBlockHeight": 2000})

    service = make_service(handler)
    quote = await service.get_quote("SOL", "USDC", Decimal("0.01"))
    swap = await service.get_swap_transaction(quote, "SessionPubkey")

    assert bodies[0]["quoteResponse"] == quote.raw
    assert bodies[0]["userPublicKey"] == "SessionPubkey"
    assert swap.serialized == "AQID"
    assert swap.last_valid_block_height == 2000


@pytest.mark.asyncio
async def test_swap_without_transaction_is_an_error():
    def handler(request):
        if request.url.path.endswith("/quote"):
            return httpx.Response(200, json=quote_payload())
        return httpx.Response(200, json={})

    service = make_service(handler)
    quote = await service.get_quote("SOL", "USDC", Decimal("0.01"))
    with pytest.raises(SwapQuoteError):
        await service.get_swap_transaction(quote, "SessionPubkey")
