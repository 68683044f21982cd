import json

import httpx
import pytest

from session_wallet.core.errors import NetworkError, RpcError
from session_wallet.core.execution.rpc import JsonRpcClient


def make_client(handler, max_retries: int = 1) -> JsonRpcClient:
    transport = httpx.MockTransport(handler)
    return JsonRpcClient(
        "https://rpc.test",
        max_retries=max_retries,
        client=httpx.AsyncClient(transport=transport),
        name="test-rpc",
    )


@pytest.mark.asyncio
async def test_returns_result_member():
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": 42})

    client = make_client(handler)
    assert await client.call("getSlot", []) == 42
    assert seen[0]["method"] == "getSlot"
    assert seen[0]["jsonrpc"] == "2.0"


@pytest.mark.asyncio
async def test_error_object_raises_rpc_error():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "nonce too low"}})

    with pytest.raises(RpcError) as exc:
        await make_client(handler).call("eth_sendRawTransaction", ["0x"])
    assert exc.value.code == -32000
    assert "nonce too low" in exc.value.message


@pytest.mark.asyncio
async def test_connect_error_is_provably_unsent():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError) as exc:
        await make_client(handler).call("getSlot", [])
    assert exc.value.request_sent is False


@pytest.mark.asyncio
async def test_read_timeout_may_have_been_sent():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(NetworkError) as exc:
        await make_client(handler).call("getSlot", [])
    assert exc.value.request_sent is True


@pytest.mark.asyncio
async def test_rate_limit_is_unsent():
    def handler(request):
        return httpx.Response(429)

    with pytest.raises(NetworkError) as exc:
        await make_client(handler).call("getSlot", [])
    assert exc.value.request_sent is False


@pytest.mark.asyncio
async def test_reads_retry_and_writes_do_not():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "ok"})

    client = make_client(handler, max_retries=2)
    assert await client.call("getBalance", ["x"]) == "ok"
    assert calls["n"] == 2

    calls["n"] = 0
    with pytest.raises(NetworkError):
        await client.call("sendTransaction", ["x"], retry=False)
    assert calls["n"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2], "ok", 7])
async def test_non_object_reply_is_network_error(body):
    def handler(request):
        return httpx.Response(200, json=body)

    with pytest.raises(NetworkError) as exc:
        await make_client(handler).call("getBalance", ["addr"])
    assert "malformed" in exc.value.message
