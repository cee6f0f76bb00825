import httpx
import pytest

from royalty_ledger.platform.services.payments import (
    PaymentExecutionClient,
    PaymentOutcomeUnknown,
    PaymentRejected,
)

from conftest import OUTSIDE_WALLET, payments_with


async def _execute(client: PaymentExecutionClient) -> str:
    return await client.execute(destination_address=OUTSIDE_WALLET, amount=1_000, chain="sui", idempotency_key="w-1")


@pytest.mark.asyncio
async def test_simulated_when_no_service_configured() -> None:
    client = PaymentExecutionClient(base_url="", api_key=None, timeout_seconds=1)

    assert client.is_live is False
    assert (await _execute(client)).startswith("simulated:")


@pytest.mark.asyncio
async def test_success_returns_transaction_ref() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"transactionRef": "0xbeef"})

    assert await _execute(payments_with(handler)) == "0xbeef"
    assert seen[0].url == "http://payments.test/transfers"
    assert seen[0].headers["Idempotency-Key"] == "w-1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "bad destination"}),
        httpx.Response(402, text="insufficient treasury"),
        httpx.Response(200, json={"error": "compliance hold"}),
    ],
)
async def test_definitive_failures_are_rejections(response: httpx.Response) -> None:
    with pytest.raises(PaymentRejected):
        await _execute(payments_with(lambda request: response))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(502, json={"error": "upstream"}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"status": "queued"}),
    ],
)
async def test_ambiguous_answers_are_unknown_outcomes(response: httpx.Response) -> None:
    with pytest.raises(PaymentOutcomeUnknown):
        await _execute(payments_with(lambda request: response))


@pytest.mark.asyncio
async def test_timeout_is_an_unknown_outcome() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(PaymentOutcomeUnknown):
        await _execute(payments_with(handler))


@pytest.mark.asyncio
async def test_unreachable_service_is_a_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PaymentRejected):
        await _execute(payments_with(handler))
