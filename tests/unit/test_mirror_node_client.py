import base64

import httpx
import pytest
import pytest_asyncio

from ledger_harness.core.keys.crypto import deterministic_private_key
from ledger_harness.core.ledger.mirror import MirrorNodeClient
from ledger_harness.schemas.ledger import TokenSupplyType
from ledger_harness.utils.exceptions import (
    BadRequestException,
    LedgerHarnessException,
    LedgerTimeoutError,
    NotFoundException,
)

ADMIN = deterministic_private_key("mirror", 0).public_key


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/api/v1/balances":
        if request.url.params["account.id"] != "0.0.1001":
            return httpx.Response(200, json={"balances": []})
        return httpx.Response(
            200,
            json={
                "balances": [
                    {
                        "account": "0.0.1001",
                        "balance": 1_500_000_000,
                        "tokens": [{"token_id": "0.0.5001", "balance": 90}],
                    }
                ]
            },
        )
    if path == "/api/v1/tokens/0.0.5001":
        return httpx.Response(
            200,
            json={
                "token_id": "0.0.5001",
                "name": "Test Token",
                "symbol": "HTT",
                "decimals": "2",
                "total_supply": "1000",
                "max_supply": "1000",
                "supply_type": "FINITE",
                "treasury_account_id": "0.0.1005",
                "admin_key": {"_type": "ED25519", "key": ADMIN.to_string_raw()},
                "supply_key": {"_type": "ProtobufEncoded", "key": "abcd"},
            },
        )
    if path == "/api/v1/topics/0.0.6001":
        return httpx.Response(200, json={"topic_id": "0.0.6001", "memo": "Taking over the world"})
    if path == "/api/v1/topics/0.0.6001/messages":
        after = int(request.url.params["sequencenumber"].removeprefix("gt:"))
        rows = [
            {
                "topic_id": "0.0.6001",
                "sequence_number": 1,
                "message": base64.b64encode(b"Hello World").decode(),
                "consensus_timestamp": "1700000000.000000001",
                "payer_account_id": "0.0.1001",
            }
        ]
        return httpx.Response(200, json={"messages": [r for r in rows if r["sequence_number"] > after]})
    if path == "/api/v1/tokens/0.0.400":
        return httpx.Response(400, json={"_status": {"messages": [{"message": "Invalid parameter"}]}})
    if path == "/api/v1/tokens/0.0.500":
        return httpx.Response(503, text="unavailable")
    if path == "/api/v1/topics/0.0.6500":
        return httpx.Response(200, text="<html>maintenance</html>")
    return httpx.Response(404, json={"_status": {"messages": [{"message": "Not found"}]}})


@pytest_asyncio.fixture
async def mirror():
    client = MirrorNodeClient(
        "https://mirror.test/",
        poll_interval=0.01,
        transport=httpx.MockTransport(_handler),
    )
    async with client:
        yield client


@pytest.mark.asyncio
async def test_balance_parses_tinybars_and_tokens(mirror: MirrorNodeClient) -> None:
    balance = await mirror.get_account_balance("0.0.1001")

    assert balance.tinybars == 1_500_000_000
    assert str(balance.hbars) == "15"
    assert balance.token_balance("0.0.5001") == 90
    assert balance.token_balance("0.0.5002") is None


@pytest.mark.asyncio
async def test_token_info_parses_string_numbers_and_keys(mirror: MirrorNodeClient) -> None:
    info = await mirror.get_token_info("0.0.5001")

    assert (info.total_supply, info.max_supply, info.decimals) == (1000, 1000, 2)
    assert info.supply_type is TokenSupplyType.FINITE
    assert info.admin_key == ADMIN
    assert info.supply_key is None


@pytest.mark.asyncio
async def test_topic_info_and_messages(mirror: MirrorNodeClient) -> None:
    info = await mirror.get_topic_info("0.0.6001")
    messages = await mirror.fetch_topic_messages("0.0.6001")

    assert info.memo == "Taking over the world"
    assert [m.text for m in messages] == ["Hello World"]
    assert messages[0].consensus_timestamp.year == 2023


@pytest.mark.asyncio
async def test_subscription_polls_until_message(mirror: MirrorNodeClient) -> None:
    from ledger_harness.core.harness.subscription import first_topic_message

    message = await first_topic_message(mirror, "0.0.6001", timeout=1)
    assert message.text == "Hello World"


@pytest.mark.asyncio
async def test_http_errors_map_to_harness_exceptions(mirror: MirrorNodeClient) -> None:
    with pytest.raises(NotFoundException):
        await mirror.get_account_balance("0.0.9999")
    with pytest.raises(NotFoundException):
        await mirror.get_topic_info("0.0.7777")
    with pytest.raises(BadRequestException):
        await mirror.get_token_info("0.0.400")
    with pytest.raises(LedgerHarnessException) as exc_info:
        await mirror.get_token_info("0.0.500")
    assert exc_info.value.details["status_code"] == 503


@pytest.mark.asyncio
async def test_invalid_entity_id_is_rejected_before_any_request(mirror: MirrorNodeClient) -> None:
    with pytest.raises(BadRequestException):
        await mirror.get_token_info("not-an-id")


@pytest.mark.asyncio
async def test_transport_timeout_becomes_ledger_timeout() -> None:
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with MirrorNodeClient("https://mirror.test", transport=httpx.MockTransport(_timeout)) as mirror:
        with pytest.raises(LedgerTimeoutError):
            await mirror.get_topic_info("0.0.6001")


@pytest.mark.asyncio
async def test_non_json_body_maps_to_harness_exception(mirror: MirrorNodeClient) -> None:
    with pytest.raises(LedgerHarnessException, match="non-JSON") as exc_info:
        await mirror.get_topic_info("0.0.6500")
    assert exc_info.value.details["path"] == "/api/v1/topics/0.0.6500"


@pytest.mark.asyncio
async def test_aclose_stops_polling_subscriptions() -> None:
    mirror = MirrorNodeClient("https://mirror.test", poll_interval=0.01, transport=httpx.MockTransport(_handler))
    received = []
    # Nothing is newer than sequence 1, so the poll loop keeps waiting.
    handle = await mirror.subscribe_topic("0.0.6001", received.append, received.append, start_sequence=1)

    await mirror.aclose()

    assert handle.closed
    assert mirror.closed
    assert received == []
