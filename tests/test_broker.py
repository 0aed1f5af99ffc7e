"""Tests for looptrade.broker — Binance client with mocked HTTP responses."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from looptrade.broker import binance_client
from looptrade.broker.base import ExchangeConnector
from looptrade.broker.binance_client import BinanceClient, _format_decimal, sign_query
from looptrade.broker.models import CancelAck, OrderAck
from looptrade.config import Config
from looptrade.errors import ConfigurationError, ExchangeConnectorError
from looptrade.models import Side

_TIMESTAMP_MS = 1700000000000


def _make_config(**overrides) -> Config:
    defaults = dict(
        trade_pair="SOLFDUSD",
        binance_api_key="test-key",
        binance_api_secret="test-secret",
        binance_base_url="https://api.binance.com",
    )
    defaults.update(overrides)
    return Config(**defaults)


def _make_client(**overrides) -> BinanceClient:
    return BinanceClient(_make_config(**overrides), clock_ms=lambda: _TIMESTAMP_MS)


# ── Mock Binance responses ──────────────────────────────────────────────

MOCK_ORDER_RESPONSE = {
    "symbol": "SOLFDUSD",
    "orderId": 28457,
    "clientOrderId": "6gCrw2kRUAF9CvJDGP16IP",
    "transactTime": 1700000000012,
    "price": "98.00000000",
    "origQty": "0.10000000",
    "executedQty": "0.00000000",
    "status": "NEW",
    "timeInForce": "GTC",
    "type": "LIMIT",
    "side": "BUY",
}

MOCK_CANCEL_RESPONSE = {
    "symbol": "SOLFDUSD",
    "orderId": 28457,
    "status": "CANCELED",
}


# ── Tests ────────────────────────────────────────────────────────────────


def test_sign_query_known_vector():
    """Signature matches the example in the Binance API documentation."""
    secret = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
    query = (
        "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1"
        "&price=0.1&recvWindow=5000&timestamp=1499827319559"
    )
    assert sign_query(query, secret) == (
        "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"
    )


def test_format_decimal():
    assert _format_decimal(0.1) == "0.1"
    assert _format_decimal(102.375) == "102.375"
    assert _format_decimal(100.0) == "100"
    assert _format_decimal(0.00000001) == "0.00000001"


def test_missing_credentials_rejected():
    with pytest.raises(ConfigurationError, match="BINANCE_API_KEY"):
        BinanceClient(Config())


def test_satisfies_connector_protocol():
    assert isinstance(_make_client(), ExchangeConnector)


@pytest.mark.asyncio
async def test_place_order_request(monkeypatch):
    """LIMIT GTC order is signed and carries the API key header."""
    client = _make_client()
    captured = {}

    async def _mock_post(self, url, *, headers=None, timeout=None):
        captured["url"] = url
        captured["headers"] = headers
        return httpx.Response(200, json=MOCK_ORDER_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    ack = await client.place_order(Side.BUY, 0.1, 98.0)

    assert isinstance(ack, OrderAck)
    assert ack.order_id == "28457"
    assert ack.side == "BUY"
    assert ack.quantity == pytest.approx(0.1)
    assert ack.price == pytest.approx(98.0)
    assert ack.status == "NEW"

    assert captured["headers"] == {"X-MBX-APIKEY": "test-key"}
    parts = urlsplit(captured["url"])
    assert parts.path == "/api/v3/order"
    params = parse_qs(parts.query)
    assert params["symbol"] == ["SOLFDUSD"]
    assert params["side"] == ["BUY"]
    assert params["type"] == ["LIMIT"]
    assert params["timeInForce"] == ["GTC"]
    assert params["quantity"] == ["0.1"]
    assert params["price"] == ["98"]
    assert params["timestamp"] == [str(_TIMESTAMP_MS)]

    unsigned, signature = parts.query.rsplit("&signature=", 1)
    assert signature == sign_query(unsigned, "test-secret")


@pytest.mark.asyncio
async def test_cancel_order(monkeypatch):
    client = _make_client()
    captured = {}

    async def _mock_delete(self, url, *, headers=None, timeout=None):
        captured["url"] = url
        return httpx.Response(200, json=MOCK_CANCEL_RESPONSE, request=httpx.Request("DELETE", url))

    monkeypatch.setattr(httpx.AsyncClient, "delete", _mock_delete)

    ack = await client.cancel_order("28457")

    assert isinstance(ack, CancelAck)
    assert ack.order_id == "28457"
    assert ack.status == "CANCELED"
    params = parse_qs(urlsplit(captured["url"]).query)
    assert params["orderId"] == ["28457"]
    assert params["symbol"] == ["SOLFDUSD"]


@pytest.mark.asyncio
async def test_client_error_raises_with_exchange_message(monkeypatch):
    """A 4xx response fails immediately with Binance's ``msg``."""
    client = _make_client()
    calls = []

    async def _mock_post(self, url, *, headers=None, timeout=None):
        calls.append(url)
        return httpx.Response(
            400,
            json={"code": -2010, "msg": "Account has insufficient balance for requested action."},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(ExchangeConnectorError, match="insufficient balance") as exc_info:
        await client.place_order(Side.BUY, 0.1, 98.0)
    assert exc_info.value.status_code == 400
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retries_transient_server_error(monkeypatch):
    """A 503 is retried and the next success is returned."""
    monkeypatch.setattr(binance_client, "_RETRY_BASE_DELAY", 0.0)
    client = _make_client()
    responses = [503, 200]

    async def _mock_post(self, url, *, headers=None, timeout=None):
        status = responses.pop(0)
        body = MOCK_ORDER_RESPONSE if status == 200 else {"msg": "Service unavailable"}
        return httpx.Response(status, json=body, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    ack = await client.place_order(Side.BUY, 0.1, 98.0)
    assert ack.order_id == "28457"
    assert responses == []


@pytest.mark.asyncio
async def test_retries_exhausted(monkeypatch):
    monkeypatch.setattr(binance_client, "_RETRY_BASE_DELAY", 0.0)
    client = _make_client()
    calls = []

    async def _mock_delete(self, url, *, headers=None, timeout=None):
        calls.append(url)
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx.AsyncClient, "delete", _mock_delete)

    with pytest.raises(ExchangeConnectorError, match="Transport error"):
        await client.cancel_order("1")
    assert len(calls) == binance_client._MAX_RETRIES


def test_base_url_trailing_slash_stripped():
    client = _make_client(binance_base_url="https://testnet.binance.vision/")
    url = client._signed_url({"symbol": "SOLFDUSD"})
    assert url.startswith("https://testnet.binance.vision/api/v3/order?")


@pytest.mark.asyncio
async def test_each_retry_signed_with_fresh_timestamp(monkeypatch):
    """Retries re-sign the request and keep the same client order id."""
    monkeypatch.setattr(binance_client, "_RETRY_BASE_DELAY", 0.0)
    ticks = iter(range(1_000_000, 1_100_000, 3_000))
    client = BinanceClient(_make_config(), clock_ms=lambda: next(ticks))
    queries = []

    async def _mock_post(self, url, *, headers=None, timeout=None):
        queries.append(urlsplit(url).query)
        return httpx.Response(503, json={"msg": "Service unavailable"}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(ExchangeConnectorError):
        await client.place_order(Side.BUY, 0.1, 98.0)

    params = [parse_qs(q) for q in queries]
    assert [p["timestamp"][0] for p in params] == ["1000000", "1003000", "1006000"]
    assert len({p["newClientOrderId"][0] for p in params}) == 1
    for query in queries:
        unsigned, signature = query.rsplit("&signature=", 1)
        assert signature == sign_query(unsigned, "test-secret")


@pytest.mark.asyncio
async def test_place_order_not_resent_after_transport_error(monkeypatch):
    monkeypatch.setattr(binance_client, "_RETRY_BASE_DELAY", 0.0)
    client = _make_client()
    calls = []

    async def _mock_post(self, url, *, headers=None, timeout=None):
        calls.append(url)
        raise httpx.ReadTimeout("timed out")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(ExchangeConnectorError, match="Transport error"):
        await client.place_order(Side.BUY, 0.1, 98.0)
    assert len(calls) == 1
