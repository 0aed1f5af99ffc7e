"""Binance spot REST API async client.

Places and cancels signed LIMIT orders for the configured trading pair.
"""

import asyncio
import hashlib
import hmac
import logging
import time
import uuid
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx

from looptrade.broker.models import CancelAck, OrderAck
from looptrade.config import Config
from looptrade.errors import ConfigurationError, ExchangeConnectorError
from looptrade.models import Side

logger = logging.getLogger("looptrade.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_ORDER_PATH = "/api/v3/order"


def sign_query(query_string: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of *query_string* keyed by *secret*."""
    return hmac.new(
        secret.encode("utf-8"),
        query_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def _client_order_id() -> str:
    return f"lt-{uuid.uuid4().hex[:24]}"


def _format_decimal(value: float) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


class BinanceClient:
    """Async client wrapping the Binance spot order endpoints.

    Args:
        config: Application configuration carrying the API key, secret,
            base URL, and trading pair.
        clock_ms: Millisecond timestamp source for request signing.
    """

    def __init__(
        self,
        config: Config,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        if not config.has_credentials:
            raise ConfigurationError(
                "BINANCE_API_KEY and BINANCE_API_SECRET are required for the Binance client"
            )
        self._base_url = config.binance_base_url.rstrip("/")
        self._symbol = config.trade_pair
        self._secret = config.binance_api_secret
        self._headers = {"X-MBX-APIKEY": config.binance_api_key}
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    # ── Signing ──────────────────────────────────────────────────────────

    def _signed_url(self, params: dict) -> str:
        """Full order URL with ``timestamp`` and ``signature`` appended."""
        params = {**params, "timestamp": self._clock_ms()}
        query = urlencode(params)
        signature = sign_query(query, self._secret)
        return f"{self._base_url}{_ORDER_PATH}?{query}&signature={signature}"

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(self, method: str, params: dict) -> httpx.Response:
        """Execute a signed HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Other non-2xx responses raise ``ExchangeConnectorError``
        immediately with the exchange's ``msg``.  Every attempt is signed
        afresh so its timestamp stays inside the receive window.  A POST
        that fails in transport is not retried.
        """
        last_exc: Optional[ExchangeConnectorError] = None

        for attempt in range(_MAX_RETRIES):
            url = self._signed_url(params)
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                    )
            except httpx.TransportError as exc:
                if method == "post":
                    # The order may have reached the exchange; never resend it
                    raise ExchangeConnectorError(f"Transport error: {exc}") from exc
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), _ORDER_PATH, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = ExchangeConnectorError(f"Transport error: {exc}")
                await asyncio.sleep(delay)
                continue

            if resp.status_code in _RETRYABLE_STATUS_CODES:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance %s %s returned %d, retry %d/%d in %.1fs",
                    method.upper(), _ORDER_PATH, resp.status_code,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = ExchangeConnectorError(
                    f"Server error '{resp.status_code}'", status_code=resp.status_code,
                )
                await asyncio.sleep(delay)
                continue

            if resp.status_code >= 400:
                raise ExchangeConnectorError(
                    _error_message(resp), status_code=resp.status_code,
                )
            return resp

        # All retries exhausted, raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(self, side: Side, quantity: float, price: float) -> OrderAck:
        """Place a LIMIT GTC order.

        Args:
            side: ``Side.BUY`` or ``Side.SELL``.
            quantity: Base-asset quantity.
            price: Limit price in quote currency.

        Returns:
            ``OrderAck`` with the exchange order id.
        """
        side = Side(side)
        params = {
            "symbol": self._symbol,
            "side": side.value,
            "type": "LIMIT",
            "timeInForce": "GTC",
            "quantity": _format_decimal(quantity),
            "price": _format_decimal(price),
            # Same id on every attempt; Binance rejects a duplicate
            "newClientOrderId": _client_order_id(),
        }
        resp = await self._request_with_retry("post", params)

        data = resp.json()
        return OrderAck(
            order_id=str(data["orderId"]),
            symbol=data.get("symbol", self._symbol),
            side=data.get("side", side.value),
            quantity=float(data.get("origQty", quantity)),
            price=float(data.get("price", price)),
            status=data.get("status", "NEW"),
        )

    async def cancel_order(self, order_id: str) -> CancelAck:
        """Cancel the order with exchange id *order_id*."""
        params = {"symbol": self._symbol, "orderId": order_id}
        resp = await self._request_with_retry("delete", params)

        data = resp.json()
        return CancelAck(
            order_id=str(data.get("orderId", order_id)),
            symbol=data.get("symbol", self._symbol),
            status=data.get("status", "CANCELED"),
        )


def _error_message(resp: httpx.Response) -> str:
    """Binance ``msg`` from an error body, or a generic fallback."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("msg"):
        return str(body["msg"])
    return f"HTTP {resp.status_code}"
