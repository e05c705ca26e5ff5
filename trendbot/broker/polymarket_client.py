"""Polymarket async client.

Market discovery (Gamma), market details and quotes (CLOB REST) go through
``httpx``; signed order placement, cancellation and balance queries go
through ``py_clob_client``, whose blocking calls run in a worker thread.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    OrderType,
)
from py_clob_client.exceptions import PolyException

from trendbot.broker.models import GatewayError, MarketRef, OrderResponse, TokenIds
from trendbot.config import Config

logger = logging.getLogger("trendbot.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_ASSET_SLUG_PREFIX = {"BTC": "btc", "ETH": "eth", "SOL": "sol", "XRP": "xrp"}


def market_slug(asset: str, period_start: int) -> str:
    """Slug of the 15-minute Up/Down market for *asset* starting at *period_start*."""
    return f"{_ASSET_SLUG_PREFIX[asset]}-updown-15m-{period_start}"


def _outcome_side(outcome: str) -> Optional[str]:
    label = outcome.upper()
    if "UP" in label or label == "1" or label == "YES":
        return "up"
    if "DOWN" in label or label == "0" or label == "NO":
        return "down"
    return None


class PolymarketClient:
    """Async gateway to the Polymarket Gamma and CLOB APIs."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._gamma_url = config.gamma_url.rstrip("/")
        self._clob_url = config.clob_url.rstrip("/")
        self._headers = {"Accept": "application/json"}
        self._clob: Optional[ClobClient] = None

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Everything else, and exhausted retries, raise
        ``GatewayError``.
        """
        last_error = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=10.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Polymarket %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_error = f"Server error '{resp.status_code}'"
                    last_status = resp.status_code
                    await asyncio.sleep(delay)
                    continue

                if resp.status_code >= 400:
                    raise GatewayError(
                        f"Polymarket {method.upper()} {url} failed: "
                        f"{resp.status_code} {resp.text[:200]}",
                        status_code=resp.status_code,
                    )
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Polymarket %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_error = str(exc)
                await asyncio.sleep(delay)

        raise GatewayError(
            f"Polymarket {method.upper()} {url} failed after {_MAX_RETRIES} attempts: "
            f"{last_error}",
            status_code=last_status,
        )

    # ── Market discovery ─────────────────────────────────────────────────

    async def resolve_market(self, asset: str, period_start: int) -> MarketRef:
        """Look up the Up/Down market for *asset* in the period starting at *period_start*.

        Raises ``GatewayError`` if the event does not exist or has no market.
        """
        slug = market_slug(asset, period_start)
        resp = await self._request_with_retry(
            "get", f"{self._gamma_url}/events/slug/{slug}"
        )
        event = resp.json()
        markets = event.get("markets") or []
        if not markets:
            raise GatewayError(f"Event {slug} has no markets")
        market = markets[0]
        return MarketRef(
            asset=asset,
            slug=slug,
            condition_id=market["conditionId"],
            active=bool(market.get("active", False)),
            closed=bool(market.get("closed", False)),
            question=market.get("question", ""),
        )

    async def resolve_instrument_ids(self, market: MarketRef) -> TokenIds:
        """Return the Up/Down token ids of *market*."""
        resp = await self._request_with_retry(
            "get", f"{self._clob_url}/markets/{market.condition_id}"
        )
        tokens: dict[str, str] = {}
        for token in resp.json().get("tokens", []):
            side = _outcome_side(str(token.get("outcome", "")))
            if side and side not in tokens:
                tokens[side] = str(token["token_id"])
        if "up" not in tokens or "down" not in tokens:
            raise GatewayError(
                f"Market {market.condition_id} is missing Up/Down tokens: {sorted(tokens)}"
            )
        return TokenIds(up=tokens["up"], down=tokens["down"])

    # ── Quotes ───────────────────────────────────────────────────────────

    async def _get_price(self, token_id: str, side: str) -> float:
        resp = await self._request_with_retry(
            "get",
            f"{self._clob_url}/price",
            params={"side": side, "token_id": token_id},
        )
        try:
            return float(resp.json()["price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise GatewayError(f"Malformed price for token {token_id}: {exc}") from exc

    async def get_ask(self, token_id: str) -> float:
        """Best ask (the ``SELL`` side of the book)."""
        return await self._get_price(token_id, "SELL")

    async def get_bid(self, token_id: str) -> float:
        """Best bid (the ``BUY`` side of the book)."""
        return await self._get_price(token_id, "BUY")

    # ── Authenticated CLOB ───────────────────────────────────────────────

    def _ensure_clob_client(self) -> ClobClient:
        if self._clob is not None:
            return self._clob
        if not self._config.private_key:
            raise GatewayError("POLYMARKET_PRIVATE_KEY is required for order operations")

        client = ClobClient(
            self._clob_url,
            key=self._config.private_key,
            chain_id=self._config.chain_id,
            signature_type=self._config.signature_type,
            funder=self._config.proxy_wallet_address,
        )
        cfg = self._config
        if cfg.api_key and cfg.api_secret and cfg.api_passphrase:
            client.set_api_creds(
                ApiCreds(
                    api_key=cfg.api_key,
                    api_secret=cfg.api_secret,
                    api_passphrase=cfg.api_passphrase,
                )
            )
        else:
            client.set_api_creds(client.create_or_derive_api_creds())
            logger.info("Derived CLOB API credentials from signer")
        self._clob = client
        return client

    async def _clob_call(self, description: str, fn, *args) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except PolyException as exc:
            raise GatewayError(f"CLOB {description} failed: {exc}") from exc

    async def place_order(
        self,
        token_id: str,
        side: str,
        size: float,
        price: float,
        order_type: str = "GTC",
    ) -> OrderResponse:
        """Sign and post a limit order.

        Args:
            token_id: Outcome token to trade.
            side: ``"BUY"`` or ``"SELL"``.
            size: Number of shares (rounded to 2 dp).
            price: Limit price (rounded to 2 dp).
            order_type: ``OrderType`` name, e.g. ``"GTC"`` or ``"FOK"``.
        """
        client = self._ensure_clob_client()
        args = OrderArgs(
            token_id=token_id,
            price=round(price, 2),
            size=round(size, 2),
            side=side,
        )
        signed = await self._clob_call("create_order", client.create_order, args)
        resp = await self._clob_call(
            "post_order", client.post_order, signed, getattr(OrderType, order_type)
        )
        if not isinstance(resp, dict):
            resp = {"success": False, "errorMsg": f"unexpected response: {resp!r}"}

        order_id = resp.get("orderID") or resp.get("orderId")
        success = bool(resp.get("success", order_id is not None))
        logger.info(
            "Order %s %s %.2f @ %.2f token=%s → id=%s status=%s",
            side, order_type, size, price, token_id, order_id, resp.get("status", ""),
        )
        return OrderResponse(
            order_id=order_id,
            success=success,
            status=str(resp.get("status", "")),
            error=resp.get("errorMsg") or None,
        )

    async def cancel_order(self, order_id: str) -> bool:
        """Cancel *order_id*; returns ``True`` if the exchange accepted it."""
        client = self._ensure_clob_client()
        resp = await self._clob_call("cancel", client.cancel, order_id)
        if isinstance(resp, dict):
            canceled = resp.get("canceled") or []
            return order_id in canceled or bool(resp.get("success"))
        return bool(resp)

    async def get_balance(self, token_id: str) -> int:
        """Conditional-token balance in smallest units (10^-6 tokens)."""
        client = self._ensure_clob_client()
        params = BalanceAllowanceParams(asset_type=AssetType.CONDITIONAL, token_id=token_id)
        resp = await self._clob_call("get_balance_allowance", client.get_balance_allowance, params)
        try:
            return int(resp["balance"])
        except (KeyError, TypeError, ValueError) as exc:
            raise GatewayError(f"Malformed balance for token {token_id}: {resp!r}") from exc
