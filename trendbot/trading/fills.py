"""Fill strategies — how an entry becomes a position.

``SimulatedFill`` fills every entry immediately at the signalled price.
``BalanceFill`` places real orders and treats the token balance as the
source of truth: an entry counts as filled only once the balance has grown
by more than ``min_delta`` and stays there after a short settle delay.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable

from trendbot.broker.models import TOKEN_DECIMALS, GatewayError
from trendbot.strategy.models import Side

logger = logging.getLogger("trendbot.fills")

ENTRY_TIMEOUT_SECONDS = 10.0
MIN_BALANCE_DELTA = 1_000  # 0.001 tokens
SETTLE_DELAY_SECONDS = 0.5
PRE_BALANCE_TOLERANCE = 1_000


@dataclass
class PendingEntry:
    """An entry order awaiting fill confirmation.

    ``pre_balance`` is lowered in place when the balance drops while
    waiting (another order consumed inventory).
    """

    asset: str
    side: Side
    token_id: str
    limit_price: float
    size: float
    pre_balance: int
    placed_at: float
    order_id: str


class FillStatus(str, Enum):
    WAITING = "waiting"
    FILLED = "filled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class FillCheck:
    status: FillStatus
    filled_size: float = 0.0


@dataclass(frozen=True)
class EntryResult:
    """Outcome of submitting an entry.

    Exactly one of ``filled_size`` (immediate fill), ``pending``
    (awaiting confirmation) or ``error`` is set.
    """

    filled_size: Optional[float] = None
    pending: Optional[PendingEntry] = None
    error: Optional[str] = None


@runtime_checkable
class FillStrategy(Protocol):
    """Execution capability injected into the cycle manager."""

    mode: str

    async def submit_entry(
        self, asset: str, side: Side, token_id: str, price: float, size: float
    ) -> EntryResult: ...

    async def check_fill(self, pending: PendingEntry) -> FillCheck: ...

    async def place_take_profit(
        self, token_id: str, price: float, size: float
    ) -> Optional[str]: ...

    async def place_stop_loss(
        self, token_id: str, price: float, size: float
    ) -> Optional[str]: ...

    async def cancel(self, order_id: Optional[str], label: str) -> bool: ...


# ── Simulation ───────────────────────────────────────────────────────────


class SimulatedFill:
    """Immediate fills, no exchange orders.

    Args:
        confirm_delay: Seconds to wait before the take-profit is "placed",
            emulating live confirmation latency.
    """

    mode = "simulation"

    def __init__(self, confirm_delay: float = 5.0) -> None:
        self._confirm_delay = confirm_delay

    async def submit_entry(
        self, asset: str, side: Side, token_id: str, price: float, size: float
    ) -> EntryResult:
        return EntryResult(filled_size=size)

    async def check_fill(self, pending: PendingEntry) -> FillCheck:
        return FillCheck(FillStatus.FILLED, filled_size=pending.size)

    async def place_take_profit(
        self, token_id: str, price: float, size: float
    ) -> Optional[str]:
        if self._confirm_delay > 0:
            await asyncio.sleep(self._confirm_delay)
        order_id = f"sim-tp-{uuid.uuid4().hex[:8]}"
        logger.info("[SIM] TP order %s: SELL %.2f @ %.2f", order_id, size, price)
        return order_id

    async def place_stop_loss(
        self, token_id: str, price: float, size: float
    ) -> Optional[str]:
        order_id = f"sim-sl-{uuid.uuid4().hex[:8]}"
        logger.info("[SIM] SL order %s: BUY opposite %.2f @ %.2f", order_id, size, price)
        return order_id

    async def cancel(self, order_id: Optional[str], label: str) -> bool:
        if order_id:
            logger.debug("[SIM] cancelled %s order %s", label, order_id)
        return True


# ── Live ─────────────────────────────────────────────────────────────────


class BalanceFill:
    """Live orders confirmed by balance polling.

    Args:
        client: Gateway exposing ``place_order``, ``cancel_order`` and
            ``get_balance``.
        clock: Monotonic time source (seconds).
        timeout: Seconds after placement before an unfilled entry is cancelled.
        min_delta: Balance growth (smallest units) that must be exceeded.
        settle_delay: Pause before the stability re-read.
        pre_order_delay: Pause before the pre-balance snapshot, also used
            between the two snapshot reads.
    """

    mode = "live"

    def __init__(
        self,
        client,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = ENTRY_TIMEOUT_SECONDS,
        min_delta: int = MIN_BALANCE_DELTA,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        pre_order_delay: float = 0.5,
    ) -> None:
        self._client = client
        self._clock = clock
        self._timeout = timeout
        self._min_delta = min_delta
        self._settle_delay = settle_delay
        self._pre_order_delay = pre_order_delay

    # ── Entry ────────────────────────────────────────────────────────────

    async def _snapshot_balance(self, token_id: str) -> int:
        """Read the balance twice and prefer the later read when they agree."""
        first = await self._client.get_balance(token_id)
        if self._pre_order_delay > 0:
            await asyncio.sleep(self._pre_order_delay)
        try:
            second = await self._client.get_balance(token_id)
        except GatewayError:
            return first
        return second if abs(second - first) < PRE_BALANCE_TOLERANCE else first

    async def submit_entry(
        self, asset: str, side: Side, token_id: str, price: float, size: float
    ) -> EntryResult:
        if self._pre_order_delay > 0:
            await asyncio.sleep(self._pre_order_delay)
        try:
            pre_balance = await self._snapshot_balance(token_id)
            resp = await self._client.place_order(token_id, "BUY", size, round(price, 2))
        except GatewayError as exc:
            logger.error("[%s] entry order failed: %s", asset, exc)
            return EntryResult(error=str(exc))

        if not resp.success or not resp.order_id:
            return EntryResult(error=resp.error or f"order rejected ({resp.status})")

        pending = PendingEntry(
            asset=asset,
            side=side,
            token_id=token_id,
            limit_price=round(price, 2),
            size=size,
            pre_balance=pre_balance,
            placed_at=self._clock(),
            order_id=resp.order_id,
        )
        logger.info(
            "[%s] entry %s placed: BUY %s %.2f @ %.2f pre_balance=%d",
            asset, pending.order_id, side.value, size, pending.limit_price, pre_balance,
        )
        return EntryResult(pending=pending)

    # ── Confirmation ─────────────────────────────────────────────────────

    async def check_fill(self, pending: PendingEntry) -> FillCheck:
        """Poll the balance once for *pending*.

        Balance query failures leave the entry waiting for the next tick.
        """
        elapsed = self._clock() - pending.placed_at
        if elapsed >= self._timeout:
            logger.warning(
                "[%s] entry %s not filled after %.1fs — cancelling",
                pending.asset, pending.order_id, elapsed,
            )
            await self.cancel(pending.order_id, "entry")
            return FillCheck(FillStatus.TIMED_OUT)

        try:
            balance = await self._client.get_balance(pending.token_id)
        except GatewayError as exc:
            logger.warning("[%s] balance check failed: %s", pending.asset, exc)
            return FillCheck(FillStatus.WAITING)

        if balance < pending.pre_balance:
            logger.info(
                "[%s] balance fell %d → %d while waiting, re-baselining",
                pending.asset, pending.pre_balance, balance,
            )
            pending.pre_balance = balance
            return FillCheck(FillStatus.WAITING)

        if balance - pending.pre_balance <= self._min_delta:
            return FillCheck(FillStatus.WAITING)

        logger.info(
            "[%s] fill detected: balance %d → %d, cancelling remainder",
            pending.asset, pending.pre_balance, balance,
        )
        await self.cancel(pending.order_id, "entry remainder")
        if self._settle_delay > 0:
            await asyncio.sleep(self._settle_delay)

        try:
            confirmed = await self._client.get_balance(pending.token_id)
        except GatewayError as exc:
            logger.warning("[%s] stability re-check failed: %s", pending.asset, exc)
            return FillCheck(FillStatus.WAITING)

        if confirmed - pending.pre_balance <= self._min_delta:
            logger.info(
                "[%s] balance not stable (%d), retrying next tick", pending.asset, confirmed
            )
            return FillCheck(FillStatus.WAITING)

        filled = (confirmed - pending.pre_balance) / TOKEN_DECIMALS
        return FillCheck(FillStatus.FILLED, filled_size=filled)

    # ── Exit orders ──────────────────────────────────────────────────────

    async def _place(self, label: str, token_id: str, side: str, price: float, size: float) -> Optional[str]:
        try:
            resp = await self._client.place_order(token_id, side, size, round(price, 2))
        except GatewayError as exc:
            logger.error("%s order failed: %s", label, exc)
            return None
        if not resp.success:
            logger.error("%s order rejected: %s", label, resp.error or resp.status)
            return None
        return resp.order_id

    async def place_take_profit(
        self, token_id: str, price: float, size: float
    ) -> Optional[str]:
        """LIMIT SELL of the held token at the take-profit price."""
        return await self._place("TP", token_id, "SELL", price, size)

    async def place_stop_loss(
        self, token_id: str, price: float, size: float
    ) -> Optional[str]:
        """LIMIT BUY of the opposite token, which neutralises the position."""
        return await self._place("SL", token_id, "BUY", price, size)

    async def cancel(self, order_id: Optional[str], label: str) -> bool:
        """Best-effort cancel; failures are logged, never raised."""
        if not order_id:
            return False
        try:
            ok = await self._client.cancel_order(order_id)
        except GatewayError as exc:
            logger.warning("Cancel of %s order %s failed: %s", label, order_id, exc)
            return False
        if not ok:
            logger.warning("Cancel of %s order %s not acknowledged", label, order_id)
        return ok
