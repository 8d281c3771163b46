"""Venue adapter backed by a centralised exchange order book through ccxt."""
from __future__ import annotations

import logging
import threading
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import ccxt

from crossvenue.src.engine.exceptions import (
    ExecutionFailed,
    InsufficientLiquidityError,
    SlippageExceeded,
)
from crossvenue.src.engine.ledger import Ledger
from crossvenue.src.engine.models import BPS_DENOMINATOR

logger = logging.getLogger(__name__)

_TOLERANCE = Decimal("1e-18")


def _levels(raw: Sequence[Sequence[Any]]) -> List[Tuple[Decimal, Decimal]]:
    levels = []
    for level in raw or []:
        price, quantity = Decimal(str(level[0])), Decimal(str(level[1]))
        if price > 0 and quantity > 0:
            levels.append((price, quantity))
    return levels


def fill_buy(symbol: str, asks: Sequence[Sequence[Any]], quote_amount: Decimal) -> Decimal:
    """Base acquired by spending ``quote_amount`` against ``asks``."""

    remaining = quote_amount
    acquired = Decimal(0)
    for price, quantity in _levels(asks):
        if remaining <= _TOLERANCE:
            break
        spent = min(remaining, price * quantity)
        acquired += spent / price
        remaining -= spent
    if remaining > _TOLERANCE:
        raise InsufficientLiquidityError(
            f"Insufficient ask depth for {symbol} to spend {quote_amount}"
        )
    return acquired


def fill_sell(symbol: str, bids: Sequence[Sequence[Any]], base_amount: Decimal) -> Decimal:
    """Quote acquired by selling ``base_amount`` into ``bids``."""

    remaining = base_amount
    acquired = Decimal(0)
    for price, quantity in _levels(bids):
        if remaining <= _TOLERANCE:
            break
        sold = min(remaining, quantity)
        acquired += sold * price
        remaining -= sold
    if remaining > _TOLERANCE:
        raise InsufficientLiquidityError(
            f"Insufficient bid depth for {symbol} to sell {base_amount}"
        )
    return acquired


class CcxtOrderBookVenue:
    """Quotes by walking a live order book and executes with market orders.

    Engine amounts are integers in each asset's smallest unit; ``decimals``
    maps an asset to the number of decimals of that unit. Balances on the
    exchange are mirrored in ``ledger`` under :attr:`venue_id` so that the
    executor can settle against this venue like any other. Fills on the
    exchange cannot be undone, so instead of being restored by a unit of
    work the venue re-mirrors the exchange balances after a rollback that
    followed one of its fills.
    """

    def __init__(
        self,
        venue_id: str,
        client: Any,
        ledger: Ledger,
        *,
        symbols: Iterable[str],
        decimals: Mapping[str, int],
        taker_fee_bps: Optional[int] = None,
        order_book_depth: int = 50,
    ) -> None:
        self.venue_id = venue_id
        self.client = client
        self.ledger = ledger
        self.decimals: Dict[str, int] = dict(decimals)
        self.taker_fee_bps = taker_fee_bps
        self.order_book_depth = order_book_depth
        self._markets: Dict[Tuple[str, str], str] = {}
        for symbol in symbols:
            base, _, quote = symbol.partition("/")
            if not base or not quote:
                raise ValueError(f"Symbol {symbol!r} is not of the form BASE/QUOTE")
            self._markets[(base, quote)] = symbol
        self._lock = threading.RLock()
        self._orders_placed = 0

    # ------------------------------------------------------------------
    # Unit conversion
    # ------------------------------------------------------------------
    def _decimals(self, asset: str) -> int:
        try:
            return self.decimals[asset]
        except KeyError:
            raise ValueError(f"{self.venue_id} has no decimals configured for {asset}") from None

    def to_units(self, asset: str, amount: int) -> Decimal:
        return Decimal(amount).scaleb(-self._decimals(asset))

    def from_units(self, asset: str, value: Any) -> int:
        scaled = Decimal(str(value)).scaleb(self._decimals(asset))
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))

    # ------------------------------------------------------------------
    # Market helpers
    # ------------------------------------------------------------------
    def _resolve(self, asset_in: str, asset_out: str, descriptor: str) -> Tuple[str, str]:
        """Return ``(symbol, side)`` for trading ``asset_in`` into ``asset_out``."""

        if descriptor:
            base, _, quote = descriptor.partition("/")
            markets = {(base, quote): descriptor}
        else:
            markets = self._markets
        if (asset_out, asset_in) in markets:
            return markets[(asset_out, asset_in)], "buy"
        if (asset_in, asset_out) in markets:
            return markets[(asset_in, asset_out)], "sell"
        raise ValueError(f"{self.venue_id} has no market for {asset_in}->{asset_out}")

    def _fee_bps(self, symbol: str) -> int:
        if self.taker_fee_bps is not None:
            return self.taker_fee_bps
        markets = getattr(self.client, "markets", None) or {}
        taker = (markets.get(symbol) or {}).get("taker")
        if taker is None:
            return 0
        return int(Decimal(str(taker)) * BPS_DENOMINATOR)

    def _fetch_order_book(self, symbol: str) -> Dict[str, Any]:
        try:
            return self.client.fetch_order_book(symbol, self.order_book_depth)
        except ccxt.BaseError as exc:
            raise InsufficientLiquidityError(
                f"{self.venue_id} could not load the {symbol} order book: {exc}"
            ) from exc

    def _gross_fill(self, symbol: str, side: str, amount: Decimal) -> Decimal:
        book = self._fetch_order_book(symbol)
        if side == "buy":
            return fill_buy(symbol, book.get("asks", []), amount)
        return fill_sell(symbol, book.get("bids", []), amount)

    def _net_of_fee(self, symbol: str, gross: Decimal) -> Decimal:
        return gross * (BPS_DENOMINATOR - self._fee_bps(symbol)) / BPS_DENOMINATOR

    # ------------------------------------------------------------------
    # VenueAdapter
    # ------------------------------------------------------------------
    def quote(
        self, asset_in: str, asset_out: str, amount_in: int, descriptor: str = ""
    ) -> int:
        if amount_in <= 0:
            return 0
        symbol, side = self._resolve(asset_in, asset_out, descriptor)
        gross = self._gross_fill(symbol, side, self.to_units(asset_in, amount_in))
        return self.from_units(asset_out, self._net_of_fee(symbol, gross))

    def execute(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: int,
        min_amount_out: int,
        *,
        trader: str,
        descriptor: str = "",
    ) -> int:
        if amount_in <= 0:
            raise ValueError("amount_in must be positive")
        symbol, side = self._resolve(asset_in, asset_out, descriptor)
        units_in = self.to_units(asset_in, amount_in)

        with self._lock:
            expected_gross = self._gross_fill(symbol, side, units_in)
            expected = self.from_units(asset_out, self._net_of_fee(symbol, expected_gross))
            if expected < min_amount_out:
                raise SlippageExceeded(self.venue_id, expected, min_amount_out)

            order_amount = expected_gross if side == "buy" else units_in
            try:
                order = self.client.create_market_order(symbol, side, float(order_amount))
            except ccxt.BaseError as exc:
                raise ExecutionFailed(
                    f"{self.venue_id} rejected {side} {order_amount} {symbol}: {exc}"
                ) from exc

            self._orders_placed += 1
            amount_out = self._received(order, symbol, side, asset_out, expected_gross)
            if amount_out < min_amount_out:
                # The fill already happened on the exchange and stays there.
                logger.warning(
                    "%s filled %s %s below minimum: %d < %d",
                    self.venue_id,
                    side,
                    symbol,
                    amount_out,
                    min_amount_out,
                )
                raise SlippageExceeded(self.venue_id, amount_out, min_amount_out)

            self.ledger.transfer(asset_in, trader, self.venue_id, amount_in)
            self.ledger.transfer(asset_out, self.venue_id, trader, amount_out)

        logger.info(
            "%s market %s %s: %d %s -> %d %s (order %s)",
            self.venue_id,
            side,
            symbol,
            amount_in,
            asset_in,
            amount_out,
            asset_out,
            order.get("id"),
        )
        return amount_out

    def _received(
        self,
        order: Mapping[str, Any],
        symbol: str,
        side: str,
        asset_out: str,
        expected_gross: Decimal,
    ) -> int:
        if side == "buy":
            gross = order.get("filled")
        else:
            gross = order.get("cost")
        gross_units = Decimal(str(gross)) if gross is not None else expected_gross

        fee = order.get("fee") or {}
        if fee.get("cost") is not None and fee.get("currency") == asset_out:
            net = gross_units - Decimal(str(fee["cost"]))
        else:
            net = self._net_of_fee(symbol, gross_units)
        return max(self.from_units(asset_out, net), 0)

    def sync_balances(self, assets: Optional[Iterable[str]] = None) -> Dict[str, int]:
        """Set the ledger mirror of this venue to the exchange's free balances."""

        try:
            balance = self.client.fetch_balance()
        except ccxt.BaseError as exc:
            raise ExecutionFailed(f"{self.venue_id} balance request failed: {exc}") from exc
        free = balance.get("free") or {}
        synced: Dict[str, int] = {}
        for asset in assets or self.decimals:
            exchange_amount = self.from_units(asset, free.get(asset) or 0)
            drift = exchange_amount - self.ledger.balance_of(self.venue_id, asset)
            if drift > 0:
                self.ledger.mint(self.venue_id, asset, drift)
            elif drift < 0:
                self.ledger.burn(self.venue_id, asset, -drift)
            synced[asset] = exchange_amount
        logger.info("%s balances synced: %s", self.venue_id, synced)
        return synced

    # ------------------------------------------------------------------
    # Reconciling
    # ------------------------------------------------------------------
    def checkpoint(self) -> int:
        with self._lock:
            return self._orders_placed

    def reconcile(self, checkpoint: int) -> None:
        with self._lock:
            filled = self._orders_placed - checkpoint
        if filled <= 0:
            return
        logger.warning(
            "%s: %d order(s) filled on the exchange inside a rolled back unit of work; "
            "resyncing ledger balances with the exchange",
            self.venue_id,
            filled,
        )
        try:
            self.sync_balances()
        except ExecutionFailed:
            logger.exception(
                "%s ledger balances no longer match the exchange", self.venue_id
            )

    def __repr__(self) -> str:
        return f"CcxtOrderBookVenue({self.venue_id!r}, {sorted(self._markets.values())})"
