"""Venue adapter contract and the in-memory reference venues."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

from crossvenue.src.engine.exceptions import (
    InsufficientLiquidityError,
    SlippageExceeded,
)
from crossvenue.src.engine.ledger import Ledger
from crossvenue.src.engine.models import BPS_DENOMINATOR, PRECISION

logger = logging.getLogger(__name__)


@runtime_checkable
class VenueAdapter(Protocol):
    """Uniform read/execute interface over a liquidity venue.

    ``quote`` must never change anything a later ``quote`` or ``execute``
    could observe.
    """

    venue_id: str

    def quote(
        self, asset_in: str, asset_out: str, amount_in: int, descriptor: str = ""
    ) -> int:
        ...

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
        ...


class PriceOracle(Protocol):
    def get_price(self, base_asset: str, quote_asset: str) -> int:
        """Return the price of ``quote_asset`` in ``base_asset`` scaled by ``PRECISION``."""
        ...


class StaticPriceOracle:
    """Oracle whose prices are set by hand."""

    def __init__(self, prices: Optional[Dict[Tuple[str, str], int]] = None) -> None:
        self._prices: Dict[Tuple[str, str], int] = dict(prices or {})

    def set_price(self, base_asset: str, quote_asset: str, price: int) -> None:
        if price <= 0:
            raise ValueError("price must be positive")
        self._prices[(base_asset, quote_asset)] = price

    def get_price(self, base_asset: str, quote_asset: str) -> int:
        try:
            return self._prices[(base_asset, quote_asset)]
        except KeyError:
            raise KeyError(f"No oracle price for {quote_asset} in {base_asset}") from None


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """Constant-product output for ``amount_in``, rounded down."""

    if amount_in <= 0:
        return 0
    if reserve_in <= 0 or reserve_out <= 0:
        raise InsufficientLiquidityError("Pool has no liquidity")
    in_after_fee = amount_in * (BPS_DENOMINATOR - fee_bps) // BPS_DENOMINATOR
    return reserve_out * in_after_fee // (reserve_in + in_after_fee)


class _PoolVenue:
    """Shared plumbing for pools that settle against a :class:`Ledger`."""

    def __init__(
        self,
        venue_id: str,
        ledger: Ledger,
        asset_a: str,
        asset_b: str,
        *,
        fee_bps: int = 30,
    ) -> None:
        if asset_a == asset_b:
            raise ValueError("A pool needs two distinct assets")
        if not 0 <= fee_bps < BPS_DENOMINATOR:
            raise ValueError("fee_bps must be within [0, 10000)")
        self.venue_id = venue_id
        self.ledger = ledger
        self.asset_a = asset_a
        self.asset_b = asset_b
        self.fee_bps = fee_bps
        self._lock = threading.RLock()

    def _reserves(self) -> Tuple[int, int]:
        raise NotImplementedError

    def _prepare(self) -> None:
        """Bring stored state up to date before a trade is priced."""

    def _commit_reserves(self, reserve_a: int, reserve_b: int) -> None:
        raise NotImplementedError

    def _orient(self, asset_in: str, asset_out: str) -> bool:
        """Return ``True`` when trading asset A into asset B."""

        if (asset_in, asset_out) == (self.asset_a, self.asset_b):
            return True
        if (asset_in, asset_out) == (self.asset_b, self.asset_a):
            return False
        raise ValueError(
            f"{self.venue_id} trades {self.asset_a}/{self.asset_b}, not {asset_in}->{asset_out}"
        )

    def _quote_against(
        self, reserves: Tuple[int, int], a_to_b: bool, amount_in: int
    ) -> int:
        reserve_a, reserve_b = reserves
        if a_to_b:
            return get_amount_out(amount_in, reserve_a, reserve_b, self.fee_bps)
        return get_amount_out(amount_in, reserve_b, reserve_a, self.fee_bps)

    def quote(
        self, asset_in: str, asset_out: str, amount_in: int, descriptor: str = ""
    ) -> int:
        a_to_b = self._orient(asset_in, asset_out)
        with self._lock:
            return self._quote_against(self._reserves(), a_to_b, amount_in)

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
        a_to_b = self._orient(asset_in, asset_out)
        with self._lock:
            self._prepare()
            reserve_a, reserve_b = self._reserves()
            amount_out = self._quote_against((reserve_a, reserve_b), a_to_b, amount_in)
            if amount_out < min_amount_out:
                raise SlippageExceeded(self.venue_id, amount_out, min_amount_out)
            inventory = self.ledger.balance_of(self.venue_id, asset_out)
            if inventory < amount_out:
                raise InsufficientLiquidityError(
                    f"{self.venue_id} holds {inventory} {asset_out}, {amount_out} needed"
                )
            self.ledger.transfer(asset_in, trader, self.venue_id, amount_in)
            self.ledger.transfer(asset_out, self.venue_id, trader, amount_out)
            if a_to_b:
                self._commit_reserves(reserve_a + amount_in, reserve_b - amount_out)
            else:
                self._commit_reserves(reserve_a - amount_out, reserve_b + amount_in)
        logger.debug(
            "%s filled %d %s -> %d %s for %s",
            self.venue_id,
            amount_in,
            asset_in,
            amount_out,
            asset_out,
            trader,
        )
        return amount_out

    def spot_price(self) -> int:
        """Marginal price of asset B in asset A, scaled by ``PRECISION``."""

        with self._lock:
            reserve_a, reserve_b = self._reserves()
        if reserve_b == 0:
            return 0
        return reserve_a * PRECISION // reserve_b

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.venue_id!r}, {self.asset_a}/{self.asset_b})"


class ConstantProductVenue(_PoolVenue):
    """x*y=k pool that only moves when traded against or re-priced by its maker."""

    def __init__(
        self,
        venue_id: str,
        ledger: Ledger,
        asset_a: str,
        asset_b: str,
        reserve_a: int,
        reserve_b: int,
        *,
        fee_bps: int = 30,
        fund: bool = True,
    ) -> None:
        super().__init__(venue_id, ledger, asset_a, asset_b, fee_bps=fee_bps)
        if reserve_a <= 0 or reserve_b <= 0:
            raise ValueError("reserves must be positive")
        self.reserve_a = reserve_a
        self.reserve_b = reserve_b
        if fund:
            ledger.mint(venue_id, asset_a, reserve_a)
            ledger.mint(venue_id, asset_b, reserve_b)

    def _reserves(self) -> Tuple[int, int]:
        return self.reserve_a, self.reserve_b

    def _commit_reserves(self, reserve_a: int, reserve_b: int) -> None:
        self.reserve_a = reserve_a
        self.reserve_b = reserve_b

    def set_reserves(self, reserve_a: int, reserve_b: int) -> None:
        """Maker re-pricing: replace the pool curve without moving inventory."""

        if reserve_a <= 0 or reserve_b <= 0:
            raise ValueError("reserves must be positive")
        with self._lock:
            self._commit_reserves(reserve_a, reserve_b)
        logger.info("%s re-priced to %d/%d", self.venue_id, reserve_a, reserve_b)

    def set_price(self, price: int) -> None:
        """Keep the asset A depth and move the curve to ``price`` (B in A, scaled)."""

        if price <= 0:
            raise ValueError("price must be positive")
        with self._lock:
            reserve_a = self.reserve_a
        self.set_reserves(reserve_a, reserve_a * PRECISION // price)

    def snapshot(self) -> Tuple[int, int]:
        with self._lock:
            return self.reserve_a, self.reserve_b

    def restore(self, state: Tuple[int, int]) -> None:
        with self._lock:
            self.reserve_a, self.reserve_b = state


class OracleTrackingVenue(_PoolVenue):
    """Pool whose curve re-centres on an external price oracle.

    The virtual reserves are reset to ``depth_a`` of asset A and the matching
    amount of asset B whenever the oracle price differs from the last anchor
    and at least ``min_update_interval`` seconds have passed.
    """

    def __init__(
        self,
        venue_id: str,
        ledger: Ledger,
        oracle: PriceOracle,
        asset_a: str,
        asset_b: str,
        depth_a: int,
        *,
        fee_bps: int = 30,
        min_update_interval: float = 0.0,
        inventory_b: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        fund: bool = True,
    ) -> None:
        super().__init__(venue_id, ledger, asset_a, asset_b, fee_bps=fee_bps)
        if depth_a <= 0:
            raise ValueError("depth_a must be positive")
        self.oracle = oracle
        self.depth_a = depth_a
        self.min_update_interval = max(float(min_update_interval), 0.0)
        self._clock = clock
        price = self._oracle_price()
        self.anchor_price = price
        self.last_update = clock()
        self.reserve_a = depth_a
        self.reserve_b = depth_a * PRECISION // price
        if fund:
            ledger.mint(venue_id, asset_a, depth_a)
            ledger.mint(
                venue_id,
                asset_b,
                inventory_b if inventory_b is not None else self.reserve_b,
            )

    def _oracle_price(self) -> int:
        price = int(self.oracle.get_price(self.asset_a, self.asset_b))
        if price <= 0:
            raise InsufficientLiquidityError(f"{self.venue_id} oracle returned {price}")
        return price

    def _recentred_state(self) -> Tuple[int, int, int, float]:
        now = self._clock()
        price = self._oracle_price()
        if price != self.anchor_price and now - self.last_update >= self.min_update_interval:
            return self.depth_a, self.depth_a * PRECISION // price, price, now
        return self.reserve_a, self.reserve_b, self.anchor_price, self.last_update

    def _reserves(self) -> Tuple[int, int]:
        reserve_a, reserve_b, _, _ = self._recentred_state()
        return reserve_a, reserve_b

    def _prepare(self) -> None:
        (
            self.reserve_a,
            self.reserve_b,
            self.anchor_price,
            self.last_update,
        ) = self._recentred_state()

    def _commit_reserves(self, reserve_a: int, reserve_b: int) -> None:
        self.reserve_a = reserve_a
        self.reserve_b = reserve_b

    def snapshot(self) -> Tuple[int, int, int, float]:
        with self._lock:
            return self.reserve_a, self.reserve_b, self.anchor_price, self.last_update

    def restore(self, state: Tuple[int, int, int, float]) -> None:
        with self._lock:
            self.reserve_a, self.reserve_b, self.anchor_price, self.last_update = state
