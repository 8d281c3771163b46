"""Data models used by the cross-venue arbitrage engine."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from crossvenue.src.engine.venues import VenueAdapter

PRECISION = 10**18
BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class VenueConfig:
    """A venue instance together with its venue-specific position descriptor."""

    adapter: "VenueAdapter" = field(compare=False)
    descriptor: str = ""
    venue_id: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "venue_id", str(self.adapter.venue_id))

    @property
    def key(self) -> Tuple[str, str]:
        return self.venue_id, self.descriptor

    def quote(self, asset_in: str, asset_out: str, amount_in: int) -> int:
        return self.adapter.quote(
            asset_in, asset_out, amount_in, descriptor=self.descriptor
        )

    def execute(
        self,
        asset_in: str,
        asset_out: str,
        amount_in: int,
        min_amount_out: int,
        *,
        trader: str,
    ) -> int:
        return self.adapter.execute(
            asset_in,
            asset_out,
            amount_in,
            min_amount_out,
            trader=trader,
            descriptor=self.descriptor,
        )

    def __str__(self) -> str:
        if self.descriptor:
            return f"{self.venue_id}[{self.descriptor}]"
        return self.venue_id


@dataclass(frozen=True)
class Opportunity:
    """Buy the quote asset on ``cheap_venue`` and sell it on ``expensive_venue``.

    ``pair_asset_a`` is the base asset: it is borrowed from the capital
    provider, spent on the cheap venue and recovered on the expensive venue.
    """

    pair_asset_a: str
    pair_asset_b: str
    cheap_venue: VenueConfig
    expensive_venue: VenueConfig
    min_profit_threshold_bps: int = 0

    def __post_init__(self) -> None:
        if self.pair_asset_a == self.pair_asset_b:
            raise ValueError("An opportunity needs two distinct assets")
        if self.cheap_venue.key == self.expensive_venue.key:
            raise ValueError(
                f"Cheap and expensive venue must differ, both are {self.cheap_venue}"
            )

    def reversed(self) -> "Opportunity":
        return Opportunity(
            pair_asset_a=self.pair_asset_a,
            pair_asset_b=self.pair_asset_b,
            cheap_venue=self.expensive_venue,
            expensive_venue=self.cheap_venue,
            min_profit_threshold_bps=self.min_profit_threshold_bps,
        )

    def describe(self) -> str:
        return (
            f"{self.pair_asset_a}/{self.pair_asset_b} "
            f"buy@{self.cheap_venue} sell@{self.expensive_venue}"
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a completed arbitrage round trip."""

    amount_in: int
    amount_out: int
    profit: int
    discrepancy_bps: int
    cost: int
    pair_asset_a: str = ""
    pair_asset_b: str = ""
    cheap_venue_id: str = ""
    expensive_venue_id: str = ""
    timestamp: float = field(default_factory=lambda: time.time())

    @property
    def profit_bps(self) -> int:
        if self.amount_in == 0:
            return 0
        return self.profit * BPS_DENOMINATOR // self.amount_in


@dataclass(frozen=True)
class OpportunityCheck:
    exists: bool
    estimated_profit: int
    discrepancy_bps: int


@dataclass(frozen=True)
class ScanResult:
    opportunity: Optional[Opportunity]
    max_profit: int


@dataclass
class Strategy:
    """A monitored pair with the venues that may take either side of a trade."""

    strategy_id: int
    pair_asset_a: str
    pair_asset_b: str
    candidate_cheap_venues: Tuple[VenueConfig, ...]
    candidate_expensive_venues: Tuple[VenueConfig, ...]
    active: bool = True


@dataclass
class CapitalAccount:
    """Capital the manager can lend to the executor for a single asset."""

    available: int = 0
    max_per_trade: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0
    total_profit: int = 0

    def deposit(self, amount: int) -> None:
        self._require_positive(amount)
        self.available += amount
        self.total_deposited += amount

    def withdraw(self, amount: int) -> None:
        self._require_positive(amount)
        self._require_available(amount)
        self.available -= amount
        self.total_withdrawn += amount

    def reserve(self, amount: int) -> None:
        self._require_positive(amount)
        self._require_available(amount)
        self.available -= amount

    def release(self, amount: int) -> None:
        self._require_positive(amount)
        self.available += amount

    def credit(self, profit: int) -> None:
        if profit < 0:
            raise ValueError("profit must not be negative")
        self.available += profit
        self.total_profit += profit

    @property
    def ceiling(self) -> int:
        return self.total_deposited - self.total_withdrawn + self.total_profit

    @staticmethod
    def _require_positive(amount: int) -> None:
        if amount <= 0:
            raise ValueError("amount must be positive")

    def _require_available(self, amount: int) -> None:
        if amount > self.available:
            raise ValueError(f"amount {amount} exceeds available {self.available}")


@dataclass
class PerformanceStats:
    total_executions: int = 0
    total_profit: int = 0
    total_cost: int = 0
    largest_profit: int = 0
    last_execution_time: float = 0.0

    def record(self, result: ExecutionResult) -> None:
        self.total_executions += 1
        self.total_profit += result.profit
        self.total_cost += result.cost
        self.largest_profit = max(self.largest_profit, result.profit)
        self.last_execution_time = max(self.last_execution_time, result.timestamp)


@dataclass(frozen=True)
class CapitalStatus:
    available: int
    max_per_trade: int
    utilization_bps: int
