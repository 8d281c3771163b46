"""Capital and strategy management on top of the arbitrage executor."""
from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pandas as pd

from crossvenue.src.engine.detector import OpportunityDetector
from crossvenue.src.engine.exceptions import (
    InsufficientCapital,
    InsufficientLiquidityError,
    PriceDiscrepancyTooLow,
    UnauthorizedCaller,
)
from crossvenue.src.engine.executor import ArbitrageExecutor
from crossvenue.src.engine.ledger import AssetScope, Ledger, UnitOfWork
from crossvenue.src.engine.models import (
    BPS_DENOMINATOR,
    CapitalAccount,
    CapitalStatus,
    ExecutionResult,
    Opportunity,
    PerformanceStats,
    ScanResult,
    Strategy,
    VenueConfig,
)
from crossvenue.src.engine.solver import OptimalSizeSolver

logger = logging.getLogger(__name__)

_QUOTE_ERRORS = (InsufficientLiquidityError, ValueError, KeyError)


@dataclass(frozen=True)
class _Candidate:
    strategy: Strategy
    opportunity: Opportunity
    profit: int
    sample_amount: int
    discrepancy_bps: int
    clears_profit: bool
    clears_discrepancy: bool

    @property
    def executable(self) -> bool:
        return self.clears_profit and self.clears_discrepancy


def _as_venue_configs(venues: Iterable[Any]) -> Tuple[VenueConfig, ...]:
    configs = tuple(v if isinstance(v, VenueConfig) else VenueConfig(v) for v in venues)
    if not configs:
        raise ValueError("At least one candidate venue is required")
    return configs


class ArbitrageManager:
    """Owns the capital pool, registered strategies and performance statistics.

    The manager is also the capital provider for every execution it triggers:
    the executor calls :meth:`provide_capital` and returns principal plus
    profit to :attr:`address` on the ledger.
    """

    def __init__(
        self,
        ledger: Ledger,
        executor: ArbitrageExecutor,
        *,
        owner: str,
        address: str = "arbitrage-manager",
        detector: Optional[OpportunityDetector] = None,
        solver: Optional[OptimalSizeSolver] = None,
        min_profit_bps: int = 50,
        min_discrepancy_bps: int = 0,
        scan_workers: int = 1,
    ) -> None:
        self.ledger = ledger
        self.executor = executor
        self.owner = owner
        self.address = address
        self.detector = detector or executor.detector
        self.solver = solver or OptimalSizeSolver(self.detector)
        self.min_profit_bps = self._validate_bps(min_profit_bps)
        self.min_discrepancy_bps = self._validate_bps(min_discrepancy_bps)
        self.scan_workers = max(int(scan_workers), 1)

        self._lock = threading.RLock()
        self._accounts: Dict[str, CapitalAccount] = {}
        self._stats: Dict[str, PerformanceStats] = {}
        self._strategies: Dict[int, Strategy] = {}
        self._next_strategy_id = 0
        self._executors: Set[str] = set()
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------------
    # Authorisation
    # ------------------------------------------------------------------
    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self.owner:
            raise UnauthorizedCaller(caller, action)

    def _require_executor(self, caller: str, action: str) -> None:
        if not self.is_executor(caller):
            raise UnauthorizedCaller(caller, action)

    def is_executor(self, address: str) -> bool:
        with self._lock:
            return address == self.owner or address in self._executors

    def set_executor(self, address: str, allowed: bool, *, caller: str) -> None:
        self._require_owner(caller, "manage executors")
        with self._lock:
            if allowed:
                self._executors.add(address)
            else:
                self._executors.discard(address)
        logger.info("Executor %s %s", address, "authorised" if allowed else "revoked")

    # ------------------------------------------------------------------
    # Capital
    # ------------------------------------------------------------------
    def _account(self, asset: str) -> CapitalAccount:
        with self._lock:
            account = self._accounts.get(asset)
            if account is None:
                account = CapitalAccount()
                self._accounts[asset] = account
            return account

    def deposit_capital(self, asset: str, amount: int, *, caller: str) -> None:
        self._require_owner(caller, "deposit capital")
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self.executor.asset_lock(asset):
            self.ledger.transfer(asset, caller, self.address, amount)
            self._account(asset).deposit(amount)
        logger.info("Deposited %d %s", amount, asset)

    def withdraw_capital(self, asset: str, amount: int, *, caller: str) -> None:
        self._require_owner(caller, "withdraw capital")
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self.executor.asset_lock(asset):
            account = self._account(asset)
            if amount > account.available:
                raise InsufficientCapital(asset, amount, account.available)
            self.ledger.transfer(asset, self.address, caller, amount)
            account.withdraw(amount)
        logger.info("Withdrew %d %s", amount, asset)

    def set_max_capital_per_arbitrage(self, asset: str, amount: int, *, caller: str) -> None:
        self._require_owner(caller, "set max capital per arbitrage")
        if amount < 0:
            raise ValueError("amount must not be negative")
        with self.executor.asset_lock(asset):
            self._account(asset).max_per_trade = amount

    @staticmethod
    def _validate_bps(bps: int) -> int:
        if not 0 <= bps <= BPS_DENOMINATOR:
            raise ValueError(f"basis points must be within [0, {BPS_DENOMINATOR}]")
        return int(bps)

    def set_min_profit_bps(self, bps: int, *, caller: str) -> None:
        self._require_owner(caller, "set min profit")
        self.min_profit_bps = self._validate_bps(bps)

    def set_min_discrepancy_bps(self, bps: int, *, caller: str) -> None:
        self._require_owner(caller, "set min discrepancy")
        self.min_discrepancy_bps = self._validate_bps(bps)

    def provide_capital(self, asset: str, amount: int, aux_data: bytes = b"") -> None:
        """Capital callback used by the executor during a manager-run execution."""

        with self._lock:
            if asset not in self._in_flight:
                raise UnauthorizedCaller(None, f"draw {asset} capital outside an execution")
            account = self._account(asset)
            if amount > account.available:
                raise InsufficientCapital(asset, amount, account.available)
            account.reserve(amount)
        self.ledger.transfer(asset, self.address, self.executor.address, amount)

    def get_capital_status(self, asset: str) -> CapitalStatus:
        with self._lock:
            account = self._accounts.get(asset) or CapitalAccount()
            available = account.available
            max_per_trade = account.max_per_trade
        if available == 0:
            utilization = 0
        else:
            utilization = min(
                BPS_DENOMINATOR, max_per_trade * BPS_DENOMINATOR // available
            )
        return CapitalStatus(
            available=available,
            max_per_trade=max_per_trade,
            utilization_bps=utilization,
        )

    def get_performance_stats(self, asset: str) -> PerformanceStats:
        with self._lock:
            return replace(self._stats.get(asset) or PerformanceStats())

    def performance_frame(self) -> pd.DataFrame:
        """Per-asset capital and performance summary."""

        with self._lock:
            assets = sorted(set(self._accounts) | set(self._stats))
            rows = []
            for asset in assets:
                account = self._accounts.get(asset) or CapitalAccount()
                stats = self._stats.get(asset) or PerformanceStats()
                rows.append(
                    {
                        "asset": asset,
                        "available": account.available,
                        "max_per_trade": account.max_per_trade,
                        "total_deposited": account.total_deposited,
                        "total_withdrawn": account.total_withdrawn,
                        "total_executions": stats.total_executions,
                        "total_profit": stats.total_profit,
                        "largest_profit": stats.largest_profit,
                        "total_cost": stats.total_cost,
                        "last_execution_time": stats.last_execution_time,
                    }
                )
        if not rows:
            return pd.DataFrame(rows)
        # base-unit amounts overflow int64, so keep them as Python ints
        frame = pd.DataFrame(rows, dtype=object).astype(
            {"total_executions": "int64", "last_execution_time": "float64"}
        )
        frame["last_execution_time"] = pd.to_datetime(
            frame["last_execution_time"].where(frame["last_execution_time"] > 0),
            unit="s",
            utc=True,
        )
        return frame.set_index("asset")

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------
    def add_strategy(
        self,
        pair_asset_a: str,
        pair_asset_b: str,
        cheap_candidates: Sequence[Any],
        expensive_candidates: Sequence[Any],
        *,
        caller: str,
    ) -> int:
        self._require_owner(caller, "add strategies")
        if pair_asset_a == pair_asset_b:
            raise ValueError("A strategy needs two distinct assets")
        cheap = _as_venue_configs(cheap_candidates)
        expensive = _as_venue_configs(expensive_candidates)
        with self._lock:
            strategy_id = self._next_strategy_id
            self._next_strategy_id += 1
            self._strategies[strategy_id] = Strategy(
                strategy_id=strategy_id,
                pair_asset_a=pair_asset_a,
                pair_asset_b=pair_asset_b,
                candidate_cheap_venues=cheap,
                candidate_expensive_venues=expensive,
            )
        logger.info(
            "Registered strategy %d for %s/%s over %d x %d venues",
            strategy_id,
            pair_asset_a,
            pair_asset_b,
            len(cheap),
            len(expensive),
        )
        return strategy_id

    def set_strategy_active(self, strategy_id: int, active: bool, *, caller: str) -> None:
        self._require_owner(caller, "toggle strategies")
        with self._lock:
            self._get_strategy(strategy_id).active = bool(active)

    def _get_strategy(self, strategy_id: int) -> Strategy:
        try:
            return self._strategies[strategy_id]
        except KeyError:
            raise KeyError(f"Unknown strategy {strategy_id}") from None

    def get_strategy(self, strategy_id: int) -> Strategy:
        with self._lock:
            return replace(self._get_strategy(strategy_id))

    def active_strategies(self) -> List[Strategy]:
        with self._lock:
            return [replace(s) for s in self._strategies.values() if s.active]

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------
    @staticmethod
    def candidate_opportunities(
        pair: Tuple[str, str],
        cheap_candidates: Sequence[VenueConfig],
        expensive_candidates: Sequence[VenueConfig],
    ) -> List[Opportunity]:
        """Every candidate combination in both directions, same-venue pairs skipped."""

        asset_a, asset_b = pair
        seen: Set[Tuple[Tuple[str, str], Tuple[str, str]]] = set()
        opportunities: List[Opportunity] = []
        for cheap in cheap_candidates:
            for expensive in expensive_candidates:
                for buy, sell in ((cheap, expensive), (expensive, cheap)):
                    key = (buy.key, sell.key)
                    if buy.key == sell.key or key in seen:
                        continue
                    seen.add(key)
                    opportunities.append(Opportunity(asset_a, asset_b, buy, sell))
        return opportunities

    def _safe_profit(self, opportunity: Opportunity, sample_amount: int) -> int:
        try:
            return self.detector.estimate_profit(opportunity, sample_amount)
        except _QUOTE_ERRORS as exc:
            logger.debug("Skipping %s: %s", opportunity.describe(), exc)
            return 0

    def _safe_discrepancy(self, opportunity: Opportunity, sample_amount: int) -> int:
        try:
            return self.detector.detect_discrepancy(opportunity, sample_amount)
        except _QUOTE_ERRORS as exc:
            logger.debug("No discrepancy for %s: %s", opportunity.describe(), exc)
            return 0

    def _map(self, func, items: Sequence[Any]) -> List[Any]:
        if self.scan_workers <= 1 or len(items) <= 1:
            return [func(item) for item in items]
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.scan_workers, len(items))
        ) as pool:
            return list(pool.map(func, items))

    def scan_opportunities(
        self,
        pair: Tuple[str, str],
        cheap_candidates: Sequence[Any],
        expensive_candidates: Sequence[Any],
        sample_amount: int,
    ) -> ScanResult:
        if sample_amount <= 0:
            return ScanResult(opportunity=None, max_profit=0)
        opportunities = self.candidate_opportunities(
            pair,
            _as_venue_configs(cheap_candidates),
            _as_venue_configs(expensive_candidates),
        )
        profits = self._map(
            lambda opportunity: self._safe_profit(opportunity, sample_amount),
            opportunities,
        )

        best: Optional[Opportunity] = None
        best_profit = 0
        for opportunity, profit in zip(opportunities, profits):
            if profit > best_profit:
                best, best_profit = opportunity, profit
        return ScanResult(opportunity=best, max_profit=best_profit)

    def _sample_amount(self, asset: str) -> int:
        with self._lock:
            account = self._accounts.get(asset)
            if account is None:
                return 0
            return min(account.max_per_trade, account.available)

    def _evaluate_strategy(self, strategy: Strategy) -> Optional[_Candidate]:
        sample = self._sample_amount(strategy.pair_asset_a)
        if sample <= 0:
            return None
        scan = self.scan_opportunities(
            (strategy.pair_asset_a, strategy.pair_asset_b),
            strategy.candidate_cheap_venues,
            strategy.candidate_expensive_venues,
            sample,
        )
        if scan.opportunity is None:
            return None
        required = sample * self.min_profit_bps // BPS_DENOMINATOR
        discrepancy = self._safe_discrepancy(scan.opportunity, sample)
        return _Candidate(
            strategy=strategy,
            opportunity=scan.opportunity,
            profit=scan.max_profit,
            sample_amount=sample,
            discrepancy_bps=discrepancy,
            clears_profit=scan.max_profit >= required,
            clears_discrepancy=discrepancy > 0 and discrepancy >= self.min_discrepancy_bps,
        )

    def _evaluate_active(self) -> List[_Candidate]:
        candidates = self._map(self._evaluate_strategy, self.active_strategies())
        return [candidate for candidate in candidates if candidate is not None]

    def check_for_opportunities(self) -> Tuple[bool, int]:
        """Read-only scan of every active strategy."""

        executable = [c for c in self._evaluate_active() if c.executable]
        if not executable:
            return False, 0
        return True, max(candidate.profit for candidate in executable)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def scan_and_execute_strategy(
        self, strategy_id: int, *, caller: str
    ) -> Optional[ExecutionResult]:
        self._require_executor(caller, "execute strategies")
        strategy = self.get_strategy(strategy_id)
        if not strategy.active:
            logger.debug("Strategy %d is inactive", strategy_id)
            return None
        with self.executor.asset_lock(strategy.pair_asset_a, strategy.pair_asset_b):
            candidate = self._evaluate_strategy(strategy)
            if candidate is None or not candidate.clears_profit:
                return None
            if not candidate.clears_discrepancy:
                raise PriceDiscrepancyTooLow(
                    candidate.discrepancy_bps, max(self.min_discrepancy_bps, 1)
                )
            return self._execute_candidate(candidate)

    def scan_all_strategies(self, *, caller: str) -> Optional[ExecutionResult]:
        """Execute the single most profitable executable strategy, if any."""

        self._require_executor(caller, "execute strategies")
        executable = [c for c in self._evaluate_active() if c.executable]
        if not executable:
            return None
        best = executable[0]
        for candidate in executable[1:]:
            if candidate.profit > best.profit:
                best = candidate

        with self.executor.asset_lock(
            best.strategy.pair_asset_a, best.strategy.pair_asset_b
        ):
            # Capital or quotes may have moved since the unlocked scan.
            fresh = self._evaluate_strategy(best.strategy)
            if fresh is None or not fresh.executable:
                logger.info(
                    "Strategy %d no longer executable after re-check",
                    best.strategy.strategy_id,
                )
                return None
            return self._execute_candidate(fresh)

    def _execute_candidate(self, candidate: _Candidate) -> ExecutionResult:
        amount = self.solver.optimal_amount(candidate.opportunity, candidate.sample_amount)
        min_profit = max(amount * self.min_profit_bps // BPS_DENOMINATOR, 1)
        logger.info(
            "Strategy %d: executing %s with %d (estimated profit %d on sample %d)",
            candidate.strategy.strategy_id,
            candidate.opportunity.describe(),
            amount,
            candidate.profit,
            candidate.sample_amount,
        )
        return self._run_execution(candidate.opportunity, amount, min_profit)

    def execute_opportunity(
        self,
        opportunity: Opportunity,
        amount_in: int,
        min_profit: int,
        *,
        caller: str,
    ) -> ExecutionResult:
        self._require_executor(caller, "execute arbitrage")
        return self._run_execution(opportunity, amount_in, min_profit)

    def _run_execution(
        self, opportunity: Opportunity, amount_in: int, min_profit: int
    ) -> ExecutionResult:
        asset = opportunity.pair_asset_a
        pair = (opportunity.pair_asset_a, opportunity.pair_asset_b)
        participants = [
            self,
            self.ledger,
            opportunity.cheap_venue.adapter,
            opportunity.expensive_venue.adapter,
        ]
        with self.executor.asset_lock(*pair):
            account = self._account(asset)
            if amount_in > account.available:
                raise InsufficientCapital(asset, amount_in, account.available)

            with UnitOfWork(
                participants, name=f"settle {opportunity.describe()}", assets=pair
            ):
                with self._lock:
                    self._in_flight.add(asset)
                try:
                    result = self.executor.execute_arbitrage(
                        opportunity,
                        amount_in,
                        min_profit,
                        capital_provider=self,
                        write_log=False,
                    )
                finally:
                    with self._lock:
                        self._in_flight.discard(asset)

                with self._lock:
                    account = self._account(asset)
                    account.release(result.amount_in)
                    account.credit(result.profit)
                    self._stats.setdefault(asset, PerformanceStats()).record(result)
        self.executor.record_trade(result)
        return result

    # ------------------------------------------------------------------
    # Unit of work participation
    # ------------------------------------------------------------------
    def snapshot(
        self, assets: Optional[Iterable[str]] = None
    ) -> Tuple[Dict[str, CapitalAccount], Dict[str, PerformanceStats]]:
        with self._lock:
            wanted = set(self._accounts) | set(self._stats) if assets is None else set(assets)
            accounts = {a: replace(acc) for a, acc in self._accounts.items() if a in wanted}
            stats = {a: replace(s) for a, s in self._stats.items() if a in wanted}
        return accounts, stats

    def restore(
        self,
        state: Tuple[Dict[str, CapitalAccount], Dict[str, PerformanceStats]],
        assets: Optional[Iterable[str]] = None,
    ) -> None:
        """Put back saved entries in place so held references stay live."""

        accounts, stats = state
        with self._lock:
            if assets is None:
                wanted = set(self._accounts) | set(self._stats) | set(accounts) | set(stats)
            else:
                wanted = set(assets)
            for asset in wanted:
                _restore_entry(self._accounts, asset, accounts.get(asset))
                _restore_entry(self._stats, asset, stats.get(asset))

    def scope(self, assets: Iterable[str]) -> AssetScope:
        return AssetScope(self, assets)


def _restore_entry(entries: Dict[str, Any], asset: str, saved: Any) -> None:
    if saved is None:
        entries.pop(asset, None)
        return
    current = entries.get(asset)
    if current is None:
        entries[asset] = replace(saved)
        return
    for field in fields(saved):
        setattr(current, field.name, getattr(saved, field.name))
