"""Atomic borrow, buy, sell and repay execution of an arbitrage opportunity."""
from __future__ import annotations

import asyncio
import csv
import enum
import logging
import threading
import time
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

from crossvenue.src.engine.detector import OpportunityDetector
from crossvenue.src.engine.exceptions import (
    ArbitrageError,
    ArbitrageNotProfitable,
    ExecutionFailed,
    InsufficientCapitalReceived,
    InsufficientLiquidityError,
    InsufficientProfit,
)
from crossvenue.src.engine.ledger import Ledger, UnitOfWork
from crossvenue.src.engine.models import ExecutionResult, Opportunity

logger = logging.getLogger(__name__)


class CapitalProvider(Protocol):
    """Supplies principal to the executor and receives principal plus profit back."""

    address: str

    def provide_capital(self, asset: str, amount: int, aux_data: bytes) -> None:
        ...


class ExecutionState(enum.Enum):
    QUOTING = "quoting"
    CAPITAL_REQUESTED = "capital_requested"
    BOUGHT = "bought"
    SOLD = "sold"
    SETTLED = "settled"


class ArbitrageExecutor:
    """Runs a single opportunity as one all-or-nothing unit of work."""

    TRADE_LOG_FIELDS = [
        "timestamp",
        "pair_asset_a",
        "pair_asset_b",
        "cheap_venue",
        "expensive_venue",
        "amount_in",
        "amount_out",
        "profit",
        "profit_bps",
        "discrepancy_bps",
        "cost_ns",
    ]

    def __init__(
        self,
        ledger: Ledger,
        *,
        address: str = "arbitrage-executor",
        detector: Optional[OpportunityDetector] = None,
        trade_log_path: Optional[Union[str, Path]] = None,
    ) -> None:
        self.ledger = ledger
        self.address = address
        self.detector = detector or OpportunityDetector()
        self.trade_log_path = Path(trade_log_path) if trade_log_path else None
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, asset: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(asset)
            if lock is None:
                lock = threading.RLock()
                self._locks[asset] = lock
            return lock

    @contextmanager
    def asset_lock(self, *assets: str) -> Iterator[None]:
        """Serialise everything that moves balances of any of ``assets``.

        Locks are always taken in sorted asset order.
        """

        with ExitStack() as stack:
            for asset in sorted(set(assets)):
                stack.enter_context(self._lock_for(asset))
            yield

    def execute_arbitrage(
        self,
        opportunity: Opportunity,
        amount_in: int,
        min_profit: int,
        *,
        capital_provider: CapitalProvider,
        aux_data: bytes = b"",
        write_log: bool = True,
    ) -> ExecutionResult:
        """Borrow, buy cheap, sell expensive and repay, or change nothing.

        With ``write_log`` unset the caller is expected to pass the result
        to :meth:`record_trade` once its own settlement is final.
        """

        if amount_in <= 0:
            raise ValueError("amount_in must be positive")
        if min_profit < 0:
            raise ValueError("min_profit must not be negative")

        base = opportunity.pair_asset_a
        quote = opportunity.pair_asset_b
        participants: List[Any] = [
            self.ledger,
            opportunity.cheap_venue.adapter,
            opportunity.expensive_venue.adapter,
            capital_provider,
        ]
        state = ExecutionState.QUOTING

        with self.asset_lock(base, quote):
            started = time.perf_counter_ns()
            try:
                with UnitOfWork(
                    participants,
                    name=f"arbitrage {opportunity.describe()}",
                    assets=(base, quote),
                ):
                    estimated = self.detector.estimate_profit(opportunity, amount_in)
                    if estimated < min_profit:
                        raise InsufficientProfit(estimated, min_profit)
                    discrepancy_bps = self._discrepancy(opportunity, amount_in)

                    state = ExecutionState.CAPITAL_REQUESTED
                    before = self.ledger.balance_of(self.address, base)
                    capital_provider.provide_capital(base, amount_in, aux_data)
                    received = self.ledger.balance_of(self.address, base) - before
                    if received < amount_in:
                        raise InsufficientCapitalReceived(base, amount_in, received)

                    state = ExecutionState.BOUGHT
                    intermediate = opportunity.cheap_venue.execute(
                        base, quote, amount_in, 1, trader=self.address
                    )

                    state = ExecutionState.SOLD
                    final_amount = opportunity.expensive_venue.execute(
                        quote,
                        base,
                        intermediate,
                        amount_in + min_profit,
                        trader=self.address,
                    )

                    state = ExecutionState.SETTLED
                    if final_amount <= amount_in:
                        raise ArbitrageNotProfitable(amount_in, final_amount)
                    profit = final_amount - amount_in
                    self.ledger.transfer(
                        base, self.address, capital_provider.address, amount_in + profit
                    )
                    result = ExecutionResult(
                        amount_in=amount_in,
                        amount_out=final_amount,
                        profit=profit,
                        discrepancy_bps=discrepancy_bps,
                        cost=time.perf_counter_ns() - started,
                        pair_asset_a=base,
                        pair_asset_b=quote,
                        cheap_venue_id=str(opportunity.cheap_venue),
                        expensive_venue_id=str(opportunity.expensive_venue),
                    )
            except ArbitrageError as exc:
                logger.warning(
                    "Arbitrage %s aborted in state %s: %s",
                    opportunity.describe(),
                    state.value,
                    exc,
                )
                raise
            except Exception as exc:
                logger.warning(
                    "Arbitrage %s failed in state %s",
                    opportunity.describe(),
                    state.value,
                    exc_info=True,
                )
                raise ExecutionFailed(f"{state.value}: {exc}") from exc

        logger.info(
            "ArbitrageExecuted %s/%s amount_in=%d profit=%d discrepancy=%dbps cost=%dns",
            base,
            quote,
            result.amount_in,
            result.profit,
            result.discrepancy_bps,
            result.cost,
        )
        if write_log:
            self.record_trade(result)
        return result

    def record_trade(self, result: ExecutionResult) -> None:
        """Append ``result`` to the trade log; a failed write never undoes the trade."""

        if self.trade_log_path is None:
            return
        try:
            self._write_trade(self.trade_log_path, result)
        except OSError:
            logger.exception("Could not write trade log %s", self.trade_log_path)

    def _discrepancy(self, opportunity: Opportunity, sample_amount: int) -> int:
        try:
            return self.detector.detect_discrepancy(opportunity, sample_amount)
        except InsufficientLiquidityError:
            logger.debug(
                "No depth to sample %d for discrepancy on %s",
                sample_amount,
                opportunity.describe(),
            )
            return 0

    async def execute_arbitrage_async(
        self,
        opportunity: Opportunity,
        amount_in: int,
        min_profit: int,
        *,
        capital_provider: CapitalProvider,
        aux_data: bytes = b"",
    ) -> ExecutionResult:
        return await asyncio.to_thread(
            self.execute_arbitrage,
            opportunity,
            amount_in,
            min_profit,
            capital_provider=capital_provider,
            aux_data=aux_data,
        )

    def _write_trade(self, log_path: Path, result: ExecutionResult) -> None:
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_exists = log_path.exists()
        with log_path.open("a", newline="") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=self.TRADE_LOG_FIELDS)
            if not file_exists:
                writer.writeheader()
            writer.writerow(
                {
                    "timestamp": datetime.fromtimestamp(
                        result.timestamp, timezone.utc
                    ).isoformat(),
                    "pair_asset_a": result.pair_asset_a,
                    "pair_asset_b": result.pair_asset_b,
                    "cheap_venue": result.cheap_venue_id,
                    "expensive_venue": result.expensive_venue_id,
                    "amount_in": result.amount_in,
                    "amount_out": result.amount_out,
                    "profit": result.profit,
                    "profit_bps": result.profit_bps,
                    "discrepancy_bps": result.discrepancy_bps,
                    "cost_ns": result.cost,
                }
            )
