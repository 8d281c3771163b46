"""Polling loop that checks for opportunities and triggers execution."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from crossvenue.src.engine.exceptions import ArbitrageError
from crossvenue.src.engine.manager import ArbitrageManager
from crossvenue.src.engine.models import ExecutionResult

logger = logging.getLogger(__name__)

INTERVAL_DEFAULT = 30.0
STATS_INTERVAL_DEFAULT = 300.0


@dataclass
class MonitorStats:
    checks_performed: int = 0
    opportunities_found: int = 0
    executions_successful: int = 0
    executions_failed: int = 0
    total_profit: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def average_profit(self) -> int:
        if self.executions_successful == 0:
            return 0
        return self.total_profit // self.executions_successful


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    minutes, hours = seconds // 60, seconds // 3600
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_amount(amount: int, decimals: int = 18) -> str:
    return f"{Decimal(amount).scaleb(-decimals).normalize():f}"


class ArbitrageMonitor:
    """Periodically asks the manager for opportunities and executes the best one.

    Engine errors never stop the loop; they are logged and counted as failed
    executions.
    """

    def __init__(
        self,
        manager: ArbitrageManager,
        *,
        caller: str,
        interval: float = INTERVAL_DEFAULT,
        stats_interval: float = STATS_INTERVAL_DEFAULT,
        decimals: int = 18,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.manager = manager
        self.caller = caller
        self.interval = max(float(interval), 0.0)
        self.stats_interval = max(float(stats_interval), 0.0)
        self.decimals = decimals
        self._clock = clock
        self.stats = MonitorStats(started_at=clock())

    def run_once(self) -> Optional[ExecutionResult]:
        self.stats.checks_performed += 1
        try:
            has_opportunity, estimated_profit = self.manager.check_for_opportunities()
            if not has_opportunity:
                logger.debug("No profitable opportunities at this time")
                if self.stats.checks_performed % 10 == 0:
                    logger.info(
                        "[%d checks, %d opportunities found]",
                        self.stats.checks_performed,
                        self.stats.opportunities_found,
                    )
                return None

            self.stats.opportunities_found += 1
            logger.info(
                "Opportunity detected, estimated profit %s",
                format_amount(estimated_profit, self.decimals),
            )
            result = self.manager.scan_all_strategies(caller=self.caller)
        except ArbitrageError as exc:
            self.stats.executions_failed += 1
            logger.error("Arbitrage attempt failed: %s", exc)
            return None

        if result is None:
            logger.info("Opportunity disappeared before execution")
            return None
        self.stats.executions_successful += 1
        self.stats.total_profit += result.profit
        logger.info(
            "Arbitrage executed: %s/%s profit %s cost %dns",
            result.pair_asset_a,
            result.pair_asset_b,
            format_amount(result.profit, self.decimals),
            result.cost,
        )
        return result

    def format_stats(self) -> str:
        stats = self.stats
        lines = [
            "=" * 60,
            "BOT STATISTICS",
            "=" * 60,
            f"Runtime:              {format_duration(self._clock() - stats.started_at)}",
            f"Checks Performed:     {stats.checks_performed}",
            f"Opportunities Found:  {stats.opportunities_found}",
            f"Executions Success:   {stats.executions_successful}",
            f"Executions Failed:    {stats.executions_failed}",
            f"Total Profit:         {format_amount(stats.total_profit, self.decimals)}",
        ]
        if stats.executions_successful > 0:
            lines.append(
                f"Average Profit:       {format_amount(stats.average_profit, self.decimals)}"
            )
        lines.append("=" * 60)
        return "\n".join(lines)

    async def run(self, max_iterations: Optional[int] = None) -> MonitorStats:
        logger.info(
            "Starting monitor for %s every %.1fs", self.caller, self.interval
        )
        last_stats = self._clock()
        iterations = 0
        try:
            while max_iterations is None or iterations < max_iterations:
                await asyncio.to_thread(self.run_once)
                iterations += 1
                if self.stats_interval and self._clock() - last_stats >= self.stats_interval:
                    logger.info("\n%s", self.format_stats())
                    last_stats = self._clock()
                if max_iterations is not None and iterations >= max_iterations:
                    break
                await asyncio.sleep(self.interval)
        finally:
            logger.info("\n%s", self.format_stats())
        return self.stats
