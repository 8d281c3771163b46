import asyncio

import pytest

from crossvenue.src.engine.exceptions import ExecutionFailed
from crossvenue.src.engine.monitor import ArbitrageMonitor, format_amount, format_duration

UNIT = 10**18
OWNER = "owner"
KEEPER = "keeper"


class FailingManager:
    def check_for_opportunities(self):
        return True, 5 * UNIT

    def scan_all_strategies(self, *, caller):
        raise ExecutionFailed("sold: venue offline")


@pytest.fixture
def profitable_manager(funded_manager, make_pool):
    funded_manager.add_strategy(
        "USDC", "WETH", [make_pool("cheap", "2.0")], [make_pool("expensive", "2.2")], caller=OWNER
    )
    return funded_manager


def test_run_once_without_opportunities(funded_manager):
    monitor = ArbitrageMonitor(funded_manager, caller=KEEPER, interval=0)

    assert monitor.run_once() is None
    assert monitor.stats.checks_performed == 1
    assert monitor.stats.opportunities_found == 0


def test_run_once_executes_and_counts_profit(profitable_manager):
    monitor = ArbitrageMonitor(profitable_manager, caller=KEEPER, interval=0)

    result = monitor.run_once()

    assert result is not None
    assert monitor.stats.opportunities_found == 1
    assert monitor.stats.executions_successful == 1
    assert monitor.stats.total_profit == result.profit
    assert profitable_manager.get_performance_stats("USDC").total_executions == 1


def test_engine_errors_are_counted_and_do_not_stop_the_monitor():
    monitor = ArbitrageMonitor(FailingManager(), caller=KEEPER, interval=0)

    assert monitor.run_once() is None
    assert monitor.run_once() is None

    assert monitor.stats.executions_failed == 2
    assert monitor.stats.executions_successful == 0


def test_run_stops_after_max_iterations(profitable_manager):
    monitor = ArbitrageMonitor(profitable_manager, caller=KEEPER, interval=0, stats_interval=0)

    stats = asyncio.run(monitor.run(max_iterations=3))

    assert stats.checks_performed == 3
    assert stats.executions_successful >= 1


def test_format_stats():
    now = [100.0]
    monitor = ArbitrageMonitor(FailingManager(), caller=KEEPER, clock=lambda: now[0])
    monitor.stats.checks_performed = 4
    monitor.stats.executions_successful = 2
    monitor.stats.total_profit = 3 * UNIT
    now[0] = 175.0

    text = monitor.format_stats()

    assert "Runtime:              1m 15s" in text
    assert "Checks Performed:     4" in text
    assert "Total Profit:         3" in text
    assert "Average Profit:       1.5" in text


def test_format_stats_without_successes_has_no_average():
    monitor = ArbitrageMonitor(FailingManager(), caller=KEEPER)

    assert "Average Profit" not in monitor.format_stats()


@pytest.mark.parametrize(
    "seconds, expected",
    [(5, "5s"), (75, "1m 15s"), (3_725, "1h 2m")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_format_amount():
    assert format_amount(15 * 10**17) == "1.5"
    assert format_amount(10 * UNIT) == "10"
    assert format_amount(0) == "0"
    assert format_amount(250, decimals=0) == "250"
