from types import SimpleNamespace

import pytest

from crossvenue.src.engine.models import (
    CapitalAccount,
    ExecutionResult,
    Opportunity,
    PerformanceStats,
    VenueConfig,
)


def _venue(venue_id):
    return VenueConfig(SimpleNamespace(venue_id=venue_id))


def test_venue_config_key_and_label_include_descriptor():
    config = VenueConfig(SimpleNamespace(venue_id="pool"), "tick-60")

    assert config.venue_id == "pool"
    assert config.key == ("pool", "tick-60")
    assert str(config) == "pool[tick-60]"
    assert str(_venue("pool")) == "pool"


def test_opportunity_rejects_same_venue_and_same_asset():
    with pytest.raises(ValueError):
        Opportunity("USDC", "WETH", _venue("pool"), _venue("pool"))
    with pytest.raises(ValueError):
        Opportunity("USDC", "USDC", _venue("a"), _venue("b"))


def test_same_adapter_with_different_descriptors_is_a_valid_opportunity():
    adapter = SimpleNamespace(venue_id="pool")
    opportunity = Opportunity(
        "USDC", "WETH", VenueConfig(adapter, "fee-5"), VenueConfig(adapter, "fee-30")
    )

    assert opportunity.describe() == "USDC/WETH buy@pool[fee-5] sell@pool[fee-30]"


def test_reversed_opportunity_swaps_venues():
    opportunity = Opportunity("USDC", "WETH", _venue("a"), _venue("b"), 25)
    flipped = opportunity.reversed()

    assert flipped.cheap_venue.venue_id == "b"
    assert flipped.expensive_venue.venue_id == "a"
    assert flipped.min_profit_threshold_bps == 25


def test_execution_result_profit_bps():
    result = ExecutionResult(
        amount_in=1_000, amount_out=1_025, profit=25, discrepancy_bps=300, cost=1
    )

    assert result.profit_bps == 250
    assert ExecutionResult(0, 0, 0, 0, 0).profit_bps == 0


def test_capital_account_reserve_release_and_credit():
    account = CapitalAccount()
    account.deposit(1_000)
    account.reserve(400)
    assert account.available == 600

    account.release(400)
    account.credit(15)
    assert account.available == 1_015
    assert account.total_profit == 15
    assert account.available <= account.ceiling

    account.withdraw(100)
    assert account.total_withdrawn == 100
    assert account.ceiling == 915


@pytest.mark.parametrize(
    "operation, amount",
    [("deposit", 0), ("reserve", 2_000), ("withdraw", -1), ("credit", -5)],
)
def test_capital_account_rejects_invalid_amounts(operation, amount):
    account = CapitalAccount()
    account.deposit(1_000)

    with pytest.raises(ValueError):
        getattr(account, operation)(amount)
    assert account.available == 1_000


def test_performance_stats_record():
    stats = PerformanceStats()
    stats.record(ExecutionResult(100, 110, 10, 1000, 5, timestamp=10.0))
    stats.record(ExecutionResult(100, 104, 4, 400, 7, timestamp=20.0))

    assert stats.total_executions == 2
    assert stats.total_profit == 14
    assert stats.total_cost == 12
    assert stats.largest_profit == 10
    assert stats.last_execution_time == 20.0
