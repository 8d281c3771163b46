import asyncio
import csv

import pytest

from crossvenue.src.engine.exceptions import (
    ArbitrageNotProfitable,
    ExecutionFailed,
    InsufficientCapitalReceived,
    InsufficientProfit,
    SlippageExceeded,
)
from crossvenue.src.engine.executor import ArbitrageExecutor

UNIT = 10**18
DEPTH = 1_000_000 * UNIT
LENDER = "lender"


class WalletProvider:
    """Capital provider that pays out of a plain ledger wallet."""

    def __init__(self, ledger, executor_address, *, share=(1, 1)):
        self.address = LENDER
        self.ledger = ledger
        self.executor_address = executor_address
        self.share = share
        self.calls = []

    def provide_capital(self, asset, amount, aux_data):
        self.calls.append((asset, amount, aux_data))
        numerator, denominator = self.share
        self.ledger.transfer(
            asset, self.address, self.executor_address, amount * numerator // denominator
        )


class FixedRateVenue:
    """Swaps one for one out of its own ledger inventory."""

    def __init__(self, venue_id, ledger, *, fail_with=None):
        self.venue_id = venue_id
        self.ledger = ledger
        self.fail_with = fail_with

    def quote(self, asset_in, asset_out, amount_in, descriptor=""):
        return amount_in

    def execute(self, asset_in, asset_out, amount_in, min_amount_out, *, trader, descriptor=""):
        if self.fail_with is not None:
            raise self.fail_with
        self.ledger.transfer(asset_in, trader, self.venue_id, amount_in)
        self.ledger.transfer(asset_out, self.venue_id, trader, amount_in)
        return amount_in


@pytest.fixture
def pools(make_pool):
    cheap = make_pool("cheap", "2.0", depth=DEPTH, fee_bps=30)
    expensive = make_pool("expensive", "2.2", depth=DEPTH, fee_bps=30)
    return cheap, expensive


@pytest.fixture
def provider(ledger, executor):
    ledger.mint(LENDER, "USDC", 1_000 * UNIT)
    return WalletProvider(ledger, executor.address)


def test_successful_round_trip_repays_principal_plus_profit(
    ledger, executor, pools, provider, make_opportunity
):
    opportunity = make_opportunity(*pools)
    supply_before = ledger.total_supply("USDC")

    result = executor.execute_arbitrage(
        opportunity, 100 * UNIT, UNIT, capital_provider=provider, aux_data=b"ref"
    )

    # 1.1 gap less two 0.3% fees leaves roughly 9.3%
    assert 9 * UNIT < result.profit < 10 * UNIT
    assert result.amount_out == result.amount_in + result.profit
    assert 999 <= result.discrepancy_bps <= 1000
    assert result.cost > 0
    assert result.cheap_venue_id == "cheap"
    assert provider.calls == [("USDC", 100 * UNIT, b"ref")]
    assert ledger.balance_of(LENDER, "USDC") == 1_000 * UNIT + result.profit
    assert ledger.balance_of(executor.address, "USDC") == 0
    assert ledger.balance_of(executor.address, "WETH") == 0
    assert ledger.total_supply("USDC") == supply_before


def test_profit_below_minimum_aborts_before_borrowing(
    ledger, executor, pools, provider, make_opportunity
):
    before = ledger.snapshot()

    with pytest.raises(InsufficientProfit) as excinfo:
        executor.execute_arbitrage(
            make_opportunity(*pools), 100 * UNIT, 50 * UNIT, capital_provider=provider
        )

    assert excinfo.value.required == 50 * UNIT
    assert 0 < excinfo.value.actual < 50 * UNIT
    assert provider.calls == []
    assert ledger.snapshot() == before


def test_short_capital_delivery_is_rolled_back(ledger, executor, pools, make_opportunity):
    ledger.mint(LENDER, "USDC", 1_000 * UNIT)
    provider = WalletProvider(ledger, executor.address, share=(1, 2))
    before = ledger.snapshot()

    with pytest.raises(InsufficientCapitalReceived) as excinfo:
        executor.execute_arbitrage(
            make_opportunity(*pools), 100 * UNIT, UNIT, capital_provider=provider
        )

    assert excinfo.value.received == 50 * UNIT
    assert ledger.snapshot() == before


def test_failed_sell_leg_restores_both_venues(ledger, executor, pools, provider, make_opportunity):
    cheap, expensive = pools
    reserves_before = [(p.reserve_a, p.reserve_b) for p in pools]
    ledger_before = ledger.snapshot()
    # the wrong direction passes a zero-profit check but loses money on the sell leg
    losing = make_opportunity(expensive, cheap)

    with pytest.raises(SlippageExceeded) as excinfo:
        executor.execute_arbitrage(losing, 100 * UNIT, 0, capital_provider=provider)

    assert isinstance(excinfo.value, ExecutionFailed)
    assert excinfo.value.min_amount_out == 100 * UNIT
    assert [(p.reserve_a, p.reserve_b) for p in pools] == reserves_before
    assert ledger.snapshot() == ledger_before


def test_break_even_round_trip_is_not_profitable(ledger, executor, provider, make_opportunity):
    ledger.mint("flat-a", "WETH", 1_000 * UNIT)
    ledger.mint("flat-b", "USDC", 1_000 * UNIT)
    opportunity = make_opportunity(
        FixedRateVenue("flat-a", ledger), FixedRateVenue("flat-b", ledger)
    )
    before = ledger.snapshot()

    with pytest.raises(ArbitrageNotProfitable):
        executor.execute_arbitrage(opportunity, 10 * UNIT, 0, capital_provider=provider)

    assert ledger.snapshot() == before


def test_unexpected_venue_error_becomes_execution_failed(
    ledger, executor, provider, make_pool, make_opportunity
):
    broken = FixedRateVenue("broken", ledger, fail_with=RuntimeError("venue offline"))
    expensive = make_pool("expensive", "2.2", depth=DEPTH)
    before = ledger.snapshot()

    with pytest.raises(ExecutionFailed) as excinfo:
        executor.execute_arbitrage(
            make_opportunity(broken, expensive), 10 * UNIT, 0, capital_provider=provider
        )

    assert excinfo.value.reason == "bought: venue offline"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert ledger.snapshot() == before


def test_invalid_arguments(executor, pools, provider, make_opportunity):
    opportunity = make_opportunity(*pools)
    with pytest.raises(ValueError):
        executor.execute_arbitrage(opportunity, 0, 0, capital_provider=provider)
    with pytest.raises(ValueError):
        executor.execute_arbitrage(opportunity, UNIT, -1, capital_provider=provider)


def test_asset_lock_is_reentrant(executor, pools, provider, make_opportunity):
    with executor.asset_lock("USDC"):
        result = executor.execute_arbitrage(
            make_opportunity(*pools), 10 * UNIT, 1, capital_provider=provider
        )

    assert result.profit > 0


def test_trades_are_appended_to_csv_log(ledger, pools, make_opportunity, tmp_path):
    log_path = tmp_path / "logs" / "trades.csv"
    executor = ArbitrageExecutor(ledger, trade_log_path=log_path)
    ledger.mint(LENDER, "USDC", 1_000 * UNIT)
    provider = WalletProvider(ledger, executor.address)
    opportunity = make_opportunity(*pools)

    first = executor.execute_arbitrage(opportunity, 50 * UNIT, 1, capital_provider=provider)
    second = executor.execute_arbitrage(opportunity, 50 * UNIT, 1, capital_provider=provider)

    with log_path.open(newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert [row["profit"] for row in rows] == [str(first.profit), str(second.profit)]
    assert rows[0]["cheap_venue"] == "cheap"
    assert rows[0]["expensive_venue"] == "expensive"
    assert list(rows[0]) == ArbitrageExecutor.TRADE_LOG_FIELDS


def test_async_execution(executor, pools, provider, make_opportunity):
    result = asyncio.run(
        executor.execute_arbitrage_async(
            make_opportunity(*pools), 10 * UNIT, 1, capital_provider=provider
        )
    )

    assert result.profit > 0


def test_unwritable_trade_log_is_reported_not_raised(
    ledger, pools, make_opportunity, tmp_path, caplog
):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    executor = ArbitrageExecutor(ledger, trade_log_path=blocker / "trades.csv")
    ledger.mint(LENDER, "USDC", 1_000 * UNIT)
    provider = WalletProvider(ledger, executor.address)
    cheap, _ = pools

    result = executor.execute_arbitrage(
        make_opportunity(*pools), 50 * UNIT, 1, capital_provider=provider
    )

    assert result.profit > 0
    assert "Could not write trade log" in caplog.text
    assert ledger.balance_of("cheap", "USDC") == cheap.reserve_a
    assert ledger.balance_of(LENDER, "USDC") == 1_000 * UNIT + result.profit


def test_trade_log_can_be_deferred(ledger, pools, make_opportunity, tmp_path):
    log_path = tmp_path / "trades.csv"
    executor = ArbitrageExecutor(ledger, trade_log_path=log_path)
    ledger.mint(LENDER, "USDC", 1_000 * UNIT)
    provider = WalletProvider(ledger, executor.address)

    result = executor.execute_arbitrage(
        make_opportunity(*pools), 50 * UNIT, 1, capital_provider=provider, write_log=False
    )
    assert not log_path.exists()

    executor.record_trade(result)
    with log_path.open(newline="") as handle:
        assert [row["profit"] for row in csv.DictReader(handle)] == [str(result.profit)]
