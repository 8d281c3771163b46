from decimal import Decimal

import pytest

from crossvenue.src.engine.executor import ArbitrageExecutor
from crossvenue.src.engine.ledger import Ledger
from crossvenue.src.engine.manager import ArbitrageManager
from crossvenue.src.engine.models import Opportunity, VenueConfig
from crossvenue.src.engine.venues import ConstantProductVenue

UNIT = 10**18
DEEP_RESERVE = 10**9 * UNIT
BASE = "USDC"
QUOTE = "WETH"
OWNER = "owner"
KEEPER = "keeper"


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def make_pool(ledger):
    """Build a funded pool quoting ``price`` units of USDC per WETH."""

    def _make(venue_id, price, *, depth=DEEP_RESERVE, fee_bps=0):
        reserve_a = int(Decimal(str(price)) * depth)
        return ConstantProductVenue(
            venue_id, ledger, BASE, QUOTE, reserve_a, depth, fee_bps=fee_bps
        )

    return _make


@pytest.fixture
def make_opportunity():
    def _make(cheap, expensive, *, cheap_descriptor="", expensive_descriptor=""):
        return Opportunity(
            pair_asset_a=BASE,
            pair_asset_b=QUOTE,
            cheap_venue=VenueConfig(cheap, cheap_descriptor),
            expensive_venue=VenueConfig(expensive, expensive_descriptor),
        )

    return _make


@pytest.fixture
def executor(ledger):
    return ArbitrageExecutor(ledger)


@pytest.fixture
def manager(ledger, executor):
    ledger.mint(OWNER, BASE, 10_000 * UNIT)
    manager = ArbitrageManager(ledger, executor, owner=OWNER, min_profit_bps=50)
    manager.set_executor(KEEPER, True, caller=OWNER)
    return manager


@pytest.fixture
def funded_manager(manager):
    """Manager holding 1000 USDC with at most 100 USDC per arbitrage."""

    manager.deposit_capital(BASE, 1_000 * UNIT, caller=OWNER)
    manager.set_max_capital_per_arbitrage(BASE, 100 * UNIT, caller=OWNER)
    return manager
