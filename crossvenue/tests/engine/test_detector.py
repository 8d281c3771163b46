import pytest

from crossvenue.src.engine.detector import OpportunityDetector
from crossvenue.src.engine.models import PRECISION

UNIT = 10**18
SAMPLE = 100 * UNIT


@pytest.fixture
def detector():
    return OpportunityDetector()


def test_equal_prices_are_not_an_opportunity(detector, make_pool, make_opportunity):
    opportunity = make_opportunity(make_pool("cheap", "2.0"), make_pool("expensive", "2.0"))

    check = detector.check_opportunity(opportunity, 50, SAMPLE)

    assert check.exists is False
    assert check.estimated_profit == 0
    assert check.discrepancy_bps == 0


def test_ten_percent_gap(detector, make_pool, make_opportunity):
    opportunity = make_opportunity(make_pool("cheap", "2.0"), make_pool("expensive", "2.2"))

    check = detector.check_opportunity(opportunity, 50, SAMPLE)

    assert 999 <= check.discrepancy_bps <= 1000
    # 100 USDC buys 50 WETH at 2.0, which sell for 110 USDC at 2.2
    assert check.estimated_profit == pytest.approx(10 * UNIT, rel=1e-5)
    assert check.exists is True


def test_discrepancy_below_minimum_is_not_executable(detector, make_pool, make_opportunity):
    opportunity = make_opportunity(make_pool("cheap", "2.0"), make_pool("expensive", "2.01"))

    check = detector.check_opportunity(opportunity, 0, SAMPLE, min_discrepancy_bps=100)

    assert 49 <= check.discrepancy_bps <= 50
    assert check.estimated_profit > 0
    assert check.exists is False


@pytest.mark.parametrize("expensive_price", ["2.001", "2.1", "3.0"])
def test_discrepancy_sign(detector, make_pool, make_opportunity, expensive_price):
    cheap = make_pool("cheap", "2.0")
    expensive = make_pool("expensive", expensive_price)
    opportunity = make_opportunity(cheap, expensive)

    assert detector.detect_discrepancy(opportunity, SAMPLE) > 0
    assert detector.detect_discrepancy(opportunity.reversed(), SAMPLE) == 0


def test_profit_is_never_negative(detector, make_pool, make_opportunity):
    cheap = make_pool("cheap", "2.0", fee_bps=30)
    expensive = make_pool("expensive", "2.002", fee_bps=30)
    opportunity = make_opportunity(cheap, expensive)

    # a 0.1% gap does not cover two 0.3% fees
    assert detector.estimate_profit(opportunity, SAMPLE) == 0
    assert detector.estimate_profit(opportunity.reversed(), SAMPLE) == 0
    assert detector.estimate_profit(opportunity, 0) == 0


def test_estimate_profit_only_quotes(detector, make_pool, make_opportunity, ledger):
    cheap = make_pool("cheap", "2.0")
    expensive = make_pool("expensive", "2.2")
    before = ledger.snapshot()

    detector.estimate_profit(make_opportunity(cheap, expensive), SAMPLE)

    assert ledger.snapshot() == before
    assert cheap.reserve_b == expensive.reserve_b


def test_unit_price(detector, make_pool):
    pool = make_pool("pool", "2.0")

    price = detector.unit_price(pool, "USDC", "WETH", SAMPLE)

    assert price == pytest.approx(2 * PRECISION, rel=1e-6)
    with pytest.raises(ValueError):
        detector.unit_price(pool, "USDC", "WETH", 0)
