import pytest

from crossvenue.src.engine.detector import OpportunityDetector
from crossvenue.src.engine.exceptions import InsufficientLiquidityError
from crossvenue.src.engine.solver import OptimalSizeSolver

UNIT = 10**18


@pytest.fixture
def shallow_opportunity(make_pool, make_opportunity):
    # profit(x) = 1200x / (1000 + 2x) - x, peaking near x = 47.7
    cheap = make_pool("cheap", "2.0", depth=500 * UNIT)
    expensive = make_pool("expensive", "2.4", depth=500 * UNIT)
    return make_opportunity(cheap, expensive)


class ThinVenue:
    """Wraps a venue and refuses quotes above ``max_amount_in``."""

    def __init__(self, inner, max_amount_in):
        self.venue_id = f"thin-{inner.venue_id}"
        self.inner = inner
        self.max_amount_in = max_amount_in

    def quote(self, asset_in, asset_out, amount_in, descriptor=""):
        if amount_in > self.max_amount_in:
            raise InsufficientLiquidityError("not enough depth")
        return self.inner.quote(asset_in, asset_out, amount_in)

    def execute(self, *args, **kwargs):
        return self.inner.execute(*args, **kwargs)


def test_twenty_percent_gap_within_bound(shallow_opportunity):
    solver = OptimalSizeSolver()
    max_amount = 500 * UNIT

    amount = solver.optimal_amount(shallow_opportunity, max_amount)

    assert 0 < amount <= max_amount
    assert solver.detector.estimate_profit(shallow_opportunity, amount) > 0


def test_search_is_close_to_brute_force_optimum(shallow_opportunity):
    detector = OpportunityDetector()
    solver = OptimalSizeSolver(detector)

    amount, profit = solver.search(shallow_opportunity, 500 * UNIT)
    best_on_grid = max(
        detector.estimate_profit(shallow_opportunity, k * UNIT) for k in range(1, 501)
    )

    assert 40 * UNIT <= amount <= 56 * UNIT
    assert profit >= best_on_grid * 0.95
    assert profit == detector.estimate_profit(shallow_opportunity, amount)


@pytest.mark.parametrize("max_amount", [1, 7, 100, 10**6, 500 * UNIT])
def test_result_never_leaves_the_bound(shallow_opportunity, max_amount):
    solver = OptimalSizeSolver()

    for opportunity in (shallow_opportunity, shallow_opportunity.reversed()):
        amount = solver.optimal_amount(opportunity, max_amount)
        assert 0 < amount <= max_amount


@pytest.mark.parametrize("max_amount", [0, -5])
def test_non_positive_bound_is_rejected(shallow_opportunity, max_amount):
    with pytest.raises(ValueError):
        OptimalSizeSolver().optimal_amount(shallow_opportunity, max_amount)


def test_missing_depth_counts_as_zero_profit(make_pool, make_opportunity):
    cheap = ThinVenue(make_pool("cheap", "2.0", depth=500 * UNIT), 30 * UNIT)
    expensive = make_pool("expensive", "2.4", depth=500 * UNIT)
    opportunity = make_opportunity(cheap, expensive)

    amount, profit = OptimalSizeSolver().search(opportunity, 500 * UNIT)

    assert 0 < amount <= 30 * UNIT
    assert profit > 0


def test_iterations_must_be_positive():
    with pytest.raises(ValueError):
        OptimalSizeSolver(iterations=0)
