"""Trade sizing for a detected opportunity."""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from crossvenue.src.engine.detector import OpportunityDetector
from crossvenue.src.engine.exceptions import InsufficientLiquidityError
from crossvenue.src.engine.models import Opportunity

logger = logging.getLogger(__name__)


class OptimalSizeSolver:
    """Bounded local search for the most profitable trade size.

    Each iteration compares the profit at the midpoint of the current range
    with the profit 10% further out and keeps the half the slope points to.
    Concave profit curves (price impact on both venues) have a single peak,
    which this finds to within the probe step; other curves may trap it in a
    local maximum.
    """

    ITERATIONS = 20
    PROBE_NUMERATOR = 11
    PROBE_DENOMINATOR = 10
    LOWER_BOUND_DIVISOR = 100

    def __init__(
        self,
        detector: Optional[OpportunityDetector] = None,
        *,
        iterations: int = ITERATIONS,
    ) -> None:
        if iterations <= 0:
            raise ValueError("iterations must be positive")
        self.detector = detector or OpportunityDetector()
        self.iterations = iterations

    def _profit(self, opportunity: Opportunity, amount: int) -> int:
        try:
            return self.detector.estimate_profit(opportunity, amount)
        except InsufficientLiquidityError:
            return 0

    def search(self, opportunity: Opportunity, max_amount_in: int) -> Tuple[int, int]:
        """Return ``(amount, profit)`` for the best size seen."""

        if max_amount_in <= 0:
            raise ValueError("max_amount_in must be positive")

        low = max(max_amount_in // self.LOWER_BOUND_DIVISOR, 1)
        high = max_amount_in
        best_amount = low
        best_profit = self._profit(opportunity, low)

        for _ in range(self.iterations):
            if low >= high:
                break
            mid = (low + high) // 2
            probe = min(
                mid * self.PROBE_NUMERATOR // self.PROBE_DENOMINATOR, max_amount_in
            )
            profit_mid = self._profit(opportunity, mid)
            profit_probe = self._profit(opportunity, probe) if probe > mid else profit_mid

            if profit_mid > best_profit:
                best_amount, best_profit = mid, profit_mid
            if profit_probe > best_profit:
                best_amount, best_profit = probe, profit_probe

            if profit_probe > profit_mid:
                if low == mid:
                    break
                low = mid
            else:
                high = mid

        logger.debug(
            "Optimal size for %s within %d: %d (profit %d)",
            opportunity.describe(),
            max_amount_in,
            best_amount,
            best_profit,
        )
        return best_amount, best_profit

    def optimal_amount(self, opportunity: Opportunity, max_amount_in: int) -> int:
        amount, _ = self.search(opportunity, max_amount_in)
        return amount
