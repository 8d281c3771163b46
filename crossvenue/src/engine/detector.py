"""Price discrepancy and profit estimation across two venues."""
from __future__ import annotations

import logging

from crossvenue.src.engine.models import (
    BPS_DENOMINATOR,
    PRECISION,
    Opportunity,
    OpportunityCheck,
)

logger = logging.getLogger(__name__)


class OpportunityDetector:
    """Evaluates buy-cheap/sell-expensive hypotheses using venue quotes only."""

    def unit_price(self, venue, base_asset: str, quote_asset: str, sample_amount: int) -> int:
        """Price of ``quote_asset`` in ``base_asset`` on ``venue``, scaled by ``PRECISION``.

        The price is measured by quoting a purchase of the quote asset with
        ``sample_amount`` of the base asset, so it includes the venue fee and
        the price impact of the sample. A venue that returns nothing is priced
        at zero.
        """

        if sample_amount <= 0:
            raise ValueError("sample_amount must be positive")
        amount_out = venue.quote(base_asset, quote_asset, sample_amount)
        if amount_out <= 0:
            return 0
        return sample_amount * PRECISION // amount_out

    def detect_discrepancy(self, opportunity: Opportunity, sample_amount: int) -> int:
        cheap_price = self.unit_price(
            opportunity.cheap_venue,
            opportunity.pair_asset_a,
            opportunity.pair_asset_b,
            sample_amount,
        )
        expensive_price = self.unit_price(
            opportunity.expensive_venue,
            opportunity.pair_asset_a,
            opportunity.pair_asset_b,
            sample_amount,
        )
        if cheap_price == 0 or expensive_price <= cheap_price:
            return 0
        return (expensive_price - cheap_price) * BPS_DENOMINATOR // cheap_price

    def estimate_profit(self, opportunity: Opportunity, amount_in: int) -> int:
        if amount_in <= 0:
            return 0
        intermediate = opportunity.cheap_venue.quote(
            opportunity.pair_asset_a, opportunity.pair_asset_b, amount_in
        )
        if intermediate <= 0:
            return 0
        final_amount = opportunity.expensive_venue.quote(
            opportunity.pair_asset_b, opportunity.pair_asset_a, intermediate
        )
        return max(0, final_amount - amount_in)

    def check_opportunity(
        self,
        opportunity: Opportunity,
        min_profit_bps: int,
        sample_amount: int,
        *,
        min_discrepancy_bps: int = 0,
    ) -> OpportunityCheck:
        estimated_profit = self.estimate_profit(opportunity, sample_amount)
        discrepancy_bps = self.detect_discrepancy(opportunity, sample_amount)
        required_profit = sample_amount * min_profit_bps // BPS_DENOMINATOR
        exists = (
            estimated_profit >= required_profit
            and discrepancy_bps > 0
            and discrepancy_bps >= min_discrepancy_bps
        )
        logger.debug(
            "Checked %s: profit=%d required=%d discrepancy=%dbps exists=%s",
            opportunity.describe(),
            estimated_profit,
            required_profit,
            discrepancy_bps,
            exists,
        )
        return OpportunityCheck(
            exists=exists,
            estimated_profit=estimated_profit,
            discrepancy_bps=discrepancy_bps,
        )
