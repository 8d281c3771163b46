"""Custom exceptions for the cross-venue arbitrage engine."""
from __future__ import annotations

from typing import Optional


class ArbitrageError(RuntimeError):
    """Base class for failures that abort an arbitrage unit of work."""


class InsufficientProfit(ArbitrageError):
    """Raised when estimated or realised profit is below the caller's threshold."""

    def __init__(self, actual: int, required: int) -> None:
        super().__init__(f"Profit {actual} below required {required}")
        self.actual = actual
        self.required = required


class ArbitrageNotProfitable(ArbitrageError):
    """Raised when the round trip returns no more than it started with."""

    def __init__(self, amount_in: int, amount_out: int) -> None:
        super().__init__(f"Round trip returned {amount_out} for {amount_in}")
        self.amount_in = amount_in
        self.amount_out = amount_out


class InsufficientCapitalReceived(ArbitrageError):
    """Raised when the capital provider did not deliver the requested funds."""

    def __init__(self, asset: str, required: int, received: int) -> None:
        super().__init__(
            f"Capital provider delivered {received} {asset}, {required} required"
        )
        self.asset = asset
        self.required = required
        self.received = received


class InsufficientCapital(ArbitrageError):
    """Raised by the manager before reserving more than is available."""

    def __init__(self, asset: str, required: int, available: int) -> None:
        super().__init__(f"{required} {asset} requested, {available} available")
        self.asset = asset
        self.required = required
        self.available = available


class UnauthorizedCaller(ArbitrageError):
    """Raised when a configuration or execution call comes from a non-authorised party."""

    def __init__(self, caller: Optional[str], action: str) -> None:
        super().__init__(f"{caller!r} is not authorised to {action}")
        self.caller = caller
        self.action = action


class PriceDiscrepancyTooLow(ArbitrageError):
    """Raised when nominal profit exists but the venues barely disagree."""

    def __init__(self, actual: int, required: int) -> None:
        super().__init__(f"Discrepancy {actual} bps below required {required} bps")
        self.actual = actual
        self.required = required


class ExecutionFailed(ArbitrageError):
    """Raised when a venue or the capital callback fails during execution."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class InsufficientBalance(ExecutionFailed):
    """Raised by the ledger when a holder cannot cover a transfer."""

    def __init__(self, holder: str, asset: str, required: int, balance: int) -> None:
        super().__init__(f"{holder} holds {balance} {asset}, {required} required")
        self.holder = holder
        self.asset = asset
        self.required = required
        self.balance = balance


class SlippageExceeded(ExecutionFailed):
    """Raised when a venue fill comes back below the caller's minimum output."""

    def __init__(self, venue_id: str, amount_out: int, min_amount_out: int) -> None:
        super().__init__(
            f"{venue_id} returned {amount_out}, minimum output was {min_amount_out}"
        )
        self.venue_id = venue_id
        self.amount_out = amount_out
        self.min_amount_out = min_amount_out


class InsufficientLiquidityError(RuntimeError):
    """Raised when a venue does not provide enough depth for a trade."""


class ConfigError(ValueError):
    """Raised when an engine configuration document is invalid."""
