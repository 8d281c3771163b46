"""Cross-venue arbitrage engine."""
from crossvenue.src.engine.ccxt_venue import CcxtOrderBookVenue
from crossvenue.src.engine.config import Engine, build_engine, load_engine_config
from crossvenue.src.engine.detector import OpportunityDetector
from crossvenue.src.engine.exceptions import (
    ArbitrageError,
    ArbitrageNotProfitable,
    ConfigError,
    ExecutionFailed,
    InsufficientBalance,
    InsufficientCapital,
    InsufficientCapitalReceived,
    InsufficientLiquidityError,
    InsufficientProfit,
    PriceDiscrepancyTooLow,
    SlippageExceeded,
    UnauthorizedCaller,
)
from crossvenue.src.engine.executor import ArbitrageExecutor, CapitalProvider, ExecutionState
from crossvenue.src.engine.ledger import (
    AssetScope,
    Ledger,
    Reconciling,
    Transactional,
    UnitOfWork,
)
from crossvenue.src.engine.manager import ArbitrageManager
from crossvenue.src.engine.models import (
    BPS_DENOMINATOR,
    PRECISION,
    CapitalAccount,
    CapitalStatus,
    ExecutionResult,
    Opportunity,
    OpportunityCheck,
    PerformanceStats,
    ScanResult,
    Strategy,
    VenueConfig,
)
from crossvenue.src.engine.monitor import ArbitrageMonitor, MonitorStats
from crossvenue.src.engine.solver import OptimalSizeSolver
from crossvenue.src.engine.venues import (
    ConstantProductVenue,
    OracleTrackingVenue,
    PriceOracle,
    StaticPriceOracle,
    VenueAdapter,
    get_amount_out,
)

__all__ = [
    "ArbitrageError",
    "ArbitrageExecutor",
    "ArbitrageManager",
    "ArbitrageMonitor",
    "ArbitrageNotProfitable",
    "AssetScope",
    "BPS_DENOMINATOR",
    "CapitalAccount",
    "CapitalProvider",
    "CapitalStatus",
    "CcxtOrderBookVenue",
    "ConfigError",
    "ConstantProductVenue",
    "Engine",
    "ExecutionFailed",
    "ExecutionResult",
    "ExecutionState",
    "InsufficientBalance",
    "InsufficientCapital",
    "InsufficientCapitalReceived",
    "InsufficientLiquidityError",
    "InsufficientProfit",
    "Ledger",
    "MonitorStats",
    "Opportunity",
    "OpportunityCheck",
    "OpportunityDetector",
    "OptimalSizeSolver",
    "OracleTrackingVenue",
    "PRECISION",
    "PerformanceStats",
    "PriceDiscrepancyTooLow",
    "PriceOracle",
    "Reconciling",
    "ScanResult",
    "SlippageExceeded",
    "StaticPriceOracle",
    "Strategy",
    "Transactional",
    "UnauthorizedCaller",
    "UnitOfWork",
    "VenueAdapter",
    "VenueConfig",
    "build_engine",
    "get_amount_out",
    "load_engine_config",
]
