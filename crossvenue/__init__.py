from crossvenue.src.engine import (
    ArbitrageExecutor,
    ArbitrageManager,
    ArbitrageMonitor,
    OpportunityDetector,
    OptimalSizeSolver,
    build_engine,
    load_engine_config,
)
