"""Command line entry point for the cross-venue arbitrage monitor."""
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from crossvenue.src.engine import (
    ArbitrageMonitor,
    ConfigError,
    Engine,
    build_engine,
    load_engine_config,
)

logger = logging.getLogger(__name__)

# Command-line arguments take precedence over these defaults.
CONFIG_PATH_DEFAULT = str(Path(__file__).resolve().parents[1] / "config" / "example_config.yaml")
LOG_LEVEL_DEFAULT = "INFO"
TRADE_LOG_PATH_DEFAULT: Optional[str] = None


def build_monitor(engine: Engine, interval: Optional[float] = None) -> ArbitrageMonitor:
    return ArbitrageMonitor(
        engine.manager,
        caller=engine.monitor_caller,
        interval=engine.interval if interval is None else interval,
        stats_interval=engine.stats_interval,
        decimals=engine.decimals,
    )


async def run_from_args(args: argparse.Namespace) -> int:
    try:
        config = load_engine_config(args.config)
        engine = build_engine(config, trade_log_path=args.trade_log)
    except ConfigError as exc:
        logger.error("Could not start: %s", exc)
        return 2

    monitor = build_monitor(engine, args.interval)
    logger.info(
        "Monitoring %d strateg%s as %s, checking every %.1fs",
        len(engine.strategy_ids),
        "y" if len(engine.strategy_ids) == 1 else "ies",
        monitor.caller,
        monitor.interval,
    )
    await monitor.run(max_iterations=args.max_iterations)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Monitor and execute cross-venue arbitrage opportunities.",
    )
    parser.add_argument(
        "--config",
        default=CONFIG_PATH_DEFAULT,
        help="YAML file describing venues, capital and strategies.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between opportunity checks (overrides the config file).",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Stop after this many checks. Runs until interrupted when omitted.",
    )
    parser.add_argument(
        "--trade-log",
        default=TRADE_LOG_PATH_DEFAULT,
        help="Append executed arbitrages to this CSV file.",
    )
    parser.add_argument(
        "--log-level",
        default=LOG_LEVEL_DEFAULT,
        help="Configure the logging level (e.g. DEBUG, INFO).",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    default_level = getattr(logging, LOG_LEVEL_DEFAULT.upper(), logging.INFO)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), default_level))
    try:
        return asyncio.run(run_from_args(args))
    except KeyboardInterrupt:  # pragma: no cover - outer signal handler
        logger.info("Interrupted by user. Goodbye!")
        return 0


if __name__ == "__main__":  # pragma: no cover - script entry point
    raise SystemExit(main())
