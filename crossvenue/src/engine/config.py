"""YAML configuration loading and engine wiring."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from crossvenue.src.engine.exceptions import ArbitrageError, ConfigError
from crossvenue.src.engine.executor import ArbitrageExecutor
from crossvenue.src.engine.ledger import Ledger
from crossvenue.src.engine.manager import ArbitrageManager
from crossvenue.src.engine.models import PRECISION, VenueConfig
from crossvenue.src.engine.monitor import INTERVAL_DEFAULT, STATS_INTERVAL_DEFAULT
from crossvenue.src.engine.venues import (
    ConstantProductVenue,
    OracleTrackingVenue,
    StaticPriceOracle,
)

logger = logging.getLogger(__name__)

VENUE_TYPES = ("constant_product", "oracle_tracking")


@dataclass
class Engine:
    """Everything :func:`build_engine` wires together."""

    ledger: Ledger
    executor: ArbitrageExecutor
    manager: ArbitrageManager
    owner: str
    executors: List[str] = field(default_factory=list)
    venues: Dict[str, Any] = field(default_factory=dict)
    oracles: Dict[str, StaticPriceOracle] = field(default_factory=dict)
    strategy_ids: List[int] = field(default_factory=list)
    decimals: int = 0
    interval: float = INTERVAL_DEFAULT
    stats_interval: float = STATS_INTERVAL_DEFAULT

    @property
    def monitor_caller(self) -> str:
        return self.executors[0] if self.executors else self.owner


def load_engine_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Read an engine configuration document from ``path``."""

    config_file = Path(path).expanduser()
    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file {config_file} does not exist") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {config_file} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping")
    logger.debug("Loaded engine config from %s", config_file)
    return data


def _section(config: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = config.get(key, default)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' must be a {kind.__name__}")
    return value


def _require(entry: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in entry or entry[key] is None:
        raise ConfigError(f"{where} is missing '{key}'")
    return entry[key]


def _scaled(value: Any, scale: int, where: str) -> int:
    """Convert a decimal amount into integer base units."""

    try:
        amount = Decimal(str(value)) * scale
    except InvalidOperation as exc:
        raise ConfigError(f"{where}: {value!r} is not a number") from exc
    if amount < 0:
        raise ConfigError(f"{where}: {value!r} must not be negative")
    return int(amount)


def _asset_pair(entry: Mapping[str, Any], key: str, where: str) -> List[str]:
    pair = _require(entry, key, where)
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        raise ConfigError(f"{where}: '{key}' must list exactly two assets")
    return [str(asset) for asset in pair]


def _build_oracles(config: Mapping[str, Any]) -> Dict[str, StaticPriceOracle]:
    oracles: Dict[str, StaticPriceOracle] = {}
    for name, entry in _section(config, "oracles", dict, {}).items():
        where = f"oracle '{name}'"
        oracle = StaticPriceOracle()
        for price in (entry or {}).get("prices", []):
            base, quote = price.get("base"), price.get("quote")
            if not base or not quote:
                raise ConfigError(f"{where}: every price needs 'base' and 'quote'")
            scaled = _scaled(_require(price, "price", where), PRECISION, where)
            if scaled <= 0:
                raise ConfigError(f"{where}: price for {quote} must be positive")
            oracle.set_price(str(base), str(quote), scaled)
        oracles[str(name)] = oracle
    return oracles


def _build_venue(
    entry: Mapping[str, Any],
    ledger: Ledger,
    oracles: Mapping[str, StaticPriceOracle],
    scale: int,
) -> Any:
    if not isinstance(entry, dict):
        raise ConfigError("every venue must be a mapping")
    name = str(_require(entry, "name", "venue"))
    where = f"venue '{name}'"
    venue_type = _require(entry, "type", where)
    asset_a, asset_b = _asset_pair(entry, "assets", where)
    fee_bps = int(entry.get("fee_bps", 30))

    if venue_type == "constant_product":
        reserves = _require(entry, "reserves", where)
        if not isinstance(reserves, (list, tuple)) or len(reserves) != 2:
            raise ConfigError(f"{where}: 'reserves' must list two amounts")
        return ConstantProductVenue(
            name,
            ledger,
            asset_a,
            asset_b,
            _scaled(reserves[0], scale, where),
            _scaled(reserves[1], scale, where),
            fee_bps=fee_bps,
        )
    if venue_type == "oracle_tracking":
        oracle_name = _require(entry, "oracle", where)
        if oracle_name not in oracles:
            raise ConfigError(f"{where}: unknown oracle '{oracle_name}'")
        inventory_b = entry.get("inventory_b")
        return OracleTrackingVenue(
            name,
            ledger,
            oracles[oracle_name],
            asset_a,
            asset_b,
            _scaled(_require(entry, "depth", where), scale, where),
            fee_bps=fee_bps,
            min_update_interval=float(entry.get("min_update_interval", 0.0)),
            inventory_b=_scaled(inventory_b, scale, where) if inventory_b is not None else None,
        )
    raise ConfigError(f"{where}: type must be one of {', '.join(VENUE_TYPES)}")


def _venue_refs(
    refs: Any, venues: Mapping[str, Any], where: str
) -> List[VenueConfig]:
    if not isinstance(refs, list) or not refs:
        raise ConfigError(f"{where} must list at least one venue")
    configs = []
    for ref in refs:
        if isinstance(ref, dict):
            name, descriptor = ref.get("venue"), str(ref.get("descriptor", ""))
        else:
            name, descriptor = ref, ""
        if name not in venues:
            raise ConfigError(f"{where}: unknown venue '{name}'")
        configs.append(VenueConfig(venues[name], descriptor))
    return configs


def build_engine(
    config: Mapping[str, Any],
    *,
    trade_log_path: Optional[Union[str, Path]] = None,
) -> Engine:
    """Create the ledger, venues, executor and manager described by ``config``."""

    owner = config.get("owner")
    if not owner or not isinstance(owner, str):
        raise ConfigError("'owner' must name the operator address")
    scale = 10 ** int(config.get("decimals", 0))
    thresholds = _section(config, "thresholds", dict, {})
    monitor = _section(config, "monitor", dict, {})
    executors = [str(e) for e in _section(config, "executors", list, [])]

    try:
        ledger = Ledger()
        for holder, assets in _section(config, "balances", dict, {}).items():
            for asset, amount in (assets or {}).items():
                ledger.mint(str(holder), str(asset), _scaled(amount, scale, f"balance of {holder}"))

        oracles = _build_oracles(config)
        venues: Dict[str, Any] = {}
        for entry in _section(config, "venues", list, []):
            venue = _build_venue(entry, ledger, oracles, scale)
            if venue.venue_id in venues:
                raise ConfigError(f"Duplicate venue '{venue.venue_id}'")
            venues[venue.venue_id] = venue

        executor = ArbitrageExecutor(ledger, trade_log_path=trade_log_path)
        manager = ArbitrageManager(
            ledger,
            executor,
            owner=owner,
            min_profit_bps=int(thresholds.get("min_profit_bps", 50)),
            min_discrepancy_bps=int(thresholds.get("min_discrepancy_bps", 0)),
            scan_workers=int(monitor.get("scan_workers", 1)),
        )
        for address in executors:
            manager.set_executor(address, True, caller=owner)

        for asset, entry in _section(config, "capital", dict, {}).items():
            where = f"capital for {asset}"
            entry = entry or {}
            deposit = _scaled(entry.get("deposit", 0), scale, where)
            if deposit:
                manager.deposit_capital(str(asset), deposit, caller=owner)
            max_per_trade = entry.get("max_per_trade")
            if max_per_trade is not None:
                manager.set_max_capital_per_arbitrage(
                    str(asset), _scaled(max_per_trade, scale, where), caller=owner
                )

        strategy_ids = []
        for index, entry in enumerate(_section(config, "strategies", list, [])):
            where = f"strategy #{index}"
            if not isinstance(entry, dict):
                raise ConfigError(f"{where} must be a mapping")
            asset_a, asset_b = _asset_pair(entry, "pair", where)
            strategy_id = manager.add_strategy(
                asset_a,
                asset_b,
                _venue_refs(entry.get("cheap"), venues, f"{where} 'cheap'"),
                _venue_refs(entry.get("expensive"), venues, f"{where} 'expensive'"),
                caller=owner,
            )
            if entry.get("active", True) is False:
                manager.set_strategy_active(strategy_id, False, caller=owner)
            strategy_ids.append(strategy_id)
    except (ValueError, KeyError, ArbitrageError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid engine configuration: {exc}") from exc

    logger.info(
        "Engine ready: %d venue(s), %d strategy(ies), owner %s",
        len(venues),
        len(strategy_ids),
        owner,
    )
    return Engine(
        ledger=ledger,
        executor=executor,
        manager=manager,
        owner=owner,
        executors=executors,
        venues=venues,
        oracles=oracles,
        strategy_ids=strategy_ids,
        decimals=int(config.get("decimals", 0)),
        interval=float(monitor.get("interval", INTERVAL_DEFAULT)),
        stats_interval=float(monitor.get("stats_interval", STATS_INTERVAL_DEFAULT)),
    )
