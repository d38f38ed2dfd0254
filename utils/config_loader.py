"""
Configuration Loader
=====================

Loads and validates configuration from YAML files. Configuration is read once
at startup; invalid values abort before any feed is created.
"""

import dataclasses
import math
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(Exception):
    """Configuration error."""
    pass


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class TradingConfig:
    """Instrument and ledger configuration."""
    symbol: str = "BTC/USDT"
    exchange: str = "aevo"
    trade_size: float = 0.001
    initial_cash: float = 1000.0
    fee_rate: float = 0.005


@dataclass
class SignalConfig:
    """Entry rule thresholds."""
    spread_threshold: float = 0.05  # Percent of best bid
    oir_threshold: float = 0.1
    mpb_threshold: float = -0.1
    use_last_trade_price: bool = False


@dataclass
class RiskConfig:
    """Risk exit and capital configuration."""
    take_profit_pct: float = 0.01
    stop_loss_pct: float = 0.02
    allow_negative_cash: bool = True
    max_open_positions: int = 0  # 0 = unlimited


@dataclass
class FeedConfig:
    """Feed consumption and simulation configuration."""
    staleness_timeout_seconds: float = 30.0
    interval_seconds: float = 1.0
    max_snapshots: int = 0  # 0 = run until stopped
    sim_initial_price: float = 100.0
    sim_volatility: float = 0.0005
    sim_spread_range_pct: list[float] = field(default_factory=lambda: [0.01, 0.08])
    sim_base_liquidity: float = 1.0
    sim_seed: int = 0  # 0 = unseeded


@dataclass
class LoggingConfig:
    """Logging configuration."""
    console_level: str = "INFO"
    file_level: str = "DEBUG"
    log_dir: str = "logs"
    main_log_file: str = "engine.log"
    trades_log_file: str = "trades.jsonl"
    max_log_size_mb: int = 50
    backup_count: int = 5


@dataclass
class EngineConfig:
    """Complete engine configuration."""
    trading: TradingConfig = field(default_factory=TradingConfig)
    signal: SignalConfig = field(default_factory=SignalConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: str = "config.yaml") -> EngineConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        EngineConfig instance with loaded values

    Raises:
        ConfigError: If the config file cannot be loaded or is invalid
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if raw_config is None:
        raw_config = {}

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Config file must contain a mapping, got {type(raw_config).__name__}")

    return build_config(raw_config)


def build_config(raw_config: dict) -> EngineConfig:
    """Build and validate an EngineConfig from an already-parsed mapping."""
    trading_data = _section(raw_config, "trading")
    signal_data = _section(raw_config, "signal")
    risk_data = _section(raw_config, "risk")
    feed_data = _section(raw_config, "feed")
    logging_data = _section(raw_config, "logging")

    trading_data = _apply_env_overrides(trading_data, {
        "symbol": "IMBALANCE_SYMBOL",
    })
    logging_data = _apply_env_overrides(logging_data, {
        "log_dir": "IMBALANCE_LOG_DIR",
        "console_level": "IMBALANCE_CONSOLE_LEVEL",
    })

    try:
        config = EngineConfig(
            trading=_build_dataclass(TradingConfig, trading_data),
            signal=_build_dataclass(SignalConfig, signal_data),
            risk=_build_dataclass(RiskConfig, risk_data),
            feed=_build_dataclass(FeedConfig, feed_data),
            logging=_build_dataclass(LoggingConfig, logging_data),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid configuration structure: {e}")

    validate_config(config)

    return config


def _section(raw_config: dict, name: str) -> dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return data


def _apply_env_overrides(data: dict, env_map: dict[str, str]) -> dict:
    """Apply environment variable overrides to config data."""
    result = data.copy()
    for key, env_var in env_map.items():
        env_value = os.environ.get(env_var)
        if env_value:
            result[key] = env_value
    return result


def _build_dataclass(cls, data: dict):
    """Build a dataclass from a dictionary, ignoring unknown keys."""
    field_names = {f.name for f in dataclasses.fields(cls)}
    filtered_data = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered_data)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_unit_interval(errors: list[str], name: str, value) -> None:
    if not _is_number(value) or value < 0 or value > 1:
        errors.append(f"{name} must be between 0 and 1")


def validate_config(config: EngineConfig) -> None:
    """Validate configuration values."""
    errors = []

    # Trading validation
    if not isinstance(config.trading.symbol, str) or not config.trading.symbol.strip():
        errors.append("trading.symbol must be a non-empty string")

    if not _is_number(config.trading.trade_size) or config.trading.trade_size <= 0:
        errors.append("trading.trade_size must be positive")

    if not _is_number(config.trading.initial_cash) or config.trading.initial_cash < 0:
        errors.append("trading.initial_cash must be a non-negative number")

    _check_unit_interval(errors, "trading.fee_rate", config.trading.fee_rate)

    # Signal validation
    _check_unit_interval(errors, "signal.spread_threshold", config.signal.spread_threshold)
    _check_unit_interval(errors, "signal.oir_threshold", config.signal.oir_threshold)

    if not _is_number(config.signal.mpb_threshold):
        errors.append("signal.mpb_threshold must be a finite number")

    # Risk validation
    _check_unit_interval(errors, "risk.take_profit_pct", config.risk.take_profit_pct)
    _check_unit_interval(errors, "risk.stop_loss_pct", config.risk.stop_loss_pct)

    if not isinstance(config.risk.max_open_positions, int) or config.risk.max_open_positions < 0:
        errors.append("risk.max_open_positions must be a non-negative integer")

    # Feed validation
    if not _is_number(config.feed.staleness_timeout_seconds) or config.feed.staleness_timeout_seconds <= 0:
        errors.append("feed.staleness_timeout_seconds must be positive")

    if not _is_number(config.feed.interval_seconds) or config.feed.interval_seconds < 0:
        errors.append("feed.interval_seconds must be non-negative")

    if not isinstance(config.feed.max_snapshots, int) or config.feed.max_snapshots < 0:
        errors.append("feed.max_snapshots must be a non-negative integer")

    if not _is_number(config.feed.sim_initial_price) or config.feed.sim_initial_price <= 0:
        errors.append("feed.sim_initial_price must be positive")

    spread_range = config.feed.sim_spread_range_pct
    if (
        not isinstance(spread_range, (list, tuple))
        or len(spread_range) != 2
        or not all(_is_number(v) and v >= 0 for v in spread_range)
        or spread_range[0] > spread_range[1]
    ):
        errors.append("feed.sim_spread_range_pct must be [low, high] with 0 <= low <= high")

    # Logging validation
    for name in ("console_level", "file_level"):
        level = getattr(config.logging, name)
        if not isinstance(level, str) or level.upper() not in _LOG_LEVELS:
            errors.append(f"logging.{name} must be one of {', '.join(_LOG_LEVELS)}")

    if errors:
        raise ConfigError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))


def save_config(config: EngineConfig, config_path: str = "config.yaml") -> None:
    """Save configuration to a YAML file."""
    data = dataclasses.asdict(config)

    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_default_config() -> EngineConfig:
    """Get a default configuration."""
    return EngineConfig()
