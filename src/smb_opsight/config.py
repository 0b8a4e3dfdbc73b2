# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for SMB OpSight.

This module is responsible for:
- loading the application configuration from a TOML file,
- validating values and applying defaults for missing sections,
- exposing typed dataclasses used by the rest of the application.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from .db import DatabaseConfig
from .errors import ConfigurationError
from .periods import PERIOD_TYPES
from .production import DEFAULT_DELAY_MULTIPLIER, DEFAULT_FALLBACK_HOURS

DEFAULT_CONFIG_FILE = "smb_opsight_config.toml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AnalyticsConfig:
    """Defaults for period selection, trends and store reads."""

    default_period_type: str = "monthly"
    trend_periods: int = 6
    max_workers: int = 5


@dataclass(frozen=True)
class ProductionConfig:
    """Bottleneck detection thresholds."""

    delay_multiplier: float = DEFAULT_DELAY_MULTIPLIER
    fallback_threshold_hours: float = DEFAULT_FALLBACK_HOURS


@dataclass(frozen=True)
class FinanceConfig:
    """Finance settings (expected order volume used to spread overhead)."""

    expected_monthly_orders: int = 40


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for SMB OpSight.

    This aggregates:
    - the database configuration (where transactional rows are read from),
    - analytics defaults (period type, trend length, read concurrency),
    - production bottleneck thresholds,
    - finance settings,
    - the logging level.
    """

    database: DatabaseConfig
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    production: ProductionConfig = field(default_factory=ProductionConfig)
    finance: FinanceConfig = field(default_factory=FinanceConfig)
    log_level: str = "INFO"


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the TOML content cannot be parsed.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Failed to parse TOML config file: {path}") from exc

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    """Return a top-level table, or an empty mapping if absent or malformed."""
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        return {}
    return section


def _positive_int(section: Mapping[str, Any], key: str, default: int, where: str) -> int:
    raw_value = section.get(key, default)
    try:
        value = int(raw_value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid value for '{where}.{key}' in the configuration. "
            "Expected an integer."
        ) from exc
    if value < 1:
        raise ConfigurationError(f"'{where}.{key}' must be at least 1, got {value}.")
    return value


def _positive_float(
    section: Mapping[str, Any], key: str, default: float, where: str
) -> float:
    raw_value = section.get(key, default)
    try:
        value = float(raw_value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid value for '{where}.{key}' in the configuration. "
            "Expected a number."
        ) from exc
    if value <= 0:
        raise ConfigurationError(f"'{where}.{key}' must be positive, got {value}.")
    return value


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the SMB OpSight application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [database]
        Database engine and SQLite file path (relative to the TOML file).

    [analytics]
        default_period_type ("monthly" | "quarterly" | "annual"),
        trend_periods (number of periods in a trend),
        max_workers (concurrent store reads).

    [production]
        delay_multiplier and fallback_threshold_hours used by the
        bottleneck detector.

    [finance]
        expected_monthly_orders used to spread overhead per order.

    [logging]
        level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Every section is optional; missing values fall back to defaults.

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML configuration file. Defaults to
        'smb_opsight_config.toml' in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ConfigurationError
        If the file cannot be parsed or a value is invalid.
    """
    config_file = Path(config_path or DEFAULT_CONFIG_FILE).resolve()
    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/smb_opsight.sqlite"
    database = DatabaseConfig(
        engine=db_engine,
        path=(base_dir / str(db_path_raw)).resolve(),
    )

    # 2) Analytics defaults
    analytics_section = _section(raw, "analytics")
    period_type = str(analytics_section.get("default_period_type", "monthly"))
    if period_type not in PERIOD_TYPES:
        raise ConfigurationError(
            f"Invalid 'analytics.default_period_type': {period_type!r}. "
            f"Expected one of: {', '.join(PERIOD_TYPES)}."
        )
    analytics = AnalyticsConfig(
        default_period_type=period_type,
        trend_periods=_positive_int(analytics_section, "trend_periods", 6, "analytics"),
        max_workers=_positive_int(analytics_section, "max_workers", 5, "analytics"),
    )

    # 3) Production thresholds
    production_section = _section(raw, "production")
    production = ProductionConfig(
        delay_multiplier=_positive_float(
            production_section, "delay_multiplier", DEFAULT_DELAY_MULTIPLIER, "production"
        ),
        fallback_threshold_hours=_positive_float(
            production_section,
            "fallback_threshold_hours",
            DEFAULT_FALLBACK_HOURS,
            "production",
        ),
    )

    # 4) Finance settings
    finance_section = _section(raw, "finance")
    finance = FinanceConfig(
        expected_monthly_orders=_positive_int(
            finance_section, "expected_monthly_orders", 40, "finance"
        ),
    )

    # 5) Logging
    logging_section = _section(raw, "logging")
    log_level = str(logging_section.get("level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid 'logging.level': {log_level!r}. "
            f"Expected one of: {', '.join(LOG_LEVELS)}."
        )

    return AppConfig(
        database=database,
        analytics=analytics,
        production=production,
        finance=finance,
        log_level=log_level,
    )
