"""Configuration loader and validation for reconciliation settings."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ToleranceSettings(BaseModel):
    """Amount tolerance band: percent of the larger amount, or a fixed floor."""

    percent: Decimal = Decimal("0.01")
    minimum: Decimal = Decimal("1000")

    @field_validator("percent", "minimum")
    @classmethod
    def _non_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("tolerance values must not be negative")
        return value


class ConfidenceSettings(BaseModel):
    """Confidence curve bounds for AMOUNT and SPLIT matches."""

    amount_floor: float = 0.5
    split_ceiling: float = 0.7
    split_floor: float = 0.5


class MatchingTier(BaseModel):
    """A matching pass with priority."""

    name: str
    description: str = ""
    priority: int = 99
    enabled: bool = True


DEFAULT_TIERS = [
    {
        "name": "exact_transaction_id",
        "description": "Bank reference equals goal transaction id",
        "priority": 1,
        "enabled": True,
    },
    {
        "name": "amount_within_window",
        "description": "1:1 amount within tolerance inside the date window",
        "priority": 2,
        "enabled": True,
    },
    {
        "name": "same_day_split",
        "description": "N:1 and 1:N same-day aggregates",
        "priority": 3,
        "enabled": True,
    },
]


def _default_tiers() -> list[MatchingTier]:
    return [MatchingTier(**tier) for tier in DEFAULT_TIERS]


class MatchingConfig(BaseModel):
    """Configuration for the matching engine."""

    tolerance: ToleranceSettings = Field(default_factory=ToleranceSettings)
    date_window_days: int = 30
    timing_tolerance_days: int = 3
    confidence: ConfidenceSettings = Field(default_factory=ConfidenceSettings)
    tiers: list[MatchingTier] = Field(default_factory=_default_tiers)

    @field_validator("date_window_days", "timing_tolerance_days")
    @classmethod
    def _non_negative_days(cls, value: int) -> int:
        if value < 0:
            raise ValueError("day windows must not be negative")
        return value


class SplitConfig(BaseModel):
    """Bounds for same-day split detection."""

    max_candidates: int = 10


class BatchConfig(BaseModel):
    """Configuration for the batch runner."""

    batch_size: int = 100
    max_workers: int = 1
    default_lookback_days: int = 30
    lease_timeout_seconds: int = 900

    @field_validator("batch_size", "max_workers")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class ReversalConfig(BaseModel):
    """Configuration for reversal pair detection."""

    window_days: int = 30


class DatabaseConfig(BaseModel):
    """Configuration for the ledger store."""

    url: str = "sqlite:///goal_ledger_recon.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"unknown logging level {value!r}")
        return value


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    split: SplitConfig = Field(default_factory=SplitConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    reversal: ReversalConfig = Field(default_factory=ReversalConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "matching": {
            "tolerance": {
                "percent": "0.01",
                "minimum": "1000",
            },
            "date_window_days": 30,
            "timing_tolerance_days": 3,
            "confidence": {
                "amount_floor": 0.5,
                "split_ceiling": 0.7,
                "split_floor": 0.5,
            },
            "tiers": [dict(tier) for tier in DEFAULT_TIERS],
        },
        "split": {
            "max_candidates": 10,
        },
        "batch": {
            "batch_size": 100,
            "max_workers": 1,
            "default_lookback_days": 30,
            "lease_timeout_seconds": 900,
        },
        "reversal": {
            "window_days": 30,
        },
        "database": {
            "url": "sqlite:///goal_ledger_recon.db",
            "echo": False,
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
            "max_bytes": 10 * 1024 * 1024,
            "backup_count": 5,
        },
    }


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        # Deep merge user config into defaults
        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Goal ledger reconciliation configuration
# Tolerance: |a-b| <= max(percent * max(|a|,|b|), minimum)

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
