"""Configuration loader and validation for reconciliation settings."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .utils.exceptions import ConfigurationError
from .utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


class RuleSettings(BaseModel):
    """Defaults applied by the rule evaluator."""

    # Used by amount.exact conditions that carry no tolerance of their own
    amount_exact_tolerance: Decimal = Decimal("0.00")


class SignalWeights(BaseModel):
    """Relative weight of each fuzzy signal."""

    amount: float = Field(default=0.5, ge=0.0)
    date: float = Field(default=0.2, ge=0.0)
    description: float = Field(default=0.3, ge=0.0)

    @property
    def total(self) -> float:
        return self.amount + self.date + self.description


class FuzzySettings(BaseModel):
    """Configuration for the heuristic scorer."""

    # Bucket pre-filter
    date_window_days: int = Field(default=7, ge=0)
    amount_window_pct: float = Field(default=10.0, ge=0.0)
    amount_window_floor: Decimal = Decimal("0.00")

    # Signal decay scales
    amount_scale: float = Field(default=10.0, gt=0.0)
    date_scale: float = Field(default=3.0, gt=0.0)

    weights: SignalWeights = Field(default_factory=SignalWeights)
    threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    top_k: int = Field(default=3, ge=1)


class MatchingConfig(BaseModel):
    """Configuration for the matching pipeline."""

    rules: RuleSettings = Field(default_factory=RuleSettings)
    fuzzy: FuzzySettings = Field(default_factory=FuzzySettings)


class SessionSettings(BaseModel):
    """Configuration for matching passes."""

    batch_size: int = Field(default=200, ge=1)
    batch_timeout_seconds: float = Field(default=30.0, gt=0.0)
    lease_ttl_seconds: float = Field(default=300.0, gt=0.0)
    max_error_samples: int = Field(default=10, ge=0)
    default_page_size: int = Field(default=50, ge=1)


class RetrySettings(BaseModel):
    """Retry policy for transient storage errors."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=0.1, ge=0.0)
    max_delay_seconds: float = Field(default=2.0, ge=0.0)

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
        )


class StorageConfig(BaseModel):
    """Configuration for persistence."""

    database_url: str = "sqlite:///ledger_recon.db"
    echo: bool = False


class ExcelOutputConfig(BaseModel):
    """Configuration for Excel output."""

    filename_template: str = "reconciliation_{session_id}_{date}_{time}.xlsx"


class OutputConfig(BaseModel):
    """Configuration for output."""

    excel: ExcelOutputConfig = Field(default_factory=ExcelOutputConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    session: SessionSettings = Field(default_factory=SessionSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "matching": {
            "rules": {
                "amount_exact_tolerance": "0.00",
            },
            "fuzzy": {
                "date_window_days": 7,
                "amount_window_pct": 10.0,
                "amount_window_floor": "0.00",
                "amount_scale": 10.0,
                "date_scale": 3.0,
                "weights": {
                    "amount": 0.5,
                    "date": 0.2,
                    "description": 0.3,
                },
                "threshold": 0.6,
                "top_k": 3,
            },
        },
        "session": {
            "batch_size": 200,
            "batch_timeout_seconds": 30.0,
            "lease_ttl_seconds": 300.0,
            "max_error_samples": 10,
            "default_page_size": 50,
        },
        "retry": {
            "max_attempts": 3,
            "base_delay_seconds": 0.1,
            "max_delay_seconds": 2.0,
        },
        "storage": {
            "database_url": "sqlite:///ledger_recon.db",
            "echo": False,
        },
        "output": {
            "excel": {
                "filename_template": "reconciliation_{session_id}_{date}_{time}.xlsx",
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
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
        ConfigurationError: If the file is not valid YAML or fails validation
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

    yaml_content = """# Ledger / bank statement reconciliation configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
