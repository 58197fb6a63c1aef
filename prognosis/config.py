"""
Configuration management with environment variable support and validation.

Design principles:
- Validation at startup (fail fast)
- Type safety with Pydantic
- Slider-style settings are clamped when read from the environment,
  rejected when constructed directly with out-of-range values
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

MAX_TREATMENT_LEVEL = 20


class PrognosisSettings(BaseModel):
    """User-facing prognosis settings. Read as a snapshot on every call."""

    require_treatment_gate: bool = Field(
        default=True, description="Only forecast after a sufficiently skilled treatment"
    )
    required_treatment_level: int = Field(
        default=12,
        ge=0,
        le=MAX_TREATMENT_LEVEL,
        description="Minimum doctor skill level that unlocks the forecast",
    )
    enable_risk_alert: bool = Field(default=True, description="Send an 'At risk' alert")
    risk_alert_severity_percent: int = Field(
        default=80, ge=0, le=100, description="Alert once severity reaches this percentage"
    )

    @property
    def risk_alert_threshold(self) -> float:
        return self.risk_alert_severity_percent / 100.0


class TreatmentMemoryConfig(BaseModel):
    """Treatment memory bounds and garbage collection cadence."""

    min_level: int = Field(default=0, ge=0, description="Lowest storable treatment level")
    max_level: int = Field(
        default=MAX_TREATMENT_LEVEL, ge=0, description="Highest storable treatment level"
    )
    cleanup_interval_ticks: int = Field(
        default=2500, gt=0, description="Ticks between stale-record sweeps (~1 in-game hour)"
    )

    @model_validator(mode="after")
    def min_not_above_max(self) -> "TreatmentMemoryConfig":
        if self.min_level > self.max_level:
            raise ValueError("min_level must not exceed max_level")
        return self

    def clamp(self, level: int) -> int:
        return max(self.min_level, min(self.max_level, int(level)))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    prognosis: PrognosisSettings = Field(default_factory=PrognosisSettings)
    memory: TreatmentMemoryConfig = Field(default_factory=TreatmentMemoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _clamp_int(val: str | None, default: int, low: int, high: int) -> int:
    if val is None or not val.strip():
        return default
    try:
        parsed = round(float(val))
    except ValueError:
        return default
    return max(low, min(high, parsed))


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    prognosis = PrognosisSettings(
        require_treatment_gate=_parse_bool(os.getenv("PROGNOSIS_REQUIRE_GATE"), True),
        required_treatment_level=_clamp_int(
            os.getenv("PROGNOSIS_REQUIRED_LEVEL"), 12, 0, MAX_TREATMENT_LEVEL
        ),
        enable_risk_alert=_parse_bool(os.getenv("PROGNOSIS_ENABLE_ALERT"), True),
        risk_alert_severity_percent=_clamp_int(os.getenv("PROGNOSIS_ALERT_PERCENT"), 80, 0, 100),
    )

    memory = TreatmentMemoryConfig(
        cleanup_interval_ticks=int(os.getenv("PROGNOSIS_CLEANUP_INTERVAL_TICKS", "2500")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        prognosis=prognosis,
        memory=memory,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def print_config_summary(config: AppConfig | None = None) -> None:
    """Print configuration summary for debugging."""
    config = config or get_config()
    settings = config.prognosis

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nPROGNOSIS")
    print(f"Treatment Gate: {'on' if settings.require_treatment_gate else 'off'}")
    if settings.require_treatment_gate:
        print(f"Required Treatment Level: {settings.required_treatment_level}")
    print(f"Risk Alert: {'on' if settings.enable_risk_alert else 'off'}")
    if settings.enable_risk_alert:
        print(f"Alert Threshold: {settings.risk_alert_threshold:.0%}")

    print("\nTREATMENT MEMORY")
    print(f"Level Range: {config.memory.min_level}..{config.memory.max_level}")
    print(f"Cleanup Interval: {config.memory.cleanup_interval_ticks} ticks")
