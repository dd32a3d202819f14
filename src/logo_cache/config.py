"""Typed configuration loaded from the environment via pydantic-settings.

Every variable is prefixed with ``LOGO_CACHE_``, e.g.
``LOGO_CACHE_MEMORY_BUDGET_BYTES=2147483648``.
"""

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DAY = 24 * 60 * 60


class Settings(BaseSettings):
    """Runtime settings for the logo pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="LOGO_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === FETCHING ===
    build_phase: bool = False
    fetch_timeout_seconds: float = 5.0
    build_fetch_timeout_seconds: float = 2.0
    html_discovery: bool = True
    max_domain_failures: int = 3
    domain_failure_cooldown_seconds: int = DAY
    failure_warning_threshold: int = 5

    # === CACHE TTLs ===
    fetch_success_ttl_seconds: int = 30 * DAY
    fetch_failure_ttl_seconds: int = DAY
    validation_ttl_seconds: int = 365 * DAY
    analysis_ttl_seconds: int = 30 * DAY
    inverted_ttl_seconds: int = 30 * DAY

    # === MEMORY ===
    memory_budget_bytes: int = int(3.75 * 1024**3)
    memory_warning_ratio: float = 0.7
    memory_critical_ratio: float = 0.9
    memory_sample_interval_seconds: float = 5.0
    memory_history_size: int = 100
    memory_trend_window: int = 10

    # === COALESCING ===
    max_in_flight: int = 1000

    # === PLACEHOLDER DETECTION ===
    min_logo_size: int = 64
    max_size_diff: int = 10
    max_placeholder_bytes: int = 512 * 1024
    placeholder_reference_path: Path | None = None

    # === PERSISTENCE ===
    persistence_dir: Path | None = None
    persistence_queue_size: int = 100

    @field_validator(
        "fetch_timeout_seconds",
        "build_fetch_timeout_seconds",
        "memory_sample_interval_seconds",
    )
    @classmethod
    def validate_positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @model_validator(mode="after")
    def validate_memory_thresholds(self) -> "Settings":
        """Budget must be positive and warning must sit below critical."""
        errors: list[str] = []

        if self.memory_budget_bytes <= 0:
            errors.append("MEMORY_BUDGET_BYTES must be positive")
        if not 0 < self.memory_warning_ratio < self.memory_critical_ratio <= 1:
            errors.append(
                "MEMORY_WARNING_RATIO must be below MEMORY_CRITICAL_RATIO "
                f"(got {self.memory_warning_ratio} and {self.memory_critical_ratio})"
            )
        if self.max_in_flight <= 0:
            errors.append("MAX_IN_FLIGHT must be positive")
        if self.memory_trend_window < 2:
            errors.append("MEMORY_TREND_WINDOW must be at least 2")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def warning_threshold_bytes(self) -> int:
        return round(self.memory_budget_bytes * self.memory_warning_ratio)

    @property
    def critical_threshold_bytes(self) -> int:
        return round(self.memory_budget_bytes * self.memory_critical_ratio)

    @property
    def fetch_timeout(self) -> float:
        """Per-attempt timeout; builds use the shorter one."""
        if self.build_phase:
            return self.build_fetch_timeout_seconds
        return self.fetch_timeout_seconds
