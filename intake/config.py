"""
Configuration Module
====================

Service-level settings loaded from environment variables and the ``.env``
file: reviewer pool location, weight table location and refresh interval,
committee size, upload limits and the audit directory.

Algorithm thresholds (tolerances, score floors, majority threshold) live in
the frozen config dataclasses of ``intake.extraction.config`` and
``intake.consensus.config``.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

SELECTION_STRATEGIES = ("uniform", "weighted")


class Settings(BaseSettings):
    """
    Application settings, populated automatically from the environment.

    Attributes:
        REVIEWER_POOL_PATH: YAML file describing the reviewer pool
        WEIGHT_TABLE_PATH: active (approved) weight table, YAML
        WEIGHT_REFRESH_SECONDS: how often the weight table is re-read
        COMMITTEE_SIZE: reviewers drawn per case
        SELECTION_STRATEGY: ``uniform`` or ``weighted``
        REVIEWER_TIMEOUT_SECONDS: fallback per-call timebox
        MAX_UPLOAD_BYTES: hard input-size limit for a workbook
        AUDIT_DIR: directory used by the JSON-lines audit sink
        LOG_LEVEL: logging level name
    """
    REVIEWER_POOL_PATH: str = "config/reviewers.yaml"
    WEIGHT_TABLE_PATH: str = "config/weights.yaml"
    WEIGHT_REFRESH_SECONDS: float = 300.0
    COMMITTEE_SIZE: int = 3
    SELECTION_STRATEGY: str = "uniform"
    REVIEWER_TIMEOUT_SECONDS: float = 30.0
    MAX_UPLOAD_BYTES: int = 20 * 1024 * 1024
    AUDIT_DIR: str = "output/audit"
    LOG_LEVEL: str = "INFO"

    @field_validator("SELECTION_STRATEGY")
    @classmethod
    def validate_selection_strategy(cls, v: str) -> str:
        """Only the known selection strategies are accepted."""
        value = (v or "").strip().lower()
        if value not in SELECTION_STRATEGIES:
            raise ValueError(
                f"SELECTION_STRATEGY must be one of {', '.join(SELECTION_STRATEGIES)}, got {v!r}"
            )
        return value

    @field_validator("COMMITTEE_SIZE")
    @classmethod
    def validate_committee_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("COMMITTEE_SIZE must be at least 1")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


_settings_instance = None


def get_settings() -> Settings:
    """
    Return the settings singleton, creating it on first call.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings (tests, or after changing the environment)."""
    global _settings_instance
    _settings_instance = None
