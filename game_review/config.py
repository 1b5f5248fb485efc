"""Runtime settings for the analysis pipeline.

Values come from GAME_REVIEW_* environment variables, falling back to
the defaults below. Timeouts are in seconds.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalysisSettings(BaseSettings):
    """Engine and pipeline configuration loaded from the environment."""

    # ─── Engine ───
    stockfish_path: Optional[str] = None
    depth: int = Field(12, ge=1)
    threads: int = Field(4, ge=1)
    hash_mb: int = Field(256, ge=1)

    # ─── Timeouts ───
    handshake_timeout: float = Field(10.0, gt=0)
    evaluate_timeout: float = Field(30.0, gt=0)
    cold_start_timeout: float = Field(60.0, gt=0)
    clock_buffer: float = Field(10.0, ge=0)
    clock_cap: float = Field(30.0, gt=0)
    stop_grace: float = Field(1.0, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="GAME_REVIEW_",
        env_ignore_empty=True,
        frozen=True,
    )


def load_settings() -> AnalysisSettings:
    """Return settings read from the current environment."""
    return AnalysisSettings()
