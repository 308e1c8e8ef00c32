"""
Runtime configuration from environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class StowageConfig:
    """Configuration for the storable runtime."""

    log_level: int
    log_dir: Path | None
    trace_store: bool
    strict_queries: bool

    @classmethod
    def from_env(cls) -> StowageConfig:
        """Load configuration from environment variables."""
        log_dir = os.environ.get("STOWAGE_LOG_DIR")
        return cls(
            log_level=getattr(
                logging, os.environ.get("STOWAGE_LOG_LEVEL", "INFO").upper(), logging.INFO
            ),
            log_dir=Path(log_dir) if log_dir else None,
            trace_store=os.environ.get("STOWAGE_TRACE_STORE", "0") == "1",
            strict_queries=os.environ.get("STOWAGE_STRICT_QUERIES", "0") == "1",
        )


_config: StowageConfig | None = None


def get_config() -> StowageConfig:
    """Get the process-wide configuration, reading the environment once."""
    global _config
    if _config is None:
        _config = StowageConfig.from_env()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
