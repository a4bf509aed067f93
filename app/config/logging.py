"""
Logging configuration.

Configures loguru sinks for engine processes (worker pool, scheduler).
Sets up log rotation and retention policies.
"""

import sys
from pathlib import Path

from loguru import logger

from app.config.settings import settings


def setup_logging(component: str) -> None:
    """Configure logger with stderr output and file rotation."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / f"{component}.log",
        rotation="1 day",
        retention="7 days",
        level=settings.log_level,
        encoding="utf-8",
    )

    logger.info(f"Starting referral reward {component}...")
