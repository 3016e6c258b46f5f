"""Logging setup"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logger(
    level: str = "INFO",
    suppress_stdout: bool = False,
    log_file: Optional[str] = None,
):
    """
    Configure loguru sinks

    Args:
        level: minimum level for the console sink
        suppress_stdout: drop the console sink (e.g. when stdout carries JSON output)
        log_file: optional file sink, rotated at 10 MB and kept for 7 days
    """
    logger.remove()

    if not suppress_stdout:
        logger.add(
            sys.stderr,
            level=level.upper(),
            format=(
                "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
            ),
        )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
            encoding="utf-8",
        )
