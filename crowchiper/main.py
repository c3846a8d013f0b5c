"""
Crowchiper plugin host entry point.

Logging setup and plugin startup shared by the CLI and the server.
"""

from __future__ import annotations

import logging
import sys
from typing import Iterable

import structlog

from crowchiper.plugins import PluginErrorMode, PluginManager, PluginSpec, load_plugins


# Configure structured logging
def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


async def start_plugins(
    specs: Iterable[PluginSpec],
    error_mode: PluginErrorMode = PluginErrorMode.ABORT,
) -> PluginManager:
    """Load the startup plugins and report how many are active."""
    specs = list(specs)
    manager = await load_plugins(specs, error_mode)
    logger.info(
        "Plugin system ready",
        requested=len(specs),
        loaded=len(manager),
    )
    return manager
