"""
Crowchiper Plugin Configuration

Sandbox limits for the plugin system. Values come from environment
variables prefixed with ``CROWCHIPER_PLUGIN_`` (e.g.
``CROWCHIPER_PLUGIN_FUEL_PER_CALL=20000000``).
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class PluginSystemConfig(BaseSettings):
    """Configuration for the plugin sandbox."""

    # CPU
    fuel_per_call: int = Field(
        default=10_000_000,
        gt=0,
        description="Fuel granted for config() and before every hook call",
    )

    # Memory
    max_memory_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Maximum linear memory per plugin instance",
    )

    # Diagnostics
    stderr_capacity_bytes: int = Field(
        default=4096,
        gt=0,
        description="Captured guest stderr; bytes past this are not kept",
    )
    log_message_limit: int = Field(
        default=4096,
        gt=0,
        description="Maximum characters of a single guest log message",
    )
    verbose: bool = Field(
        default=False,
        description="Report full engine errors and stderr dumps instead of panic summaries",
    )

    model_config = {
        "env_prefix": "CROWCHIPER_PLUGIN_",
        "case_sensitive": False,
    }

    @property
    def verbose_diagnostics(self) -> bool:
        """Verbose mode is also on when RUST_BACKTRACE is set, as for Rust guests."""
        return self.verbose or "RUST_BACKTRACE" in os.environ


# Global configuration instance (lazy loaded)
_config: Optional[PluginSystemConfig] = None


def get_config() -> PluginSystemConfig:
    """Get the global plugin system configuration."""
    global _config
    if _config is None:
        _config = PluginSystemConfig()
    return _config


def set_config(config: PluginSystemConfig) -> None:
    """Set the global plugin system configuration."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
