"""
Crowchiper Plugin Loader

Loads the plugins named on the command line at server startup.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import structlog

from crowchiper.plugins.config import PluginSystemConfig
from crowchiper.plugins.errors import PluginError
from crowchiper.plugins.manager import PluginManager
from crowchiper.plugins.runtime import PluginRuntime
from crowchiper.plugins.types import PluginErrorMode, PluginSpec

logger = structlog.get_logger(__name__)


async def load_plugins(
    specs: Iterable[PluginSpec],
    error_mode: PluginErrorMode = PluginErrorMode.ABORT,
    settings: Optional[PluginSystemConfig] = None,
) -> PluginManager:
    """
    Load every plugin spec in order and build the manager.

    Args:
        specs: Parsed ``--plugin`` values
        error_mode: ABORT re-raises the first failure; WARN skips the plugin
        settings: Sandbox limits, defaults to the global config

    Returns:
        PluginManager over the plugins that loaded

    Raises:
        PluginError: Under ABORT, the first load failure
    """
    plugins: List[PluginRuntime] = []

    for spec in specs:
        try:
            plugin = await PluginRuntime.from_spec(spec, settings)
        except PluginError as e:
            if error_mode is PluginErrorMode.ABORT:
                logger.error("Failed to load plugin", path=str(spec.path), error=str(e))
                raise
            logger.warning(
                "Failed to load plugin, skipping", path=str(spec.path), error=str(e)
            )
            continue

        logger.info(
            "Plugin loaded",
            name=plugin.name,
            version=plugin.version,
            hooks=[hook.value for hook in plugin.hooks],
        )
        plugins.append(plugin)

    return PluginManager(plugins)
