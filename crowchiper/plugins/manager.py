"""
Crowchiper Plugin Manager

Routes server events to the plugins subscribed to them.
"""

from __future__ import annotations

import asyncio
import time
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import structlog

from crowchiper.plugins.errors import PluginError
from crowchiper.plugins.runtime import PluginRuntime
from crowchiper.plugins.types import Hook, HookEvent

logger = structlog.get_logger(__name__)


class PluginManager:
    """
    Owns the loaded plugins and dispatches hook events to them.

    The hook index is built once from each plugin's declared hooks and is
    never mutated afterwards, so concurrent dispatches share it without
    locking. A plugin that lists a hook twice is still called once.
    """

    def __init__(self, plugins: Sequence[PluginRuntime] = ()):
        self._plugins: Tuple[PluginRuntime, ...] = tuple(plugins)

        index: Dict[Hook, List[int]] = {}
        for i, plugin in enumerate(self._plugins):
            for hook in plugin.hooks:
                subscribers = index.setdefault(hook, [])
                if i not in subscribers:
                    subscribers.append(i)

        self._hook_index: Mapping[Hook, Tuple[int, ...]] = MappingProxyType(
            {hook: tuple(indices) for hook, indices in index.items()}
        )

    def __len__(self) -> int:
        return len(self._plugins)

    @property
    def plugins(self) -> Tuple[PluginRuntime, ...]:
        return self._plugins

    def has_hook(self, hook: Hook) -> bool:
        """True if any loaded plugin is registered for the hook."""
        return hook in self._hook_index

    def subscribers(self, hook: Hook) -> List[PluginRuntime]:
        """Plugins registered for a hook, in load order."""
        return [self._plugins[i] for i in self._hook_index.get(hook, ())]

    async def fire_hook(
        self,
        hook: Hook,
        values: Iterable[Tuple[str, str]] = (),
    ) -> None:
        """
        Deliver a hook event to every subscribed plugin concurrently.

        Failures are logged per plugin and never raised; one plugin's
        failure or slowness does not affect delivery to the others.
        """
        indices = self._hook_index.get(hook)
        if not indices:
            return

        event = HookEvent(
            hook=hook,
            time=int(time.time()),
            target=hook.target,
            values=tuple((str(key), str(value)) for key, value in values),
        )

        await asyncio.gather(
            *(self._deliver(self._plugins[i], event) for i in indices)
        )

    async def _deliver(self, plugin: PluginRuntime, event: HookEvent) -> None:
        try:
            await plugin.call_hook(event)
        except PluginError as e:
            logger.warning(
                "Plugin hook failed",
                plugin=plugin.name,
                hook=event.hook.value,
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "Plugin hook raised unexpectedly",
                plugin=plugin.name,
                hook=event.hook.value,
                error=str(e),
                exc_info=True,
            )
