"""
Crowchiper Plugin System

Sandboxed WebAssembly plugins that receive server lifecycle events.

Usage:
    from crowchiper.plugins import Hook, load_plugins, parse_plugin_spec

    specs = [parse_plugin_spec("audit.wasm:net,env-HOME,timeout=500ms")]
    manager = await load_plugins(specs)

    if manager.has_hook(Hook.SERVER_IP_CHANGE):
        await manager.fire_hook(Hook.SERVER_IP_CHANGE, [("old", ip), ("new", new_ip)])
"""

from crowchiper.plugins.config import (
    PluginSystemConfig,
    get_config,
    reset_config,
    set_config,
)
from crowchiper.plugins.diagnostics import (
    extract_panic_message,
    sanitize_plugin_output,
)
from crowchiper.plugins.errors import (
    PluginConfigError,
    PluginError,
    PluginHookError,
    PluginLoadError,
    PluginRuntimeError,
    PluginSpecError,
)
from crowchiper.plugins.loader import load_plugins
from crowchiper.plugins.manager import PluginManager
from crowchiper.plugins.runtime import PluginRuntime
from crowchiper.plugins.spec import parse_plugin_spec
from crowchiper.plugins.types import (
    DEFAULT_HOOK_TIMEOUT,
    MIN_HOOK_TIMEOUT,
    Hook,
    HookEvent,
    HookTarget,
    LogLevel,
    PermissionKind,
    PluginConfig,
    PluginErrorMode,
    PluginPermission,
    PluginSpec,
    RuntimeState,
    hook_target,
)

__all__ = [
    # Config
    "PluginSystemConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Types
    "DEFAULT_HOOK_TIMEOUT",
    "MIN_HOOK_TIMEOUT",
    "Hook",
    "HookEvent",
    "HookTarget",
    "LogLevel",
    "PermissionKind",
    "PluginConfig",
    "PluginErrorMode",
    "PluginPermission",
    "PluginSpec",
    "RuntimeState",
    "hook_target",
    # Errors
    "PluginError",
    "PluginLoadError",
    "PluginRuntimeError",
    "PluginConfigError",
    "PluginHookError",
    "PluginSpecError",
    # Core
    "parse_plugin_spec",
    "PluginRuntime",
    "PluginManager",
    "load_plugins",
    # Diagnostics
    "extract_panic_message",
    "sanitize_plugin_output",
]
