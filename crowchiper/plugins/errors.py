"""
Crowchiper Plugin Errors

Error taxonomy for the plugin sandbox.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class PluginSpecError(ValueError):
    """Raised when a plugin descriptor string cannot be parsed."""


class PluginError(Exception):
    """Base class for plugin load and execution failures."""

    label = "plugin error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.label}: {message}")


class PluginLoadError(PluginError):
    """The ``.wasm`` artifact could not be read, compiled or sandboxed."""

    label = "plugin load error"

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        super().__init__(message)


class PluginRuntimeError(PluginError):
    """Instantiation or the ``config()`` call failed."""

    label = "plugin runtime error"


class PluginConfigError(PluginError):
    """The metadata a plugin declared is structurally invalid."""

    label = "plugin config error"


class PluginHookError(PluginError):
    """A hook call failed, timed out, or a post-timeout reload failed."""

    label = "plugin hook error"
