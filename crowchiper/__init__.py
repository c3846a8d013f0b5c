"""
Crowchiper - plugin sandbox

Loads untrusted WebAssembly plugins at server startup, grants each one an
explicit capability set, and dispatches server events to them under
strict CPU and wall-clock budgets.
"""

__version__ = "0.1.0"

from crowchiper.plugins import PluginManager, PluginRuntime, load_plugins

__all__ = ["PluginManager", "PluginRuntime", "load_plugins", "__version__"]
