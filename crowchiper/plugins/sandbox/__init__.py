"""
Crowchiper Plugin Sandbox

Per-plugin capability resolution, stderr capture and guest call execution.
"""

from crowchiper.plugins.sandbox.builder import (
    PreopenedDir,
    SandboxBuilder,
    SandboxContext,
    canonicalize_plugin_path,
)
from crowchiper.plugins.sandbox.capture import StderrCapture
from crowchiper.plugins.sandbox.executor import run_guest_call

__all__ = [
    "PreopenedDir",
    "SandboxBuilder",
    "SandboxContext",
    "StderrCapture",
    "canonicalize_plugin_path",
    "run_guest_call",
]
