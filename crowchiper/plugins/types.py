"""
Crowchiper Plugin System Types

Core dataclasses and enums shared by the plugin sandbox: granted
permissions, parsed plugin specs, hook identities, hook events and the
metadata a guest reports from its ``config()`` export.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# === Durations ===

DEFAULT_HOOK_TIMEOUT = 5.0
MIN_HOOK_TIMEOUT = 0.010


def format_duration(seconds: float) -> str:
    """Render a timeout for messages (``5s`` or ``50ms``)."""
    millis = round(seconds * 1000)
    if millis % 1000 == 0:
        return f"{millis // 1000}s"
    return f"{millis}ms"


def format_timeout_entry(seconds: float) -> str:
    """Render a timeout for a plugin descriptor (``5`` or ``500ms``)."""
    millis = round(seconds * 1000)
    if millis % 1000 == 0:
        return str(millis // 1000)
    return f"{millis}ms"


# === Startup Policy ===


class PluginErrorMode(str, Enum):
    """What startup does when a plugin fails to load."""

    ABORT = "abort"  # Stop startup, exit non-zero
    WARN = "warn"    # Log and continue without the plugin


# === Runtime Lifecycle ===


class RuntimeState(str, Enum):
    """Lifecycle states of a plugin runtime."""

    UNLOADED = "unloaded"  # Constructed, nothing compiled yet
    LOADING = "loading"    # Compiling, instantiating, configuring
    LIVE = "live"          # Configured with a live instance
    DEAD = "dead"          # Configured, instance retired after a timeout


# === Hooks ===


class HookTarget(str, Enum):
    """Broad category a hook belongs to."""

    SERVER = "server"


class Hook(str, Enum):
    """Server events a plugin may subscribe to.

    Values are ``<target>.<event>``; the prefix names the hook's target.
    """

    SERVER_IP_CHANGE = "server.ip-change"

    @property
    def target(self) -> HookTarget:
        return hook_target(self)


def hook_target(hook: Hook) -> HookTarget:
    """Derive the target a hook belongs to."""
    return HookTarget(hook.value.split(".", 1)[0])


class LogLevel(int, Enum):
    """Levels accepted by the host ``log`` import."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    @property
    def method(self) -> str:
        """Name of the structlog method for this level."""
        return {
            LogLevel.DEBUG: "debug",
            LogLevel.INFO: "info",
            LogLevel.WARN: "warning",
            LogLevel.ERROR: "error",
        }[self]


@dataclass(frozen=True)
class HookEvent:
    """A single hook delivery. Built fresh for every dispatch."""

    hook: Hook
    time: int
    target: HookTarget
    values: Tuple[Tuple[str, str], ...] = ()

    def to_json(self) -> bytes:
        """Encode the event as the guest ``on_hook`` argument."""
        return json.dumps(
            {
                "hook": self.hook.value,
                "time": self.time,
                "target": self.target.value,
                "values": [[key, value] for key, value in self.values],
            },
            separators=(",", ":"),
        ).encode("utf-8")


# === Permissions ===


class PermissionKind(str, Enum):
    """Capability classes a plugin can be granted."""

    FS_READ = "fs-read"
    FS_WRITE = "fs-write"
    NET = "net"
    ENV = "env"


@dataclass(frozen=True)
class PluginPermission:
    """A single capability granted to one plugin.

    ``argument`` is the host path for filesystem grants, the variable name
    for environment grants and empty for network access.
    """

    kind: PermissionKind
    argument: str = ""

    @classmethod
    def fs_read(cls, path: str | Path) -> "PluginPermission":
        return cls(PermissionKind.FS_READ, str(path))

    @classmethod
    def fs_write(cls, path: str | Path) -> "PluginPermission":
        return cls(PermissionKind.FS_WRITE, str(path))

    @classmethod
    def net(cls) -> "PluginPermission":
        return cls(PermissionKind.NET)

    @classmethod
    def env(cls, name: str) -> "PluginPermission":
        return cls(PermissionKind.ENV, name)

    @property
    def path(self) -> Optional[Path]:
        """Host path of a filesystem grant."""
        if self.kind in (PermissionKind.FS_READ, PermissionKind.FS_WRITE):
            return Path(self.argument)
        return None

    def __str__(self) -> str:
        if self.kind is PermissionKind.NET:
            return "net"
        if self.kind is PermissionKind.ENV:
            return f"env-{self.argument}"
        return f"{self.kind.value}={self.argument}"


@dataclass(frozen=True)
class PluginSpec:
    """A plugin path bundled with its grants, config vars and hook timeout."""

    path: Path
    permissions: Tuple[PluginPermission, ...] = ()
    config: Tuple[Tuple[str, str], ...] = ()
    hook_timeout: float = DEFAULT_HOOK_TIMEOUT

    def __str__(self) -> str:
        entries = [str(permission) for permission in self.permissions]
        entries.extend(f"var-{key}={value}" for key, value in self.config)
        if self.hook_timeout != DEFAULT_HOOK_TIMEOUT:
            entries.append(f"timeout={format_timeout_entry(self.hook_timeout)}")

        if not entries:
            return str(self.path)
        return f"{self.path}:{','.join(entries)}"


# === Guest Metadata ===


class PluginConfig(BaseModel):
    """Metadata a guest returns from its ``config()`` export."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    version: str
    target: HookTarget
    hooks: List[Hook] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "target": self.target.value,
            "hooks": [hook.value for hook in self.hooks],
        }


@dataclass
class PluginSummary:
    """Printable description of a loaded plugin."""

    name: str
    version: str
    target: HookTarget
    hooks: List[Hook] = field(default_factory=list)
    spec: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "target": self.target.value,
            "hooks": [hook.value for hook in self.hooks],
            "spec": self.spec,
        }
