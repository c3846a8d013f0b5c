"""
Crowchiper Plugin Spec Parser

Parses ``--plugin`` values of the form ``path[:entry[,entry...]]`` into
immutable :class:`PluginSpec` instances.

Entries:
    net                     TCP/UDP network access
    env-<VAR>               one host environment variable
    fs-read=<abs path>      read-only directory access
    fs-write=<abs path>     read+write directory access
    var-<key>=<value>       config pair passed to the guest's config()
    timeout=<s>|<ms>ms      wall-clock budget per guest call
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple

from crowchiper.plugins.errors import PluginSpecError
from crowchiper.plugins.types import (
    DEFAULT_HOOK_TIMEOUT,
    MIN_HOOK_TIMEOUT,
    PluginPermission,
    PluginSpec,
)

_TIMEOUT_PATTERN = re.compile(r"(?P<amount>[0-9]+)(?P<millis>ms)?")

_VALID_ENTRIES = (
    "net, env-<VAR>, fs-read=<path>, fs-write=<path>, var-<key>=<value>, "
    "timeout=<seconds>|<ms>ms"
)


def parse_plugin_spec(value: str) -> PluginSpec:
    """
    Parse a plugin descriptor into a PluginSpec.

    Args:
        value: Descriptor such as ``"plugin.wasm:net,env-HOME,fs-read=/data"``

    Returns:
        The parsed spec

    Raises:
        PluginSpecError: If the path is empty or any entry is invalid
    """
    path_str, entries_str = split_path_and_entries(value)

    if not path_str:
        raise PluginSpecError("plugin path is empty")

    permissions: List[PluginPermission] = []
    config: List[Tuple[str, str]] = []
    hook_timeout = DEFAULT_HOOK_TIMEOUT

    if entries_str is not None:
        for entry in entries_str.split(","):
            entry = entry.strip()
            if not entry:
                continue

            if entry.startswith("var-"):
                config.append(_parse_config_var(entry))
            elif entry.startswith("timeout="):
                hook_timeout = _parse_timeout(entry[len("timeout="):])
            else:
                permissions.append(_parse_permission(entry))

    return PluginSpec(
        path=Path(path_str),
        permissions=tuple(permissions),
        config=tuple(config),
        hook_timeout=hook_timeout,
    )


def split_path_and_entries(value: str) -> Tuple[str, Optional[str]]:
    """
    Split ``"path.wasm:net,env-HOME"`` into ``("path.wasm", "net,env-HOME")``.

    A colon at index 1 followed by ``\\`` or ``/`` is a drive letter and
    stays part of the path. A trailing colon with nothing after it is not
    a separator either.
    """
    start = 0
    while True:
        index = value.find(":", start)
        if index < 0:
            return value, None

        after = value[index + 1:]
        start = index + 1

        if index == 1 and after.startswith(("\\", "/")):
            continue
        if after:
            return value[:index], after


def _parse_permission(entry: str) -> PluginPermission:
    if entry == "net":
        return PluginPermission.net()

    if entry == "env":
        raise PluginSpecError(
            "bare 'env' permission is no longer supported; "
            "use env-<VAR_NAME> (e.g., env-HOME)"
        )

    if entry.startswith("env-"):
        name = entry[len("env-"):]
        if not name:
            raise PluginSpecError("env- requires a variable name (e.g., env-HOME)")
        return PluginPermission.env(name)

    if entry.startswith("fs-read="):
        path = entry[len("fs-read="):]
        _validate_fs_path(path, "fs-read")
        return PluginPermission.fs_read(path)

    if entry.startswith("fs-write="):
        path = entry[len("fs-write="):]
        _validate_fs_path(path, "fs-write")
        return PluginPermission.fs_write(path)

    raise PluginSpecError(f"unknown permission '{entry}'. Valid: {_VALID_ENTRIES}")


def _parse_config_var(entry: str) -> Tuple[str, str]:
    key, sep, value = entry[len("var-"):].partition("=")
    if not sep:
        raise PluginSpecError(
            f"config variable '{entry}' must have a value (e.g., var-key=value)"
        )
    if not key:
        raise PluginSpecError(
            f"config variable '{entry}' has an empty key (e.g., var-key=value)"
        )
    return key, value


def _parse_timeout(raw: str) -> float:
    match = _TIMEOUT_PATTERN.fullmatch(raw)
    if match is None:
        raise PluginSpecError(
            f"invalid timeout '{raw}' (e.g., timeout=5 or timeout=500ms)"
        )

    amount = int(match.group("amount"))
    seconds = amount / 1000 if match.group("millis") else float(amount)

    if seconds < MIN_HOOK_TIMEOUT:
        raise PluginSpecError(f"timeout must be at least 10ms, got '{raw}'")
    return seconds


def _validate_fs_path(path: str, permission: str) -> None:
    """Reject empty and relative paths so grants are never ambiguous."""
    if not path:
        raise PluginSpecError(
            f"{permission} requires a path (e.g., {permission}=/data)"
        )
    if not _is_absolute(path):
        raise PluginSpecError(
            f"{permission} requires an absolute path, got relative path '{path}'"
        )


def _is_absolute(path: str) -> bool:
    # Host platform rules: C:\data is absolute on Windows only.
    return Path(path).is_absolute()
