"""
Crowchiper Sandbox Builder

Builds the WASI context for one plugin from its granted permissions.
Nothing that is not granted here is reachable from inside the guest: no
inherited environment, no argv, no stdin or stdout, and no preopened
directory other than the canonicalized grants.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Tuple

import structlog
from wasmtime import DirPerms, FilePerms, WasiConfig, WasmtimeError

from crowchiper.plugins.errors import PluginLoadError
from crowchiper.plugins.sandbox.capture import StderrCapture
from crowchiper.plugins.types import PermissionKind, PluginPermission

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PreopenedDir:
    """A host directory exposed to the guest at the same path."""

    host_path: Path
    guest_path: str
    writable: bool

    @property
    def dir_perms(self) -> DirPerms:
        return DirPerms.READ_WRITE if self.writable else DirPerms.READ_ONLY

    @property
    def file_perms(self) -> FilePerms:
        return FilePerms.READ_WRITE if self.writable else FilePerms.READ_ONLY


@dataclass
class SandboxContext:
    """Capabilities resolved for one plugin instance."""

    stderr: StderrCapture
    preopens: List[PreopenedDir] = field(default_factory=list)
    env: List[Tuple[str, str]] = field(default_factory=list)
    network: bool = False

    def to_wasi_config(self) -> WasiConfig:
        """
        Build the engine-level WASI configuration.

        Raises:
            PluginLoadError: If a directory cannot be mounted
        """
        wasi = WasiConfig()
        wasi.stderr_file = str(self.stderr.path)
        wasi.env = [[name, value] for name, value in self.env]

        for preopen in self.preopens:
            try:
                wasi.preopen_dir(
                    str(preopen.host_path),
                    preopen.guest_path,
                    preopen.dir_perms,
                    preopen.file_perms,
                )
            except WasmtimeError as e:
                raise PluginLoadError(
                    f"failed to preopen directory '{preopen.host_path}': {e}",
                    path=preopen.host_path,
                ) from e

        return wasi

    def close(self) -> None:
        self.stderr.close()


class SandboxBuilder:
    """
    Resolves a plugin's permissions into a SandboxContext.

    Usage:
        sandbox = SandboxBuilder(spec.permissions, stderr_capacity=4096).build()
        store.set_wasi(sandbox.to_wasi_config())
    """

    def __init__(self, permissions: Iterable[PluginPermission], stderr_capacity: int):
        self._permissions = tuple(permissions)
        self._stderr_capacity = stderr_capacity

    def build(self) -> SandboxContext:
        """
        Resolve every grant.

        Raises:
            PluginLoadError: If a granted path cannot be canonicalized
        """
        preopens: List[PreopenedDir] = []
        env: List[Tuple[str, str]] = []
        network = False

        for permission in self._permissions:
            if permission.kind is PermissionKind.FS_READ:
                preopens.append(self._preopen(permission, writable=False))
            elif permission.kind is PermissionKind.FS_WRITE:
                preopens.append(self._preopen(permission, writable=True))
            elif permission.kind is PermissionKind.NET:
                network = True
            elif permission.kind is PermissionKind.ENV:
                value = os.environ.get(permission.argument)
                if value is None:
                    logger.debug("Granted variable is not set", variable=permission.argument)
                    continue
                env.append((permission.argument, value))

        return SandboxContext(
            stderr=StderrCapture(self._stderr_capacity),
            preopens=preopens,
            env=env,
            network=network,
        )

    def _preopen(self, permission: PluginPermission, writable: bool) -> PreopenedDir:
        canonical = canonicalize_plugin_path(Path(permission.argument))
        if not canonical.is_dir():
            raise PluginLoadError(
                f"failed to preopen directory '{canonical}': not a directory",
                path=canonical,
            )
        return PreopenedDir(host_path=canonical, guest_path=str(canonical), writable=writable)


def canonicalize_plugin_path(path: Path) -> Path:
    """
    Resolve symlinks and ``..`` before a directory is granted.

    The guest then operates on the real path, so a symlink inside the
    granted tree cannot re-root the grant somewhere else.

    Raises:
        PluginLoadError: If the path does not exist or cannot be resolved
    """
    try:
        return path.resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise PluginLoadError(
            f"failed to resolve filesystem path '{path}': {e}",
            path=path,
        ) from e
