"""
Crowchiper Plugin Runtime

Loads one WebAssembly plugin, keeps a single live instance of it and
dispatches hook events to that instance.

Lifecycle:
    1. Read     - the ``.wasm`` file is read from disk
    2. Compile  - bytes compile into a module on an engine with fuel
                  metering and epoch interruption
    3. Link     - WASI preview 1 plus the host ``log`` import
    4. Sandbox  - a WASI context holding only the granted capabilities
    5. Instantiate
    6. Configure - the guest's ``config()`` returns name, version, target
                   and hooks, under the fuel budget and hook timeout
    7. Validate  - name non-empty, every hook matches the target

A hook call that exceeds the timeout retires the instance. The next call
rebuilds it from step 3 using the module compiled at load time.
"""

from __future__ import annotations

import asyncio
import functools
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

import structlog
from pydantic import ValidationError
from wasmtime import Config, Engine, Linker, Module, Store, Trap, WasmtimeError

from crowchiper.plugins.config import PluginSystemConfig, get_config
from crowchiper.plugins.diagnostics import describe_guest_failure
from crowchiper.plugins.errors import (
    PluginConfigError,
    PluginError,
    PluginHookError,
    PluginLoadError,
    PluginRuntimeError,
)
from crowchiper.plugins.host import GuestAbiError, GuestExports, define_host_imports
from crowchiper.plugins.sandbox import SandboxBuilder, StderrCapture, run_guest_call
from crowchiper.plugins.types import (
    DEFAULT_HOOK_TIMEOUT,
    Hook,
    HookEvent,
    HookTarget,
    PluginConfig,
    PluginPermission,
    PluginSpec,
    PluginSummary,
    RuntimeState,
    format_duration,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class PluginInstance:
    """A live instance with its own store and stderr buffer. Never shared."""

    store: Store
    exports: Optional[GuestExports]
    stderr: StderrCapture

    def close(self) -> None:
        self.stderr.close()


def create_engine() -> Engine:
    """Engine for one plugin: fuel metering and epoch interruption enabled."""
    config = Config()
    config.consume_fuel = True
    config.epoch_interruption = True
    return Engine(config)


class PluginRuntime:
    """
    A loaded and validated WASM plugin.

    Each runtime owns at most one live instance, guarded by an asyncio
    lock: calls into one plugin are serialized in FIFO order, calls into
    different plugins are not.

    Usage:
        plugin = await PluginRuntime.load(Path("audit.wasm"), [PluginPermission.net()])
        await plugin.call_hook(event)
    """

    def __init__(
        self,
        path: Path,
        permissions: Sequence[PluginPermission] = (),
        config_vars: Sequence[Tuple[str, str]] = (),
        hook_timeout: float = DEFAULT_HOOK_TIMEOUT,
        settings: Optional[PluginSystemConfig] = None,
    ):
        self._path = Path(path)
        self._permissions = tuple(permissions)
        self._config_vars = tuple(config_vars)
        self._hook_timeout = hook_timeout
        self._settings = settings or get_config()

        # Guest log lines are attributed to the file stem.
        self._log_name = self._path.stem

        self._engine: Optional[Engine] = None
        self._module: Optional[Module] = None
        self._metadata: Optional[PluginConfig] = None
        self._instance: Optional[PluginInstance] = None
        self._state = RuntimeState.UNLOADED
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"PluginRuntime(name={self.name!r}, version={self.version!r}, "
            f"state={self._state.value}, hooks={[h.value for h in self.hooks]})"
        )

    # === Loading ===

    @classmethod
    async def load(
        cls,
        path: Path,
        permissions: Sequence[PluginPermission] = (),
        config_vars: Sequence[Tuple[str, str]] = (),
        hook_timeout: float = DEFAULT_HOOK_TIMEOUT,
        settings: Optional[PluginSystemConfig] = None,
    ) -> "PluginRuntime":
        """
        Load a plugin, instantiate it and call its ``config()``.

        Raises:
            PluginLoadError: Read, compile or sandbox failure
            PluginRuntimeError: Instantiation or ``config()`` failure
            PluginConfigError: Invalid metadata returned by ``config()``
        """
        runtime = cls(path, permissions, config_vars, hook_timeout, settings)
        await runtime._load()
        return runtime

    @classmethod
    async def from_spec(
        cls,
        spec: PluginSpec,
        settings: Optional[PluginSystemConfig] = None,
    ) -> "PluginRuntime":
        """Load a plugin described by a parsed spec."""
        return await cls.load(
            spec.path,
            spec.permissions,
            spec.config,
            spec.hook_timeout,
            settings,
        )

    async def _load(self) -> None:
        self._state = RuntimeState.LOADING

        try:
            wasm_bytes = self._path.read_bytes()
        except OSError as e:
            raise PluginLoadError(f"failed to read {self._path}: {e}", path=self._path) from e

        self._engine = create_engine()
        loop = asyncio.get_running_loop()
        try:
            self._module = await loop.run_in_executor(
                None, functools.partial(Module, self._engine, wasm_bytes)
            )
        except WasmtimeError as e:
            raise PluginLoadError(
                f"failed to compile {self._path}: {e}", path=self._path
            ) from e

        instance, metadata = await self._start_instance(PluginRuntimeError)

        self._metadata = metadata
        self._instance = instance
        self._state = RuntimeState.LIVE

        logger.debug(
            "Plugin instance ready",
            plugin=metadata.name,
            path=str(self._path),
            permissions=[str(p) for p in self._permissions],
        )

    async def _start_instance(
        self,
        error_cls: Type[PluginError],
    ) -> Tuple[PluginInstance, PluginConfig]:
        """
        Link, sandbox, instantiate and configure a fresh instance.

        ``error_cls`` is raised for instantiation and ``config()`` failures;
        PluginLoadError and PluginConfigError propagate as they are.
        """
        sandbox = SandboxBuilder(
            self._permissions, self._settings.stderr_capacity_bytes
        ).build()

        try:
            store = self._create_store(sandbox.to_wasi_config())
            linker = Linker(self._engine)
            linker.define_wasi()
            define_host_imports(linker, self._log_name, self._settings.log_message_limit)
        except PluginError:
            sandbox.close()
            raise
        except WasmtimeError as e:
            sandbox.close()
            raise PluginLoadError(
                f"failed to prepare sandbox for {self._path}: {e}", path=self._path
            ) from e

        if sandbox.network:
            logger.debug("Network access granted", plugin=self._log_name)

        instance = PluginInstance(store=store, exports=None, stderr=sandbox.stderr)
        try:
            instance.exports = await self._guest_call(
                "instantiate",
                functools.partial(self._instantiate, linker, store),
                instance,
                error_cls,
            )
            raw = await self._guest_call(
                "config",
                functools.partial(
                    instance.exports.config, store, _encode_config_vars(self._config_vars)
                ),
                instance,
                error_cls,
            )
            metadata = decode_plugin_config(raw)
            validate_plugin_config(metadata)
            self._refuel(instance, error_cls)
        except PluginError:
            instance.close()
            raise

        return instance, metadata

    def _create_store(self, wasi) -> Store:
        store = Store(self._engine)
        store.set_wasi(wasi)
        store.set_limits(memory_size=self._settings.max_memory_bytes)
        # Traps on the next epoch tick, which only happens when a call times out.
        store.set_epoch_deadline(1)
        # One budget covers instantiation and config().
        store.set_fuel(self._settings.fuel_per_call)
        return store

    def _instantiate(self, linker: Linker, store: Store) -> GuestExports:
        try:
            wasm_instance = linker.instantiate(store, self._module)
        except WasmtimeError as e:
            raise GuestAbiError(f"failed to instantiate plugin: {e}") from e
        exports = GuestExports(store, wasm_instance)
        exports.initialize(store)
        return exports

    def _refuel(self, instance: PluginInstance, error_cls: Type[PluginError]) -> None:
        try:
            instance.store.set_fuel(self._settings.fuel_per_call)
        except WasmtimeError as e:
            raise error_cls(f"failed to reset fuel: {e}") from e

    # === Guest Calls ===

    async def _guest_call(
        self,
        call_name: str,
        func: Callable[[], T],
        instance: PluginInstance,
        error_cls: Type[PluginError],
        timeout_note: str = "",
    ) -> T:
        """Run one guest call under the hook timeout and map its failures."""
        offset = instance.stderr.snapshot()

        try:
            return await run_guest_call(
                func,
                timeout=self._hook_timeout,
                name=f"plugin-{self._log_name}-{call_name}",
            )
        except asyncio.TimeoutError:
            self._retire(instance)
            raise error_cls(
                f"{call_name}() timed out after {format_duration(self._hook_timeout)}"
                f"{timeout_note}"
            ) from None
        except GuestAbiError as e:
            raise error_cls(str(e)) from e
        except (Trap, WasmtimeError) as e:
            raise error_cls(
                describe_guest_failure(
                    f"failed to call {call_name}(): {e}",
                    call_name,
                    e,
                    instance.stderr.text_since(offset),
                    self._settings.verbose_diagnostics,
                )
            ) from e

    def _retire(self, instance: PluginInstance) -> None:
        """
        Discard an instance whose call was abandoned.

        Its store is never touched again; bumping the epoch makes the
        abandoned call trap as soon as it executes guest code.
        """
        self._engine.increment_epoch()
        instance.close()
        if self._instance is instance:
            self._instance = None
            self._state = RuntimeState.DEAD

    # === Hooks ===

    async def call_hook(self, event: HookEvent) -> None:
        """
        Deliver an event to the plugin's ``on_hook`` export.

        Raises:
            PluginHookError: Trap, timeout, guest-returned error, or failed reload
        """
        async with self._lock:
            if self._instance is None:
                await self._reload()

            instance = self._instance
            self._refuel(instance, PluginHookError)

            error = await self._guest_call(
                "on_hook",
                functools.partial(instance.exports.on_hook, instance.store, event.to_json()),
                instance,
                PluginHookError,
                timeout_note="; plugin will reload on next invocation",
            )

        if error is not None:
            raise PluginHookError(error.decode("utf-8", errors="replace"))

    async def _reload(self) -> None:
        logger.info("Reloading plugin", plugin=self.name, path=str(self._path))

        try:
            instance, metadata = await self._start_instance(PluginRuntimeError)
        except PluginError as e:
            logger.error("Plugin reload failed", plugin=self.name, error=str(e))
            raise PluginHookError(f"failed to reload plugin: {e}") from e

        if metadata != self._metadata:
            logger.warning(
                "Plugin metadata changed on reload, keeping original registration",
                plugin=self.name,
                reloaded=metadata.to_dict(),
            )

        self._instance = instance
        self._state = RuntimeState.LIVE

    # === Properties ===

    @property
    def name(self) -> str:
        return self._metadata.name if self._metadata else ""

    @property
    def version(self) -> str:
        return self._metadata.version if self._metadata else ""

    @property
    def target(self) -> Optional[HookTarget]:
        return self._metadata.target if self._metadata else None

    @property
    def hooks(self) -> List[Hook]:
        return list(self._metadata.hooks) if self._metadata else []

    @property
    def path(self) -> Path:
        return self._path

    @property
    def hook_timeout(self) -> float:
        return self._hook_timeout

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._instance is not None

    def spec(self) -> PluginSpec:
        """The spec this runtime was loaded from."""
        return PluginSpec(
            path=self._path,
            permissions=self._permissions,
            config=self._config_vars,
            hook_timeout=self._hook_timeout,
        )

    def summary(self) -> PluginSummary:
        return PluginSummary(
            name=self.name,
            version=self.version,
            target=self.target,
            hooks=self.hooks,
            spec=str(self.spec()),
        )


# === Metadata ===


def _encode_config_vars(config_vars: Iterable[Tuple[str, str]]) -> bytes:
    return json.dumps(
        [[key, value] for key, value in config_vars],
        separators=(",", ":"),
    ).encode("utf-8")


def decode_plugin_config(raw: bytes) -> PluginConfig:
    """
    Decode the JSON a guest returned from ``config()``.

    Raises:
        PluginConfigError: If it is not valid metadata
    """
    try:
        return PluginConfig.model_validate_json(raw)
    except ValidationError as e:
        raise PluginConfigError(f"plugin returned malformed config: {e}") from e


def validate_plugin_config(config: PluginConfig) -> None:
    """
    Check structural rules on plugin metadata.

    Raises:
        PluginConfigError: Empty name, or a hook outside the declared target
    """
    if not config.name:
        raise PluginConfigError("plugin name is empty")

    for hook in config.hooks:
        if hook.target != config.target:
            raise PluginConfigError(
                f"hook {hook.value} has target {hook.target.value} "
                f"but plugin declared target {config.target.value}"
            )
