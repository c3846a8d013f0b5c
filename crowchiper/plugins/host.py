"""
Crowchiper Plugin Host Interface

The boundary between the host and a guest module:

- guest exports ``memory``, ``alloc``, ``config``, ``on_hook`` and
  optionally ``_initialize``
- the host provides ``crowchiper.log(level, ptr, len)``

Arguments travel as UTF-8 JSON written into guest memory through
``alloc``. Results are i64 values packing ``(ptr << 32) | len``; for
``on_hook`` a result of 0 means success and anything else points at an
application error message.
"""

from __future__ import annotations

from typing import Optional, Tuple

from wasmtime import Func, FuncType, Instance, Linker, Memory, Store, ValType

from crowchiper.plugins.diagnostics import emit_guest_log

HOST_MODULE = "crowchiper"

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF


class GuestAbiError(Exception):
    """The guest broke the calling convention (missing export, bad pointer)."""


def unpack_result(value: int) -> Tuple[int, int]:
    """Split a packed i64 result into ``(ptr, len)``."""
    value &= _U64
    return value >> 32, value & _U32


def define_host_imports(linker: Linker, plugin_name: str, message_limit: int) -> None:
    """Register the functions the host offers to guests."""

    def log(caller, level: int, ptr: int, length: int) -> None:
        memory = caller.get("memory")
        if not isinstance(memory, Memory):
            return

        ptr &= _U32
        length &= _U32
        if ptr + length > memory.data_len(caller):
            emit_guest_log(plugin_name, level, "<log message out of bounds>", message_limit)
            return

        raw = bytes(memory.read(caller, ptr, ptr + length))
        emit_guest_log(plugin_name, level, raw.decode("utf-8", errors="replace"), message_limit)

    linker.define_func(
        HOST_MODULE,
        "log",
        FuncType([ValType.i32(), ValType.i32(), ValType.i32()], []),
        log,
        access_caller=True,
    )


class GuestExports:
    """Typed access to a guest instance's exports."""

    def __init__(self, store: Store, instance: Instance):
        exports = instance.exports(store)

        self.memory = self._require(exports, "memory", Memory)
        self.alloc = self._require(exports, "alloc", Func)
        self.config_func = self._require(exports, "config", Func)
        self.on_hook_func = self._require(exports, "on_hook", Func)
        self.initialize_func = self._lookup(exports, "_initialize")

    @staticmethod
    def _lookup(exports, name: str):
        try:
            return exports[name]
        except KeyError:
            return None

    @classmethod
    def _require(cls, exports, name: str, kind: type):
        item = cls._lookup(exports, name)
        if item is None:
            raise GuestAbiError(f"plugin does not export '{name}'")
        if not isinstance(item, kind):
            raise GuestAbiError(f"plugin export '{name}' is not a {kind.__name__.lower()}")
        return item

    # === Calls (blocking, run on a guest thread) ===

    def initialize(self, store: Store) -> None:
        """Run the WASI reactor initializer when the guest has one."""
        if isinstance(self.initialize_func, Func):
            self.initialize_func(store)

    def config(self, store: Store, payload: bytes) -> bytes:
        """Call ``config`` and return the raw JSON it produced."""
        ptr, length = self._write(store, payload)
        packed = self.config_func(store, ptr, length)
        return self._read(store, *unpack_result(packed))

    def on_hook(self, store: Store, payload: bytes) -> Optional[bytes]:
        """Call ``on_hook``; returns the error message bytes, or None on success."""
        ptr, length = self._write(store, payload)
        packed = self.on_hook_func(store, ptr, length)
        if packed == 0:
            return None
        return self._read(store, *unpack_result(packed))

    # === Memory ===

    def _write(self, store: Store, payload: bytes) -> Tuple[int, int]:
        length = len(payload)
        ptr = self.alloc(store, length) & _U32
        if ptr + length > self.memory.data_len(store):
            raise GuestAbiError(
                f"alloc({length}) returned {ptr}, outside guest memory"
            )
        if length:
            self.memory.write(store, payload, ptr)
        return ptr, length

    def _read(self, store: Store, ptr: int, length: int) -> bytes:
        if ptr + length > self.memory.data_len(store):
            raise GuestAbiError(
                f"result at {ptr} with length {length} is outside guest memory"
            )
        return bytes(self.memory.read(store, ptr, ptr + length))
