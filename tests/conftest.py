"""
Shared fixtures for the plugin sandbox tests.
"""

from pathlib import Path
from typing import Callable

import pytest
from wasmtime import wat2wasm

from crowchiper.plugins import reset_config
from guests import guest_wat


# === Fixtures ===


@pytest.fixture(autouse=True)
def clean_plugin_environment(monkeypatch):
    """Isolate tests from ambient configuration."""
    monkeypatch.delenv("RUST_BACKTRACE", raising=False)
    monkeypatch.delenv("CROWCHIPER_PLUGIN_VERBOSE", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def build_plugin(tmp_path) -> Callable[..., Path]:
    """Factory compiling a guest into ``<name>.wasm`` under tmp_path."""
    plugin_dir = tmp_path / "plugins"
    plugin_dir.mkdir()

    def _build(file_name: str = "good", **kwargs) -> Path:
        path = plugin_dir / f"{file_name}.wasm"
        path.write_bytes(wat2wasm(guest_wat(**kwargs)))
        return path

    return _build


@pytest.fixture
def good_plugin(build_plugin) -> Path:
    return build_plugin("good")
