"""
Crowchiper Plugin Configuration Tests
"""

import pytest
from pydantic import ValidationError

from crowchiper.plugins import PluginSystemConfig, get_config, reset_config, set_config


class TestPluginSystemConfig:
    """Tests for sandbox limit settings."""

    def test_defaults(self):
        config = PluginSystemConfig()

        assert config.fuel_per_call == 10_000_000
        assert config.max_memory_bytes == 10 * 1024 * 1024
        assert config.stderr_capacity_bytes == 4096
        assert config.log_message_limit == 4096
        assert config.verbose is False
        assert config.verbose_diagnostics is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CROWCHIPER_PLUGIN_FUEL_PER_CALL", "500")
        monkeypatch.setenv("CROWCHIPER_PLUGIN_VERBOSE", "true")

        config = PluginSystemConfig()

        assert config.fuel_per_call == 500
        assert config.verbose_diagnostics is True

    def test_rust_backtrace_enables_verbose(self, monkeypatch):
        monkeypatch.setenv("RUST_BACKTRACE", "0")
        assert PluginSystemConfig().verbose_diagnostics is True

    def test_limits_must_be_positive(self):
        with pytest.raises(ValidationError):
            PluginSystemConfig(max_memory_bytes=0)

    def test_global_config(self):
        custom = PluginSystemConfig(fuel_per_call=1)
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom
