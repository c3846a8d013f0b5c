"""
Crowchiper Plugin Diagnostics Tests

Output sanitization, panic extraction and guest log forwarding.
"""

import pytest
from structlog.testing import capture_logs

from crowchiper.plugins import extract_panic_message, sanitize_plugin_output
from crowchiper.plugins.diagnostics import (
    describe_guest_failure,
    emit_guest_log,
    extract_quoted_error,
)
from guests import RUST_PANIC_STDERR


class TestSanitizePluginOutput:
    """Tests for sanitize_plugin_output."""

    def test_plain_text_unchanged(self):
        assert sanitize_plugin_output("hello world\tok") == "hello world\tok"

    def test_newlines_escaped(self):
        assert sanitize_plugin_output("a\nb\r\nc") == "a\\nb\\r\\nc"

    def test_forged_log_line_stays_on_one_line(self):
        result = sanitize_plugin_output("ok\n2024-01-01 ERROR admin logged in")
        assert "\n" not in result

    def test_csi_sequences_stripped(self):
        assert sanitize_plugin_output("\x1b[31mred\x1b[0m") == "red"
        assert sanitize_plugin_output("\x1b[2J\x1b[Hcleared") == "cleared"

    def test_osc_sequences_stripped(self):
        assert sanitize_plugin_output("\x1b]0;title\x07text") == "text"
        assert sanitize_plugin_output("\x1b]8;;http://x\x1b\\link") == "link"

    def test_unterminated_sequence_dropped(self):
        assert sanitize_plugin_output("ok\x1b[31") == "ok"
        assert sanitize_plugin_output("ok\x1b") == "ok"

    def test_control_characters_dropped(self):
        assert sanitize_plugin_output("a\x00b\x07c\x7fd") == "abcd"

    def test_truncated_to_limit(self):
        assert sanitize_plugin_output("x" * 5000) == "x" * 4096
        assert sanitize_plugin_output("abcdef", limit=3) == "abc"

    def test_no_limit(self):
        assert len(sanitize_plugin_output("x" * 5000, limit=None)) == 5000


class TestExtractPanicMessage:
    """Tests for extract_panic_message."""

    def test_unwrap_of_io_error(self):
        message = extract_panic_message(RUST_PANIC_STDERR)

        assert message is not None
        assert message.startswith("panicked at src/lib.rs:42:10: ")
        assert "pre-opened file descriptor" in message
        assert "a.txt" in message
        assert "Custom {" not in message
        assert "note:" not in message

    def test_plain_panic(self):
        stderr = "thread 'main' panicked at src/main.rs:3:5:\nboom\n"
        assert extract_panic_message(stderr) == "panicked at src/main.rs:3:5: boom"

    def test_no_panic_marker(self):
        assert extract_panic_message("just some output\n") is None

    def test_marker_without_message_line(self):
        assert extract_panic_message("thread 'main' panicked at src/x.rs:1:1") is None

    def test_message_sanitized(self):
        stderr = "thread 'main' panicked at src/x.rs:1:1:\n\x1b[31mbad\x1b[0m\n"
        assert extract_panic_message(stderr) == "panicked at src/x.rs:1:1: bad"

    def test_quoted_error_with_escapes(self):
        detail = 'Custom { kind: Other, error: "say \\"hi\\" now" }'
        assert extract_quoted_error(detail) == 'say \\"hi\\" now'

    def test_quoted_error_absent(self):
        assert extract_quoted_error("Os { code: 2 }") is None


class TestDescribeGuestFailure:
    """Tests for describe_guest_failure."""

    def test_panic_summary_preferred(self):
        message = describe_guest_failure(
            "failed to call config(): trap", "config", RuntimeError("trap"), RUST_PANIC_STDERR
        )
        assert message.startswith("config(): panicked at src/lib.rs:42:10: ")

    def test_fallback_without_panic(self):
        message = describe_guest_failure(
            "failed to call on_hook(): trap", "on_hook", RuntimeError("trap"), ""
        )
        assert message == "failed to call on_hook(): trap"

    def test_verbose_includes_stderr(self):
        message = describe_guest_failure(
            "unused", "config", RuntimeError("trap"), "raw stderr", verbose=True
        )
        assert message == "failed to call config(): trap\n\nplugin stderr:\nraw stderr"

    def test_verbose_without_stderr(self):
        message = describe_guest_failure("unused", "config", RuntimeError("trap"), "", True)
        assert message == "failed to call config(): trap"


class TestEmitGuestLog:
    """Tests for forwarding guest log calls."""

    @pytest.mark.parametrize(
        "level, expected",
        [(0, "debug"), (1, "info"), (2, "warning"), (3, "error")],
    )
    def test_levels(self, level, expected):
        with capture_logs() as logs:
            emit_guest_log("audit", level, "hello", 4096)

        assert logs == [{"event": "hello", "plugin": "audit", "log_level": expected}]

    def test_unknown_level_logged_as_warning(self):
        with capture_logs() as logs:
            emit_guest_log("audit", 9, "odd", 4096)

        assert logs[0]["log_level"] == "warning"
        assert logs[0]["guest_level"] == 9

    def test_message_sanitized_and_limited(self):
        with capture_logs() as logs:
            emit_guest_log("audit", 1, "line1\nline2\x1b[31m", 8)

        assert logs[0]["event"] == "line1\\nl"

    def test_empty_message_dropped(self):
        with capture_logs() as logs:
            emit_guest_log("audit", 1, "\x1b[0m", 4096)

        assert logs == []
