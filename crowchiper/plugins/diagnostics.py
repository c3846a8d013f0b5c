"""
Crowchiper Plugin Diagnostics

Turns guest stderr into terse error summaries and keeps guest-originated
text from forging log lines or terminal escapes in the host log stream.
"""

from __future__ import annotations

import re
from typing import Optional

import structlog

from crowchiper.plugins.types import LogLevel

guest_logger = structlog.get_logger("crowchiper.plugins.guest")

MAX_OUTPUT_LENGTH = 4096

_PANIC_MARKER = "panicked at "
_UNWRAP_MARKER = "` value: "
_QUOTED_ERROR_MARKER = 'error: "'

# CSI runs to its final byte (0x40-0x7E); OSC runs to BEL or ESC [\].
# Unterminated sequences swallow the rest of the text; a bare ESC is dropped.
_ESCAPE_SEQUENCE = re.compile(
    r"\x1b(?:\[[^@-~]*[@-~]?|\][^\x07\x1b]*(?:\x07|\x1b\\?)?)?"
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def sanitize_plugin_output(text: str, limit: Optional[int] = MAX_OUTPUT_LENGTH) -> str:
    """
    Make guest text safe for a single structured log line.

    - ``\\n`` and ``\\r`` become literal escapes
    - ANSI CSI and OSC escape sequences are stripped
    - other control characters except tab are dropped
    - the result is cut to ``limit`` characters
    """
    text = _ESCAPE_SEQUENCE.sub("", text)
    text = text.replace("\n", "\\n").replace("\r", "\\r")
    text = _CONTROL_CHARS.sub("", text)

    if limit is not None and len(text) > limit:
        text = text[:limit]
    return text


def extract_panic_message(stderr: str) -> Optional[str]:
    """
    Extract a one-line panic summary from guest stderr.

    Rust guests panic with::

        thread '...' panicked at <location>:
        <message>
        note: ...

    Returns ``"panicked at <location>: <detail>"``, or None when no panic
    marker is present.
    """
    segments = stderr.split(_PANIC_MARKER)
    if len(segments) < 2:
        return None

    location, newline, rest = segments[1].partition("\n")
    if not newline:
        return None
    location = location.rstrip(":")

    message = rest.split("\nnote:", 1)[0].strip()

    # called `Result::unwrap()` on an `Err` value: <debug repr>
    _, marker, inner = message.partition(_UNWRAP_MARKER)
    detail = inner if marker else message

    # Custom { kind: Uncategorized, error: "actual message" }
    quoted = extract_quoted_error(detail)
    if quoted is not None:
        detail = quoted

    return (
        f"panicked at {sanitize_plugin_output(location)}: "
        f"{sanitize_plugin_output(detail)}"
    )


def extract_quoted_error(detail: str) -> Optional[str]:
    """Return the raw text of the first ``error: "..."`` field in a debug repr."""
    segments = detail.split(_QUOTED_ERROR_MARKER)
    if len(segments) < 2:
        return None

    after = segments[1]
    index = 0
    while index < len(after):
        char = after[index]
        if char == "\\":
            index += 2
            continue
        if char == '"':
            return after[:index]
        index += 1
    return None


def describe_guest_failure(
    fallback: str,
    call_name: str,
    error: Exception,
    stderr: str,
    verbose: bool = False,
) -> str:
    """
    Build the error text for a trapped guest call.

    Args:
        fallback: Message used when no panic summary can be extracted;
            a panic summary is prefixed with the call name instead
        call_name: Guest export that trapped (``config``, ``on_hook``)
        error: Engine error
        stderr: Guest stderr written during this call only
        verbose: Report the engine error plus the full stderr dump

    Returns:
        Error message
    """
    if verbose:
        message = f"failed to call {call_name}(): {error}"
        if stderr:
            message = f"{message}\n\nplugin stderr:\n{stderr}"
        return message

    panic = extract_panic_message(stderr)
    if panic is not None:
        return f"{call_name}(): {panic}"
    return fallback


def emit_guest_log(plugin: str, level: int, message: str, limit: int) -> None:
    """Forward a guest ``log()`` call to the host logger."""
    clean = sanitize_plugin_output(message, limit)
    if not clean:
        return

    try:
        log_level = LogLevel(level)
    except ValueError:
        guest_logger.warning(clean, plugin=plugin, guest_level=level)
        return

    getattr(guest_logger, log_level.method)(clean, plugin=plugin)
