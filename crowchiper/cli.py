"""
Crowchiper Plugin Command Line Interface

Loads plugins the way server startup does and lets an operator check them
or fire a hook at them by hand.

    crowchiper-plugins --plugin audit.wasm:net,timeout=500ms check
    crowchiper-plugins --plugin audit.wasm fire server.ip-change old=1.2.3.4 new=5.6.7.8
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional, Sequence, Tuple

from crowchiper.main import setup_logging, start_plugins
from crowchiper.plugins import (
    Hook,
    PluginError,
    PluginErrorMode,
    PluginSpec,
    PluginSpecError,
    parse_plugin_spec,
)


def plugin_spec_arg(value: str) -> PluginSpec:
    """argparse type for ``--plugin``."""
    try:
        return parse_plugin_spec(value)
    except PluginSpecError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def hook_value_arg(value: str) -> Tuple[str, str]:
    """argparse type for ``key=value`` hook values."""
    key, sep, rest = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got '{value}'")
    return key, rest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crowchiper-plugins",
        description="Crowchiper - sandboxed WebAssembly plugin host",
    )
    parser.add_argument(
        "--plugin",
        dest="plugins",
        action="append",
        type=plugin_spec_arg,
        default=[],
        metavar="SPEC",
        help="Plugin to load: path[:net,env-VAR,fs-read=/dir,fs-write=/dir,var-k=v,timeout=5|500ms]",
    )
    parser.add_argument(
        "--plugin-error",
        choices=[mode.value for mode in PluginErrorMode],
        default=PluginErrorMode.ABORT.value,
        help="What to do when a plugin fails to load",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Check command
    subparsers.add_parser("check", help="Load plugins and print their metadata")

    # Fire command
    fire_parser = subparsers.add_parser("fire", help="Fire a hook at the loaded plugins")
    fire_parser.add_argument(
        "hook",
        type=Hook,
        choices=list(Hook),
        metavar="HOOK",
        help=f"Hook to fire ({', '.join(hook.value for hook in Hook)})",
    )
    fire_parser.add_argument(
        "values",
        nargs="*",
        type=hook_value_arg,
        metavar="KEY=VALUE",
        help="Values carried by the event",
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.log_level)
    error_mode = PluginErrorMode(args.plugin_error)

    try:
        if args.command == "check":
            asyncio.run(cmd_check(args.plugins, error_mode))
        elif args.command == "fire":
            asyncio.run(cmd_fire(args.plugins, error_mode, args.hook, args.values))
    except PluginError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


async def cmd_check(specs: List[PluginSpec], error_mode: PluginErrorMode) -> None:
    """Load plugins and print a summary of each."""
    manager = await start_plugins(specs, error_mode)
    result = [plugin.summary().to_dict() for plugin in manager.plugins]
    print(json.dumps(result, indent=2))


async def cmd_fire(
    specs: List[PluginSpec],
    error_mode: PluginErrorMode,
    hook: Hook,
    values: List[Tuple[str, str]],
) -> None:
    """Load plugins and deliver one hook event."""
    manager = await start_plugins(specs, error_mode)

    subscribers = manager.subscribers(hook)
    if not subscribers:
        print(f"No plugin is registered for {hook.value}")
        return

    await manager.fire_hook(hook, values)
    print(
        json.dumps(
            {
                "hook": hook.value,
                "delivered_to": [plugin.name for plugin in subscribers],
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    sys.exit(main())
