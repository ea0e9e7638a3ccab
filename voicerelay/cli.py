"""voicerelay CLI entry point.

Usage:
    voicerelay run --config voicerelay.yaml [--tools package.module:registry] [--plain]
    voicerelay tools [--config voicerelay.yaml] [--tools package.module:registry]
    voicerelay init [--output voicerelay.yaml]
"""

from __future__ import annotations

import argparse
import importlib
import sys
from pathlib import Path

from loguru import logger

from voicerelay.config import DEFAULT_CONFIG_YAML, BridgeConfig, load_config
from voicerelay.errors import ConfigurationError
from voicerelay.tools.http import HttpCapability
from voicerelay.tools.registry import ToolRegistry


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def load_registry(ref: str | None) -> ToolRegistry:
    """Import a ToolRegistry from ``package.module:attribute``.

    The attribute may also be a zero-argument callable returning a registry.
    """
    if not ref:
        return ToolRegistry()
    module_path, _, attr = ref.partition(":")
    module = importlib.import_module(module_path)
    obj = getattr(module, attr or "registry")
    if callable(obj) and not isinstance(obj, ToolRegistry):
        obj = obj()
    if not isinstance(obj, ToolRegistry):
        raise ConfigurationError(f"{ref} is not a ToolRegistry")
    return obj


def _load(args: argparse.Namespace) -> BridgeConfig:
    if args.config and Path(args.config).exists():
        return load_config(args.config)
    if args.config != "voicerelay.yaml":
        raise ConfigurationError(f"Config file not found: {args.config}")
    return load_config(None)


def cmd_run(args: argparse.Namespace) -> None:
    from voicerelay.bridge import CallBridge

    config = _load(args)
    configure_logging(config.logging.level)

    bridge = CallBridge(config, registry=load_registry(args.tools))
    logger.info(
        f"voicerelay starting on {config.telephony.listen_host}:"
        f"{config.telephony.listen_port}{config.telephony.listen_path} "
        f"(model: {config.realtime.model}, tools: {len(bridge.tool_specs())})"
    )

    if args.plain:
        bridge.set_http_handler(bridge.twiml_http_handler)
        bridge.run()
    else:
        from voicerelay.server import run_server

        run_server(bridge)


def cmd_tools(args: argparse.Namespace) -> None:
    config = _load(args)
    registry = load_registry(args.tools)
    for hook in config.tools.webhooks:
        capability, spec = HttpCapability.from_config(hook)
        registry.register(hook.name, capability, spec=spec)
    specs = registry.specs(config.tools.specs)

    print("\nAnnounced tools:")
    print("=" * 40)
    for spec in specs:
        print(f"  {spec.name:<24} {spec.description}")
    print(f"\nTotal: {len(specs)} tools")
    print()


def cmd_init(args: argparse.Namespace) -> None:
    output = Path(args.output)
    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: voicerelay run --config {output}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="voicerelay",
        description="voicerelay - realtime voice bridge for phone calls",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Serve the media stream endpoint")
    run_parser.add_argument(
        "--config", "-c",
        default="voicerelay.yaml",
        help="Path to the YAML config file (default: voicerelay.yaml)",
    )
    run_parser.add_argument(
        "--tools", "-t",
        default=None,
        help="ToolRegistry to load, as package.module:attribute",
    )
    run_parser.add_argument(
        "--plain",
        action="store_true",
        help="Serve with websockets/aiohttp instead of FastAPI",
    )

    tools_parser = subparsers.add_parser("tools", help="List tools announced to the model")
    tools_parser.add_argument("--config", "-c", default="voicerelay.yaml")
    tools_parser.add_argument("--tools", "-t", default=None)

    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="voicerelay.yaml",
        help="Output file path (default: voicerelay.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            cmd_run(args)
        elif args.command == "tools":
            cmd_tools(args)
        elif args.command == "init":
            cmd_init(args)
        else:
            parser.print_help()
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(2)


if __name__ == "__main__":
    main()
