#!/usr/bin/env python3
"""
Command-line interface for the ILP/FSPIOP bridge.

Runs the bridge and manages its configuration files.

Copyright 2025 Firefly Software Solutions Inc
Licensed under the Apache License, Version 2.0
"""

import argparse
import asyncio
import importlib
import signal
import sys
from typing import Callable, Optional

from pydantic import ValidationError

from ilpmoja import MojaHttpPlugin, __version__
from ilpmoja.config import BridgeConfig, ConfigurationManager
from ilpmoja.logging import get_bridge_logger, setup_bridge_logging, shutdown_bridge_logging


def print_banner(config: BridgeConfig) -> None:
    """Print the startup banner."""
    listener = config.listener
    where = "disabled"
    if listener.enabled:
        where = f"http://{listener.host}:{listener.port}{listener.base_path}"
    banner = f"""
:: ilpmoja ::                        (v{__version__})

Interledger <-> Mojaloop FSPIOP bridge

  ILP address : {config.ilp_address}
  Listener    : {where}
  Transfers   : {config.endpoints.transfers}
  Quotes      : {config.endpoints.quotes}
    """
    print(banner)


def load_handler(reference: str) -> Callable:
    """Import a data handler given as ``package.module:function``."""
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"handler must look like 'module:function', got {reference!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def load_config(config_file: Optional[str], args: argparse.Namespace) -> BridgeConfig:
    """Load configuration and apply command-line overrides."""
    config = ConfigurationManager.load_config(config_file)

    overrides = {}
    if getattr(args, "ilp_address", None):
        overrides["ilp_address"] = args.ilp_address
    listener = {}
    if getattr(args, "host", None):
        listener["host"] = args.host
    if getattr(args, "port", None) is not None:
        listener["port"] = args.port
    if listener:
        overrides["listener"] = listener
    if getattr(args, "log_level", None):
        overrides["logging"] = {"level": args.log_level}

    if not overrides:
        return config
    return BridgeConfig(**ConfigurationManager._deep_merge(config.model_dump(), overrides))


async def run_bridge(config: BridgeConfig, handler: Optional[Callable] = None) -> None:
    """Run the plugin until SIGINT or SIGTERM."""
    logger = get_bridge_logger("bridge")
    plugin = MojaHttpPlugin(config, logger=logger)
    if handler is not None:
        plugin.register_data_handler(handler)
    else:
        logger.warning("no data handler registered; inbound POSTs will be rejected")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C still raises KeyboardInterrupt
            pass

    async with plugin:
        await stop.wait()
        logger.info("shutdown requested")


def serve(args: argparse.Namespace) -> None:
    config = load_config(args.config, args)
    setup_bridge_logging(config)
    print_banner(config)

    for warning in config.validate_configuration():
        print(f"⚠️  {warning}")

    handler = load_handler(args.handler) if args.handler else None
    try:
        asyncio.run(run_bridge(config, handler))
    except KeyboardInterrupt:
        pass
    finally:
        shutdown_bridge_logging()


def init_config(output: str) -> None:
    """Write a default configuration file. The format follows the extension."""
    ConfigurationManager.create_default_config_file(output, format="auto")
    print(f"Default configuration written to {output}")


def validate_config(path: str) -> int:
    try:
        config = BridgeConfig.from_file(path)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        print(f"❌ Invalid configuration: {e}")
        return 1

    warnings = config.validate_configuration()
    for warning in warnings:
        print(f"⚠️  {warning}")
    print(f"✅ {path} is valid" + (f" ({len(warnings)} warnings)" if warnings else ""))
    return 0


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="ilpmoja - Interledger to Mojaloop FSPIOP bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ilpmoja serve --config bridge.yaml                 # Run the bridge
  ilpmoja serve --handler myapp.handlers:on_prepare  # Run with a data handler
  ilpmoja init-config bridge.yaml                    # Create default config
  ilpmoja validate-config bridge.yaml                # Validate a config file
  ilpmoja version                                    # Show version
        """,
    )

    parser.add_argument("--version", action="version", version=f"ilpmoja {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the bridge")
    serve_parser.add_argument("--config", "-c", help="Configuration file (YAML, JSON or TOML)")
    serve_parser.add_argument("--handler", help="Data handler as module:function")
    serve_parser.add_argument("--ilp-address", help="Override the bridge ILP address")
    serve_parser.add_argument("--host", help="Override the listener host")
    serve_parser.add_argument("--port", type=int, help="Override the listener port")
    serve_parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the logging level",
    )

    # Config commands
    init_parser = subparsers.add_parser("init-config", help="Create default configuration file")
    init_parser.add_argument("output", help="Output configuration file path")

    validate_parser = subparsers.add_parser("validate-config", help="Validate configuration file")
    validate_parser.add_argument("config", help="Configuration file path")

    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args()

    if args.command == "serve":
        serve(args)

    elif args.command == "init-config":
        init_config(args.output)

    elif args.command == "validate-config":
        sys.exit(validate_config(args.config))

    elif args.command == "version":
        print(f"ilpmoja {__version__}")

    elif args.command is None:
        parser.print_help()
        sys.exit(1)

    else:
        print(f"Unknown command: {args.command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
