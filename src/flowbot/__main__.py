"""CLI entry point for flowbot."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from flowbot.app import FlowbotApp
from flowbot.config import AppConfig, load_config
from flowbot.log import setup_logging
from flowbot.storage.seed import seed_from_file


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="flowbot",
        description="Multi-tenant chatbot router: keyword flows, forms and AI fallback",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    _add_config_args(subparsers.add_parser("start", help="Start all channels"))
    _add_config_args(subparsers.add_parser("config-check", help="Validate configuration"))
    _add_config_args(subparsers.add_parser("channels", help="Show configured channels"))

    seed_parser = subparsers.add_parser("seed", help="Load chatbot definitions from YAML")
    seed_parser.add_argument("file", help="YAML file with a top-level 'chatbots' list")
    _add_config_args(seed_parser)

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "channels":
        _channels(args.config, args.env)
    elif args.command == "seed":
        _seed(args.config, args.env, args.file)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Channels configured: {len(config.channels)}")
    for channel in config.channels:
        print(f"    - {channel.id} ({channel.platform})")
    print(f"  AI: {config.ai.backend} [{config.ai.model}]")
    print(f"  Speech: {'openai' if config.openai else 'disabled'}")
    print(f"  Storage: {config.storage.db_path} (pool={config.storage.pool_size})")


def _channels(config_path: str, env_path: str) -> None:
    """Show each channel with its platform and AI backend."""
    config = _load_or_exit(config_path, env_path)
    print("Channels")
    print("=" * 50)
    for channel in config.channels:
        print(f"\n  Channel: {channel.id}")
        print(f"    Platform : {channel.platform}")
        if channel.platform == "whatsapp":
            print(f"    Webhook  : {channel.webhook_host}:{channel.webhook_port}{channel.webhook_path}")
        print(f"    Backend  : {config.ai.backend}")
        print(f"    Model    : {config.ai.model}")
    print()


def _seed(config_path: str, env_path: str, seed_file: str) -> None:
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_seed() -> int:
        app = FlowbotApp(config)
        await app.db.initialize()
        try:
            return await seed_from_file(seed_file, app.repos, country_code=config.phone.country_code)
        finally:
            await app.db.close()

    try:
        count = asyncio.run(_async_seed())
    except Exception as e:
        print(f"Seed error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Seeded {count} chatbot(s) from {seed_file}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = FlowbotApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
