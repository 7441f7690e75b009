"""Entry point for the rigsync agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .config import load_config
from .identity import RigIdentity
from .runtime import apply_overrides, run_agent
from .transport import ServerConnection


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Keep this mining rig in sync with its control server.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Resolve the rig, print the server's current directive as JSON and exit.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.json (defaults to RIGSYNC_CONFIG or the bundled config).",
    )
    parser.add_argument(
        "--hostname",
        type=str,
        default=None,
        help="Hostname to register under (defaults to the machine hostname).",
    )
    parser.add_argument(
        "--server-url",
        type=str,
        default=None,
        help="Override the control server base URL.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Override the sync interval (seconds).",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING...).",
    )
    return parser.parse_args(argv)


def show_directive(args: argparse.Namespace) -> int:
    config = apply_overrides(load_config(args.config), args.hostname, args.server_url)
    server = ServerConnection(
        config.server_url,
        timeout=config.request_timeout,
        username=config.username,
        password=config.password,
    )
    try:
        identity = RigIdentity(config.hostname, server, config.power_price, config.power_currency)
        rig_path = identity.resolve()
        data = server.get(rig_path)
    finally:
        server.close()
    rig = data.get("rig") if isinstance(data, dict) else data
    print(json.dumps({"resource_path": rig_path, "rig": rig}, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        if args.once:
            return show_directive(args)
        asyncio.run(
            run_agent(
                config_path=args.config,
                hostname=args.hostname,
                server_url=args.server_url,
                interval_override=args.interval,
                log_level=args.log_level,
            )
        )
    except FileNotFoundError as error:
        print(error, file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
