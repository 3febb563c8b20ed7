import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import yaml

from llmusage._logging import get_logger
from llmusage.config import ConfigLoader
from llmusage.discovery.copilot import fetch_github_username
from llmusage.errors import LLMUsageError
from llmusage.models import (
    Account,
    CountFormat,
    DollarsFormat,
    Service,
    Token,
    TokenSource,
    UsageMetric,
)
from llmusage.timeouts import race
from llmusage.usage import LLMUsage

logger = get_logger("LLMUsage.CLI")

MANUAL_LABEL = "Manual"
RULE = "━" * 40


def progress_bar(percent: float, width: int = 20) -> str:
    filled = int(round(max(0.0, min(100.0, percent)) / 100 * width))
    return "[" + "#" * filled + "-" * (width - filled) + "]"


def format_metric(metric: UsageMetric) -> str:
    line = f"{metric.label}: {progress_bar(metric.used_percent)} {metric.used_percent:.0f}%"
    fmt = metric.format
    if isinstance(fmt, DollarsFormat):
        line += f" (${fmt.used:.2f} / ${fmt.limit:.2f})"
    elif isinstance(fmt, CountFormat):
        line += f" ({fmt.used}/{fmt.limit} {fmt.suffix})"
    if metric.period and metric.period.resets_at:
        line += f"  resets {metric.period.resets_at.astimezone():%Y-%m-%d %H:%M}"
    return line


def short_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _parse_service(name: Optional[str]) -> Optional[Service]:
    """Parse an optional service name; prints and exits on unknown names."""
    if name is None:
        return None
    try:
        return Service.parse(name)
    except ValueError as exc:
        print(exc)
        sys.exit(1)


async def _open(config: ConfigLoader) -> LLMUsage:
    usage = LLMUsage(config=config)
    await usage.setup()
    return usage


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_discover(args, config: ConfigLoader) -> int:
    service = _parse_service(args.service)
    usage = await _open(config)

    print("Looking for stored credentials and running processes...")
    if service:
        print(f"  Filtering for: {service.display_name}")
    accounts = await usage.discover_and_import(service)

    if not accounts:
        print("\nNo tokens discovered.\n")
        print("Install and log in to one of these apps:")
        for s in Service:
            print(f"  - {s.display_name}")
        return 1

    unique = {a.id: a for a in accounts}
    print(f"Found and imported {len(unique)} account(s):")
    for account in unique.values():
        print(f"  - {account.service.display_name} ({account.label})")
    print("Run 'llmusage account list' to see usage.")
    return 0


async def cmd_list(args, config: ConfigLoader) -> int:
    service = _parse_service(args.service)
    usage = await _open(config)
    accounts = usage.get_accounts(service)

    if not accounts:
        print("No accounts found.")
        print("Run 'llmusage discover' first.")
        return 1

    timeout = config.get_fetch_timeout()
    if args.json:
        results = []
        for account in accounts:
            try:
                data = await race(usage.fetch_usage(account), timeout)
                results.append(data.to_dict())
            except Exception as exc:
                results.append(
                    {
                        "account": {
                            "id": str(account.id),
                            "service": account.service.value,
                            "label": account.label,
                        },
                        "error": short_error(exc),
                    }
                )
        print(json.dumps(results, indent=2))
        return 0

    print(f"Listing {len(accounts)} account(s)...\n")
    for account in accounts:
        print(RULE)
        print(f"{account.service.display_name} ({account.label})")
        print(f"   Tokens: {len(account.tokens)}")
        try:
            data = await race(usage.fetch_usage(account), timeout)
        except asyncio.TimeoutError:
            print("   Usage: Timeout")
            print()
            continue
        except Exception as exc:
            print(f"   Usage: {short_error(exc)}")
            print()
            continue

        if data.plan and data.plan.name:
            print(f"   Plan: {data.plan.name}")
        if not data.metrics:
            print("   Usage: No data available")
        for metric in data.metrics:
            print(f"   {format_metric(metric)}")
        print()
    return 0


async def cmd_add(args, config: ConfigLoader) -> int:
    service = _parse_service(args.service)
    try:
        token = Token(access_token=args.token.strip(), source=TokenSource.MANUAL)
    except ValueError as exc:
        print(exc)
        return 1
    usage = await _open(config)

    label = args.label
    if service == Service.COPILOT and label == MANUAL_LABEL:
        username = await fetch_github_username(
            token.access_token, timeout=config.get_username_timeout()
        )
        if username:
            label = username
            print(f"Using GitHub username: {username}")

    account = Account(
        service=service,
        label=label,
        tokens=[token],
    )
    await usage.save_account(account)
    print(f"Added account for {service.display_name} ({label})")
    return 0


async def cmd_remove(args, config: ConfigLoader) -> int:
    service = _parse_service(args.service)
    usage = await _open(config)
    accounts = usage.get_accounts(service)

    if not accounts:
        print(f"No accounts found for {service.display_name}.")
        return 1

    if args.label is not None:
        target = next((a for a in accounts if a.label == args.label), None)
        if target is None:
            print(f"No account found with label '{args.label}'")
            print(f"Available labels: {', '.join(a.label for a in accounts)}")
            return 1
    elif len(accounts) == 1:
        target = accounts[0]
    else:
        print(
            f"Multiple accounts found for {service.display_name}. "
            "Please specify a label:"
        )
        for a in accounts:
            print(f"  - {a.label}")
        return 1

    await usage.delete_account(target.id)
    print(f"Removed account: {service.display_name} ({target.label})")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llmusage", description="Manage and track AI-coding service usage."
    )
    parser.add_argument(
        "--config",
        help="Path to config.yaml. Falls back to LLMUSAGE_CONFIG env var, "
        "then ~/.llmusage/config.yaml.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )

    subparsers = parser.add_subparsers(dest="command")

    discover = subparsers.add_parser(
        "discover", help="Scan the system for tokens and import them."
    )
    discover.add_argument("service", nargs="?", help="Limit discovery to one service.")

    account = subparsers.add_parser("account", help="Manage accounts and view usage.")
    account_sub = account.add_subparsers(dest="account_command")

    ls = account_sub.add_parser("list", help="List accounts and fetch usage (default).")
    ls.add_argument("service", nargs="?", help="Limit to one service.")
    ls.add_argument("--json", action="store_true", help="Print usage as JSON.")

    add = account_sub.add_parser("add", help="Manually add an account.")
    add.add_argument("service", help="Service name (claude, copilot, ...).")
    add.add_argument("token", help="Access token.")
    add.add_argument("label", nargs="?", default=MANUAL_LABEL, help="Account label.")

    rm = account_sub.add_parser("remove", help="Remove an account.")
    rm.add_argument("service", help="Service name.")
    rm.add_argument("label", nargs="?", help="Label of the account to remove.")

    return parser


COMMANDS = {
    "discover": cmd_discover,
    "list": cmd_list,
    "add": cmd_add,
    "remove": cmd_remove,
}


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    try:
        config = ConfigLoader(config_path=args.config, allow_missing=True)
    except (OSError, yaml.YAMLError) as exc:
        print(f"Could not load configuration: {exc}")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.get_log_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    name = args.command
    if name == "account":
        name = args.account_command or "list"
        if args.account_command is None:
            args.service = None
            args.json = False

    try:
        exit_code = asyncio.run(COMMANDS[name](args, config))
    except LLMUsageError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)
