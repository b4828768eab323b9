"""
main.py — Signing Agent Entry Point

Usage:
    python -m signing_agent                         # register + run until Ctrl+C
    python -m signing_agent run --config path/to/config.yaml
    python -m signing_agent healthcheck             # query the agent API once
    python -m signing_agent --log-level DEBUG       # verbose logging

Secrets come from the environment or a .env file:
    AGENT_API_KEY     API key registered with the agent
    AGENT_COMPANY_ID  Partner company id (optional; enables detail lookups)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="signing-agent",
        description="Signing agent — answers pending custody transactions with policy decisions",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "healthcheck"],
        default="run",
        help="'run' — register and process the feed (default). "
             "'healthcheck' — query the agent API and exit.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $SIGNING_AGENT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace, *, validate: bool = True):
    """
    Load config, optionally validate it fully, and set up logging.
    Returns (settings, log).

    Exits with code 1 (after printing a clear message) if config.yaml has
    invalid values or validate_all() finds runtime problems.
    """
    from pydantic import ValidationError

    from signing_agent.config.settings import load_settings
    from signing_agent.exceptions import ConfigError
    from signing_agent.observability.logger import get_logger, setup_logging

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\nConfig validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(f"\nFailed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    if validate:
        try:
            settings.validate_all()
        except ConfigError as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.logging.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings, get_logger("signing_agent.main")


async def _healthcheck(settings, log) -> int:
    from signing_agent.api.agent_client import AgentApiClient

    async with AgentApiClient(
        settings.service.host,
        settings.service.port,
        timeout=settings.service.request_timeout_seconds,
    ) as api:
        result = await api.healthcheck()

    if result is None:
        log.error("healthcheck.failed", base_url=api.base_url)
        return 1
    print(json.dumps(result, indent=2))
    return 0


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops; KeyboardInterrupt still ends asyncio.run()
            pass


async def _run(settings, log) -> int:
    from signing_agent.agent.policy import AmountLimitPolicy
    from signing_agent.agent.session import SigningAgentClient
    from signing_agent.exceptions import RegistrationError, SigningError

    policy = AmountLimitPolicy(settings.policy.max_net_amount)
    try:
        agent = SigningAgentClient.from_settings(settings, policy)
    except SigningError as e:
        log.error("signing_agent.bad_private_key", error=str(e))
        return 1

    stop = asyncio.Event()
    _install_signal_handlers(stop)

    async with agent:
        try:
            agent_id = await agent.initialize()
        except RegistrationError as e:
            log.error("signing_agent.registration_failed", error=str(e))
            return 1

        log.info(
            "signing_agent.running",
            agent_id=agent_id,
            company_id=agent.company_id,
            max_net_amount=settings.policy.max_net_amount,
        )
        await stop.wait()
        log.info("signing_agent.stopping")

    return 0


async def main(argv: list[str] | None = None) -> int:
    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    args = parse_args(argv)

    if args.command == "healthcheck":
        settings, log = bootstrap(args, validate=False)
        return await _healthcheck(settings, log)

    settings, log = bootstrap(args)
    log.info(
        "signing_agent.starting",
        agent_name=settings.agent.name,
        service=f"{settings.service.host}:{settings.service.port}",
    )
    return await _run(settings, log)


def cli() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
