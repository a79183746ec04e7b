"""
Command-line interface for serdo.

Commands:
- serve: run the auto-check scheduler until interrupted
- check servers|domains: run a manual batch check for a tenant
- sync: sync one domain
- ping: probe one server
- logs / status: inspect the check log and auto-check schedule
- test-whois / test-notify: verify a tenant's lookup API and channels
- config show|validate: inspect the effective configuration

Results are printed as JSON on stdout; errors as JSON on stderr.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .audit_logger import AuditLogger
from .check_log import parse_type_filter
from .checks import CheckService
from .config import SystemConfig, load_config_from_env, load_config_from_file, validate_config
from .enums import CheckTrigger
from .exceptions import SerdoError
from .i18n import get_message
from .scheduler import Scheduler


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _load_config(args: argparse.Namespace) -> SystemConfig:
    if getattr(args, "config", None):
        return load_config_from_file(Path(args.config))
    env_file = Path(args.env_file) if getattr(args, "env_file", None) else None
    return load_config_from_env(env_file)


def _build_service(args: argparse.Namespace) -> tuple[SystemConfig, AuditLogger, CheckService]:
    config = _load_config(args)
    logger = AuditLogger.from_config(config.logging)
    errors, warnings = validate_config(config)
    for warning in warnings:
        logger.warn("Config", warning)
    if errors:
        raise SerdoError(code="invalid_config", message="; ".join(errors))
    return config, logger, CheckService.from_config(config, logger)


async def _serve(config: SystemConfig, logger: AuditLogger, service: CheckService) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass
    scheduler = Scheduler(service, service.store, config.scheduler, logger)
    await scheduler.run(stop_event)


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command."""
    config, logger, service = _build_service(args)
    if not config.scheduler.enabled:
        logger.warn("Scheduler", "Scheduler disabled by configuration")
        return 0
    asyncio.run(_serve(config, logger, service))
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    _, _, service = _build_service(args)
    trigger = CheckTrigger(args.trigger)
    language = service.store.load(args.tenant).settings.language
    if args.kind == "servers":
        results = asyncio.run(service.check_servers(args.tenant, trigger))
        success = sum(1 for r in results if r.reachable)
        summary = get_message("check.servers.summary", language,
                              total=len(results), success=success, failed=len(results) - success)
    else:
        results = asyncio.run(service.check_domains(args.tenant, trigger))
        success = sum(1 for r in results if r.ok)
        expiring = sum(1 for r in results if r.state in ("expiring_soon", "expired"))
        summary = get_message("check.domains.summary", language, total=len(results),
                              success=success, failed=len(results) - success, expiring=expiring)
    _print_json({"summary": summary, "results": [r.to_dict() for r in results]})
    return 0 if success == len(results) else 1


def cmd_sync(args: argparse.Namespace) -> int:
    """Handle the 'sync' command."""
    _, _, service = _build_service(args)
    domain = asyncio.run(service.sync_domain(args.tenant, args.domain_id))
    _print_json(domain.to_dict())
    return 0


def cmd_ping(args: argparse.Namespace) -> int:
    """Handle the 'ping' command."""
    _, _, service = _build_service(args)
    result = asyncio.run(service.ping_server(args.tenant, args.server_id))
    _print_json({
        "reachable": result.reachable,
        "port": result.port,
        "latencyMs": result.latency_ms,
        "error": result.error,
    })
    return 0 if result.reachable else 1


def cmd_logs(args: argparse.Namespace) -> int:
    """Handle the 'logs' command."""
    _, _, service = _build_service(args)
    page = service.get_check_logs(args.tenant, args.page, args.page_size, parse_type_filter(args.type))
    _print_json(page.to_dict())
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Handle the 'status' command."""
    _, _, service = _build_service(args)
    _print_json(service.get_check_status(args.tenant))
    return 0


def cmd_test_whois(args: argparse.Namespace) -> int:
    """Handle the 'test-whois' command."""
    _, _, service = _build_service(args)
    report = asyncio.run(service.test_whois(args.tenant, args.domain))
    _print_json(report)
    return 0 if report["ok"] else 1


def cmd_test_notify(args: argparse.Namespace) -> int:
    """Handle the 'test-notify' command."""
    _, _, service = _build_service(args)
    results = asyncio.run(service.test_notifications(args.tenant))
    _print_json({"results": [r.to_dict() for r in results]})
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config = _load_config(args)
    errors, warnings = validate_config(config)
    if args.action == "show":
        _print_json({
            "dataDir": str(config.persistence.data_dir),
            "authSecretConfigured": not any("SERDO_AUTH_SECRET" in w for w in warnings),
            "probeTimeoutSeconds": config.probe.timeout_seconds,
            "whois": {
                "defaultBaseUrl": config.whois.default_base_url,
                "timeoutSeconds": config.whois.timeout_seconds,
                "testTimeoutSeconds": config.whois.test_timeout_seconds,
                "maxConcurrency": config.whois.max_concurrency,
            },
            "notifyTimeoutSeconds": config.notifications.dispatch_timeout_seconds,
            "tickSeconds": config.scheduler.tick_seconds,
            "logging": {
                "level": config.logging.level,
                "format": config.logging.output_format,
                "auditMode": config.logging.audit_mode,
            },
        })
        return 0
    _print_json({"valid": not errors, "errors": errors, "warnings": warnings})
    return 0 if not errors else 1


def _add_common(parser: argparse.ArgumentParser, tenant: bool = True) -> None:
    parser.add_argument("--config", "-c", help="Path to a JSON configuration file")
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env)")
    if tenant:
        parser.add_argument("tenant", help="Tenant (user) id")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="serdo",
        description="Server and domain health checks with encrypted secrets",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the auto-check scheduler")
    _add_common(serve_parser, tenant=False)
    serve_parser.set_defaults(func=cmd_serve)

    check_parser = subparsers.add_parser("check", help="Run a batch check for a tenant")
    check_parser.add_argument("kind", choices=["servers", "domains"])
    _add_common(check_parser)
    check_parser.add_argument(
        "--trigger",
        choices=[t.value for t in CheckTrigger],
        default=CheckTrigger.MANUAL.value,
        help="Trigger recorded in the check log (default: manual)",
    )
    check_parser.set_defaults(func=cmd_check)

    sync_parser = subparsers.add_parser("sync", help="Sync one domain from the lookup API")
    _add_common(sync_parser)
    sync_parser.add_argument("domain_id")
    sync_parser.set_defaults(func=cmd_sync)

    ping_parser = subparsers.add_parser("ping", help="Probe one server")
    _add_common(ping_parser)
    ping_parser.add_argument("server_id")
    ping_parser.set_defaults(func=cmd_ping)

    logs_parser = subparsers.add_parser("logs", help="Show the check log")
    _add_common(logs_parser)
    logs_parser.add_argument("--page", type=int, default=1)
    logs_parser.add_argument("--page-size", type=int, default=5)
    logs_parser.add_argument("--type", choices=["server", "domain"])
    logs_parser.set_defaults(func=cmd_logs)

    status_parser = subparsers.add_parser("status", help="Show auto-check schedule")
    _add_common(status_parser)
    status_parser.set_defaults(func=cmd_status)

    whois_parser = subparsers.add_parser("test-whois", help="Test the tenant's lookup API")
    _add_common(whois_parser)
    whois_parser.add_argument("--domain", default="example.com")
    whois_parser.set_defaults(func=cmd_test_whois)

    notify_parser = subparsers.add_parser("test-notify", help="Send a test notification")
    _add_common(notify_parser)
    notify_parser.set_defaults(func=cmd_test_notify)

    config_parser = subparsers.add_parser("config", help="Inspect configuration")
    config_parser.add_argument("action", choices=["show", "validate"])
    _add_common(config_parser, tenant=False)
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except SerdoError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False, default=str), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
