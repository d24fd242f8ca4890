#!/usr/bin/env python3
"""
homestack - Command Line Interface

Deploys the compose stacks of a home server and keeps it maintained.

Usage:
    python -m homestack deploy [STACK ...] [--force] [--recreate] [--force-envs]
    python -m homestack deploy --list
    python -m homestack deploy --auto [--log-file PATH]
    python -m homestack envs [STACK ...] [--list]
    python -m homestack dns [--ip IP] [--domain DOMAIN] [--dry-run] [--force] [--list]
    python -m homestack maintenance --install | --uninstall | --status | --logs
    python -m homestack maintenance --run-now [--full] | --startup | --daily
    python -m homestack maintenance --dns-only | --check-only | --cleanup-only
"""

import argparse
import logging
import logging.handlers
import sys
import time
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import HomeConfig
from .core import DeploymentResult, StackDeployer
from .dns import DnsUpdater
from .envs import EnvGenerator
from .errors import HomestackError, UnknownStackError
from .maintenance import MaintenanceReport, MaintenanceRunner
from .registry import StackRegistry
from .schedule import ScheduleInstaller, default_entries
from .services import StackStatus, git_revision
from .state import MarkerStore

logger = logging.getLogger("homestack")

console = Console()

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False, log_file: Optional[Path] = None):
    """Console logging, plus a file that survives rotation when ``log_file`` is set."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.WatchedFileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def print_deployment_info(deployer: StackDeployer):
    state = deployer.deployment_info()
    if state is None or not state.last_deployment_epoch:
        console.print("Never deployed")
        return
    hours_ago = int((time.time() - state.last_deployment_epoch) // 3600)
    console.print(f"Last deployment: {hours_ago}h ago ({state.last_deployment_human})")


def print_stack_table(deployer: StackDeployer):
    """Print discovered stacks with status and drift."""
    drift = deployer.drift_report()
    table = Table("Stack", "Status", "Changed", "Manifest")
    status_styles = {
        StackStatus.RUNNING: "green",
        StackStatus.STOPPED: "red",
        StackStatus.UNKNOWN: "dim",
    }
    for stack, status in deployer.list_stacks():
        style = status_styles.get(status, "")
        table.add_row(
            stack.name,
            f"[{style}]{status.value}[/{style}]",
            "yes" if drift.get(stack.name) else "no",
            stack.manifest.name if stack.manifest else "-",
        )
    console.print(table)


def print_deployment_summary(result: DeploymentResult):
    console.print()
    console.print("[bold]Deployment summary[/bold]")
    console.print(f"Succeeded: {result.counts} stacks")
    if result.skipped:
        console.print(f"Unchanged (skipped): {', '.join(result.skipped)}")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    if result.failures:
        console.print("[red]Failed:[/red]")
        for name, reason in result.failures.items():
            console.print(f"  - {name} ({reason})")
        console.print("To diagnose, inspect the logs of the failed stacks:")
        for name in result.failures:
            console.print(f"  docker compose -f docker/{name}/docker-compose.yml logs")
    console.print(f"Finished in {result.duration_seconds:.1f}s")


def log_auto_deploy_context(args, config: HomeConfig):
    """Record what an unattended deployment runs against."""
    revision = git_revision(config.project_root)
    logger.info("Starting automatic deployment")
    logger.info(f"Working directory: {config.project_root}")
    logger.info(f"Git branch: {revision['branch']}")
    logger.info(f"Git commit: {revision['commit']}")
    if not config.private_dir.is_dir():
        logger.warning(f"Private config not linked at {config.private_dir}")
    logger.info(
        f"Deployment configuration: force={args.force} recreate={args.recreate} "
        f"stacks={', '.join(args.stacks) or 'changed'}"
    )


def notify(status: str, message: str):
    logger.info(f"Notification: {status} - {message}")


def cmd_deploy(args, config: HomeConfig):
    """Handle deploy command."""
    log_file = args.log_file or (config.deployment_log if args.auto else None)
    configure_logging(args.verbose, log_file=log_file)
    deployer = StackDeployer(config)

    if args.list:
        print_stack_table(deployer)
        return 0

    if args.auto:
        log_auto_deploy_context(args, config)
    else:
        print_deployment_info(deployer)

    if args.recreate and not (args.yes or args.auto):
        targets = ", ".join(args.stacks) or "every stack that will be deployed"
        console.print(f"[yellow]Containers will be RECREATED for: {targets}[/yellow]")
        response = input("Continue? [y/N] ")
        if response.lower() != "y":
            console.print("Operation cancelled.")
            return 0

    try:
        result = deployer.reconcile(
            requested=args.stacks,
            force_all=args.force,
            force_envs=args.force_envs,
            recreate=args.recreate,
            skip_infrastructure=args.skip_infrastructure,
        )
    except HomestackError as e:
        if args.auto:
            notify("error", f"Home server deployment failed: {e}")
        if not isinstance(e, UnknownStackError):
            raise
        console.print(f"[red]{e}[/red]")
        console.print(f"Available stacks: {', '.join(e.available) or 'none'}")
        return 1

    if args.auto:
        if result.success:
            notify("success", "Home server deployment completed successfully")
        else:
            notify("error", f"Home server deployment failed: {', '.join(result.failures)}")

    if not result.targets:
        console.print(result.message)
        if not args.stacks:
            console.print("Use --force to deploy every stack anyway.")
            print_stack_table(deployer)
        return 0

    print_deployment_summary(result)
    if result.success:
        console.print("[green]Deployment completed successfully[/green]")
    else:
        console.print("[red]Deployment completed with errors[/red]")
    return result.exit_code


def cmd_envs(args, config: HomeConfig):
    """Handle envs command."""
    generator = EnvGenerator(config)

    if args.list:
        table = Table("Stack", "Secondary sources")
        for stack, sources in sorted(generator.mapping().items()):
            table.add_row(stack, ", ".join(sources) or "none")
        console.print(table)
        return 0

    if not generator.available():
        console.print(f"[red]Private config not linked at {config.private_dir}[/red]")
        return 1

    registry = StackRegistry(config.docker_dir, config.manifest_names)
    stacks = registry.discover()
    if args.stacks:
        unknown = registry.unknown(args.stacks)
        if unknown:
            console.print(f"[red]Unknown stack(s): {', '.join(unknown)}[/red]")
            return 1
        stacks = [s for s in stacks if s.name in set(args.stacks)]

    for result in generator.generate_all(stacks):
        console.print(f"Generated {result.path} ({result.variables} variables)")
        for warning in result.warnings:
            console.print(f"[yellow]warning:[/yellow] {warning}")
    return 0


def cmd_dns(args, config: HomeConfig):
    """Handle dns command."""
    updater = DnsUpdater(config)

    if args.list:
        table = Table("Name", "Content", "TTL", "Proxied")
        for record in updater.list_records(args.domain):
            table.add_row(
                record.get("name", ""),
                record.get("content", ""),
                str(record.get("ttl", "")),
                str(record.get("proxied", "")),
            )
        console.print(table)
        return 0

    report = updater.update(domain=args.domain, ip=args.ip, dry_run=args.dry_run, force=args.force)
    for record in report.records:
        line = f"{record.name}: {record.outcome.value}"
        if record.previous and record.previous != report.ip:
            line += f" (was {record.previous})"
        if record.message:
            line += f" - {record.message}"
        console.print(line)
    console.print(report.summary())
    if args.dry_run:
        console.print("[yellow]Dry run: no changes were applied[/yellow]")
    return 0 if report.ok else 1


def print_maintenance_status(config: HomeConfig, installer: ScheduleInstaller):
    markers = MarkerStore(config.logs_dir)
    entries = installer.installed_entries()
    if entries:
        console.print("[green]Scheduled jobs installed[/green]")
        for line in entries:
            console.print(f"  {line}")
    else:
        console.print("[red]Scheduled jobs NOT installed[/red] (run: maintenance --install)")

    last_run = markers.last_run()
    when = datetime.fromtimestamp(last_run).strftime("%Y-%m-%d %H:%M:%S") if last_run else "never"
    console.print(f"Last maintenance run: {when}")
    console.print(f"Last daily maintenance: {markers.daily_marker() or 'never'}")

    if config.maintenance_log.exists():
        console.print("Recent log lines:")
        for line in tail_lines(config.maintenance_log, 5):
            console.print(f"  {line}")


def tail_lines(path: Path, count: int):
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]


def print_maintenance_report(report: MaintenanceReport):
    if report.hours_since is not None:
        console.print(f"Hours since last run: {report.hours_since}")
    if report.message:
        console.print(report.message)
    for action in report.actions:
        mark = "[green]ok[/green]" if action.ok else "[red]failed[/red]"
        console.print(f"  {action.action.value}: {mark} {action.detail}")
    console.print(report.summary())


def cmd_maintenance(args, config: HomeConfig):
    """Handle maintenance command."""
    installer = ScheduleInstaller(
        default_entries(config.project_root), backup_dir=config.logs_dir
    )
    manages_schedule = args.install or args.uninstall or args.status or args.logs
    configure_logging(
        args.verbose, log_file=None if manages_schedule else config.maintenance_log
    )

    if args.install:
        installer.install()
        console.print("[green]Scheduled jobs installed[/green]")
        for entry in installer.entries:
            console.print(f"  - {entry.description}")
        return 0
    if args.uninstall:
        installer.uninstall()
        console.print("Scheduled jobs removed")
        return 0
    if args.status:
        print_maintenance_status(config, installer)
        return 0
    if args.logs:
        if not config.maintenance_log.exists():
            console.print("No maintenance logs yet")
            return 0
        for line in tail_lines(config.maintenance_log, 50):
            console.print(line, markup=False)
        return 0

    runner = MaintenanceRunner(config)

    if args.startup:
        report = runner.startup()
    elif args.daily:
        report = runner.daily()
    elif args.dns_only:
        report = runner.dns_only()
    elif args.check_only:
        report = runner.check_only()
    elif args.cleanup_only:
        report = runner.cleanup_only()
    else:
        report = runner.run_now(full=args.full)

    print_maintenance_report(report)
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homestack",
        description="Deploy and maintain the compose stacks of a home server",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", type=Path, help="Project root (default: $HOMESTACK_ROOT or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed output")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -v is also accepted after the subcommand; SUPPRESS keeps a top-level -v
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
                        help="Show detailed output")

    # Deploy command
    deploy_parser = subparsers.add_parser(
        "deploy", parents=[common], help="Deploy changed or selected stacks"
    )
    deploy_parser.add_argument("stacks", nargs="*", help="Stacks to deploy (default: all changed)")
    deploy_parser.add_argument("-r", "--recreate", action="store_true",
                               help="Recreate containers completely")
    deploy_parser.add_argument("-f", "--force", action="store_true",
                               help="Deploy without change detection")
    deploy_parser.add_argument("--force-envs", action="store_true",
                               help="Regenerate .env files even if sources are unchanged")
    deploy_parser.add_argument("--skip-infrastructure", action="store_true",
                               help="Skip the Docker and network checks")
    deploy_parser.add_argument("-l", "--list", action="store_true", help="List available stacks")
    deploy_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    deploy_parser.add_argument("--auto", action="store_true",
                               help="Unattended run: no prompts, log to deployment.log")
    deploy_parser.add_argument("--log-file", type=Path,
                               help="Also append log lines to this file")

    # Envs command
    envs_parser = subparsers.add_parser(
        "envs", parents=[common], help="Generate per-stack .env files"
    )
    envs_parser.add_argument("stacks", nargs="*", help="Stacks to generate (default: all)")
    envs_parser.add_argument("-l", "--list", action="store_true",
                             help="Show the stack -> secondary sources mapping")

    # DNS command
    dns_parser = subparsers.add_parser(
        "dns", parents=[common], help="Point DNS records at this server"
    )
    dns_parser.add_argument("--ip", help="Use this IP instead of detecting it")
    dns_parser.add_argument("--domain", help="Domain (default: BASE_DOMAIN)")
    dns_parser.add_argument("--dry-run", action="store_true", help="Show changes without applying")
    dns_parser.add_argument("--force", action="store_true", help="Update even if the IP is unchanged")
    dns_parser.add_argument("--list", action="store_true", help="List current A records")

    # Maintenance command
    maint_parser = subparsers.add_parser(
        "maintenance", parents=[common], help="Scheduled maintenance"
    )
    modes = maint_parser.add_mutually_exclusive_group(required=True)
    modes.add_argument("--install", action="store_true", help="Install scheduled jobs")
    modes.add_argument("--uninstall", action="store_true", help="Remove scheduled jobs")
    modes.add_argument("--status", action="store_true", help="Show scheduled jobs and last runs")
    modes.add_argument("--logs", action="store_true", help="Show recent maintenance logs")
    modes.add_argument("--run-now", action="store_true", help="Run maintenance now")
    modes.add_argument("--startup", action="store_true", help="Boot-time recovery")
    modes.add_argument("--daily", action="store_true", help="Daily maintenance (once per day)")
    modes.add_argument("--dns-only", action="store_true", help="Only refresh DNS")
    modes.add_argument("--check-only", action="store_true", help="Only check services")
    modes.add_argument("--cleanup-only", action="store_true", help="Only clean up logs")
    maint_parser.add_argument("--full", action="store_true",
                              help="With --run-now, also clean up logs")

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command not in ("deploy", "maintenance"):
        configure_logging(args.verbose)

    commands = {
        "deploy": cmd_deploy,
        "envs": cmd_envs,
        "dns": cmd_dns,
        "maintenance": cmd_maintenance,
    }

    try:
        config = HomeConfig.load(args.root)
        return commands[args.command](args, config) or 0
    except HomestackError as e:
        logger.error(str(e))
        console.print(f"[red]{e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
