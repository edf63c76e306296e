"""
Command-line entry point for reconciling local i18n keys with a POEditor project.

Usage:
    termsync diff --keys i18n-keys.json --out sync-plan.json
    termsync sync --plan sync-plan.json [--dry-run]
    termsync run --keys i18n-keys.json [--dry-run] [--delete-extraneous]
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from termsync.app_config import SyncConfig, load_app_config, validate_config
from termsync.errors import TermSyncError
from termsync.local_keys import load_local_keys
from termsync.models import SyncPlan, SyncResult
from termsync.poeditor_client import PoeditorClient
from termsync.progress import TqdmProgressObserver
from termsync.rate_limit import RateLimitedExecutor, RetryPolicy
from termsync.sync_manager import FailurePolicy, SyncManager

logger = logging.getLogger("termsync")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="termsync",
        description="Reconcile local translation keys with a POEditor project.",
    )
    parser.add_argument("--config", help="Path to the YAML configuration file")
    parser.add_argument("--project", help="POEditor project id (overrides configuration)")
    parser.add_argument("--langs", nargs="+", metavar="LANG", help="Languages to check for missing translations")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_diff_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--keys", help="Local key inventory (JSON) produced by the key detector")
        sub.add_argument("--delete-extraneous", action="store_true", default=None,
                         help="Plan deletion of remote terms that no longer exist locally")

    def add_sync_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--dry-run", action="store_true", default=None, help="Report counts without remote changes")
        sub.add_argument("--batch-size", type=int, help="Items per remote call")
        sub.add_argument("--rate-limit", type=float, help="Minimum seconds between remote calls")
        sub.add_argument("--machine-translate", nargs="*", metavar="LANG",
                         help="Record machine translation for these languages (all missing if none given)")
        sub.add_argument("--isolate-phases", action="store_true", default=None,
                         help="Keep going with later phases when one phase fails")

    diff_parser = subparsers.add_parser("diff", help="Compute a sync plan")
    add_diff_arguments(diff_parser)
    diff_parser.add_argument("--out", help="Write the plan here instead of stdout")

    sync_parser = subparsers.add_parser("sync", help="Execute a previously computed plan")
    sync_parser.add_argument("--plan", help="Plan file produced by 'diff'")
    add_sync_arguments(sync_parser)
    sync_parser.add_argument("--out", help="Write the result here instead of stdout")

    run_parser = subparsers.add_parser("run", help="Compute a plan and execute it")
    add_diff_arguments(run_parser)
    add_sync_arguments(run_parser)
    run_parser.add_argument("--out", help="Write the result here instead of stdout")

    return parser


def apply_overrides(config: SyncConfig, args: argparse.Namespace) -> SyncConfig:
    """Fold command-line options into the loaded configuration."""
    if args.project:
        config.project_id = args.project
    if args.langs:
        config.include_langs = list(args.langs)
    if getattr(args, "keys", None):
        config.local_keys_file = args.keys
    if getattr(args, "plan", None):
        config.plan_file = args.plan
    if getattr(args, "delete_extraneous", None):
        config.delete_extraneous = True
    if getattr(args, "dry_run", None):
        config.dry_run = True
    if getattr(args, "batch_size", None) is not None:
        config.batch_size = args.batch_size
    if getattr(args, "rate_limit", None) is not None:
        config.rate_limit_delay = args.rate_limit
    machine_translate = getattr(args, "machine_translate", None)
    if machine_translate is not None:
        config.machine_translate = list(machine_translate) if machine_translate else True
    if getattr(args, "isolate_phases", None):
        config.failure_policy = "isolate"
    validate_config(config)
    return config


def build_sync_manager(config: SyncConfig, client: Optional[PoeditorClient],
                       show_progress: bool = True) -> SyncManager:
    observer = TqdmProgressObserver(disable=not show_progress)
    executor = RateLimitedExecutor(
        policy=RetryPolicy(max_attempts=config.max_attempts, max_jitter_ms=config.max_jitter_ms),
        observer=observer,
    )
    return SyncManager(
        client,
        config.project_id,
        executor=executor,
        observer=observer,
        failure_policy=FailurePolicy(config.failure_policy),
    )


def write_output(text: str, out_path: Optional[str]) -> None:
    if out_path:
        with open(out_path, 'w', encoding='utf-8') as f:
            f.write(text + "\n")
        logger.info("Wrote %s", out_path)
    else:
        sys.stdout.write(text + "\n")


def log_plan_summary(plan: SyncPlan) -> None:
    logger.info("Terms to add: %d", plan.stats.adds)
    logger.info("Terms to update: %d", plan.stats.updates)
    logger.info("Terms to delete: %d", plan.stats.deletes)
    logger.info("Missing translations: %d", plan.stats.missing)


def log_result_summary(result: SyncResult) -> None:
    logger.info("Created: %d, updated: %d, deleted: %d", result.created, result.updated, result.deleted)
    logger.info("Rate limit waits: %d", result.rate_limit_waits)
    if result.mt_triggered:
        logger.info("Machine translation triggered for: %s", ", ".join(result.mt_triggered))
    for error in result.errors:
        logger.error("%s: %s", error.operation, error.message)
    logger.info("Audit id: %s", result.audit_log_id)


async def run_command(config: SyncConfig, args: argparse.Namespace,
                      client: Optional[PoeditorClient] = None) -> int:
    """
    Execute one CLI command.

    Args:
        config: The configuration after command-line overrides.
        args: Parsed arguments.
        client: Client to use; one is built from ``config`` when omitted.

    Returns:
        The process exit status.
    """
    needs_remote = args.command == "diff" or args.command == "run" or not config.dry_run
    owns_client = client is None and needs_remote
    if owns_client:
        client = PoeditorClient.from_config(config)

    manager = build_sync_manager(config, client, show_progress=not args.no_progress)
    try:
        if args.command in ("diff", "run"):
            local_keys = load_local_keys(config.local_keys_file)
            plan = await manager.create_sync_plan(
                local_keys, config.include_langs, delete_extraneous=config.delete_extraneous
            )
            log_plan_summary(plan)
            if args.command == "diff":
                write_output(plan.to_json(), args.out)
                return 0
        else:
            with open(config.plan_file, 'r', encoding='utf-8') as f:
                plan = SyncPlan.from_json(f.read())

        result = await manager.execute_sync(
            plan,
            batch_size=config.batch_size,
            dry_run=config.dry_run,
            rate_limit_delay=config.rate_limit_delay,
            machine_translate=config.machine_translate,
        )
        log_result_summary(result)
        write_output(result.to_json(), args.out)
        return 0 if result.ok else 1
    finally:
        if owns_client and client is not None:
            await client.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = apply_overrides(load_app_config(args.config), args)
        return asyncio.run(run_command(config, args))
    except TermSyncError as e:
        logger.error("%s", e)
        return 1
    except OSError as e:
        logger.error("File error: %s", e)
        return 1


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
