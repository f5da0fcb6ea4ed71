"""Operator CLI for the migration engine.

Usage:
    python -m app.scripts.run_migrations list
    python -m app.scripts.run_migrations status [KEY]
    python -m app.scripts.run_migrations run KEY [--until-done] [--batch-size N] [--dry-run]
    python -m app.scripts.run_migrations nullify --confirm "CONFIRM DELETION"
    python -m app.scripts.run_migrations drop-columns --confirm "CONFIRM DELETION"
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from app.database import close_db, get_db_context
from app.services.migrations import MigrationError, MigrationManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Hard stop for --until-done loops
MAX_BATCHES = 10_000


async def cmd_list(manager: MigrationManager, args) -> int:
    for migration in manager.list_migrations():
        flag = "" if migration["available"] else " (unavailable)"
        print(f"{migration['order']:>4}  {migration['key']:<24} {migration['name']}{flag}")
    return 0


async def cmd_status(manager: MigrationManager, args) -> int:
    if args.key:
        statuses = {args.key: await manager.get_status(args.key)}
    else:
        statuses = await manager.get_all_statuses()

    for key, status in statuses.items():
        mark = "done" if status["is_complete"] else "pending"
        print(
            f"{key:<24} {status['migrated']:>8}/{status['total']:<8} "
            f"{status['percent']:>6.2f}%  {mark}"
        )
    return 0


async def cmd_run(manager: MigrationManager, args) -> int:
    batch_index = args.batch_index
    total_processed = 0
    failed = False

    for _ in range(MAX_BATCHES):
        result = await manager.run(
            args.key,
            batch_index,
            batch_size=args.batch_size,
            dry_run=args.dry_run,
        )
        total_processed += result.processed
        print(f"[batch {batch_index}] {result.message}")
        for error in result.errors:
            print(f"  ! {error}")
        failed = failed or not result.success

        if not (args.until_done and result.has_more):
            break
        batch_index += 1

    print(f"Processed {total_processed} records")
    return 1 if failed else 0


async def cmd_nullify(manager: MigrationManager, args) -> int:
    result = await manager.bulk_nullify(args.confirm)
    print(json.dumps(result, indent=2))
    return 0 if result["success"] else 1


async def cmd_drop_columns(manager: MigrationManager, args) -> int:
    result = await manager.drop_columns(args.confirm)
    print(json.dumps(result, indent=2))
    return 0 if result["success"] else 1


COMMANDS = {
    "list": cmd_list,
    "status": cmd_status,
    "run": cmd_run,
    "nullify": cmd_nullify,
    "drop-columns": cmd_drop_columns,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Submission Vault migration runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  run_migrations list                          Show migrations in order
  run_migrations status encrypt_sensitive_data Show progress of one migration
  run_migrations run email --until-done        Promote every email value
  run_migrations nullify --confirm "CONFIRM DELETION"
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("list", help="List migrations")

    status_parser = subparsers.add_parser("status", help="Show migration progress")
    status_parser.add_argument("key", nargs="?", help="Migration key (all when omitted)")

    run_parser = subparsers.add_parser("run", help="Run migration batches")
    run_parser.add_argument("key", help="Migration key")
    run_parser.add_argument("--batch-index", type=int, default=0, help="Starting batch index")
    run_parser.add_argument("--batch-size", type=int, default=None, help="Override batch size")
    run_parser.add_argument("--until-done", action="store_true", help="Keep running while batches report more")
    run_parser.add_argument("--dry-run", action="store_true", help="Preview without writing")

    for name, help_text in (
        ("nullify", "Null all plaintext copies of encrypted data (irreversible)"),
        ("drop-columns", "Drop plaintext columns (irreversible)"),
    ):
        irreversible = subparsers.add_parser(name, help=help_text)
        irreversible.add_argument("--confirm", default=None, help='Confirmation phrase: "CONFIRM DELETION"')

    return parser


async def _main(args) -> int:
    try:
        async with get_db_context() as db:
            manager = MigrationManager(db)
            try:
                return await COMMANDS[args.command](manager, args)
            except MigrationError as e:
                print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
                return 2
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command not in COMMANDS:
        parser.print_help()
        return 1
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
