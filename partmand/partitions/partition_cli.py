"""
Partition manager CLI.

Command-line interface for inspecting partition health and running the
partition operators and maintenance by hand.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List

from .partition_errors import PartitionManagerError
from .partition_manager import PartitionManager, create_partition_manager
from .partition_models import OperationResult


def setup_logging(verbose: bool = False, log_dir: str = 'logs/partitions'):
    """Setup logging configuration."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(Path(log_dir) / 'partmand_cli.log')
        ]
    )


def print_results(title: str, results: List[OperationResult]) -> int:
    """Print operator results; returns the number of errors."""
    print(f"\n{title}: {len(results)} partitions")
    errors = 0
    for result in results:
        icon = "✗" if result.is_error else "✓"
        details = ""
        if result.row_count is not None:
            details += f" rows={result.row_count}"
        if result.size_mb is not None:
            details += f" size={result.size_mb:.2f}MB"
        print(f"  {icon} {result.partition_name} [{result.status.value}]{details} - {result.message}")
        if result.is_error:
            errors += 1
    return errors


async def _open(args) -> PartitionManager:
    manager = create_partition_manager(args.config, args.db)
    await manager.initialize()
    return manager


async def init_catalog(args) -> int:
    manager = await _open(args)
    try:
        configs = await manager.catalog.list_configs()
        print(f"Catalog ready: {len(configs)} configured tables")
        for config in configs:
            state = "enabled" if config.is_enabled else "disabled"
            print(f"  {config.table_name}: retention={config.retention_months} months, "
                  f"future={config.future_partitions}, {state}")
        return 0
    finally:
        await manager.close()


async def show_health(args) -> int:
    manager = await _open(args)
    try:
        summaries = await manager.get_health_summary()
        print("Partition Health")
        print("=" * 40)
        for summary in summaries:
            print(f"\n{summary.table_name} ({summary.health_status.value})")
            print(f"  Partitions: {summary.total_partitions}")
            print(f"  Rows: {summary.total_rows:,}")
            print(f"  Size: {summary.total_size_mb:.2f} MB")
            print(f"  Range: {summary.oldest_partition or '-'} .. {summary.newest_partition or '-'}")
            print(f"  Retention: {summary.retention_months} months, {summary.partitions_to_drop} to drop")
            if not summary.is_enabled:
                print("  Maintenance disabled")
        return 0
    finally:
        await manager.close()


async def list_partitions(args) -> int:
    manager = await _open(args)
    try:
        partitions = await manager.list_partitions(args.table)
        for meta in partitions:
            analyzed = meta.last_analyzed_at.isoformat() if meta.last_analyzed_at else "never"
            print(f"{meta.partition_name:<40} {meta.partition_date} rows={meta.row_count:<10} "
                  f"size={meta.size_mb:.2f}MB analyzed={analyzed}")
        print(f"\n{len(partitions)} partitions")
        return 0
    finally:
        await manager.close()


async def create_partitions(args) -> int:
    manager = await _open(args)
    try:
        horizon = args.horizon
        if horizon is None:
            config = await manager.get_config(args.table)
            horizon = config.future_partitions if config else 6
        results = await manager.create_future_partitions(args.table, horizon)
        return 1 if print_results("Create future partitions", results) else 0
    finally:
        await manager.close()


async def analyze_partitions(args) -> int:
    manager = await _open(args)
    try:
        results = await manager.analyze_partitions(args.table)
        return 1 if print_results("Analyze partitions", results) else 0
    finally:
        await manager.close()


async def cleanup_partitions(args) -> int:
    manager = await _open(args)
    try:
        retention = args.retention_months
        if retention is None:
            config = await manager.get_config(args.table)
            retention = config.retention_months if config else 12
        dry_run = not args.execute
        title = "Drop old partitions (DRY RUN)" if dry_run else "Drop old partitions"
        results = await manager.drop_old_partitions(args.table, retention, dry_run)
        return 1 if print_results(title, results) else 0
    finally:
        await manager.close()


async def vacuum_partitions(args) -> int:
    manager = await _open(args)
    try:
        results = await manager.vacuum_partitions(args.table, args.full)
        return 1 if print_results("Vacuum partitions", results) else 0
    finally:
        await manager.close()


async def run_maintenance(args) -> int:
    manager = await _open(args)
    try:
        report = await manager.run_maintenance(args.dry_run)
        if report is None:
            print("Maintenance skipped")
            return 1
        print(f"Maintenance completed in {report.duration_seconds:.2f}s (dry_run={report.dry_run})")
        for table in report.tables:
            if table.error_message:
                print(f"  {table.table_name}: skipped - {table.error_message}")
            else:
                print(f"  {table.table_name}: created={len(table.provisioned)} analyzed={len(table.analyzed)} "
                      f"retired={len(table.retired)} vacuumed={len(table.vacuumed)} errors={table.error_count}")
        return 1 if report.error_count else 0
    finally:
        await manager.close()


async def show_status(args) -> int:
    manager = await _open(args)
    try:
        status = manager.get_status()
        scheduler = manager.scheduler.get_status()
        print("Partition Maintenance Status")
        print("=" * 40)
        print(f"Running: {status.is_running}")
        print(f"Job scheduled: {status.job_scheduled}")
        print(f"Cron: {scheduler.cron} (enabled: {manager.scheduler.enabled})")
        print(f"Next run: {manager.scheduler.next_run_after(manager.clock()).isoformat()}")
        return 0
    finally:
        await manager.close()


async def run_daemon(args) -> int:
    manager = await _open(args)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    try:
        await manager.start_scheduler()
        if not manager.get_status().job_scheduled:
            print("Scheduler is disabled in the configuration")
            return 1
        print(f"Partition maintenance daemon running (cron: {manager.scheduler.cron})")
        await stop_event.wait()
        return 0
    finally:
        await manager.close()


COMMANDS = {
    'init': init_catalog,
    'health': show_health,
    'list': list_partitions,
    'create': create_partitions,
    'analyze': analyze_partitions,
    'cleanup': cleanup_partitions,
    'vacuum': vacuum_partitions,
    'maintenance': run_maintenance,
    'status': show_status,
    'daemon': run_daemon,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='partmand',
        description="Partition lifecycle management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show partition health for all configured tables
  partmand health --config configs/partitions.yaml

  # Preview which partitions of events would be dropped
  partmand cleanup events

  # Actually drop them
  partmand cleanup events --execute

  # Run a full maintenance pass without dropping anything
  partmand maintenance --dry-run
        """
    )

    parser.add_argument('--config', default='configs/partitions.yaml',
                        help='Path to partition manager configuration file')
    parser.add_argument('--db', default=None,
                        help='Path to a SQLite database (overrides the configured database)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init', help='Create the catalog and seed configured tables')
    subparsers.add_parser('health', help='Show partition health summary')

    list_parser = subparsers.add_parser('list', help='List partitions from the catalog')
    list_parser.add_argument('--table', help='Only list partitions of this table')

    create_parser = subparsers.add_parser('create', help='Create current and future partitions')
    create_parser.add_argument('table')
    create_parser.add_argument('--horizon', type=int,
                               help='Periods ahead to provision (default: table config)')

    analyze_parser = subparsers.add_parser('analyze', help='Refresh partition statistics')
    analyze_parser.add_argument('table')

    cleanup_parser = subparsers.add_parser('cleanup', help='Drop partitions past retention')
    cleanup_parser.add_argument('table')
    cleanup_parser.add_argument('--retention-months', type=int,
                                help='Retention window in months (default: table config)')
    cleanup_parser.add_argument('--execute', action='store_true',
                                help='Actually drop partitions (default is a dry run)')

    vacuum_parser = subparsers.add_parser('vacuum', help='Reclaim partition storage')
    vacuum_parser.add_argument('table')
    vacuum_parser.add_argument('--full', action='store_true', help='Run a full, locking vacuum')

    maintenance_parser = subparsers.add_parser('maintenance', help='Run one maintenance pass')
    maintenance_parser.add_argument('--dry-run', action='store_true',
                                    help='Report partitions to drop without dropping them')

    subparsers.add_parser('status', help='Show maintenance status')
    subparsers.add_parser('daemon', help='Run the cron scheduler until interrupted')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except PartitionManagerError as e:
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
