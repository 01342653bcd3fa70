"""
Command-line runner for BizTrack.

This module handles configuration loading, logging setup and the
``biztrack`` sub-commands.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from biztrack.config import (
    ERROR_MESSAGES,
    LOG_DIR,
    LOG_FILE,
    LOG_FORMAT,
    VERSION,
    ensure_directories,
    get_log_level,
)
from biztrack.exceptions import MalformedDocument
from biztrack.models import COLLECTION_SPECS
from biztrack.services import ExportService
from biztrack.sync import SyncController

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging to the log file and stdout."""
    ensure_directories()
    logging.basicConfig(
        level=logging.DEBUG if verbose else get_log_level(),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(LOG_DIR / LOG_FILE, encoding="utf-8"),
            logging.StreamHandler(sys.stdout),
        ],
    )


def load_environment():
    """Load a .env file from the working directory if there is one."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"Loaded environment from {env_path}")
    else:
        logger.debug(f".env file not found at {env_path}")


def confirm(message: str) -> bool:
    """Ask a yes/no question on the terminal."""
    answer = input(f"{message} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="biztrack",
        description="Local record keeping for a small business",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("status", help="Show the storage backend and record counts")

    export_json = subparsers.add_parser("export-json", help="Write a dated JSON backup")
    export_json.add_argument(
        "directory",
        nargs="?",
        default=".",
        help="Directory for the backup file (default: current directory)",
    )

    import_json = subparsers.add_parser(
        "import-json", help="Replace all data with a JSON backup"
    )
    import_json.add_argument("file", help="Backup file to import")
    import_json.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    export_xlsx = subparsers.add_parser("export-xlsx", help="Export all data to a workbook")
    export_xlsx.add_argument("file", help="Output .xlsx file")

    export_csv = subparsers.add_parser("export-csv", help="Export one collection to CSV")
    export_csv.add_argument("collection", choices=sorted(COLLECTION_SPECS))
    export_csv.add_argument("file", help="Output .csv file")

    clear = subparsers.add_parser("clear", help="Delete all records (settings are kept)")
    clear.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    return parser


async def cmd_status(controller: SyncController) -> int:
    settings = controller.ledger.settings
    print(f"Business: {settings.biz_name} ({settings.currency})")
    print(f"Storage:  {controller.backend_name}" + (" (fallback)" if controller.degraded else ""))
    print(f"State:    {controller.state.value}")
    for name, count in controller.ledger.counts().items():
        print(f"  {name:<10} {count:>6}")
    return 0


async def cmd_export_json(controller: SyncController, directory: str) -> int:
    path = ExportService(controller).write_backup(directory)
    print(f"Backup written to {path}")
    return 0


async def cmd_import_json(controller: SyncController, file: str, yes: bool) -> int:
    path = Path(file)
    if not path.exists():
        print(ERROR_MESSAGES["backup_not_found"].format(path=path))
        return 1

    if not yes and not confirm("This will REPLACE all your current data. Are you sure?"):
        print(ERROR_MESSAGES["import_cancelled"])
        return 1

    try:
        await controller.import_ledger(ExportService.read_backup(path))
    except MalformedDocument as e:
        logger.warning(f"Rejected backup {path}: {e.message}")
        print(ERROR_MESSAGES["invalid_backup"])
        return 1

    print("Data imported successfully")
    return 0


async def cmd_export_xlsx(controller: SyncController, file: str) -> int:
    buffer = ExportService(controller).export_to_xlsx()
    Path(file).write_bytes(buffer.getvalue())
    print(f"Workbook written to {file}")
    return 0


async def cmd_export_csv(controller: SyncController, collection: str, file: str) -> int:
    buffer = ExportService(controller).export_to_csv(collection)
    Path(file).write_bytes(buffer.getvalue())
    print(f"{collection} written to {file}")
    return 0


async def cmd_clear(controller: SyncController, yes: bool) -> int:
    if not yes:
        if not confirm("Delete ALL data permanently? This cannot be undone."):
            print(ERROR_MESSAGES["clear_cancelled"])
            return 1
        if not confirm("Are you absolutely sure? ALL sales, inventory, and expenses will be lost."):
            print(ERROR_MESSAGES["clear_cancelled"])
            return 1

    controller.ledger.clear_records()
    await controller.save()
    print("All data cleared")
    return 0


async def run_command(parsed: argparse.Namespace, controller: Optional[SyncController] = None) -> int:
    """Initialize storage, then run the selected command."""
    controller = controller or SyncController.from_config()
    await controller.initialize()

    try:
        if parsed.command == "status":
            return await cmd_status(controller)
        elif parsed.command == "export-json":
            return await cmd_export_json(controller, parsed.directory)
        elif parsed.command == "import-json":
            return await cmd_import_json(controller, parsed.file, parsed.yes)
        elif parsed.command == "export-xlsx":
            return await cmd_export_xlsx(controller, parsed.file)
        elif parsed.command == "export-csv":
            return await cmd_export_csv(controller, parsed.collection, parsed.file)
        elif parsed.command == "clear":
            return await cmd_clear(controller, parsed.yes)
        return 1
    finally:
        await controller.wait_for_saves()


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)
    load_environment()

    if not parsed.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(run_command(parsed))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
        print("\nShutting down...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
