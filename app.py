"""
Operations entry point for the sheets data store.

    python app.py init                      # create missing sheets + headers
    python app.py validate                  # header drift report, exit 1 on drift
    python app.py backup [-o FILE]          # JSON backup of every table
    python app.py restore FILE [--clear] [--tables Projects Tasks]
    python app.py export-excel FILE         # one worksheet per table
"""

import argparse
import sys

from core.config import load_settings, setup_logging
from data.repository_factory import get_repository
from storage.export_service import export_all_to_excel, restore_backup, write_backup


def _print_reports(reports) -> bool:
    ok = True
    for table, report in reports.items():
        if report.is_valid:
            print(f"OK       {table}")
            continue
        ok = False
        print(f"DRIFT    {table}")
        for diff in report.diffs:
            print(f"         - {diff}")
    return ok


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Spreadsheet data store operations")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create missing sheets and headers")
    sub.add_parser("validate", help="compare live headers with the schema registry")

    backup = sub.add_parser("backup", help="write a JSON backup of every table")
    backup.add_argument("-o", "--output", help="backup file path")

    restore = sub.add_parser("restore", help="restore records from a JSON backup")
    restore.add_argument("path")
    restore.add_argument("--clear", action="store_true", help="delete existing rows first")
    restore.add_argument("--tables", nargs="*", help="only these tables")

    excel = sub.add_parser("export-excel", help="export every table to an .xlsx file")
    excel.add_argument("path")

    return parser


def main(argv=None, repo=None, settings=None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or load_settings()
    setup_logging(settings.log_level)
    repo = repo or get_repository(settings)

    if args.command == "init":
        return 0 if _print_reports(repo.initialize_sheets()) else 1

    if args.command == "validate":
        return 0 if _print_reports(repo.validate_all_sheets()) else 1

    if args.command == "backup":
        path = write_backup(repo, settings.backup_dir, settings.spreadsheet_id or "", args.output)
        print(path)
        return 0

    if args.command == "restore":
        restored = restore_backup(repo, args.path, clear_existing=args.clear, tables=args.tables)
        for table, count in restored.items():
            print(f"{table}: {count}")
        return 0

    if args.command == "export-excel":
        with open(args.path, "wb") as f:
            f.write(export_all_to_excel(repo))
        print(args.path)
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
