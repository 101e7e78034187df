import argparse
import os
import sqlite3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rpl.database import EXPECTED_COLUMNS, Database, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Add any missing columns to an existing registrations table"
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to RPL_DB_PATH or data/rpl.sqlite3)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    db_env = args.db_path or os.getenv("RPL_DB_PATH")
    db_path = resolve_database_path(db_env)
    database = Database(db_path)

    try:
        added = database.initialize()
    except sqlite3.Error as exc:
        print(f"Migration error: {exc}", file=sys.stderr)
        return 1

    for column in EXPECTED_COLUMNS:
        if column in added:
            print(f"Added column {column}")
        else:
            print(f"Already has column {column}")

    print(f"Migration complete for {db_path}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
