"""Command-line interface for the RPL registration desk."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

from rpl.config import Settings, load_settings
from rpl.database import Database

logger = logging.getLogger("rpl.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="RPL registration desk utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create or upgrade the registrations database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP registration service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: PORT or 3000)",
    )

    list_parser = subparsers.add_parser("list", help="Print stored registrations")
    list_parser.add_argument(
        "--status",
        choices=("pending", "verified", "rejected"),
        default=None,
        help="Only show registrations with this payment status",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "list"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    added = database.initialize()
    if added:
        logger.info("Added missing columns: %s", ", ".join(added))
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int | None) -> None:
    from rpl.service import create_app
    import uvicorn

    bind_port = port if port is not None else settings.port
    logger.info("Starting registration service on http://%s:%s", host, bind_port)

    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=host, port=bind_port, log_level="info")


def _list_registrations(database: Database, status: str | None) -> None:
    registrations = [
        item
        for item in database.list_registrations()
        if status is None or item.payment_status.value == status
    ]
    if not registrations:
        print("No registrations found.")
        return

    print(f"{len(registrations)} registration(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Mobile':<14}  {'Role':<14}  {'Status':<9}  Created")
    print("-" * 90)
    for item in registrations:
        created = item.created_at.strftime("%Y-%m-%d %H:%M:%S %Z") if item.created_at else "-"
        print(
            f"{item.id:>4}  {item.player_name:<24}  {item.player_mobile:<14}  "
            f"{item.player_role:<14}  {item.payment_status.value:<9}  {created}"
        )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = load_settings()
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "list":
        _list_registrations(database, args.status)
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
