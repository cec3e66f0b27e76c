"""
pg-collections command line.

Usage:
    pg-collections connect --host localhost:5432 --db test_db --user root --password root
    pg-collections create-table users username:varchar(255):unique:notnull age:int
    pg-collections create-table users details:jsonb --dry-run
    pg-collections disconnect
    pg-collections help
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from pg_collections.config import (
    ConnectionSettings,
    ensure_gitignored,
    remove_credentials,
    resolve_credentials_path,
)
from pg_collections.psql_client import PSQLClient
from pg_collections.table_builder import create_table_sql

logger = logging.getLogger("pg_collections.cli")

HELP_TEXT = """
Available commands:

  connect                       Save database credentials (permanent)
  disconnect                    Remove saved credentials
  create-table | createTable    Create a table

connect parameters:
  --host      host:port
  --db        database
  --user      user
  --password  password

  Example: pg-collections connect --host localhost:5432 --db test_db --user root --password root

create-table <tableName> <...columns>

  column format:  name:type:[index]:[nullable]:[default]

  name      Any
  type      Any postgresql type (or shortcuts: timestampz, int, bool)
  index     <unique|noindex> (optional)
  nullable  <null|notnull> (optional)
  default   <now()|true|false|...> (optional)

  Example:
    pg-collections create-table users \\
      username:varchar(255):unique:notnull \\
      password:varchar(255):noindex:notnull \\
      age:int \\
      details:jsonb \\
      created:timestampz:noindex:null:now() \\
      modified:timestampz:noindex:null:now()
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-collections",
        description="Manage credentials and tables for pg_collections.",
        epilog="Run `pg-collections help` for the column format and examples.",
    )
    parser.add_argument("--credentials", help="Credentials file (default: $PG_COLLECTIONS_CREDENTIALS or ./.pg_collections_credentials.json)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    connect = sub.add_parser("connect", help="Save database credentials")
    connect.add_argument("--host", help="host:port")
    connect.add_argument("--db", help="Database name")
    connect.add_argument("-u", "--user")
    connect.add_argument("-p", "--password")

    sub.add_parser("disconnect", help="Remove saved credentials")

    create = sub.add_parser("create-table", aliases=["createTable"], help="Create a table")
    create.add_argument("table")
    create.add_argument("columns", nargs="+", help="name:type:[index]:[nullable]:[default]")
    create.add_argument("--dry-run", action="store_true", help="Print the statement instead of running it")

    sub.add_parser("help", help="Show the column format and examples")
    return parser


def connect(args: argparse.Namespace) -> int:
    settings = ConnectionSettings.from_address(args.host, args.db, args.user, args.password)
    path = resolve_credentials_path(args.credentials)
    settings.save(path)
    ensure_gitignored(path)
    logger.info("Connected")
    return 0


def disconnect(args: argparse.Namespace) -> int:
    remove_credentials(resolve_credentials_path(args.credentials))
    logger.info("Disconnected")
    return 0


def run_query(query: str, credentials: str | None = None) -> None:
    """Run one statement with the saved credentials."""
    settings = ConnectionSettings.load(resolve_credentials_path(credentials))
    client = PSQLClient(**settings.client_kwargs(), minconn=1, maxconn=1)
    try:
        client.execute_query(query)
    finally:
        client.close()


def create_table(args: argparse.Namespace) -> int:
    query = create_table_sql(args.table, args.columns)
    if args.dry_run:
        print(query)
        return 0
    logger.debug("Running: %s", query)
    run_query(query, args.credentials)
    logger.info("Done.")
    return 0


COMMANDS = {
    "connect": connect,
    "disconnect": disconnect,
    "create-table": create_table,
    "createTable": create_table,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(message)s",
    )

    if args.command in (None, "help"):
        print(HELP_TEXT)
        return 0

    try:
        return COMMANDS[args.command](args)
    except Exception as exc:
        logger.error("%s", exc)
        logger.error("Please read the documentation : pg-collections help")
        return 1


if __name__ == "__main__":
    sys.exit(main())
