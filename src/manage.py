"""Presales database management CLI.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    from presales.domain import presales
    from presales.utils.db import setup_db

    print("Initializing presales domain...")
    presales.init()
    print("Creating presales database schema...")
    setup_db(presales)
    print("Done.")


def drop_database():
    from presales.domain import presales
    from presales.utils.db import drop_db

    print("Initializing presales domain...")
    presales.init()
    print("Dropping presales database schema...")
    drop_db(presales)
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Presales database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
