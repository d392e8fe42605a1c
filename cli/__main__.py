#!/usr/bin/env python3
"""
Stockroom CLI - Command-line interface for the product category hierarchy.

Usage:
    python -m cli <command> <subcommand> [options]

Commands:
    categories   Create, move, search and maintain categories
    migrate      Database migrations

Examples:
    python -m cli migrate apply
    python -m cli categories seed
    python -m cli categories tree --max-depth 2
    python -m cli categories move 12 --parent-id 3
    python -m cli categories search "oil filt"
"""

import sys
import argparse
from cli import categories, migrate
from config import load_config
from services.base import Services
from db.manager import DatabaseManager
from hierarchy.errors import HierarchyError
from logger import setup_logging


def main():
    """Main CLI entry point with subcommands."""
    parser = argparse.ArgumentParser(
        prog="cli",
        description="Stockroom - Product category hierarchy management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
        required=True,
    )

    categories.setup_parser(subparsers)
    migrate.setup_parser(subparsers)

    args = parser.parse_args()

    if hasattr(args, "func"):
        try:
            config = load_config()
            setup_logging(config)

            # Migrate commands need db_manager for raw database operations
            if args.command == "migrate":
                args.func(args, DatabaseManager(config))
            else:
                args.func(args, Services(config))
        except HierarchyError as e:
            print(f"Error [{e.code}]: {e.message}")
            sys.exit(1)
        except Exception as e:
            print(f"Error: {e}")
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
