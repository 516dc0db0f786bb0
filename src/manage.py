"""Marketplace database management CLI.

Creates and drops the relational schema of the marketplace domain, and
rebuilds stock level snapshots from the inventory ledger.

Usage:
    python src/manage.py setup-db          # Create all tables
    python src/manage.py drop-db           # Drop all tables
    python src/manage.py reconcile-stock   # Recompute stock snapshots from the ledger
"""

import argparse
import sys


def setup_database():
    from marketplace.domain import marketplace
    from marketplace.utils.db import setup_db

    print("Initializing marketplace domain...")
    marketplace.init()
    print("Creating marketplace database schema...")
    setup_db(marketplace)
    print("Done.")


def drop_database():
    from marketplace.domain import marketplace
    from marketplace.utils.db import drop_db

    print("Initializing marketplace domain...")
    marketplace.init()
    print("Dropping marketplace database schema...")
    drop_db(marketplace)
    print("Done.")


def reconcile_stock(skus=None):
    """Rebuild each stock unit's level snapshot and report drift."""
    from marketplace.domain import marketplace
    from marketplace.inventory.levels import stock_levels
    from marketplace.inventory.receiving import ReconcileStock

    marketplace.init()
    with marketplace.domain_context():
        targets = skus or [row["sku"] for row in stock_levels()]
        for sku in targets:
            drift = marketplace.process(ReconcileStock(sku=sku), asynchronous=False)
            if any(drift.values()):
                print(f"  {sku}: on_hand {drift['on_hand']:+d}, reserved {drift['reserved']:+d}")
    print(f"Reconciled {len(targets)} stock unit(s).")


def main():
    parser = argparse.ArgumentParser(description="Marketplace database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    reconcile_parser = subparsers.add_parser("reconcile-stock", help="Rebuild stock snapshots from the ledger")
    reconcile_parser.add_argument("--sku", nargs="*", help="Specific SKU(s) to reconcile (default: all)")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "reconcile-stock":
        reconcile_stock(args.sku)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
