#!/usr/bin/env python3
"""
Index Repair Utility
Appends orphaned records (stored, but missing from the record index) back
into the index of the local SQLite ledger.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import LEDGER_DB_PATH, REPAIR_WINDOW
from src.core.errors import RecordError
from src.core.index import RecordIndexManager
from src.core.ledger import AccountSession, SQLiteLedger
from src.core.store import RemoteStoreClient


async def repair(db_path: str, record_ids, signer: str):
    ledger = SQLiteLedger(db_path)
    # Commits made by the repair run are signed by the operator account
    store = RemoteStoreClient(ledger, AccountSession(signer))
    if not await store.probe():
        print("ERROR: Ledger not available")
        return None

    manager = RecordIndexManager(store)
    before = await manager.load_index()
    print(f"Found {len(before)} ids in record index")

    return await manager.reconcile(record_ids)


def main(argv=None):
    """Reconcile the given record ids into the ledger's record index."""
    parser = argparse.ArgumentParser(description="Repair the TCM record index")
    parser.add_argument("record_ids", nargs="+", help="Recently issued record ids to check")
    parser.add_argument("--db", default=LEDGER_DB_PATH, help="Ledger SQLite path")
    parser.add_argument("--signer", required=True, help="Account that signs the index commit")
    args = parser.parse_args(argv)

    if len(args.record_ids) > REPAIR_WINDOW:
        print(f"ERROR: At most {REPAIR_WINDOW} ids can be checked per run")
        sys.exit(1)

    print("Starting record index repair...")
    try:
        added = asyncio.run(repair(args.db, args.record_ids, args.signer))
    except RecordError as e:
        print(f"ERROR: Index repair failed: {e.message}")
        sys.exit(1)

    if added is None:
        sys.exit(1)

    for record_id in added:
        print(f"✓ Indexed {record_id}")
    print(f"Index repair complete! Added {len(added)} of {len(args.record_ids)} candidates")


if __name__ == "__main__":
    main()
