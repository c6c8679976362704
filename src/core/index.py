"""
Record index manager.

The index is the only way records are enumerated: ids missing from it are
invisible even when their record entry exists. It only ever grows.

``append_id`` is a read-modify-write against a store without compare-and-swap,
so two writers appending at the same time can drop one of the ids. This is a
known gap of the remote store and is left unresolved here.
"""

from typing import Iterable, List

from util.logging import logger

from .codec import decode_index, decode_record, encode_index, index_key, record_key
from .errors import RecordParseError
from .store import RemoteStoreClient


class RecordIndexManager:
    """Maintains the ordered list of record ids stored under the index key."""

    def __init__(self, store: RemoteStoreClient):
        self.store = store

    async def load_index(self) -> List[str]:
        """Return the stored ids; empty if the index is absent or unparsable."""
        raw = await self.store.read(index_key())
        if not raw:
            logger.log_index_operation("load", 0, status="absent")
            return []

        try:
            ids = decode_index(raw)
        except RecordParseError as e:
            # Treated as empty; the next append rewrites a well-formed list
            logger.log_parse_skip(index_key(), e.message)
            return []

        logger.log_index_operation("load", len(ids))
        return ids

    async def append_id(self, record_id: str) -> List[str]:
        """Append ``record_id`` to the stored index and return the new list."""
        ids = await self.load_index()
        ids.append(record_id)
        await self.store.write(index_key(), encode_index(ids))
        logger.log_index_operation("append", len(ids), details={"record_id": record_id})
        return ids

    async def reconcile(self, candidate_ids: Iterable[str]) -> List[str]:
        """Append candidates whose record entry exists and decodes but are not indexed.

        Returns the ids that were added, in candidate order.
        """
        ids = await self.load_index()
        known = set(ids)
        added = []

        for record_id in candidate_ids:
            if record_id in known:
                continue
            raw = await self.store.read(record_key(record_id))
            if not raw:
                continue
            try:
                decode_record(record_id, raw)
            except RecordParseError as e:
                logger.log_parse_skip(record_key(record_id), e.message)
                continue
            ids.append(record_id)
            known.add(record_id)
            added.append(record_id)

        if added:
            await self.store.write(index_key(), encode_index(ids))

        logger.log_index_operation("reconcile", len(ids), details={"added": added})
        return added
