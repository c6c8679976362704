"""
Record lifecycle state machine.

    pending ──> analyzed   (terminal)
       └─────> archived    (terminal)

Only the record's owner may move it out of ``pending``, and each record moves
exactly once. The owner check compares against the account connected when the
action runs, never against one captured at load time.
"""

import asyncio
from typing import Dict, Optional

from util.logging import logger

from . import config
from .codec import decode_record, encode_record, record_key
from .errors import NotFoundError, RejectedError
from .schema import Record, RecordStatus
from .store import RemoteStoreClient


# Valid state transitions (from -> to)
VALID_TRANSITIONS: Dict[RecordStatus, set] = {
    RecordStatus.PENDING: {RecordStatus.ANALYZED, RecordStatus.ARCHIVED},
    RecordStatus.ANALYZED: set(),
    RecordStatus.ARCHIVED: set(),
}


def is_valid_transition(from_status: RecordStatus, to_status: RecordStatus) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def can_transition(record: Record, actor: Optional[str]) -> bool:
    """Whether ``actor`` may analyze or archive ``record`` right now."""
    return record.owned_by(actor) and bool(VALID_TRANSITIONS[record.status])


def transition(record: Record, target: RecordStatus, actor: Optional[str]) -> Record:
    """Return ``record`` with its status moved to ``target``.

    Raises :class:`RejectedError` when ``actor`` is not the owner, when the
    record already left ``pending``, or when ``target`` is not a successor.
    All fields other than ``status`` are carried over unchanged.
    """
    try:
        target = RecordStatus(target)
    except ValueError:
        raise RejectedError(f"Unknown status: {target}", {"record_id": record.id})

    if not record.owned_by(actor):
        logger.log_transition(record.id, record.status.value, target.value, actor, "rejected", "not owner")
        raise RejectedError(
            "Only the record owner can change its status",
            {"record_id": record.id, "actor": actor or ""}
        )

    if record.status != RecordStatus.PENDING:
        logger.log_transition(record.id, record.status.value, target.value, actor, "rejected", "not pending")
        raise RejectedError(
            f"Record is already {record.status.value}",
            {"record_id": record.id, "status": record.status.value}
        )

    if not is_valid_transition(record.status, target):
        logger.log_transition(record.id, record.status.value, target.value, actor, "rejected", "invalid target")
        raise RejectedError(
            f"Invalid transition: {record.status.value} -> {target.value}",
            {"record_id": record.id}
        )

    return record.with_status(target)


class LifecycleEngine:
    """Applies status transitions to stored records.

    The stored envelope is re-read, transitioned, held for the simulated
    encrypted-computation latency, then written back under the same key.
    The index is never touched.
    """

    def __init__(self, store: RemoteStoreClient, latency: Optional[Dict[RecordStatus, float]] = None):
        self.store = store
        self._latency = latency

    def latency_for(self, target: RecordStatus) -> float:
        if self._latency is not None:
            return self._latency.get(target, 0.0)
        if target == RecordStatus.ANALYZED:
            return config.ANALYZE_LATENCY_SEC
        return config.ARCHIVE_LATENCY_SEC

    async def load(self, record_id: str) -> Record:
        raw = await self.store.read(record_key(record_id))
        if not raw:
            raise NotFoundError(record_id)
        return decode_record(record_id, raw)

    async def apply(self, record_id: str, target: RecordStatus, actor: Optional[str]) -> Record:
        record = await self.load(record_id)
        updated = transition(record, target, actor)

        await asyncio.sleep(self.latency_for(updated.status))

        await self.store.write(record_key(record_id), encode_record(updated), signer=actor)
        logger.log_transition(record_id, record.status.value, updated.status.value, actor)
        return updated

    async def analyze(self, record_id: str, actor: Optional[str]) -> Record:
        return await self.apply(record_id, RecordStatus.ANALYZED, actor)

    async def archive(self, record_id: str, actor: Optional[str]) -> Record:
        return await self.apply(record_id, RecordStatus.ARCHIVED, actor)
