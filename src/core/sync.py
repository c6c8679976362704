"""
Synchronization orchestrator.

Coordinates every multi-step record operation against the remote store and
keeps the latest immutable snapshot of all indexed records:

1. full reload: probe -> load index -> fetch and decode each record -> sort
2. creation: validate -> encrypt -> write record -> append index -> reload
3. analyze / archive: probe -> lifecycle transition -> reload

Steps run strictly in order and the first failure aborts the rest. Failures
are posted to the status board and returned in the outcome; the snapshot is
only ever replaced by a completed reload.
"""

import secrets
import string
import time
from collections import deque
from typing import List, Optional

from util.logging import audit_event, logger

from . import config
from .codec import decode_record, encode_record, record_key
from .errors import RecordError, RecordParseError, RejectedError, RemoteFailure, UnavailableError
from .index import RecordIndexManager
from .ledger import AccountSession, ILedgerContract
from .lifecycle import LifecycleEngine, can_transition
from .schema import (
    CreateOutcome,
    CreationStatus,
    Record,
    RecordSnapshot,
    RecordStatus,
    TransitionOutcome,
)
from .status import StatusBoard
from .store import RemoteStoreClient

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_record_id() -> str:
    """Time-based id with a random base-36 suffix, e.g. ``tcm-1718000000000-k3j9x0a``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"tcm-{int(time.time() * 1000)}-{suffix}"


def describe_failure(prefix: str, error: RecordError) -> str:
    """User-facing message for a failed operation."""
    if isinstance(error, RemoteFailure) and error.user_rejected:
        return "Transaction rejected by user"
    return f"{prefix}: {error.message or 'Unknown error'}"


class RecordSynchronizer:
    """Owns the record snapshot and runs every operation that changes it."""

    def __init__(self, ledger: ILedgerContract = None, session: AccountSession = None,
                 cipher=None, status_board: StatusBoard = None, lifecycle_latency=None):
        self.session = session or AccountSession()
        self.store = RemoteStoreClient(ledger or config.get_ledger(), self.session)
        self.index = RecordIndexManager(self.store)
        self.lifecycle = LifecycleEngine(self.store, latency=lifecycle_latency)
        self.cipher = cipher or config.get_cipher()
        self.status = status_board or StatusBoard()

        self._snapshot = RecordSnapshot()
        self._reloads_in_flight = 0
        self.last_error: Optional[RecordError] = None

        # Ids whose record was written but whose index append failed
        self.unindexed_ids = deque(maxlen=config.REPAIR_WINDOW)

    @property
    def snapshot(self) -> RecordSnapshot:
        return self._snapshot

    @property
    def refreshing(self) -> bool:
        """True while at least one reload is in flight."""
        return self._reloads_in_flight > 0

    def can_act(self, record: Record) -> bool:
        """Whether the connected account may analyze or archive ``record``."""
        return can_transition(record, self.session.account)

    async def full_reload(self) -> RecordSnapshot:
        """Rebuild the snapshot from the store.

        Returns the previous snapshot unchanged when the store is unavailable
        or the index cannot be read. Records that are absent, unreadable or
        malformed are skipped.
        """
        self._reloads_in_flight += 1
        start_time = time.monotonic()
        try:
            if not await self.store.probe():
                self._report(UnavailableError(), "Contract is not available")
                logger.log_sync("reload", start_time, time.monotonic(), "failed", {"reason": "unavailable"})
                return self._snapshot

            try:
                ids = await self.index.load_index()
            except RemoteFailure as e:
                self._report(e, describe_failure("Error loading records", e))
                logger.log_sync("reload", start_time, time.monotonic(), "failed", {"reason": e.message})
                return self._snapshot

            records = []
            seen = set()
            skipped = 0
            for record_id in ids:
                if record_id in seen:
                    continue
                seen.add(record_id)

                try:
                    raw = await self.store.read(record_key(record_id))
                except RemoteFailure as e:
                    logger.warning(f"Error loading record {record_id}: {e.message}")
                    skipped += 1
                    continue

                if not raw:
                    skipped += 1
                    continue

                try:
                    records.append(decode_record(record_id, raw))
                except RecordParseError as e:
                    logger.log_parse_skip(record_key(record_id), e.message)
                    skipped += 1

            self._snapshot = RecordSnapshot.build(records)
            self.last_error = None
            logger.log_sync("reload", start_time, time.monotonic(), "success",
                            {"records": len(records), "skipped": skipped})
            return self._snapshot
        finally:
            self._reloads_in_flight -= 1

    async def check_availability(self) -> bool:
        available = await self.store.probe()
        if available:
            self.status.success("FHE contract is available and ready!")
        else:
            self._report(UnavailableError(), "FHE contract is not available")
        return available

    async def create_record(self, symptom_pattern: str, herb_formula: str,
                            patient_info: str = "", actor: str = None) -> CreateOutcome:
        """Create a pending record owned by ``actor`` (default: connected account).

        A record whose write succeeded but whose index append failed is
        returned as ``CREATED_UNINDEXED`` and remembered for :meth:`repair_index`.
        """
        actor = self.session.account if actor is None else actor

        if not actor:
            error = RejectedError("Please connect wallet first")
            self._report(error, error.message)
            return CreateOutcome(CreationStatus.FAILED, error=error)

        if not (symptom_pattern or "").strip() or not (herb_formula or "").strip():
            error = RejectedError("Please fill required fields")
            self._report(error, error.message)
            return CreateOutcome(CreationStatus.FAILED, error=error)

        self.status.pending("Encrypting TCM data with FHE...")

        try:
            await self.store.require_available()
            payload = self.cipher.encrypt({
                "symptomPattern": symptom_pattern,
                "herbFormula": herb_formula,
                "patientInfo": patient_info or "",
            })
            record = Record(
                id=new_record_id(),
                encrypted_payload=payload,
                created_at=int(time.time()),
                owner=actor,
                symptom_pattern=symptom_pattern,
                herb_formula=herb_formula,
                status=RecordStatus.PENDING,
            )
            await self.store.write(record_key(record.id), encode_record(record), signer=actor)
        except RecordError as e:
            self._report(e, describe_failure("Submission failed", e))
            return CreateOutcome(CreationStatus.FAILED, error=e)

        try:
            await self.index.append_id(record.id)
        except RecordError as e:
            self.unindexed_ids.append(record.id)
            self._report(e, describe_failure("Record stored but not indexed", e))
            audit_event("record.created_unindexed", {"record_id": record.id, "owner": actor})
            return CreateOutcome(CreationStatus.CREATED_UNINDEXED, record_id=record.id, error=e)

        audit_event("record.created", {"record_id": record.id, "owner": actor},
                    {"data": record.encrypted_payload, "symptomPattern": symptom_pattern})
        self.status.success("TCM data encrypted and submitted securely!")
        await self.full_reload()
        return CreateOutcome(CreationStatus.CREATED, record_id=record.id)

    async def analyze_record(self, record_id: str) -> TransitionOutcome:
        return await self._transition(
            record_id, RecordStatus.ANALYZED,
            "Analyzing TCM pattern with FHE...",
            "FHE analysis completed successfully!",
            "Analysis failed",
        )

    async def archive_record(self, record_id: str) -> TransitionOutcome:
        return await self._transition(
            record_id, RecordStatus.ARCHIVED,
            "Archiving record with FHE...",
            "Record archived successfully!",
            "Archive failed",
        )

    async def _transition(self, record_id: str, target: RecordStatus,
                          pending_message: str, success_message: str, failure_prefix: str) -> TransitionOutcome:
        actor = self.session.account
        if not actor:
            error = RejectedError("Please connect wallet first")
            self._report(error, error.message)
            return TransitionOutcome(record_id, target, error=error)

        self.status.pending(pending_message)
        try:
            await self.store.require_available()
            updated = await self.lifecycle.apply(record_id, target, actor)
        except RecordError as e:
            self._report(e, describe_failure(failure_prefix, e))
            return TransitionOutcome(record_id, target, error=e)

        audit_event("record.transition", {"record_id": record_id, "status": target.value, "actor": actor})
        self.status.success(success_message)
        await self.full_reload()
        return TransitionOutcome(record_id, target, record=updated)

    async def repair_index(self) -> List[str]:
        """Index remembered orphan records that exist and decode; returns the ids added."""
        candidates = list(self.unindexed_ids)
        if not candidates:
            return []

        try:
            await self.store.require_available()
            added = await self.index.reconcile(candidates)
        except RecordError as e:
            self._report(e, describe_failure("Index repair failed", e))
            return []

        # A concurrent failed create may already have evicted a candidate
        for record_id in candidates:
            if record_id in self.unindexed_ids:
                self.unindexed_ids.remove(record_id)

        if added:
            self.status.success(f"Indexed {len(added)} recovered record(s)")
            await self.full_reload()
        return added

    def _report(self, error: RecordError, message: str):
        self.last_error = error
        self.status.error(message)
        logger.log_operation(f"sync.{error.kind}", "failed", {"message": message, **error.details})
