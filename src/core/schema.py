"""
Domain data shapes for TCM diagnosis records.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class RecordStatus(str, Enum):
    """Closed status enumeration of a record's lifecycle."""
    PENDING = "pending"
    ANALYZED = "analyzed"
    ARCHIVED = "archived"

    @classmethod
    def coerce(cls, value: Any) -> "RecordStatus":
        """Map a stored status tag to a member; absent or legacy tags become PENDING."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


@dataclass(frozen=True)
class Record:
    id: str
    encrypted_payload: str
    created_at: int  # unix seconds
    owner: str
    symptom_pattern: str
    herb_formula: str
    status: RecordStatus = RecordStatus.PENDING
    # Unrecognized envelope fields, written back untouched
    extras: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def with_status(self, status: RecordStatus) -> "Record":
        return replace(self, status=status, extras=dict(self.extras))

    def owned_by(self, account: Optional[str]) -> bool:
        """Case-insensitive owner comparison; an empty account owns nothing."""
        if not account:
            return False
        return self.owner.lower() == account.lower()


@dataclass(frozen=True)
class RecordSnapshot:
    """Immutable view of all records reachable through the index."""
    records: Tuple[Record, ...] = ()
    loaded_at: Optional[datetime] = None

    @classmethod
    def build(cls, records: List[Record]) -> "RecordSnapshot":
        ordered = sorted(records, key=lambda r: r.created_at, reverse=True)
        return cls(records=tuple(ordered), loaded_at=datetime.now())

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def find(self, record_id: str) -> Optional[Record]:
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def owned_by(self, account: Optional[str]) -> List[Record]:
        return [r for r in self.records if r.owned_by(account)]

    def counts(self) -> Dict[str, int]:
        """Record totals per status, plus the overall total."""
        counts = {status.value: 0 for status in RecordStatus}
        for record in self.records:
            counts[record.status.value] += 1
        counts["total"] = len(self.records)
        return counts

    def distribution(self) -> Dict[str, float]:
        """Percentage of records per status (0 for an empty snapshot)."""
        total = len(self.records) or 1
        counts = self.counts()
        return {
            status.value: round(counts[status.value] / total * 100, 2)
            for status in RecordStatus
        }


class CreationStatus(str, Enum):
    CREATED = "created"
    CREATED_UNINDEXED = "created_unindexed"
    FAILED = "failed"


@dataclass(frozen=True)
class CreateOutcome:
    """Result of a creation attempt; ``record_id`` is set once the record write succeeded."""
    status: CreationStatus
    record_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status == CreationStatus.CREATED


@dataclass(frozen=True)
class TransitionOutcome:
    record_id: str
    target: RecordStatus
    record: Optional[Record] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def shorten_address(address: str) -> str:
    """Abbreviate an account identifier for display."""
    if len(address) <= 12:
        return address
    return f"{address[:8]}...{address[36:] if len(address) > 36 else address[-4:]}"
