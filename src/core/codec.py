"""
Record and index codec.

Records are stored as a field-tagged JSON envelope, UTF-8 encoded:

    {"data": <ciphertext>, "timestamp": <int>, "owner": <account>,
     "symptomPattern": <str>, "herbFormula": <str>, "status": <tag>}

The ciphertext in ``data`` is carried as an opaque string and never
interpreted. The index is a JSON list of record id strings.
"""

from typing import List, Sequence

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator

from . import config
from .errors import RecordParseError
from .schema import Record, RecordStatus


class RecordEnvelope(BaseModel):
    """Wire shape of a stored record. Unknown fields are kept for write-back."""
    model_config = ConfigDict(extra="allow")

    data: str
    timestamp: int
    owner: str
    symptomPattern: str
    herbFormula: str
    status: RecordStatus = RecordStatus.PENDING

    @field_validator('status', mode='before')
    @classmethod
    def status_falls_back_to_pending(cls, v):
        return RecordStatus.coerce(v)


_INDEX_ADAPTER = TypeAdapter(List[str])


def record_key(record_id: str) -> str:
    """Store key holding the envelope of ``record_id``."""
    return f"{config.RECORD_KEY_PREFIX}{record_id}"


def index_key() -> str:
    return config.INDEX_KEY


def encode_record(record: Record) -> bytes:
    envelope = RecordEnvelope(
        data=record.encrypted_payload,
        timestamp=record.created_at,
        owner=record.owner,
        symptomPattern=record.symptom_pattern,
        herbFormula=record.herb_formula,
        status=record.status,
        **record.extras
    )
    return envelope.model_dump_json().encode("utf-8")


def decode_record(record_id: str, raw: bytes) -> Record:
    """Decode a stored envelope; raises :class:`RecordParseError` for malformed bytes."""
    if not raw:
        raise RecordParseError(f"Empty buffer for record {record_id}")

    try:
        text = bytes(raw).decode("utf-8")
        envelope = RecordEnvelope.model_validate_json(text)
    except (UnicodeDecodeError, ValidationError) as e:
        raise RecordParseError(f"Malformed record {record_id}: {e}", {"record_id": record_id}) from e

    return Record(
        id=record_id,
        encrypted_payload=envelope.data,
        created_at=envelope.timestamp,
        owner=envelope.owner,
        symptom_pattern=envelope.symptomPattern,
        herb_formula=envelope.herbFormula,
        status=envelope.status,
        extras=dict(envelope.model_extra or {}),
    )


def encode_index(ids: Sequence[str]) -> bytes:
    return _INDEX_ADAPTER.dump_json(list(ids))


def decode_index(raw: bytes) -> List[str]:
    """Decode the index list, preserving order; raises :class:`RecordParseError`."""
    try:
        text = bytes(raw).decode("utf-8")
        return _INDEX_ADAPTER.validate_json(text)
    except (UnicodeDecodeError, ValidationError) as e:
        raise RecordParseError(f"Malformed record index: {e}") from e
