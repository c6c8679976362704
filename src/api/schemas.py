"""
Request/response models for the record ledger HTTP API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from ..core.schema import Record, shorten_address


class RecordCreateRequest(BaseModel):
    symptom_pattern: str
    herb_formula: str
    patient_info: str = ""

    @field_validator('symptom_pattern')
    @classmethod
    def symptom_pattern_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('symptom_pattern cannot be empty')
        return v

    @field_validator('herb_formula')
    @classmethod
    def herb_formula_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('herb_formula cannot be empty')
        return v

    @field_validator('patient_info')
    @classmethod
    def patient_info_must_be_reasonable_length(cls, v):
        if len(v) > 2000:
            raise ValueError('patient_info must be less than 2000 characters')
        return v


class AccountChangeRequest(BaseModel):
    """Wallet account-change notification; the first account becomes active."""
    accounts: List[str]


class RecordResponse(BaseModel):
    id: str
    encrypted_payload: str
    created_at: int
    owner: str
    owner_short: str
    symptom_pattern: str
    herb_formula: str
    status: str
    can_act: bool

    @classmethod
    def from_record(cls, record: Record, can_act: bool) -> "RecordResponse":
        return cls(
            id=record.id,
            encrypted_payload=record.encrypted_payload,
            created_at=record.created_at,
            owner=record.owner,
            owner_short=shorten_address(record.owner),
            symptom_pattern=record.symptom_pattern,
            herb_formula=record.herb_formula,
            status=record.status.value,
            can_act=can_act,
        )


class RecordListResponse(BaseModel):
    records: List[RecordResponse]
    account: str
    refreshing: bool
    loaded_at: Optional[datetime] = None


class StatsResponse(BaseModel):
    total: int
    pending: int
    analyzed: int
    archived: int
    distribution: Dict[str, float]


class CreateResponse(BaseModel):
    status: str  # created, created_unindexed
    record_id: str
    message: str


class TransitionResponse(BaseModel):
    record: RecordResponse
    message: str


class StatusResponse(BaseModel):
    visible: bool
    status: str  # pending, success, error
    message: str


class SessionResponse(BaseModel):
    account: str
    connected: bool


class AvailabilityResponse(BaseModel):
    available: bool


class RepairResponse(BaseModel):
    added: List[str]
    remaining: List[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    available: bool
    record_count: int


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
