"""
Error taxonomy for record synchronization and lifecycle operations.

    RecordError (base)
    ├── UnavailableError   remote computation environment not ready (soft)
    ├── NotFoundError      targeted record key absent
    ├── RecordParseError   malformed stored bytes (skipped by callers)
    ├── RejectedError      authorization or validation failure
    └── RemoteFailure      collaborator commit/read failed (reason kept verbatim)
"""

from typing import Any, Dict, Optional


class RecordError(Exception):
    """Base error for all record-layer failures."""

    kind = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnavailableError(RecordError):
    """Raised when the ledger's computation environment is not ready."""

    kind = "unavailable"

    def __init__(self, message: str = "Contract is not available"):
        super().__init__(message)


class NotFoundError(RecordError):
    """Raised when a targeted record key holds no data."""

    kind = "not_found"

    def __init__(self, record_id: str):
        super().__init__("Record not found", {"record_id": record_id})
        self.record_id = record_id


class RecordParseError(RecordError):
    """Raised by the codec for buffers that do not decode."""

    kind = "parse_error"


class RejectedError(RecordError):
    """Raised for authorization and validation failures."""

    kind = "rejected"


class RemoteFailure(RecordError):
    """
    Raised when the ledger collaborator fails a read or commit.

    The collaborator's reason is kept verbatim in ``message``.
    """

    kind = "remote_failure"

    @property
    def user_rejected(self) -> bool:
        return "user rejected transaction" in self.message.lower()
