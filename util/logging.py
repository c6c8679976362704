"""
Structured logging for the TCM record ledger client.
Store, index, lifecycle and synchronization operations log through here.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['data', 'encrypted_payload', 'payload', 'patient_info', 'secret', 'password']


class StructuredLogger:
    """Structured logger for record store, index, lifecycle and sync operations."""

    def __init__(self, name: str = "tcm_ledger"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error", "rejected"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_store_operation(self, operation: str, key: str, size: int = None, status: str = "success", error: str = None):
        """Log a remote store read/write/probe. Values are never logged, only their size."""
        details = {"key": key}
        if size is not None:
            details["bytes"] = size
        if error:
            details["error"] = error[:100]

        self.log_operation(f"store.{operation}", status, details)

    def log_index_operation(self, operation: str, count: int, status: str = "success", details: Dict[str, Any] = None):
        """Log an index load/append/reconcile."""
        log_details = {"count": count}
        if details:
            log_details.update(details)

        self.log_operation(f"index.{operation}", status, log_details)

    def log_parse_skip(self, key: str, reason: str):
        """Log a stored entry skipped because it did not decode."""
        self.log_operation("codec.skip", "skipped", {"key": key, "reason": str(reason)[:100]})

    def log_transition(self, record_id: str, from_status: str, to_status: str, actor: str, status: str = "success", reason: str = ""):
        """Log a lifecycle transition attempt."""
        log_details = {
            "record_id": record_id,
            "from": from_status,
            "to": to_status,
            "actor": actor or "<disconnected>",
        }
        if reason:
            log_details["reason"] = reason[:100]

        self.log_operation("lifecycle.transition", status, log_details)

    def log_sync(self, operation: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log a synchronization pass with its duration."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation(f"sync.{operation}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with ciphertext and patient data redacted."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
