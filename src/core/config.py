"""
Runtime configuration for the TCM record ledger client.
All settings are read from the environment at import time.
"""

import os
from pathlib import Path

# Ledger collaborator configuration
LEDGER_PROVIDER = os.getenv("LEDGER_PROVIDER", "memory")  # memory|sqlite
LEDGER_DB_PATH = os.getenv("LEDGER_DB_PATH", "./data/ledger.db")
LEDGER_AVAILABLE = os.getenv("LEDGER_AVAILABLE", "true").lower() == "true"

# Remote store key schema
INDEX_KEY = os.getenv("INDEX_KEY", "tcm_record_keys")
RECORD_KEY_PREFIX = os.getenv("RECORD_KEY_PREFIX", "tcm_record_")

# Encryption collaborator configuration
CIPHER_PROVIDER = os.getenv("CIPHER_PROVIDER", "envelope")  # envelope|aesgcm
TCM_MASTER_KEY = os.getenv("TCM_MASTER_KEY")  # 64 hex chars, optional
TCM_MASTER_PASSWORD = os.getenv("TCM_MASTER_PASSWORD", "default_master_key_change_in_production")

# Simulated encrypted-computation latency (seconds)
ANALYZE_LATENCY_SEC = float(os.getenv("ANALYZE_LATENCY_SEC", "3.0"))
ARCHIVE_LATENCY_SEC = float(os.getenv("ARCHIVE_LATENCY_SEC", "2.0"))

# Transaction status display
STATUS_SUCCESS_TTL_SEC = float(os.getenv("STATUS_SUCCESS_TTL_SEC", "2.0"))
STATUS_ERROR_TTL_SEC = float(os.getenv("STATUS_ERROR_TTL_SEC", "3.0"))
STATUS_HISTORY_SIZE = int(os.getenv("STATUS_HISTORY_SIZE", "50"))

# Maximum number of unindexed ids remembered for the repair pass
REPAIR_WINDOW = int(os.getenv("REPAIR_WINDOW", "20"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Version string
VERSION = "1.0.0"


def get_ledger():
    """Get configured ledger collaborator implementation."""
    if LEDGER_PROVIDER == "sqlite":
        from .ledger import SQLiteLedger
        return SQLiteLedger(LEDGER_DB_PATH, available=LEDGER_AVAILABLE)

    # Default to in-memory ledger for unknown providers
    from .ledger import InMemoryLedger
    return InMemoryLedger(available=LEDGER_AVAILABLE)


def get_cipher():
    """Get configured encryption collaborator implementation."""
    if CIPHER_PROVIDER == "aesgcm":
        from .cipher import AesGcmCipher
        if TCM_MASTER_KEY:
            return AesGcmCipher(bytes.fromhex(TCM_MASTER_KEY))
        return AesGcmCipher.from_password(TCM_MASTER_PASSWORD)

    from .cipher import EnvelopeCipher
    return EnvelopeCipher()


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the ledger database directory exists."""
    Path(db_path or LEDGER_DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if LEDGER_PROVIDER not in ["memory", "sqlite"]:
        issues.append(f"Invalid LEDGER_PROVIDER: {LEDGER_PROVIDER}")

    if CIPHER_PROVIDER not in ["envelope", "aesgcm"]:
        issues.append(f"Invalid CIPHER_PROVIDER: {CIPHER_PROVIDER}")

    if TCM_MASTER_KEY is not None:
        try:
            if len(bytes.fromhex(TCM_MASTER_KEY)) != 32:
                issues.append("TCM_MASTER_KEY must encode exactly 32 bytes")
        except ValueError:
            issues.append("TCM_MASTER_KEY must be hex encoded")

    if ANALYZE_LATENCY_SEC < 0 or ARCHIVE_LATENCY_SEC < 0:
        issues.append("Latency settings must be >= 0")

    if REPAIR_WINDOW < 1:
        issues.append("REPAIR_WINDOW must be >= 1")

    if not INDEX_KEY.strip():
        issues.append("INDEX_KEY cannot be empty")

    return issues
