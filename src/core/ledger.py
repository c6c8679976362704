"""
Ledger contract collaborators and the account session.

The contract exposes a generic byte-valued key-value store:
``is_available()``, ``get_data(key)`` and ``set_data(key, value, signer)``.
Transaction execution, gas and finality belong to the contract; the classes
here are local stand-ins with the same surface.
"""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from . import db


class LedgerError(Exception):
    """Raised by a ledger collaborator when a call or commit fails."""
    pass


class ILedgerContract(ABC):
    """Abstract interface for the ledger's key-value contract."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Report whether the contract's computation environment is ready."""
        pass

    @abstractmethod
    async def get_data(self, key: str) -> bytes:
        """Return the bytes stored under ``key`` (empty if never written)."""
        pass

    @abstractmethod
    async def set_data(self, key: str, value: bytes, signer: Optional[str] = None) -> None:
        """Commit ``value`` under ``key``, signed by ``signer``."""
        pass


class InMemoryLedger(ILedgerContract):
    """Dictionary-backed contract for tests and demos.

    ``fail_keys`` makes commits to the listed keys fail, and
    ``reject_signatures`` simulates a wallet declining every signature.
    """

    def __init__(self, available: bool = True, initial: Optional[Dict[str, bytes]] = None):
        self.available = available
        self.reject_signatures = False
        self.fail_keys: Set[str] = set()
        self._data: Dict[str, bytes] = dict(initial or {})
        self.commits: List[tuple] = []

    async def is_available(self) -> bool:
        return self.available

    async def get_data(self, key: str) -> bytes:
        return self._data.get(key, b"")

    async def set_data(self, key: str, value: bytes, signer: Optional[str] = None) -> None:
        if self.reject_signatures:
            raise LedgerError("user rejected transaction")
        if not signer:
            raise LedgerError("no signer available for transaction")
        if key in self.fail_keys:
            raise LedgerError(f"execution reverted: write to {key} failed")
        self._data[key] = bytes(value)
        self.commits.append((key, signer))

    def keys(self) -> Iterable[str]:
        return list(self._data.keys())

    def raw(self, key: str) -> bytes:
        return self._data.get(key, b"")

    def put_raw(self, key: str, value: bytes) -> None:
        """Seed a value without going through a signed commit."""
        self._data[key] = bytes(value)


class SQLiteLedger(ILedgerContract):
    """Contract stand-in persisted in a local SQLite file.

    Calls run in worker threads so the event loop is never blocked.
    """

    def __init__(self, db_path: str, available: bool = True):
        self.db_path = db_path
        self.available = available
        db.init_db(db_path)

    async def is_available(self) -> bool:
        if not self.available:
            return False
        return await asyncio.to_thread(db.health_check, self.db_path)

    async def get_data(self, key: str) -> bytes:
        try:
            return await asyncio.to_thread(db.read_value, key, self.db_path)
        except sqlite3.Error as e:
            raise LedgerError(f"ledger read failed: {e}") from e

    async def set_data(self, key: str, value: bytes, signer: Optional[str] = None) -> None:
        if not signer:
            raise LedgerError("no signer available for transaction")
        try:
            await asyncio.to_thread(db.write_value, key, bytes(value), signer, self.db_path)
        except sqlite3.Error as e:
            raise LedgerError(f"ledger commit failed: {e}") from e


class AccountSession:
    """Holds the wallet's currently connected account.

    Authorization always reads ``account`` at action time, so an account
    change between load and action changes the outcome.
    """

    def __init__(self, account: str = ""):
        self._account = account or ""

    @property
    def account(self) -> str:
        return self._account

    @property
    def is_connected(self) -> bool:
        return bool(self._account)

    def connect(self, account: str):
        self._set(account or "")

    def disconnect(self):
        self._set("")

    def on_accounts_changed(self, accounts: List[str]):
        """Wallet notification: the first listed account becomes active."""
        self._set(accounts[0] if accounts else "")

    def is_owner(self, address: str) -> bool:
        if not self._account or not address:
            return False
        return self._account.lower() == address.lower()

    def _set(self, account: str):
        self._account = account.strip()
