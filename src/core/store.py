"""
Typed facade over the ledger contract's byte-string get/set primitives.
"""

from typing import Optional

from util.logging import logger

from .errors import RemoteFailure, UnavailableError
from .ledger import ILedgerContract, LedgerError


class RemoteStoreClient:
    """Reads and writes UTF-8 byte buffers through a ledger contract.

    No retries are attempted; collaborator failures surface as
    :class:`RemoteFailure` with the collaborator's reason unchanged.
    """

    def __init__(self, ledger: ILedgerContract, session=None):
        self.ledger = ledger
        self.session = session

    async def probe(self) -> bool:
        """Check the remote computation environment; errors count as unavailable."""
        try:
            available = bool(await self.ledger.is_available())
        except LedgerError as e:
            logger.log_store_operation("probe", "-", status="failed", error=str(e))
            return False
        logger.log_store_operation("probe", "-", status="available" if available else "unavailable")
        return available

    async def require_available(self):
        if not await self.probe():
            raise UnavailableError()

    async def read(self, key: str) -> bytes:
        """Return stored bytes for ``key``; empty bytes mean absent."""
        try:
            value = await self.ledger.get_data(key)
        except LedgerError as e:
            logger.log_store_operation("read", key, status="failed", error=str(e))
            raise RemoteFailure(str(e), {"key": key}) from e

        value = bytes(value or b"")
        logger.log_store_operation("read", key, size=len(value), status="hit" if value else "absent")
        return value

    async def write(self, key: str, value: bytes, signer: Optional[str] = None):
        """Commit ``value`` under ``key``, signed by ``signer`` or the session's account."""
        if signer is None and self.session is not None:
            signer = self.session.account

        try:
            await self.ledger.set_data(key, value, signer)
        except LedgerError as e:
            logger.log_store_operation("write", key, size=len(value), status="failed", error=str(e))
            raise RemoteFailure(str(e), {"key": key}) from e

        logger.log_store_operation("write", key, size=len(value))

