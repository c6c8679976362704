"""
Transient transaction status shown to the user while operations run.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from . import config

PENDING = "pending"
SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class TransactionStatus:
    status: str  # pending, success, error
    message: str
    posted_at: float = 0.0
    ttl: Optional[float] = None  # None keeps the status until replaced
    visible: bool = True

    def expired(self, now: float) -> bool:
        return self.ttl is not None and now - self.posted_at >= self.ttl


HIDDEN = TransactionStatus(status=PENDING, message="", visible=False)


class StatusBoard:
    """Holds the latest transaction status and notifies listeners on every post.

    Pending statuses stay visible until replaced; success and error statuses
    hide themselves after their configured display time.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, history_size: int = None):
        self._clock = clock
        self._current = HIDDEN
        self._listeners: List[Callable[[TransactionStatus], None]] = []
        self.history: Deque[TransactionStatus] = deque(maxlen=history_size or config.STATUS_HISTORY_SIZE)

    def subscribe(self, listener: Callable[[TransactionStatus], None]):
        self._listeners.append(listener)

    def post(self, status: str, message: str, ttl: Optional[float] = None) -> TransactionStatus:
        if status not in (PENDING, SUCCESS, ERROR):
            raise ValueError(f"Invalid transaction status: {status}")

        entry = TransactionStatus(status=status, message=message, posted_at=self._clock(), ttl=ttl)
        self._current = entry
        self.history.append(entry)
        for listener in self._listeners:
            listener(entry)
        return entry

    def pending(self, message: str) -> TransactionStatus:
        return self.post(PENDING, message)

    def success(self, message: str) -> TransactionStatus:
        return self.post(SUCCESS, message, ttl=config.STATUS_SUCCESS_TTL_SEC)

    def error(self, message: str) -> TransactionStatus:
        return self.post(ERROR, message, ttl=config.STATUS_ERROR_TTL_SEC)

    def current(self) -> TransactionStatus:
        """The visible status, or a hidden placeholder once it expired."""
        if self._current.expired(self._clock()):
            self._current = HIDDEN
        return self._current

    def clear(self):
        self._current = HIDDEN
