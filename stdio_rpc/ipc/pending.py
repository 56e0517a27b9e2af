"""Pending-call bookkeeping for request/response correlation."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional


@dataclass
class PendingRequest:
    """An outstanding call awaiting a response or its timeout."""
    request_id: int
    method: str
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None
    sent_at: float = field(default_factory=time.monotonic)

    def resolve(self, result: Any) -> bool:
        """Complete the call with a result. Returns False if already done."""
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def reject(self, exc: BaseException) -> bool:
        """Fail the call. Returns False if already done."""
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.sent_at


class PendingTable:
    """Identifier allocation plus the table of outstanding calls.

    ``take`` is the only way an entry leaves the table. Whichever of the
    response, the timer, a transport failure or caller cancellation calls
    it first gets the entry; every later caller gets None.
    """

    def __init__(self):
        self._entries: Dict[int, PendingRequest] = {}
        self._last_id = 0

    def next_id(self) -> int:
        """Reserve the next identifier. Starts at 1, never reused."""
        self._last_id += 1
        return self._last_id

    @property
    def last_id(self) -> int:
        return self._last_id

    def register(self, entry: PendingRequest) -> None:
        if entry.request_id in self._entries:
            raise ValueError(f"Request id {entry.request_id} is already pending")
        self._entries[entry.request_id] = entry

    def take(self, request_id: Any) -> Optional[PendingRequest]:
        """Atomically remove and return the entry, cancelling its timer."""
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            return None
        entry = self._entries.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def take_all(self) -> List[PendingRequest]:
        """Remove every entry, cancelling timers. Used on transport failure."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))
