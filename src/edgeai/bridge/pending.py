"""
Pending call bookkeeping for the extension bridge.

Each in-flight request is a :class:`PendingCall` with an explicit state
machine::

    PENDING -> RESOLVED | REJECTED | TIMED_OUT

Only the first transition takes effect; every later attempt is a no-op and
returns False. The deadline timer is a scheduled event on the entry and is
cancelled by whichever transition wins.
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Iterator

from edgeai.bridge.errors import CallTimeoutError


class CallState(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


@dataclass
class PendingCall:
    request_id: str
    kind: str
    future: asyncio.Future[Any]
    timeout_seconds: float
    timer: asyncio.TimerHandle | None = None
    state: CallState = CallState.PENDING

    @property
    def done(self) -> bool:
        return self.state is not CallState.PENDING

    def _finish(self, state: CallState) -> bool:
        if self.done:
            return False
        self.state = state
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        return True

    def resolve(self, value: Any) -> bool:
        """Complete the call successfully with ``value``."""
        if not self._finish(CallState.RESOLVED):
            return False
        if not self.future.done():
            self.future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        """Complete the call with ``error``."""
        if not self._finish(CallState.REJECTED):
            return False
        if not self.future.done():
            self.future.set_exception(error)
        return True

    def time_out(self) -> bool:
        """Complete the call with a timeout error."""
        if not self._finish(CallState.TIMED_OUT):
            return False
        if not self.future.done():
            self.future.set_exception(
                CallTimeoutError(
                    self.timeout_seconds,
                    f"{self.kind} timed out after {self.timeout_seconds:g}s",
                )
            )
        return True


class PendingCallTable:
    """In-flight calls indexed by correlation id."""

    def __init__(self) -> None:
        self._calls: dict[str, PendingCall] = {}

    def add(self, call: PendingCall) -> None:
        if call.request_id in self._calls:
            raise ValueError(f"Duplicate request id: {call.request_id}")
        self._calls[call.request_id] = call

    def pop(self, request_id: str) -> PendingCall | None:
        """Remove and return the entry for ``request_id``, or None if unknown."""
        return self._calls.pop(request_id, None)

    def get(self, request_id: str) -> PendingCall | None:
        return self._calls.get(request_id)

    def drain(self) -> list[PendingCall]:
        """Remove and return every entry."""
        calls = list(self._calls.values())
        self._calls.clear()
        return calls

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self) -> Iterator[PendingCall]:
        return iter(list(self._calls.values()))
