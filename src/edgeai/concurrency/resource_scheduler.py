"""
Resource Lock Scheduler for edgeai.

Serializes access to scarce, non-reentrant compute resources (GPU-bound and
CPU-bound inference engines) that several independently initialised engines
share. Each named resource kind owns one lock with a strict FIFO waiter queue.

Key properties:
- At most one holder per resource at any time
- Waiters are resumed strictly in the order they called ``acquire``
- ``release`` hands the lock directly to the oldest waiter, so a resource is
  never reported free while waiters exist
- No acquire timeout; callers must pair acquire with release, which
  ``with_lock`` and ``hold`` do structurally

Example:
    scheduler = ResourceLockScheduler()

    embedding = await scheduler.with_lock(
        ResourceKind.CPU, lambda: engine.generate_embedding(text)
    )

    async with scheduler.hold(ResourceKind.GPU):
        reply = await engine.generate_text(prompt)
"""

import asyncio
import enum
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import TypeVar

from edgeai.config.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class ResourceKind(str, enum.Enum):
    """Built-in exclusive resource kinds."""

    GPU = "gpu"
    CPU = "cpu"


class UnknownResourceError(ValueError):
    """Raised when a resource kind was not declared on the scheduler."""

    def __init__(self, resource: str, known: Iterable[str]):
        self.resource = resource
        super().__init__(f"Unknown resource kind {resource!r}; known kinds: {', '.join(sorted(known))}")


@dataclass(frozen=True)
class LockStatus:
    """Point-in-time view of one resource lock."""

    held: bool
    queue_length: int


@dataclass
class _ResourceLock:
    held: bool = False
    waiters: deque[asyncio.Future[None]] = field(default_factory=deque)
    # Bumped by reset() so abandoned handoffs can be told apart from live ones
    generation: int = 0

    def live_waiters(self) -> int:
        return sum(1 for fut in self.waiters if not fut.done())


def _resource_name(resource: str) -> str:
    if isinstance(resource, ResourceKind):
        return resource.value
    return str(resource).lower()


class ResourceLockScheduler:
    """
    Per-resource mutual exclusion with FIFO fairness.

    Resource kinds are declared at construction time and live as long as the
    scheduler. The scheduler is meant to be created once by the application
    and injected into every component that drives an inference engine.
    """

    def __init__(self, resources: Iterable[str] = (ResourceKind.GPU, ResourceKind.CPU)) -> None:
        self._locks: dict[str, _ResourceLock] = {}
        for resource in resources:
            self._locks.setdefault(_resource_name(resource), _ResourceLock())
        if not self._locks:
            raise ValueError("ResourceLockScheduler needs at least one resource kind")

    @property
    def resources(self) -> list[str]:
        """Return the declared resource kinds."""
        return list(self._locks)

    def _lock_for(self, resource: str) -> _ResourceLock:
        name = _resource_name(resource)
        try:
            return self._locks[name]
        except KeyError:
            raise UnknownResourceError(name, self._locks) from None

    async def acquire(self, resource: str) -> None:
        """
        Acquire exclusive access to ``resource``.

        Returns immediately when the resource is free. Otherwise the caller is
        queued behind earlier waiters and resumes only when ``release`` hands
        the lock over. There is no timeout.

        If the waiting task is cancelled it leaves the queue. If the lock had
        already been handed to it, the lock is passed on to the next waiter.
        """
        name = _resource_name(resource)
        lock = self._lock_for(name)

        if not lock.held:
            lock.held = True
            log.debug(f"Lock acquired: {name}")
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        lock.waiters.append(fut)
        generation = lock.generation
        log.debug(f"Waiting for lock: {name} (queue length {lock.live_waiters()})")

        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Handed the lock just before cancellation; pass it on
                if lock.generation == generation:
                    self.release(name)
            else:
                with suppress(ValueError):
                    lock.waiters.remove(fut)
            raise

    def release(self, resource: str) -> None:
        """
        Release ``resource``.

        The oldest live waiter, if any, becomes the new holder and the lock
        stays held. Releasing a free resource is a no-op.
        """
        name = _resource_name(resource)
        lock = self._lock_for(name)

        if not lock.held:
            log.debug(f"Release of free lock ignored: {name}")
            return

        while lock.waiters:
            fut = lock.waiters.popleft()
            if fut.done():
                continue
            fut.set_result(None)
            log.debug(f"Lock handed to next waiter: {name}")
            return

        lock.held = False
        log.debug(f"Lock released: {name}")

    async def with_lock(self, resource: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` while holding ``resource``.

        The resource is released on every exit path, including exceptions and
        cancellation.

        Args:
            resource: Resource kind to hold.
            operation: Zero-argument callable returning an awaitable.

        Returns:
            Whatever ``operation`` returns.
        """
        await self.acquire(resource)
        try:
            return await operation()
        finally:
            self.release(resource)

    @asynccontextmanager
    async def hold(self, resource: str) -> AsyncIterator[None]:
        """Context manager form of :meth:`with_lock`."""
        await self.acquire(resource)
        try:
            yield
        finally:
            self.release(resource)

    def status(self) -> dict[str, LockStatus]:
        """Return a snapshot of every resource lock. Never blocks or mutates."""
        return {
            name: LockStatus(held=lock.held, queue_length=lock.live_waiters())
            for name, lock in self._locks.items()
        }

    def reset(self) -> None:
        """
        Clear every held flag and drop all queued waiters.

        Unsafe: tasks suspended in ``acquire`` are abandoned. They are never
        resumed and never see an error. Intended only as an emergency unstick
        during development.
        """
        log.warning("Resetting all resource locks")
        for name, lock in self._locks.items():
            dropped = lock.live_waiters()
            if dropped:
                log.warning(f"Abandoning {dropped} waiter(s) on {name}")
            lock.held = False
            lock.waiters = deque()
            lock.generation += 1

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{name}={'held' if s.held else 'free'}/{s.queue_length}" for name, s in self.status().items()
        )
        return f"ResourceLockScheduler({parts})"


__all__ = [
    "LockStatus",
    "ResourceKind",
    "ResourceLockScheduler",
    "UnknownResourceError",
]
