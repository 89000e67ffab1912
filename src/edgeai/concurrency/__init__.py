from .resource_scheduler import (
    LockStatus,
    ResourceKind,
    ResourceLockScheduler,
    UnknownResourceError,
)

__all__ = [
    "LockStatus",
    "ResourceKind",
    "ResourceLockScheduler",
    "UnknownResourceError",
]
