"""
Concurrency management and thread safety components.
"""

import logging
import threading
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.exceptions import CollegiumException, LockTimeoutError

logger = logging.getLogger(__name__)


class LockType(Enum):
    """Types of locks available."""
    READ = "read"
    WRITE = "write"


@dataclass
class LockInfo:
    """Information about a held lock."""
    lock_id: str
    resource_id: str
    lock_type: LockType
    holder_id: str
    acquired_at: float


def section_key(section_id: str) -> str:
    return f"section:{section_id}"


def instructor_day_key(instructor_id: str, day: Any) -> str:
    return f"instructor:{instructor_id}:{getattr(day, 'value', day)}"


def student_key(student_id: str) -> str:
    return f"student:{student_id}"


class ConcurrencyManager:
    """Per-resource mutual exclusion with bounded waits.

    Write locks are exclusive; read locks are shared among readers. A holder
    may re-acquire a resource it already holds. Waiting longer than the
    timeout raises LockTimeoutError, which callers may retry.
    """

    def __init__(self, default_timeout: float = 5.0, max_retries: int = 3, backoff_factor: float = 0.05):
        self._default_timeout = default_timeout
        self._max_retries = max_retries
        self._backoff_factor = backoff_factor
        self._locks: Dict[str, Dict[LockType, Set[str]]] = defaultdict(lambda: defaultdict(set))
        self._lock_holders: Dict[str, LockInfo] = {}
        self._condition = threading.Condition(threading.Lock())

    @staticmethod
    def current_holder() -> str:
        """Default holder id: the calling thread."""
        return f"thread_{threading.get_ident()}"

    def acquire_lock(self, resource_id: str, lock_type: LockType = LockType.WRITE,
                     holder_id: Optional[str] = None, timeout: Optional[float] = None) -> str:
        """Acquire a lock on a resource, waiting up to timeout seconds."""
        holder_id = holder_id or self.current_holder()
        timeout = self._default_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        with self._condition:
            while not self._can_acquire_lock(resource_id, lock_type, holder_id):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        "Lock timeout on %s", resource_id,
                        extra={'resource_id': resource_id, 'holder_id': holder_id},
                    )
                    raise LockTimeoutError(
                        f"Cannot acquire {lock_type.value} lock on {resource_id} within {timeout}s",
                        details={'resource_id': resource_id, 'timeout': timeout},
                    )
                self._condition.wait(remaining)

            lock_id = str(uuid.uuid4())
            self._locks[resource_id][lock_type].add(lock_id)
            self._lock_holders[lock_id] = LockInfo(
                lock_id=lock_id,
                resource_id=resource_id,
                lock_type=lock_type,
                holder_id=holder_id,
                acquired_at=time.time(),
            )
            return lock_id

    def release_lock(self, lock_id: str) -> bool:
        """Release a lock."""
        with self._condition:
            if lock_id not in self._lock_holders:
                return False

            lock_info = self._lock_holders.pop(lock_id)
            resource_id = lock_info.resource_id
            lock_type = lock_info.lock_type

            self._locks[resource_id][lock_type].discard(lock_id)

            # Clean up empty lock types
            if not self._locks[resource_id][lock_type]:
                del self._locks[resource_id][lock_type]

            # Clean up empty resources
            if not self._locks[resource_id]:
                del self._locks[resource_id]

            self._condition.notify_all()
            return True

    def _can_acquire_lock(self, resource_id: str, lock_type: LockType, holder_id: str) -> bool:
        """Check if a lock can be acquired."""
        if resource_id not in self._locks:
            return True
        existing_locks = self._locks[resource_id]

        holders = {
            self._lock_holders[lock_id].holder_id
            for locks in existing_locks.values()
            for lock_id in locks
        }
        if holders == {holder_id}:
            return True  # Re-entrant for the sole holder

        if lock_type == LockType.READ:
            # Read locks can coexist with other read locks
            return LockType.WRITE not in existing_locks
        # Write locks conflict with all other locks
        return not any(existing_locks.values())

    @contextmanager
    def lock(self, resource_id: str, lock_type: LockType = LockType.WRITE,
             holder_id: Optional[str] = None, timeout: Optional[float] = None):
        """Context manager for acquiring and releasing locks."""
        lock_id = self.acquire_lock(resource_id, lock_type, holder_id, timeout)
        try:
            yield lock_id
        finally:
            self.release_lock(lock_id)

    def execute_with_retry(self, func: Callable[[], Any], max_retries: Optional[int] = None,
                           backoff_factor: Optional[float] = None) -> Any:
        """Run func, retrying retryable Collegium errors with exponential backoff.

        Each attempt runs func from scratch, so every business check is
        re-evaluated against current state.
        """
        max_retries = self._max_retries if max_retries is None else max_retries
        backoff_factor = self._backoff_factor if backoff_factor is None else backoff_factor

        for attempt in range(max_retries + 1):
            try:
                return func()
            except CollegiumException as e:
                if not e.retryable or attempt >= max_retries:
                    raise
                delay = backoff_factor * (2 ** attempt)
                logger.warning(
                    "Retryable failure (%s), attempt %d/%d, retrying in %.3fs",
                    e.error_code, attempt + 1, max_retries, delay,
                    extra={'error_code': e.error_code, 'attempt': attempt + 1},
                )
                time.sleep(delay)

    def get_lock_info(self, resource_id: str) -> List[LockInfo]:
        """Get information about all locks on a resource."""
        with self._condition:
            if resource_id not in self._locks:
                return []
            return [
                self._lock_holders[lock_id]
                for lock_ids in self._locks[resource_id].values()
                for lock_id in lock_ids
            ]

    def get_holder_locks(self, holder_id: str) -> List[LockInfo]:
        """Get all locks held by a specific holder."""
        with self._condition:
            return [lock_info for lock_info in self._lock_holders.values()
                    if lock_info.holder_id == holder_id]
