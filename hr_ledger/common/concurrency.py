"""Ledger unit of work: per-key serialisation and bounded contention retry.

Mutating operations run through ``run_ledger_write``.  Inside the operation,
services call ``hold_keys(db, ...)`` with the natural identity of every
mutable row they are about to read-modify-write.  Keys are held until the
unit of work has committed or rolled back, so two writers on the same
(employee, date) or (employee, leave type) never interleave; different keys
proceed in parallel.  Storage-level guards (row locks, atomic UPDATEs,
unique indexes) back this up across processes, and any contention they
surface is retried here a bounded number of times.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from hr_ledger.common.exceptions import ConflictError
from hr_ledger.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_HELD_KEYS = "ledger_held_keys"

# serialization_failure, deadlock_detected, lock_not_available
_CONTENTION_SQLSTATES = {"40001", "40P01", "55P03"}
_CONTENTION_MESSAGES = ("database is locked", "deadlock detected", "could not serialize")


# ── Keyed lock registry ─────────────────────────────────────────────

class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    async def acquire(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._unref(key)
            raise

    def release(self, key: str) -> None:
        self._locks[key].release()
        self._unref(key)

    def _unref(self, key: str) -> None:
        remaining = self._refs[key] - 1
        if remaining:
            self._refs[key] = remaining
        else:
            del self._refs[key]
            del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)


ledger_locks = KeyedLocks()


def ledger_key(kind: str, *parts: Any) -> str:
    """Build a lock key such as ``attendance:<employee>:<date>``."""
    return ":".join([kind, *(str(p) for p in parts)])


async def hold_keys(db: AsyncSession, *keys: str) -> None:
    """Acquire *keys* for the rest of the current unit of work.

    Keys already held by this unit of work are skipped; new keys are taken
    in sorted order.  Outside ``run_ledger_write`` this is a no-op.
    """
    held: Optional[list[str]] = db.info.get(_HELD_KEYS)
    if held is None:
        return
    for key in sorted(set(keys).difference(held)):
        await ledger_locks.acquire(key)
        held.append(key)


# ── Contention detection ────────────────────────────────────────────

def is_contention(exc: BaseException) -> bool:
    """True for storage errors that a fresh attempt may not hit again."""
    if isinstance(exc, (IntegrityError, StaleDataError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code in _CONTENTION_SQLSTATES:
            return True
        message = str(orig).lower()
        return any(m in message for m in _CONTENTION_MESSAGES)
    return False


# ── Unit of work ────────────────────────────────────────────────────

async def run_ledger_write(
    session_factory: async_sessionmaker,
    operation: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    label: str = "ledger write",
) -> T:
    """Run *operation* in its own transaction, retrying on contention.

    The operation receives a fresh session per attempt and must build any
    response it needs before returning.  Application errors propagate
    unchanged after rollback; contention is retried and, once the attempts
    are exhausted, surfaces as ``ConflictError``.
    """
    attempts = attempts or settings.LEDGER_WRITE_ATTEMPTS
    last_exc: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        held: list[str] = []
        try:
            async with session_factory() as session:
                session.info[_HELD_KEYS] = held
                try:
                    result = await operation(session)
                    await session.commit()
                    return result
                except Exception:
                    await session.rollback()
                    raise
        except (DBAPIError, StaleDataError) as exc:
            if not is_contention(exc):
                raise
            last_exc = exc
            logger.warning(
                "%s hit contention (attempt %d/%d)", label, attempt, attempts,
                extra={"error": type(exc).__name__},
            )
        finally:
            for key in reversed(held):
                ledger_locks.release(key)

        if attempt < attempts:
            await asyncio.sleep(settings.LEDGER_RETRY_BACKOFF_MS * attempt / 1000)

    raise ConflictError(
        "record", None,
        detail="The record is being updated by another request; please retry.",
    ) from last_exc
