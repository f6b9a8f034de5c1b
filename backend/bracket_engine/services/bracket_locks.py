"""
Locks.

Generation lock: one GenerationLock row per (tournament_id, event_type),
inserted and committed in its own session so a concurrent generator sees it
immediately. The unique constraint makes acquisition fail fast. Rows older
than GENERATION_LOCK_TTL_SECONDS belong to a crashed run and are taken over.

Resolution lock: per-bracket in-process mutex around result recording and
the resolver cascade, acquired with a bounded wait.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bracket_engine.config import GENERATION_LOCK_TTL_SECONDS, RESOLUTION_LOCK_TIMEOUT_SECONDS
from bracket_engine.models.generation_lock import GenerationLock
from bracket_engine.services.bracket_errors import BracketBusy, DuplicateGenerationInProgress

logger = logging.getLogger(__name__)

_resolution_locks: Dict[int, threading.Lock] = {}
_registry_guard = threading.Lock()


# ─── Generation lock ─────────────────────────────────────────────────────

def _try_insert(lock_session: Session, tournament_id: str, event_type: str, owner: str) -> bool:
    lock_session.add(GenerationLock(tournament_id=tournament_id, event_type=event_type, owner=owner))
    try:
        lock_session.commit()
        return True
    except IntegrityError:
        lock_session.rollback()
        return False


def _take_over_if_stale(
    lock_session: Session, tournament_id: str, event_type: str, owner: str, ttl_seconds: int
) -> bool:
    existing = lock_session.exec(
        select(GenerationLock).where(
            GenerationLock.tournament_id == tournament_id,
            GenerationLock.event_type == event_type,
        )
    ).first()
    if existing is None:
        return _try_insert(lock_session, tournament_id, event_type, owner)

    age = datetime.utcnow() - existing.acquired_at
    if age < timedelta(seconds=ttl_seconds):
        return False

    logger.warning(
        "Taking over stale generation lock tournament=%s event=%s owner=%s age=%.0fs",
        tournament_id, event_type, existing.owner, age.total_seconds(),
    )
    existing.owner = owner
    existing.acquired_at = datetime.utcnow()
    lock_session.add(existing)
    lock_session.commit()
    return True


def acquire_generation_lock(
    session: Session, tournament_id: str, event_type: str, ttl_seconds: Optional[int] = None
) -> str:
    """
    Insert the generation lock row. Returns the owner token.

    Raises:
        DuplicateGenerationInProgress: a live lock exists for this key
    """
    ttl = GENERATION_LOCK_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    owner = uuid.uuid4().hex
    with Session(session.get_bind()) as lock_session:
        acquired = _try_insert(lock_session, tournament_id, event_type, owner)
        if not acquired:
            acquired = _take_over_if_stale(lock_session, tournament_id, event_type, owner, ttl)
    if not acquired:
        logger.info("Generation already in progress tournament=%s event=%s", tournament_id, event_type)
        raise DuplicateGenerationInProgress(
            f"Bracket generation already in progress for tournament {tournament_id} / {event_type}",
            context={"tournament_id": tournament_id, "event_type": event_type},
        )
    logger.debug("Generation lock acquired tournament=%s event=%s owner=%s", tournament_id, event_type, owner)
    return owner


def release_generation_lock(session: Session, tournament_id: str, event_type: str, owner: str) -> None:
    """Delete the lock row if this owner still holds it."""
    with Session(session.get_bind()) as lock_session:
        row = lock_session.exec(
            select(GenerationLock).where(
                GenerationLock.tournament_id == tournament_id,
                GenerationLock.event_type == event_type,
                GenerationLock.owner == owner,
            )
        ).first()
        if row is not None:
            lock_session.delete(row)
            lock_session.commit()
    logger.debug("Generation lock released tournament=%s event=%s", tournament_id, event_type)


@contextmanager
def generation_lock(session: Session, tournament_id: str, event_type: str) -> Iterator[str]:
    """
    Hold the generation lock for the duration of the block.

    The main session must have no pending writes when entering or leaving:
    the lock rows are written through a separate session on the same engine.
    """
    owner = acquire_generation_lock(session, tournament_id, event_type)
    try:
        yield owner
    finally:
        release_generation_lock(session, tournament_id, event_type, owner)


# ─── Resolution lock ─────────────────────────────────────────────────────

def _lock_for(bracket_id: int) -> threading.Lock:
    with _registry_guard:
        lock = _resolution_locks.get(bracket_id)
        if lock is None:
            lock = threading.Lock()
            _resolution_locks[bracket_id] = lock
        return lock


@contextmanager
def resolution_lock(bracket_id: int, timeout: Optional[float] = None) -> Iterator[None]:
    """
    Serialise result recording and resolution for one bracket.

    Raises:
        BracketBusy: the lock could not be acquired within the timeout
    """
    wait = RESOLUTION_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
    lock = _lock_for(bracket_id)
    if not lock.acquire(timeout=wait):
        raise BracketBusy(
            f"Bracket {bracket_id} is busy resolving another result",
            context={"bracket_id": bracket_id, "timeout_seconds": wait},
        )
    try:
        yield
    finally:
        lock.release()


def forget_resolution_lock(bracket_id: int) -> None:
    """Drop the mutex of a deleted bracket."""
    with _registry_guard:
        _resolution_locks.pop(bracket_id, None)
