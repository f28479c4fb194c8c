"""
Row-based sync locks keyed by (store, integration, lock type).

Acquisition is an INSERT against a unique key, so two processes racing for the same
lock cannot both win. Expired rows are replaced.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import SyncLock, utcnow

logger = logging.getLogger(__name__)

LOCK_PULL = "pull"


def acquire_lock(
    db: Session,
    store_id: str,
    integration_id: str,
    lock_type: str,
    process_id: str,
    ttl_seconds: int,
) -> bool:
    """Take the lock; returns False when an unexpired holder exists."""
    now = utcnow()
    db.query(SyncLock).filter(
        SyncLock.store_id == store_id,
        SyncLock.integration_id == integration_id,
        SyncLock.lock_type == lock_type,
        SyncLock.expires_at <= now,
    ).delete(synchronize_session=False)
    db.add(SyncLock(
        store_id=store_id,
        integration_id=integration_id,
        lock_type=lock_type,
        process_id=process_id,
        locked_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Lock %s busy for store=%s integration=%s", lock_type, store_id, integration_id)
        return False
    return True


def release_lock(
    db: Session,
    store_id: str,
    integration_id: str,
    lock_type: str,
    process_id: Optional[str] = None,
) -> None:
    q = db.query(SyncLock).filter(
        SyncLock.store_id == store_id,
        SyncLock.integration_id == integration_id,
        SyncLock.lock_type == lock_type,
    )
    if process_id:
        q = q.filter(SyncLock.process_id == process_id)
    q.delete(synchronize_session=False)
    db.commit()


def clean_expired_locks(db: Session) -> int:
    removed = db.query(SyncLock).filter(SyncLock.expires_at <= utcnow()).delete(synchronize_session=False)
    db.commit()
    if removed:
        logger.info("Removed %s expired sync lock(s)", removed)
    return removed
