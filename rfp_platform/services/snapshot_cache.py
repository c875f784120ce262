"""
RFP Platform
Snapshot cache — freshness-threshold cache for denormalised read models.

Entries live in ``snapshot_cache_entries`` keyed by (entity_id, kind) and
are overwritten in place (upsert).  A payload is served while
``now - generated_at <= max_age_seconds``; otherwise the loader runs.

At most one regeneration per key runs at a time.  With a Redis
``REDIS_URL`` the per-key lock is a Redis lock shared by every worker;
otherwise (``memory://``, Redis unreachable) it is a process-local lock.
The entry is re-read after the lock is taken, so a caller that waited
reuses the fresh payload instead of running the loader again.
"""

import json
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone

import redis
from flask import current_app
from redis.exceptions import LockError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from rfp_platform.models import db
from rfp_platform.models.snapshot import SnapshotCacheEntry
from rfp_platform.utils.helpers import as_utc

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 120   # Redis lock auto-expiry (dead worker)
LOCK_WAIT_SECONDS = 30


class _KeyLock:
    """Process-local lock of one cache key; evicted once nobody holds it."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc):
        self._lock.release()


_locks = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _key_lock(entity_id, kind):
    with _locks_guard:
        lock = _locks.get((entity_id, kind))
        if lock is None:
            lock = _KeyLock()
            _locks[(entity_id, kind)] = lock
        return lock


_redis_clients: dict = {}


def _redis_for(url):
    client = _redis_clients.get(url)
    if client is None:
        client = redis.Redis.from_url(url, socket_timeout=2)
        _redis_clients[url] = client
    return client


def _shared_lock(entity_id, kind):
    """Acquired Redis lock for the key, or None when the local lock must do."""
    url = current_app.config.get("REDIS_URL") or ""
    if not url.startswith(("redis://", "rediss://")):
        return None
    lock = _redis_for(url).lock(
        f"snapshot:{kind}:{entity_id}", timeout=LOCK_TIMEOUT_SECONDS, blocking_timeout=LOCK_WAIT_SECONDS,
    )
    try:
        acquired = lock.acquire()
    except redis.RedisError as exc:
        logger.warning("Redis lock unavailable (%s) — falling back to process lock", exc)
        return None
    if not acquired:
        logger.warning("Timed out waiting for snapshot lock %s:%s — falling back to process lock",
                       kind, entity_id)
        return None
    return lock


@contextmanager
def _regeneration_lock(entity_id, kind):
    lock = _shared_lock(entity_id, kind)
    if lock is None:
        with _key_lock(entity_id, kind):
            yield
        return
    try:
        yield
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("Snapshot lock %s:%s expired before release", kind, entity_id)


def _lookup(session, entity_id, kind):
    return session.execute(
        select(SnapshotCacheEntry)
        .where(SnapshotCacheEntry.entity_id == entity_id, SnapshotCacheEntry.kind == kind)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _age_seconds(entry, now):
    return (now - as_utc(entry.generated_at)).total_seconds()


def _meta(generated_at, age, from_cache):
    return {
        "generated_at": as_utc(generated_at).isoformat(),
        "age_seconds": round(max(age, 0.0), 1),
        "from_cache": from_cache,
    }


def _store(session, entity_id, kind, payload, now):
    raw = json.dumps(payload, default=str)
    entry = _lookup(session, entity_id, kind)
    if entry is not None:
        entry.payload_json = raw
        entry.generated_at = now
        session.flush()
        return
    try:
        with session.begin_nested():
            session.add(SnapshotCacheEntry(entity_id=entity_id, kind=kind, payload_json=raw, generated_at=now))
    except IntegrityError:
        # Another process inserted the key first; overwrite its row.
        entry = _lookup(session, entity_id, kind)
        entry.payload_json = raw
        entry.generated_at = now
        session.flush()


def get_or_compute(entity_id, kind, loader, max_age_seconds, now=None, force=False, session=None):
    """
    Serve the cached payload for (entity_id, kind) or regenerate it.

    Args:
        loader: zero-argument callable returning a JSON-serialisable dict.
        max_age_seconds: freshness threshold (inclusive).
        force: skip the freshness check and regenerate.

    Returns:
        (payload, meta) where meta has generated_at, age_seconds, from_cache.
    """
    session = session or db.session
    now = as_utc(now) or datetime.now(timezone.utc)
    entity_id = str(entity_id)

    if not force:
        entry = _lookup(session, entity_id, kind)
        if entry is not None and _age_seconds(entry, now) <= max_age_seconds:
            return entry.payload, _meta(entry.generated_at, _age_seconds(entry, now), True)

    with _regeneration_lock(entity_id, kind):
        if not force:
            entry = _lookup(session, entity_id, kind)
            if entry is not None and _age_seconds(entry, now) <= max_age_seconds:
                return entry.payload, _meta(entry.generated_at, _age_seconds(entry, now), True)

        payload = loader()
        _store(session, entity_id, kind, payload, now)
        logger.debug("Snapshot %s:%s regenerated", kind, entity_id)
        return payload, _meta(now, 0.0, False)


def invalidate(entity_id, kind, session=None):
    """Drop the cached entry so the next read regenerates it."""
    session = session or db.session
    entry = _lookup(session, str(entity_id), kind)
    if entry is not None:
        session.delete(entry)
        session.flush()
