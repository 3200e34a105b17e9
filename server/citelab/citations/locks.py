from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

_DOCUMENT_LOCKS_LOCK = threading.Lock()
_DOCUMENT_LOCKS: dict[str, threading.Lock] = {}


def _lock_for(document_id: str) -> threading.Lock:
    key = str(document_id or "").strip()
    with _DOCUMENT_LOCKS_LOCK:
        lock = _DOCUMENT_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _DOCUMENT_LOCKS[key] = lock
    return lock


@contextmanager
def document_lock(document_id: str) -> Iterator[None]:
    """Serialize numbering mutations of one document within this process.

    Hold it around both the mutation and the commit.
    """
    lock = _lock_for(document_id)
    lock.acquire()
    try:
        yield
    finally:
        lock.release()
