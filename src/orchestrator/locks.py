# orchestrator/locks.py

import threading
from contextlib import contextmanager
from typing import Any, Iterator


class DealLocks:
    """
    Un mutex par deal id, créé à la demande.

    Ferme la course find_row → append entre deux livraisons webhook
    concurrentes sur le même nouveau deal, dans ce process uniquement.
    Les verrous restent dans la map : un verrou par deal vu.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, deal_id: Any) -> threading.Lock:
        key = str(deal_id)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, deal_id: Any) -> Iterator[None]:
        lock = self._lock_for(deal_id)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
