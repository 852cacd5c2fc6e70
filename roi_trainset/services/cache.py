from __future__ import annotations

import logging
import threading
import weakref

import numpy as np

from roi_trainset.core.models import ROI, AssemblyKey

logger = logging.getLogger("roi_trainset.cache")


class FeatureCache:
    """Per-ROI memo of masked feature matrices.

    Keys are held weakly: once nothing else references an ROI its entry is dropped.
    Entries are only valid for the ``AssemblyKey`` they were computed under;
    ``bind`` with a different key clears everything.
    """

    def __init__(self) -> None:
        self._entries: weakref.WeakKeyDictionary[ROI, np.ndarray] = weakref.WeakKeyDictionary()
        self._key: AssemblyKey | None = None
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def key(self) -> AssemblyKey | None:
        return self._key

    def bind(self, key: AssemblyKey) -> None:
        with self._lock:
            if self._key == key:
                return
            if self._key is not None:
                logger.debug("Assembly key changed %s -> %s; dropping cache", self._key, key)
            self._entries.clear()
            self._key = key

    def get(self, roi: ROI) -> np.ndarray | None:
        with self._lock:
            matrix = self._entries.get(roi)
            if matrix is None:
                self.misses += 1
            else:
                self.hits += 1
            return matrix

    def put(self, roi: ROI, matrix: np.ndarray) -> None:
        matrix.setflags(write=False)
        with self._lock:
            self._entries[roi] = matrix

    def evict(self, roi: ROI) -> None:
        with self._lock:
            self._entries.pop(roi, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key = None

    def __contains__(self, roi: object) -> bool:
        with self._lock:
            try:
                return roi in self._entries
            except TypeError:
                return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
