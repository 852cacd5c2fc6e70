from __future__ import annotations

import threading
from enum import Enum
from typing import Collection, Mapping

from roi_trainset.core.models import ROI, AnnotationClass

# Keyed by (class, colour): classes compare by name, but a recolour must still count as a change.
Snapshot = Mapping[tuple[AnnotationClass, object], frozenset[ROI]]


class TrackerState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"


def take_snapshot(class_mapping: Mapping[AnnotationClass, Collection[ROI]]) -> dict:
    """Value-comparable copy of a class -> ROIs mapping (ROIs compare by identity)."""
    return {(c, c.color): frozenset(rois) for c, rois in class_mapping.items()}


class ChangeTracker:
    """Two-state (fresh/stale) record of whether the assembled data is current.

    ``mark_stale`` only sets an event, so it is safe from any thread without the
    assembly lock. The remaining methods are called by the assembling thread.
    """

    def __init__(self) -> None:
        self._stale = threading.Event()
        self._stale.set()
        self._snapshot: dict | None = None

    @property
    def state(self) -> TrackerState:
        return TrackerState.STALE if self._stale.is_set() else TrackerState.FRESH

    @property
    def is_stale(self) -> bool:
        return self._stale.is_set()

    @property
    def snapshot(self) -> dict | None:
        return self._snapshot

    def mark_stale(self, *_args) -> None:
        self._stale.set()

    def matches(self, snapshot: Snapshot) -> bool:
        return self._snapshot is not None and self._snapshot == snapshot

    def begin_update(self) -> None:
        """Clear the stale flag before the annotations are read.

        Changes arriving while the update runs set it again, so they are never lost.
        """
        self._stale.clear()

    def abort_update(self) -> None:
        self._stale.set()

    def record(self, snapshot: Snapshot | None) -> None:
        """Remember the class -> ROIs mapping the current result was built from."""
        self._snapshot = dict(snapshot) if snapshot is not None else None

    def reset(self) -> None:
        """Forget the snapshot; the next assembly is treated as a change."""
        self._snapshot = None
        self._stale.set()
