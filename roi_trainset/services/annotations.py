from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from roi_trainset.core.models import REGION_CLASS_NAME, ROI, AnnotationClass

logger = logging.getLogger("roi_trainset.annotations")

_UNSET: Any = object()


@dataclass(eq=False)
class Annotation:
    roi: ROI
    path_class: AnnotationClass | None = None
    locked: bool = False
    name: str | None = None

    @property
    def usable_for_training(self) -> bool:
        if self.locked or self.path_class is None:
            return False
        return self.path_class.base_name != REGION_CLASS_NAME


@dataclass(frozen=True)
class AnnotationEvent:
    kind: str
    annotations: tuple[Annotation, ...]
    is_changing: bool = False


Listener = Callable[[AnnotationEvent], None]


class AnnotationSet:
    """In-memory annotation hierarchy with synchronous change notifications."""

    def __init__(self, annotations: Iterable[Annotation] = ()) -> None:
        self._annotations: list[Annotation] = list(annotations)
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

    # --- listeners -----------------------------------------------------------------
    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def _fire(self, kind: str, annotations: Iterable[Annotation], is_changing: bool = False) -> None:
        event = AnnotationEvent(kind=kind, annotations=tuple(annotations), is_changing=is_changing)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    # --- mutation ------------------------------------------------------------------
    def add(self, annotation: Annotation) -> Annotation:
        self.add_all([annotation])
        return annotation

    def add_all(self, annotations: Iterable[Annotation]) -> None:
        added = list(annotations)
        if not added:
            return
        with self._lock:
            self._annotations.extend(added)
        self._fire("added", added)

    def remove(self, annotation: Annotation) -> bool:
        with self._lock:
            try:
                self._annotations.remove(annotation)
            except ValueError:
                return False
        self._fire("removed", [annotation])
        return True

    def clear(self) -> None:
        with self._lock:
            removed = list(self._annotations)
            self._annotations.clear()
        if removed:
            self._fire("removed", removed)

    def update(
        self,
        annotation: Annotation,
        *,
        roi: ROI | None = None,
        path_class: AnnotationClass | None = _UNSET,
        locked: bool | None = None,
        is_changing: bool = False,
    ) -> None:
        """Replace the ROI, class or lock state of ``annotation`` and notify listeners.

        ``is_changing`` marks an intermediate edit (e.g. a drag in progress).
        """
        with self._lock:
            if roi is not None:
                annotation.roi = roi
            if path_class is not _UNSET:
                annotation.path_class = path_class
            if locked is not None:
                annotation.locked = bool(locked)
        self._fire("changed", [annotation], is_changing=is_changing)

    def set_locked(self, annotation: Annotation, locked: bool = True) -> None:
        self.update(annotation, locked=locked)

    # --- queries -------------------------------------------------------------------
    def annotations(self) -> list[Annotation]:
        with self._lock:
            return list(self._annotations)

    def __iter__(self) -> Iterator[Annotation]:
        return iter(self.annotations())

    def __len__(self) -> int:
        with self._lock:
            return len(self._annotations)

    def grouped_rois(self) -> dict[AnnotationClass, list[ROI]]:
        """Unlocked, classified, non-region ROIs grouped by class, classes sorted by name."""
        grouped: dict[AnnotationClass, dict[ROI, None]] = {}
        for annotation in self.annotations():
            if not annotation.usable_for_training:
                continue
            grouped.setdefault(annotation.path_class, {})[annotation.roi] = None
        return {c: list(grouped[c]) for c in sorted(grouped, key=lambda c: c.name)}


# --- GeoJSON -------------------------------------------------------------------------
def _parse_color(raw: Any) -> tuple[int, int, int] | None:
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)) and len(raw) >= 3:
        return (int(raw[0]), int(raw[1]), int(raw[2]))
    if isinstance(raw, int):
        packed = raw & 0xFFFFFF
        return ((packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF)
    return None


def _parse_class(props: dict[str, Any]) -> AnnotationClass | None:
    cls = props.get("classification")
    if cls is None:
        return None
    if isinstance(cls, str):
        return AnnotationClass(name=cls)
    name = cls.get("name")
    if not name:
        return None
    color = _parse_color(cls.get("color", cls.get("colorRGB")))
    return AnnotationClass(name=str(name), color=color)


def _geometry_rois(geometry: dict[str, Any]) -> list[ROI]:
    gtype = geometry.get("type")
    coords = geometry.get("coordinates") or []
    plane = geometry.get("plane") or {}
    z, t = int(plane.get("z", 0)), int(plane.get("t", 0))

    if gtype == "Polygon":
        polygons = [coords]
    elif gtype == "MultiPolygon":
        polygons = list(coords)
    elif gtype == "LineString":
        return [ROI.polyline(coords, z=z, t=t)] if coords else []
    elif gtype == "MultiLineString":
        return [ROI.polyline(line, z=z, t=t) for line in coords if line]
    elif gtype == "Point":
        return [ROI.points_roi([coords], z=z, t=t)] if coords else []
    elif gtype == "MultiPoint":
        return [ROI.points_roi(coords, z=z, t=t)] if coords else []
    else:
        logger.warning("Unsupported GeoJSON geometry type '%s'; skipped", gtype)
        return []

    rois = []
    for rings in polygons:
        if not rings:
            continue
        rois.append(ROI.polygon(rings[0], holes=rings[1:], z=z, t=t))
    return rois


def load_geojson(path: str | Path) -> AnnotationSet:
    """Read annotations from a (QuPath-style) GeoJSON file.

    Multi-part geometries become one annotation per part.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)

    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        features = data.get("features") or []
    elif isinstance(data, dict):
        features = [data]
    else:
        features = list(data)

    annotations: list[Annotation] = []
    for feature in features:
        geometry = feature.get("geometry")
        if not geometry:
            continue
        props = feature.get("properties") or {}
        path_class = _parse_class(props)
        locked = bool(props.get("isLocked", False))
        name = props.get("name")
        for roi in _geometry_rois(geometry):
            annotations.append(Annotation(roi=roi, path_class=path_class, locked=locked, name=name))

    logger.info("Loaded %d annotations from %s", len(annotations), path)
    return AnnotationSet(annotations)
