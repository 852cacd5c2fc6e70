from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

IGNORE_CLASS_NAME = "Ignore*"
REGION_CLASS_NAME = "Region*"

AREA_KINDS = frozenset({"polygon", "rectangle", "ellipse"})
LINE_KINDS = frozenset({"line", "polyline"})


def _frozen_points(points: Any) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64).reshape(-1, 2).copy()
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class ROI:
    """Immutable region of interest in full-resolution image coordinates.

    Identity is by reference: two ROIs with the same vertices are different keys.
    Rectangles and ellipses store their two bounding corners as ``points``.
    """

    kind: str
    points: np.ndarray
    holes: tuple[np.ndarray, ...] = ()
    z: int = 0
    t: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", str(self.kind).lower())
        object.__setattr__(self, "points", _frozen_points(self.points))
        object.__setattr__(self, "holes", tuple(_frozen_points(h) for h in self.holes))
        if self.points.shape[0] == 0:
            raise ValueError("ROI requires at least one vertex")

    @classmethod
    def rectangle(cls, x: float, y: float, w: float, h: float, *, z: int = 0, t: int = 0) -> ROI:
        return cls("rectangle", [(x, y), (x + w, y + h)], z=z, t=t)

    @classmethod
    def ellipse(cls, x: float, y: float, w: float, h: float, *, z: int = 0, t: int = 0) -> ROI:
        return cls("ellipse", [(x, y), (x + w, y + h)], z=z, t=t)

    @classmethod
    def polygon(
        cls,
        points: Sequence[Sequence[float]],
        holes: Sequence[Sequence[Sequence[float]]] = (),
        *,
        z: int = 0,
        t: int = 0,
    ) -> ROI:
        return cls("polygon", points, tuple(holes), z=z, t=t)

    @classmethod
    def line(cls, x1: float, y1: float, x2: float, y2: float, *, z: int = 0, t: int = 0) -> ROI:
        return cls("line", [(x1, y1), (x2, y2)], z=z, t=t)

    @classmethod
    def polyline(cls, points: Sequence[Sequence[float]], *, z: int = 0, t: int = 0) -> ROI:
        return cls("polyline", points, z=z, t=t)

    @classmethod
    def points_roi(cls, points: Sequence[Sequence[float]], *, z: int = 0, t: int = 0) -> ROI:
        return cls("points", points, z=z, t=t)

    def __repr__(self) -> str:
        x0, y0 = self.points.min(axis=0)
        x1, y1 = self.points.max(axis=0)
        return (
            f"<ROI {self.kind} ({x0:.0f}, {y0:.0f}, {x1 - x0:.0f}, {y1 - y0:.0f}) "
            f"z={self.z} t={self.t}>"
        )


@dataclass(frozen=True)
class AnnotationClass:
    """Named annotation class; ``color`` is an (r, g, b) tuple when set.

    Classes compare by name only.
    """

    name: str
    color: tuple[int, int, int] | None = field(default=None, compare=False)

    @property
    def base_name(self) -> str:
        return self.name.split(":", 1)[0].strip()

    @property
    def is_background(self) -> bool:
        return self.base_name == IGNORE_CLASS_NAME


@dataclass(frozen=True)
class ClassLabel:
    label: int
    name: str
    color: tuple[int, int, int] | None
    rois: frozenset[ROI] = field(default_factory=frozenset, compare=False)


@dataclass(frozen=True)
class TileRequest:
    """A tile in full-resolution coordinates, read at ``downsample``."""

    x: int
    y: int
    width: int
    height: int
    z: int = 0
    t: int = 0
    downsample: float = 1.0

    @property
    def output_size(self) -> tuple[int, int]:
        """(width, height) of the tile once read at ``downsample``."""
        w = max(1, int(round(self.width / self.downsample)))
        h = max(1, int(round(self.height / self.downsample)))
        return w, h


@dataclass(frozen=True)
class AssemblyKey:
    """Identity of everything a cached feature matrix depends on besides its ROI."""

    image_id: str | None
    extractor_id: str | None
    downsample: float


@dataclass(frozen=True)
class RowBlock:
    """Contiguous rows [start, stop) of a training set coming from one ROI."""

    label: int
    roi: ROI
    start: int
    stop: int

    @property
    def n_rows(self) -> int:
        return self.stop - self.start


@dataclass
class TrainingSet:
    features: np.ndarray
    labels: np.ndarray
    class_labels: dict[int, ClassLabel]
    blocks: list[RowBlock] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.features.shape[0] != self.labels.shape[0]:
            raise ValueError(
                f"Feature rows ({self.features.shape[0]}) != label rows ({self.labels.shape[0]})"
            )

    @property
    def n_rows(self) -> int:
        return int(self.features.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.features.shape[1]) if self.features.ndim == 2 else 0

    def class_counts(self) -> dict[int, int]:
        ids, counts = np.unique(self.labels, return_counts=True)
        return {int(i): int(c) for i, c in zip(ids, counts)}
