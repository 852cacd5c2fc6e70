from __future__ import annotations

from typing import Callable, Collection, Mapping, Protocol

from roi_trainset.core.models import ROI, AnnotationClass


class AnnotationSource(Protocol):
    """Labeled regions grouped by class, with change notifications."""

    def grouped_rois(self) -> Mapping[AnnotationClass, Collection[ROI]]: ...

    def add_listener(self, listener: Callable) -> None: ...

    def remove_listener(self, listener: Callable) -> None: ...
