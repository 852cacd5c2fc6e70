from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .base import FeatureExtractor

logger = logging.getLogger("roi_trainset.models.features")

ExtractorBuilder = Callable[[], FeatureExtractor]


@dataclass(frozen=True)
class _Entry:
    builder: ExtractorBuilder
    summary: str


class FeatureExtractorRegistry:
    """Named, case-insensitive factories for tile feature extractors.

    Builders are called on ``create`` so that heavy state (kernels, devices) is
    only set up for the extractor actually used.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    def register(self, name: str, builder: ExtractorBuilder, *, summary: str = "") -> None:
        key = name.strip().lower()
        if not key:
            raise ValueError("Extractor name must not be empty.")
        if key in self._entries:
            raise ValueError(f"An extractor named '{key}' is already registered.")
        self._entries[key] = _Entry(builder=builder, summary=summary)

    def available(self) -> list[str]:
        return sorted(self._entries)

    def describe(self) -> dict[str, str]:
        """Name -> one-line summary, in name order."""
        return {name: self._entries[name].summary for name in self.available()}

    def create(self, name: str) -> FeatureExtractor:
        entry = self._entries.get(name.strip().lower())
        if entry is None:
            raise KeyError(f"No extractor '{name}'; choose from {', '.join(self.available())}")
        extractor = entry.builder()
        logger.debug("Created extractor %r", extractor)
        return extractor

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._entries
