from __future__ import annotations

from typing import Sequence

import torch

from .base import FeatureExtractor, as_feature_grid, crop_window
from .filters import FilterBankFeatureExtractor
from .registry import FeatureExtractorRegistry

__all__ = [
    "FeatureExtractor",
    "FeatureExtractorRegistry",
    "FilterBankFeatureExtractor",
    "as_feature_grid",
    "crop_window",
    "build_default_registry",
]


def build_default_registry(
    *,
    device: torch.device | str = "cpu",
    sigmas: Sequence[float] = (1.0, 2.0, 4.0),
    pool: int = 1,
    input_size: int = 256,
) -> FeatureExtractorRegistry:
    """Create a registry populated with the built-in extractors."""
    registry = FeatureExtractorRegistry()
    registry.register(
        "filters",
        lambda: FilterBankFeatureExtractor(
            name="filters", sigmas=sigmas, pool=pool, input_size=input_size, device=device
        ),
        summary="Gaussian, gradient magnitude and LoG responses per pixel",
    )
    registry.register(
        "filters-pooled",
        lambda: FilterBankFeatureExtractor(
            name="filters-pooled",
            sigmas=sigmas,
            pool=max(2, pool),
            input_size=input_size,
            device=device,
        ),
        summary="Same filter bank, average-pooled to a coarser grid",
    )
    return registry
