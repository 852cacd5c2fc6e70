"""Backend selection for image sources."""

from __future__ import annotations

import importlib
import os
from pathlib import Path

from .base import ImageSource
from .pillow_source import PillowImageSource

SLIDE_SUFFIXES = (".svs", ".tif", ".tiff", ".ndpi", ".vms", ".vmu", ".scn", ".mrxs", ".bif", ".dcm")
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp", ".webp", ".gif")

# Backends given as "module:Class" are imported on first use, so OpenSlide is
# only needed when a slide format is actually opened.
_backends: dict[str, type[ImageSource] | str] = {
    "pillow": PillowImageSource,
    "openslide": "roi_trainset.core.images.openslide_source:OpenSlideImageSource",
}
_suffixes: dict[str, str] = {
    **{s: "openslide" for s in SLIDE_SUFFIXES},
    **{s: "pillow" for s in IMAGE_SUFFIXES},
}


def register_backend(name: str, impl: type[ImageSource] | str, suffixes=()) -> None:
    _backends[name] = impl
    for suffix in suffixes:
        suffix = suffix.lower()
        _suffixes[suffix if suffix.startswith(".") else "." + suffix] = name


def backend_for(path: str | os.PathLike) -> str | None:
    return _suffixes.get(Path(path).suffix.lower())


def _resolve(name: str) -> type[ImageSource]:
    impl = _backends[name]
    if isinstance(impl, str):
        module_name, _, attr = impl.partition(":")
        impl = getattr(importlib.import_module(module_name), attr)
        _backends[name] = impl
    return impl


def open_image(path: str | os.PathLike, backend: str | None = None) -> ImageSource:
    """Create the image source for ``path``; the file itself is opened lazily."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")
    if backend is None:
        backend = backend_for(path)
        if backend is None:
            raise ValueError(f"No image backend for {path}; known suffixes: {sorted(_suffixes)}")
    elif backend not in _backends:
        raise ValueError(f"Unknown backend '{backend}'. Available: {sorted(_backends)}")
    return _resolve(backend)(path)
