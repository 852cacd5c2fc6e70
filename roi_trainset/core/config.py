from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

NORMALIZATIONS = ("none", "mean-variance")


def _ensure_positive(value: float, name: str) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


def _ensure_fraction(value: float, name: str) -> float:
    if value <= 0 or value > 1:
        raise ValueError(f"{name} must be in (0, 1], got {value}")
    return value


def _validate_device(device: str) -> str:
    """Normalise a torch device string; only CPU and CUDA devices are accepted."""
    dev = device.strip().lower()
    kind, sep, index = dev.partition(":")
    if kind == "cpu" and not sep:
        return dev
    if kind == "cuda" and (not sep or index.isdigit()):
        return dev
    raise ValueError(f"Unsupported device '{device}'; use cpu, cuda or cuda:<index>")


@dataclass
class AssemblyConfig:
    downsample: float = 1.0
    tile_workers: int | None = None
    show_progress: bool = False

    def validated(self) -> AssemblyConfig:
        self.downsample = float(_ensure_positive(float(self.downsample), "downsample"))
        if self.tile_workers is not None:
            _ensure_positive(self.tile_workers, "tile_workers")
        return self


@dataclass
class PreprocessingConfig:
    normalize: str = "mean-variance"
    missing_value: float = 0.0
    pca_retained: float | None = None
    pca_whiten: bool = False

    def validated(self) -> PreprocessingConfig:
        norm = str(self.normalize).strip().lower()
        if norm not in NORMALIZATIONS:
            raise ValueError(f"normalize must be one of {list(NORMALIZATIONS)}, got {self.normalize}")
        self.normalize = norm
        self.missing_value = float(self.missing_value)
        if self.missing_value != self.missing_value:
            raise ValueError("missing_value must not be NaN")
        if self.pca_retained is not None:
            self.pca_retained = _ensure_fraction(float(self.pca_retained), "pca_retained")
        return self


@dataclass
class FeatureExtractionConfig:
    extractor: str = "filters"
    device: str = "cpu"
    sigmas: tuple[float, ...] = (1.0, 2.0, 4.0)
    pool: int = 1

    def validated(self) -> FeatureExtractionConfig:
        if not self.extractor:
            raise ValueError("A feature extractor name must be provided.")
        self.extractor = self.extractor.strip().lower()
        self.device = _validate_device(str(self.device))
        if not self.sigmas:
            raise ValueError("At least one sigma is required.")
        for s in self.sigmas:
            _ensure_positive(float(s), "sigma")
        self.sigmas = tuple(float(s) for s in self.sigmas)
        _ensure_positive(self.pool, "pool")
        return self


@dataclass
class OutputConfig:
    output_path: Path
    overwrite: bool = False

    def validated(self) -> OutputConfig:
        if self.output_path.suffix.lower() not in {".h5", ".hdf5"}:
            raise ValueError(f"Output must be an .h5/.hdf5 file, got {self.output_path}")
        if self.output_path.exists() and not self.overwrite:
            raise FileExistsError(f"Output exists (use --overwrite): {self.output_path}")
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        return self


@dataclass
class AppConfig:
    output: OutputConfig
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    features: FeatureExtractionConfig = field(default_factory=FeatureExtractionConfig)

    def validated(self) -> AppConfig:
        self.assembly = self.assembly.validated()
        self.preprocessing = self.preprocessing.validated()
        self.features = self.features.validated()
        self.output = self.output.validated()
        return self
