"""Feature normalisation, missing-value substitution and optional PCA.

``fit`` learns a ``FeaturePreprocessor`` from a training matrix; the same
transform is later applied to training and inference features alike.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from roi_trainset.core.config import PreprocessingConfig

logger = logging.getLogger("roi_trainset.preprocessing")


def _substitute_missing(matrix: np.ndarray, missing_value: float) -> np.ndarray:
    out = np.array(matrix, dtype=np.float64, copy=True)
    if out.ndim != 2:
        raise ValueError(f"Expected a 2-D feature matrix, got shape {out.shape}")
    out[~np.isfinite(out)] = missing_value
    return out


@dataclass(frozen=True, eq=False)
class FeaturePreprocessor:
    n_features_in: int
    missing_value: float = 0.0
    normalize: str = "none"
    mean: np.ndarray | None = None
    scale: np.ndarray | None = None
    pca_mean: np.ndarray | None = None
    components: np.ndarray | None = None
    explained_variance: np.ndarray | None = None
    pca_whiten: bool = False

    @property
    def n_features_out(self) -> int:
        if self.components is not None:
            return int(self.components.shape[0])
        return self.n_features_in

    def apply(self, matrix: np.ndarray) -> np.ndarray:
        """Transform ``matrix`` without modifying it; returns float32."""
        x = _substitute_missing(matrix, self.missing_value)
        if x.shape[1] != self.n_features_in:
            raise ValueError(
                f"Preprocessor expects {self.n_features_in} features, got {x.shape[1]}"
            )
        if self.mean is not None and self.scale is not None:
            x = (x - self.mean) / self.scale
        if self.components is not None and self.pca_mean is not None:
            x = (x - self.pca_mean) @ self.components.T
            if self.pca_whiten and self.explained_variance is not None:
                x = x / np.sqrt(self.explained_variance)
        return x.astype(np.float32)


def _fit_pca(x: np.ndarray, retained: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    pca_mean = x.mean(axis=0)
    centered = x - pca_mean
    _, s, vt = np.linalg.svd(centered, full_matrices=False)
    # Deterministic signs: largest absolute loading of each component is positive.
    signs = np.sign(vt[np.arange(vt.shape[0]), np.argmax(np.abs(vt), axis=1)])
    signs[signs == 0] = 1.0
    vt = vt * signs[:, None]

    variance = (s**2) / max(1, x.shape[0] - 1)
    total = float(variance.sum())
    if total <= 0:
        k = 1
    else:
        cumulative = np.cumsum(variance) / total
        k = int(np.searchsorted(cumulative, retained - 1e-12) + 1)
        k = min(k, vt.shape[0])
    explained = np.where(variance[:k] > 0, variance[:k], 1.0)
    return pca_mean, vt[:k].copy(), explained


def fit(matrix: np.ndarray, options: PreprocessingConfig | None = None) -> FeaturePreprocessor:
    """Learn a preprocessor from ``matrix``.

    Missing (NaN/inf) values are substituted before any statistics are computed.
    Constant columns get a unit scale so they normalise to zero.
    """
    opts = (options or PreprocessingConfig()).validated()
    x = _substitute_missing(matrix, opts.missing_value)
    if x.shape[0] == 0:
        raise ValueError("Cannot fit a preprocessor on an empty matrix")

    mean = scale = None
    if opts.normalize == "mean-variance":
        mean = x.mean(axis=0)
        std = x.std(axis=0)
        scale = np.where(std > 0, std, 1.0)
        x = (x - mean) / scale

    pca_mean = components = explained = None
    if opts.pca_retained is not None:
        pca_mean, components, explained = _fit_pca(x, opts.pca_retained)
        logger.info(
            "PCA keeps %d of %d components (%.3f variance retained requested)",
            components.shape[0],
            x.shape[1],
            opts.pca_retained,
        )

    return FeaturePreprocessor(
        n_features_in=int(x.shape[1]),
        missing_value=opts.missing_value,
        normalize=opts.normalize,
        mean=mean,
        scale=scale,
        pca_mean=pca_mean,
        components=components,
        explained_variance=explained,
        pca_whiten=bool(opts.pca_whiten),
    )


def apply(transform: FeaturePreprocessor, matrix: np.ndarray) -> np.ndarray:
    return transform.apply(matrix)
