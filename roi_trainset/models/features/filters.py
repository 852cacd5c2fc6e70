from __future__ import annotations

import math
from typing import Sequence

import cv2
import numpy as np
import torch
import torch.nn.functional as F

from roi_trainset.core.images import ImageSource
from roi_trainset.core.models import TileRequest

from .base import FeatureExtractor, crop_window, logger


def _gaussian_kernel1d(sigma: float, *, dtype: torch.dtype) -> torch.Tensor:
    radius = max(1, int(math.ceil(3.0 * sigma)))
    x = torch.arange(-radius, radius + 1, dtype=dtype)
    k = torch.exp(-(x**2) / (2.0 * sigma * sigma))
    return k / k.sum()


class FilterBankFeatureExtractor(FeatureExtractor):
    """Per-pixel multi-scale filter responses computed with torch.

    Channels: intensity, then for every sigma the Gaussian-smoothed intensity,
    its gradient magnitude and its scale-normalised Laplacian. With ``pool > 1``
    the grid is average-pooled, so it is smaller than the requested tile.
    Each tile is read with enough surrounding context for the widest filter, so
    responses at tile seams match a computation over the whole image.
    """

    def __init__(
        self,
        *,
        name: str = "filters",
        sigmas: Sequence[float] = (1.0, 2.0, 4.0),
        pool: int = 1,
        input_size: int = 256,
        device: torch.device | str = "cpu",
        dtype: torch.dtype = torch.float32,
    ) -> None:
        if not sigmas:
            raise ValueError("At least one sigma is required.")
        self.name = name
        self.sigmas = tuple(float(s) for s in sigmas)
        self.pool = max(1, int(pool))
        self.input_width = int(input_size)
        self.input_height = int(input_size)
        self.device = torch.device(device)
        self.dtype = dtype
        # Gaussian radius plus one pixel for the gradient and Laplacian stencils
        self.padding = int(math.ceil(3.0 * max(self.sigmas))) + 1

        self._kernels = {
            s: _gaussian_kernel1d(s, dtype=dtype).to(self.device) for s in self.sigmas
        }
        diff = torch.tensor([-0.5, 0.0, 0.5], dtype=dtype, device=self.device)
        self._dx = diff.view(1, 1, 1, 3)
        self._dy = diff.view(1, 1, 3, 1)
        self._laplace = torch.tensor(
            [[0.0, 1.0, 0.0], [1.0, -4.0, 1.0], [0.0, 1.0, 0.0]], dtype=dtype, device=self.device
        ).view(1, 1, 3, 3)

    @property
    def n_features(self) -> int:
        return 1 + 3 * len(self.sigmas)

    def channel_names(self) -> list[str]:
        names = ["intensity"]
        for s in self.sigmas:
            names += [f"gaussian_s{s:g}", f"gradient_s{s:g}", f"log_s{s:g}"]
        return names

    def _smooth(self, x: torch.Tensor, sigma: float) -> torch.Tensor:
        k = self._kernels[sigma]
        r = k.numel() // 2
        x = F.conv2d(F.pad(x, (r, r, 0, 0), mode="replicate"), k.view(1, 1, 1, -1))
        return F.conv2d(F.pad(x, (0, 0, r, r), mode="replicate"), k.view(1, 1, -1, 1))

    @torch.inference_mode()
    def calculate_features(self, image: ImageSource, request: TileRequest) -> np.ndarray:
        arr = image.read_region(self.padded_request(request))
        gray = cv2.cvtColor(arr, cv2.COLOR_RGB2GRAY).astype(np.float32) / 255.0
        x = torch.from_numpy(gray).to(device=self.device, dtype=self.dtype)[None, None]

        channels = [x]
        for sigma in self.sigmas:
            smoothed = self._smooth(x, sigma)
            gx = F.conv2d(F.pad(smoothed, (1, 1, 0, 0), mode="replicate"), self._dx)
            gy = F.conv2d(F.pad(smoothed, (0, 0, 1, 1), mode="replicate"), self._dy)
            lap = F.conv2d(F.pad(smoothed, (1, 1, 1, 1), mode="replicate"), self._laplace)
            channels += [smoothed, torch.sqrt(gx * gx + gy * gy), lap * (sigma * sigma)]

        stack = torch.cat(channels, dim=1)
        rows, cols = crop_window(stack.shape[2], stack.shape[3], request)
        stack = stack[:, :, rows, cols]
        if self.pool > 1:
            stack = F.avg_pool2d(stack, kernel_size=self.pool, stride=self.pool, ceil_mode=True)
        out = stack[0].permute(1, 2, 0).to(device="cpu", dtype=torch.float32).numpy()
        logger.debug("%s: %s -> grid %sx%s", self.name, request, out.shape[1], out.shape[0])
        return out
