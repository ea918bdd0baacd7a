"""Sobel edge detection on the luma plane of the main stream."""

from __future__ import annotations

from math import comb
from typing import Any, Mapping, Sequence

import numpy as np

from .stage import CompletedRequest, PostProcessingStage, register_stage

NAME = "sobel_cv"
_VALID_KSIZES = (1, 3, 5, 7)


def _binomial(order: int) -> np.ndarray:
    return np.array([comb(order, k) for k in range(order + 1)], dtype=np.int64)


def _sobel_kernels(ksize: int) -> tuple[np.ndarray, np.ndarray]:
    """Return the (smoothing, derivative) kernels for a first derivative."""
    if ksize == 1:
        return np.array([1], dtype=np.int64), np.array([-1, 0, 1], dtype=np.int64)
    derivative = np.convolve(np.array([-1, 0, 1], dtype=np.int64), _binomial(ksize - 3))
    return _binomial(ksize - 1), derivative


def _correlate(image: np.ndarray, kernel: Sequence[int], axis: int) -> np.ndarray:
    """Correlate along one axis with reflect-101 borders."""
    kernel = np.asarray(kernel, dtype=np.int64)
    r = len(kernel) // 2
    if r == 0:
        return image * kernel[0]
    pad = [(0, 0), (0, 0)]
    pad[axis] = (r, r)
    padded = np.pad(image, pad, mode="reflect")
    n = image.shape[axis]
    out = np.zeros_like(image, dtype=np.int64)
    for k, weight in enumerate(kernel):
        if weight:
            out += weight * np.take(padded, np.arange(k, k + n), axis=axis)
    return out


def sobel_edges(image: Any, ksize: int = 3) -> np.ndarray:
    """Blur a greyscale image, then return the mean of its absolute x and y gradients."""
    if ksize not in _VALID_KSIZES:
        raise ValueError(f"ksize must be one of {_VALID_KSIZES}")
    img = np.asarray(image, dtype=np.uint8)
    if img.ndim != 2:
        raise ValueError("expected a two dimensional image")
    src = img.astype(np.int64)

    blur = [1, 2, 1]
    blurred = (_correlate(_correlate(src, blur, 1), blur, 0) + 8) >> 4

    smooth, deriv = _sobel_kernels(ksize)
    grad_x = _correlate(_correlate(blurred, deriv, 1), smooth, 0)
    grad_y = _correlate(_correlate(blurred, smooth, 1), deriv, 0)

    abs_x = np.clip(np.abs(np.clip(grad_x, -32768, 32767)), 0, 255)
    abs_y = np.clip(np.abs(np.clip(grad_y, -32768, 32767)), 0, 255)
    return np.clip(np.rint(0.5 * abs_x + 0.5 * abs_y), 0, 255).astype(np.uint8)


class SobelCvStage(PostProcessingStage):
    """Replaces the main image with its edges, in greyscale."""

    def __init__(self, app: Any):
        super().__init__(app)
        self.stream: Any = None
        self.ksize = 3

    @property
    def name(self) -> str:
        return NAME

    def read(self, params: Mapping[str, Any]) -> None:
        self.ksize = int(params.get("ksize", 3))

    def configure(self) -> None:
        self.stream = self.app.get_main_stream()
        if self.stream is None or self.app.get_stream_info(self.stream).pixel_format != "YUV420":
            raise RuntimeError("SobelCvStage: only YUV420 format supported")

    def process(self, completed_request: CompletedRequest) -> bool:
        info = self.app.get_stream_info(self.stream)
        buffer = completed_request.buffers[self.stream]
        data = buffer.reshape(-1) if isinstance(buffer, np.ndarray) else np.frombuffer(buffer, dtype=np.uint8)
        luma_size = info.stride * info.height
        chroma_size = luma_size // 2
        if data.size < luma_size + chroma_size:
            raise ValueError("buffer too small for its stream geometry")

        data[luma_size : luma_size + chroma_size] = 128
        luma = data[:luma_size].reshape(info.height, info.stride)[:, : info.width]
        luma[:] = sobel_edges(luma, self.ksize)
        return False


register_stage(NAME, SobelCvStage)