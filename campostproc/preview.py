"""Preview windows: the interface, a null preview and an in-memory RGB preview."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from .stage import StreamInfo

logger = logging.getLogger(__name__)

DoneCallback = Callable[[int], None]

# Rows are (Y, VR, UG, VG, UB) coefficients for turning YUV back into RGB.
_JPEG = (1.0, 1.402, -0.344, -0.714, 1.772)
_SMPTE170M = (1.164, 1.596, -0.392, -0.813, 2.017)
_REC709 = (1.164, 1.793, -0.213, -0.533, 2.112)

_DEFAULT_WIDTH = 512
_DEFAULT_HEIGHT = 384


@dataclass
class PreviewOptions:
    """The options that choose and place a preview window."""

    nopreview: bool = False
    qt_preview: bool = False
    fullscreen: bool = False
    preview_x: int = 0
    preview_y: int = 0
    preview_width: int = 0
    preview_height: int = 0


class Preview(ABC):
    """A window that shows camera buffers and hands them back when done."""

    def __init__(self, options: PreviewOptions):
        self.options = options
        self._done_callback: DoneCallback | None = None
        self.frames_shown = 0

    def set_done_callback(self, callback: DoneCallback) -> None:
        """Set the function called with a buffer's fd once it may be recycled."""
        self._done_callback = callback

    def _done(self, fd: int) -> None:
        if self._done_callback is None:
            raise RuntimeError("Preview: no done callback set")
        self._done_callback(fd)

    def set_info_text(self, text: str) -> None:
        """Show some status text, if the window can."""

    @abstractmethod
    def show(self, fd: int, span: Any, info: StreamInfo) -> None:
        """Display a buffer; its fd comes back through the done callback."""

    @abstractmethod
    def reset(self) -> None:
        """Forget the current buffers, ready to show new ones."""

    def quit(self) -> bool:
        """Whether the window has been shut down."""
        return False

    @abstractmethod
    def max_image_size(self) -> tuple[int, int]:
        """The largest image (width, height) allowed; zeroes mean no limit."""


class NullPreview(Preview):
    """Shows nothing and returns every buffer at once."""

    def __init__(self, options: PreviewOptions):
        super().__init__(options)
        logger.debug("Running without preview window")

    def show(self, fd: int, span: Any, info: StreamInfo) -> None:
        self.frames_shown += 1
        self._done(fd)

    def reset(self) -> None:
        self.frames_shown = 0

    def max_image_size(self) -> tuple[int, int]:
        return 0, 0

    def set_info_text(self, text: str) -> None:
        logger.info("%s", text)


def _coefficients(colour_space: str | None) -> tuple[int, tuple[float, ...]]:
    name = (colour_space or "").lower()
    if name == "smpte170m":
        return 16, _SMPTE170M
    if name == "rec709":
        return 16, _REC709
    if name != "sycc":
        logger.info("Preview: unexpected colour space %s", colour_space)
    return 0, _JPEG


def yuv420_resample_to_rgb(
    span: Any, info: StreamInfo, window_width: int, window_height: int
) -> np.ndarray:
    """Resample a YUV420 image to a window_height x window_width x 3 RGB image.

    Nearest-neighbour sampling; each pair of output pixels shares one U, V sample.
    """
    if window_width <= 0 or window_height <= 0:
        raise ValueError("window dimensions must be positive")
    if window_width % 2:
        raise ValueError("window width must be even")
    data = span.reshape(-1) if isinstance(span, np.ndarray) else np.frombuffer(span, dtype=np.uint8)
    stride = info.stride
    half = stride >> 1
    if data.size < info.height * stride + 2 * (info.height >> 1) * half:
        raise ValueError("buffer too small for its stream geometry")

    offset_y, (c_y, c_vr, c_ug, c_vg, c_ub) = _coefficients(info.colour_space)
    x_step = (info.width << 16) // window_width
    y_step = (info.height << 16) // window_height

    rows = (np.arange(window_height, dtype=np.int64) * y_step) >> 16
    pairs = np.arange(window_width // 2, dtype=np.int64)
    pos0 = (x_step >> 1) + 2 * pairs * x_step
    pos1 = pos0 + x_step

    y_idx = rows[:, None] * stride
    u_base = ((4 * info.height + rows) >> 1) * half
    v_base = ((5 * info.height + rows) >> 1) * half

    data = data.astype(np.int64)
    y0 = data[y_idx + (pos0 >> 16)[None, :]] - offset_y
    y1 = data[y_idx + (pos1 >> 16)[None, :]] - offset_y
    u = data[u_base[:, None] + (pos1 >> 17)[None, :]] - 128
    v = data[v_base[:, None] + (pos1 >> 17)[None, :]] - 128

    f = np.float32
    y0f, y1f = y0.astype(f), y1.astype(f)
    uf, vf = u.astype(f), v.astype(f)
    cy, cvr, cug, cvg, cub = (f(c) for c in (c_y, c_vr, c_ug, c_vg, c_ub))

    def channel(value: np.ndarray) -> np.ndarray:
        return np.clip(value.astype(np.int64), 0, 255).astype(np.uint8)

    first = np.stack(
        [channel(cy * y0f + cvr * vf), channel(cy * y0f + cug * uf + cvg * vf), channel(cy * y0f + cub * uf)],
        axis=-1,
    )
    second = np.stack(
        [channel(cy * y1f + cvr * vf), channel(cy * y1f + cug * uf + cvg * vf), channel(cy * y1f + cub * uf)],
        axis=-1,
    )
    out = np.empty((window_height, window_width, 3), dtype=np.uint8)
    out[:, 0::2] = first
    out[:, 1::2] = second
    return out


class ImagePreview(Preview):
    """Renders each buffer into an RGB image held in memory."""

    def __init__(self, options: PreviewOptions):
        super().__init__(options)
        width, height = options.preview_width, options.preview_height
        if width % 2 or height % 2:
            raise RuntimeError("ImagePreview: expect even dimensions")
        # Conversion is slow, so keep the window small by default.
        if width == 0 or height == 0:
            width, height = _DEFAULT_WIDTH, _DEFAULT_HEIGHT
        self.window_width = width
        self.window_height = height
        self.image = np.zeros((height, width, 3), dtype=np.uint8)
        self.title = ""
        self._closed = False
        logger.debug("Made image preview")

    def set_info_text(self, text: str) -> None:
        self.title = text

    def show(self, fd: int, span: Any, info: StreamInfo) -> None:
        self.image = yuv420_resample_to_rgb(span, info, self.window_width, self.window_height)
        self.frames_shown += 1
        self._done(fd)

    def reset(self) -> None:
        self.frames_shown = 0

    def close(self) -> None:
        """Mark the window as closed by its user."""
        self._closed = True

    def quit(self) -> bool:
        return self._closed

    def max_image_size(self) -> tuple[int, int]:
        return 0, 0


def make_preview(options: PreviewOptions) -> Preview:
    """Choose a preview for the options, falling back to showing nothing."""
    if options.nopreview:
        return NullPreview(options)
    if options.qt_preview:
        preview = ImagePreview(options)
        logger.info("Made image preview window")
        return preview
    logger.info("Preview window unavailable")
    return NullPreview(options)