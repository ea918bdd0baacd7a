"""Base class, registry and shared helpers for post-processing stages."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

import numpy as np

_MISSING = object()


@dataclass
class StreamInfo:
    """Geometry of an image stream."""

    width: int = 0
    height: int = 0
    stride: int = 0
    pixel_format: str | None = None
    colour_space: str | None = None


class Metadata:
    """Thread-safe key/value store attached to a request."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Return the value for key; raise KeyError if absent and no default is given."""
        with self._lock:
            if key in self._data:
                return self._data[key]
        if default is _MISSING:
            raise KeyError(key)
        return default

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data


@dataclass
class CompletedRequest:
    """A finished camera request: its buffers per stream and attached metadata."""

    sequence: int = 0
    buffers: dict[Any, Any] = field(default_factory=dict)
    post_process_metadata: Metadata = field(default_factory=Metadata)


class PostProcessingStage(ABC):
    """A stage that can inspect or modify each completed request."""

    def __init__(self, app: Any):
        self.app = app
        self.running = False
        self.stream_configs: dict[str, Any] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """The name the stage is registered under."""

    def read(self, params: Mapping[str, Any]) -> None:
        """Read the stage's parameters."""

    def adjust_config(self, use_case: str, config: Any) -> None:
        """Record the stream configuration offered for a use case before it is applied."""
        self.stream_configs[use_case] = config

    def configure(self) -> None:
        """Prepare for the configured streams."""

    def start(self) -> None:
        """Called when the camera starts."""
        self.running = True

    @abstractmethod
    def process(self, completed_request: CompletedRequest) -> bool:
        """Process a request; return True if it is to be dropped."""

    def stop(self) -> None:
        """Called when the camera stops."""

    def teardown(self) -> None:
        """Release anything set up by configure or adjust_config."""
        self.running = False
        self.stream_configs.clear()


def _as_bytes_array(src: Any) -> np.ndarray:
    if isinstance(src, np.ndarray):
        return src.reshape(-1).astype(np.uint8, copy=False)
    return np.frombuffer(src, dtype=np.uint8)


def yuv420_to_rgb(src: Any, src_info: StreamInfo, dst_info: StreamInfo) -> np.ndarray:
    """Convert a YUV420 image to packed RGB, cropping from the centre if larger.

    Returns a flat uint8 array of dst_info.height * dst_info.stride bytes.
    """
    if src_info.width < dst_info.width or src_info.height < dst_info.height:
        raise ValueError("source image is smaller than the destination")
    if dst_info.stride < 3 * dst_info.width:
        raise ValueError("destination stride too small for RGB rows")
    data = _as_bytes_array(src)
    stride = src_info.stride
    off_x = ((src_info.width - dst_info.width) // 2) & ~1
    off_y = ((src_info.height - dst_info.height) // 2) & ~1
    y_size = src_info.height * stride
    u_size = (src_info.height // 2) * (stride // 2)
    if data.size < y_size + 2 * u_size:
        raise ValueError("source buffer too small for its stream geometry")

    h, w = dst_info.height, dst_info.width
    rows = np.arange(h) + off_y
    cols = np.arange(w) + off_x
    luma = data[:y_size].reshape(src_info.height, stride)[np.ix_(rows, cols)].astype(np.int64)
    u_idx = (
        y_size
        + (rows // 2)[:, None] * (stride // 2)
        + off_x // 2
        + (np.arange(w) // 2)[None, :]
    )
    u = data[u_idx].astype(np.int64) - 128
    v = data[u_idx + u_size].astype(np.int64) - 128

    r = (luma + 1.402 * v).astype(np.int64)
    g = (luma - 0.345 * u - 0.714 * v).astype(np.int64)
    b = (luma + 1.771 * u).astype(np.int64)
    rgb = np.clip(np.stack([r, g, b], axis=-1), 0, 255).astype(np.uint8)

    out = np.zeros(h * dst_info.stride, dtype=np.uint8)
    out.reshape(h, dst_info.stride)[:, : 3 * w] = rgb.reshape(h, 3 * w)
    return out


def execution_time(f: Callable[..., Any], *args: Any, **kwargs: Any) -> float:
    """Run f with the given arguments and return the elapsed time in seconds."""
    t1 = time.perf_counter()
    f(*args, **kwargs)
    return time.perf_counter() - t1


def get_json_array(
    params: Mapping[str, Any], key: str, default_value: Sequence[Any] = ()
) -> list[Any]:
    """Read a list under key, padded out with the tail of default_value."""
    values: list[Any] = list(params[key]) if key in params else []
    values.extend(default_value[len(values):])
    return values


StageCreateFunc = Callable[[Any], PostProcessingStage]

_stages: dict[str, StageCreateFunc] = {}


def register_stage(name: str, create_func: StageCreateFunc) -> StageCreateFunc:
    """Register a stage factory under name, replacing any earlier one."""
    _stages[name] = create_func
    return create_func


def get_post_processing_stages() -> dict[str, StageCreateFunc]:
    """Return the registered stage factories, ordered by name."""
    return dict(sorted(_stages.items()))


def _names(stages: Iterable[str]) -> list[str]:
    return list(stages)