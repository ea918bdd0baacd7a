"""Image segmentation results and the stage that produces them."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np

from .stage import CompletedRequest, StreamInfo, register_stage
from .tf_stage import ModelLoader, TfConfig, TfStage

WIDTH = 257
HEIGHT = 257
NAME = "segmentation_tf"


@dataclass
class Segmentation:
    """A per-pixel category map with the names of its categories."""

    width: int
    height: int
    labels: list[str]
    segmentation: np.ndarray = field(repr=False)


def read_segmentation_labels(file_name: str) -> list[str]:
    """Read one label per line."""
    try:
        with open(file_name, encoding="utf-8") as f:
            lines = f.read().split("\n")
    except OSError as exc:
        raise RuntimeError("SegmentationTfStage: Failed to load labels file") from exc
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def segment(output: Any, num_categories: int) -> np.ndarray:
    """Pick the most confident category for every pixel; returns a flat uint8 map."""
    scores = np.asarray(output).reshape(-1, num_categories)
    return np.argmax(scores, axis=1).astype(np.uint8)


def largest_categories(
    segmentation: Any, labels: Sequence[str], threshold: int
) -> list[tuple[str, int]]:
    """Labels with their pixel counts, largest first, while at least threshold."""
    seg = np.asarray(segmentation).reshape(-1)
    counts = np.bincount(seg, minlength=len(labels))[: len(labels)]
    order = sorted(range(len(labels)), key=lambda i: -int(counts[i]))
    result = []
    for i in order:
        if counts[i] < threshold:
            break
        result.append((labels[i], int(counts[i])))
    return result


def _as_writable(buffer: Any) -> np.ndarray:
    if isinstance(buffer, np.ndarray):
        return buffer.reshape(-1)
    return np.frombuffer(buffer, dtype=np.uint8)


def draw_segmentation(
    buffer: Any, main_info: StreamInfo, segmentation: Any, num_labels: int
) -> None:
    """Draw the map greyscale into the bottom right corner of a YUV420 buffer, in place."""
    if num_labels <= 0:
        raise ValueError("at least one label is required")
    y_off = main_info.height - HEIGHT
    x_off = main_info.width - WIDTH
    if y_off < 0 or x_off < 0:
        raise ValueError("main image is smaller than the segmentation")
    data = _as_writable(buffer)
    stride = main_info.stride
    half = stride // 2
    u_start = main_info.height * stride
    uv_size = (main_info.height // 2) * half
    if data.size < u_start + 2 * uv_size:
        raise ValueError("buffer too small for its stream geometry")

    scale = 255 // num_labels
    seg = np.asarray(segmentation, dtype=np.uint8).reshape(HEIGHT, WIDTH)
    luma = data[:u_start].reshape(main_info.height, stride)
    luma[y_off : y_off + HEIGHT, x_off : x_off + WIDTH] = (seg.astype(np.uint16) * scale).astype(
        np.uint8
    )

    y_off //= 2
    x_off //= 2
    u = data[u_start : u_start + uv_size].reshape(main_info.height // 2, half)
    v = data[u_start + uv_size : u_start + 2 * uv_size].reshape(main_info.height // 2, half)
    u[y_off : y_off + HEIGHT // 2, x_off : x_off + WIDTH // 2] = 128
    v[y_off : y_off + HEIGHT // 2, x_off : x_off + WIDTH // 2] = 128


@dataclass
class SegmentationTfConfig(TfConfig):
    draw: bool = True
    threshold: int = 5000  # pixels in a category before its name is reported


class SegmentationTfStage(TfStage):
    """Segments the image and attaches ``segmentation.result`` metadata."""

    def __init__(self, app: Any, model_loader: ModelLoader | None = None):
        super().__init__(app, WIDTH, HEIGHT, model_loader)
        self.config: SegmentationTfConfig = SegmentationTfConfig()
        self.labels: list[str] = []
        self.segmentation = np.zeros(WIDTH * HEIGHT, dtype=np.uint8)

    @property
    def name(self) -> str:
        return NAME

    def _read_extras(self, params: Mapping[str, Any]) -> None:
        self.config.draw = bool(int(params.get("draw", 1)))
        self.config.threshold = int(params.get("threshold", 5000))
        self.labels = read_segmentation_labels(str(params.get("labels_file", "")))

        assert self.interpreter is not None
        dims = tuple(self.interpreter.output_shape(0))
        if len(dims) != 4 or dims[1] != HEIGHT or dims[2] != WIDTH or dims[3] != len(self.labels):
            raise RuntimeError("SegmentationTfStage: Unexpected output tensor size")

    def _check_configuration(self) -> None:
        if self.main_stream is None and self.config.draw:
            raise RuntimeError("SegmentationTfStage: Main stream is required for drawing")

    def _interpret_outputs(self) -> None:
        assert self.interpreter is not None
        self.segmentation = segment(self.interpreter.output(0), len(self.labels))
        if self.config.verbose:
            found = largest_categories(self.segmentation, self.labels, self.config.threshold)
            print(", ".join(f"{label} ({count})" for label, count in found), file=sys.stderr)

    def _apply_results(self, completed_request: CompletedRequest) -> None:
        completed_request.post_process_metadata.set(
            "segmentation.result",
            Segmentation(WIDTH, HEIGHT, list(self.labels), self.segmentation.copy()),
        )
        if not self.config.draw:
            return
        draw_segmentation(
            completed_request.buffers[self.main_stream],
            self.main_stream_info,
            self.segmentation,
            len(self.labels),
        )


register_stage(NAME, SegmentationTfStage)