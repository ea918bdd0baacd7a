"""Pose estimation from a model and the stage that plots the pose on the image."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Mapping, Sequence

import numpy as np

from .stage import CompletedRequest, PostProcessingStage, StreamInfo, register_stage
from .tf_stage import ModelLoader, TfConfig, TfStage

FEATURE_SIZE = 17
HEATMAP_DIMS = 9
TF_SIZE = 257

NAME = "pose_estimation_tf"
PLOT_NAME = "plot_pose_cv"

_COLOUR = 255
_RADIUS = 5
_THICKNESS = 2


class Feature(IntEnum):
    """Body key points, in the order the model reports them."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


# Limbs drawn between pairs of confident key points, in drawing order.
_LIMBS = (
    (Feature.LEFT_SHOULDER, Feature.RIGHT_SHOULDER),
    (Feature.LEFT_SHOULDER, Feature.LEFT_ELBOW),
    (Feature.LEFT_SHOULDER, Feature.LEFT_HIP),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_ELBOW),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_HIP),
    (Feature.LEFT_ELBOW, Feature.LEFT_WRIST),
    (Feature.RIGHT_ELBOW, Feature.RIGHT_WRIST),
    (Feature.LEFT_HIP, Feature.RIGHT_HIP),
    (Feature.LEFT_HIP, Feature.LEFT_KNEE),
    (Feature.LEFT_KNEE, Feature.LEFT_ANKLE),
    (Feature.RIGHT_KNEE, Feature.RIGHT_HIP),
    (Feature.RIGHT_KNEE, Feature.RIGHT_ANKLE),
)


def interpret_pose(
    heatmaps: Any, offsets: Any, main_info: StreamInfo
) -> tuple[list[tuple[int, int]], list[float]]:
    """Find each key point's (x, y) location in the main image and its confidence.

    heatmaps holds HEATMAP_DIMS x HEATMAP_DIMS x FEATURE_SIZE values and offsets
    twice as many (y offsets then x offsets for each cell).
    """
    cells = HEATMAP_DIMS * HEATMAP_DIMS
    heat = np.asarray(heatmaps, dtype=np.float32).reshape(-1)
    offs = np.asarray(offsets, dtype=np.float32).reshape(-1)
    if heat.size < cells * FEATURE_SIZE:
        raise ValueError("heatmaps too small")
    if offs.size < cells * FEATURE_SIZE * 2:
        raise ValueError("offsets too small")
    grid = heat[: cells * FEATURE_SIZE].reshape(cells, FEATURE_SIZE)

    locations: list[tuple[int, int]] = []
    confidences: list[float] = []
    for i in range(FEATURE_SIZE):
        column = grid[:, i]
        # The first maximum wins, as a strict scan from cell 0 would give.
        idx = int(np.argmax(column))
        y, x = divmod(idx, HEATMAP_DIMS)
        confidences.append(float(column[idx]))
        j = FEATURE_SIZE * 2 * idx + i
        loc_y = int((y * main_info.height) // (HEATMAP_DIMS - 1) + float(offs[j]))
        loc_x = int((x * main_info.width) // (HEATMAP_DIMS - 1) + float(offs[j + FEATURE_SIZE]))
        locations.append((loc_x, loc_y))
    return locations, confidences


def _draw_circle(image: np.ndarray, centre: tuple[int, int], radius: int, thickness: int, value: int) -> None:
    h, w = image.shape
    cx, cy = int(centre[0]), int(centre[1])
    reach = radius + thickness
    x0, x1 = max(0, cx - reach), min(w, cx + reach + 1)
    y0, y1 = max(0, cy - reach), min(h, cy + reach + 1)
    if x0 >= x1 or y0 >= y1:
        return
    ys, xs = np.ogrid[y0:y1, x0:x1]
    dist = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)
    mask = np.abs(dist - radius) <= thickness / 2
    image[y0:y1, x0:x1][mask] = value


def _draw_line(
    image: np.ndarray, p0: tuple[int, int], p1: tuple[int, int], thickness: int, value: int
) -> None:
    h, w = image.shape
    half = thickness / 2
    ax, ay = float(p0[0]), float(p0[1])
    bx, by = float(p1[0]), float(p1[1])
    pad = int(np.ceil(half))
    x0 = max(0, int(min(ax, bx)) - pad)
    x1 = min(w, int(max(ax, bx)) + pad + 1)
    y0 = max(0, int(min(ay, by)) - pad)
    y1 = min(h, int(max(ay, by)) + pad + 1)
    if x0 >= x1 or y0 >= y1:
        return
    ys, xs = np.ogrid[y0:y1, x0:x1]
    dx, dy = bx - ax, by - ay
    len2 = dx * dx + dy * dy
    if len2 == 0:
        t = np.zeros((y1 - y0, x1 - x0))
    else:
        t = np.clip(((xs - ax) * dx + (ys - ay) * dy) / len2, 0.0, 1.0)
    px = ax + t * dx
    py = ay + t * dy
    mask = (xs - px) ** 2 + (ys - py) ** 2 <= half * half
    image[y0:y1, x0:x1][mask] = value


def draw_features(
    image: np.ndarray,
    locations: Sequence[tuple[int, int]],
    confidences: Sequence[float],
    confidence_threshold: float,
) -> None:
    """Draw key points and limbs onto a greyscale image, in place.

    Key points below the threshold are circled; limbs are drawn between pairs of
    key points that are both above it.
    """
    if len(locations) < FEATURE_SIZE or len(confidences) < FEATURE_SIZE:
        raise ValueError(f"expected {FEATURE_SIZE} locations and confidences")
    for location, confidence in zip(locations[:FEATURE_SIZE], confidences[:FEATURE_SIZE]):
        if confidence < confidence_threshold:
            _draw_circle(image, location, _RADIUS, _THICKNESS, _COLOUR)
    for a, b in _LIMBS:
        if confidences[a] > confidence_threshold and confidences[b] > confidence_threshold:
            _draw_line(image, locations[a], locations[b], _THICKNESS, _COLOUR)


class PoseEstimationTfStage(TfStage):
    """Estimates a body pose and attaches ``pose_estimation.*`` metadata."""

    def __init__(self, app: Any, model_loader: ModelLoader | None = None):
        super().__init__(app, TF_SIZE, TF_SIZE, model_loader)
        self.config = TfConfig()
        self.locations: list[tuple[int, int]] = []
        self.confidences: list[float] = []

    @property
    def name(self) -> str:
        return NAME

    def _read_extras(self, params: Mapping[str, Any]) -> None:
        assert self.interpreter is not None
        dims = tuple(self.interpreter.output_shape(0))
        if len(dims) < 4 or dims[:4] != (1, HEATMAP_DIMS, HEATMAP_DIMS, FEATURE_SIZE):
            raise RuntimeError("PoseEstimationTfStage: Unexpected output dimensions")

    def _check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("PoseEstimationTfStage: Main stream is required")

    def _interpret_outputs(self) -> None:
        assert self.interpreter is not None
        self.locations, self.confidences = interpret_pose(
            self.interpreter.output(0), self.interpreter.output(1), self.main_stream_info
        )

    def _apply_results(self, completed_request: CompletedRequest) -> None:
        metadata = completed_request.post_process_metadata
        metadata.set("pose_estimation.locations", [list(self.locations)])
        metadata.set("pose_estimation.confidences", [list(self.confidences)])


def _luma_view(buffer: Any, info: StreamInfo) -> np.ndarray:
    data = buffer.reshape(-1) if isinstance(buffer, np.ndarray) else np.frombuffer(buffer, dtype=np.uint8)
    size = info.height * info.stride
    if data.size < size:
        raise ValueError("buffer too small for its stream geometry")
    return data[:size].reshape(info.height, info.stride)[:, : info.width]


class PlotPoseCvStage(PostProcessingStage):
    """Draws the estimated pose onto the main image."""

    def __init__(self, app: Any):
        super().__init__(app)
        self.stream: Any = None
        self.confidence_threshold = -1.0

    @property
    def name(self) -> str:
        return PLOT_NAME

    def read(self, params: Mapping[str, Any]) -> None:
        self.confidence_threshold = float(params.get("confidence_threshold", -1.0))

    def configure(self) -> None:
        self.stream = self.app.get_main_stream()

    def process(self, completed_request: CompletedRequest) -> bool:
        if self.stream is None:
            return False
        info = self.app.get_stream_info(self.stream)
        metadata = completed_request.post_process_metadata
        all_locations = metadata.get("pose_estimation.locations", [])
        all_confidences = metadata.get("pose_estimation.confidences", [])
        image = None
        for locations, confidences in zip(all_locations, all_confidences):
            if not locations or not confidences:
                continue
            if image is None:
                image = _luma_view(completed_request.buffers[self.stream], info)
            points = [(int(x), int(y)) for x, y in locations]
            draw_features(image, points, list(confidences), self.confidence_threshold)
        return False


register_stage(NAME, PoseEstimationTfStage)
register_stage(PLOT_NAME, PlotPoseCvStage)