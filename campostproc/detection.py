"""Object detection results and the stage that produces them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np

from .stage import CompletedRequest, StreamInfo, register_stage
from .tf_stage import ModelLoader, TfConfig, TfStage

logger = logging.getLogger(__name__)

WIDTH = 300
HEIGHT = 300
NAME = "object_detect_tf"


@dataclass
class Rectangle:
    """An axis-aligned rectangle with its top left corner at (x, y)."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        return self.width * self.height

    def bounded_to(self, other: Rectangle) -> Rectangle:
        """The intersection with other; empty when they do not overlap."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        return Rectangle(left, top, max(right - left, 0), max(bottom - top, 0))


@dataclass
class Detection:
    """One detected object."""

    category: int
    name: str
    confidence: float
    box: Rectangle

    def __str__(self) -> str:
        b = self.box
        return (
            f"{self.name}[{self.category}] ({self.confidence:.2g}) @ "
            f"{b.x},{b.y} {b.width}x{b.height}"
        )


def _read_lines(file_name: str) -> list[str]:
    with open(file_name, encoding="utf-8") as f:
        lines = f.read().split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def read_detection_labels(file_name: str) -> list[str]:
    """Read a labels file, discarding its first line."""
    try:
        lines = _read_lines(file_name)
    except OSError as exc:
        raise RuntimeError("ObjectDetectTfStage: Failed to load labels file") from exc
    return lines[1:]


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def interpret_detections(
    boxes: Any,
    scores: Any,
    classes: Any,
    labels: Sequence[str],
    lores_info: StreamInfo,
    main_info: StreamInfo,
    confidence_threshold: float,
    overlap_threshold: float,
) -> list[Detection]:
    """Turn raw detector outputs into detections in main image coordinates.

    Boxes are (top, left, bottom, right) fractions of the network input. A
    detection overlapping an earlier one of the same category replaces it
    only if it is more confident.
    """
    box_rows = np.asarray(boxes, dtype=np.float32).reshape(-1, 4)
    score_values = np.asarray(scores, dtype=np.float32).reshape(-1)
    class_values = np.asarray(classes, dtype=np.float32).reshape(-1)

    results: list[Detection] = []
    for box, score, cls in zip(box_rows, score_values, class_values):
        if score < confidence_threshold:
            continue
        # Coordinates in the WIDTH x HEIGHT image fed to the network.
        y = _clamp(int(HEIGHT * box[0]), 0, HEIGHT)
        x = _clamp(int(WIDTH * box[1]), 0, WIDTH)
        h = _clamp(int(HEIGHT * box[2] - y), 0, HEIGHT)
        w = _clamp(int(WIDTH * box[3] - x), 0, WIDTH)
        # The network sees a centre crop of the lores image.
        y += (lores_info.height - HEIGHT) // 2
        x += (lores_info.width - WIDTH) // 2
        # The lores image is a pure scaling of the main one.
        y = y * main_info.height // lores_info.height
        x = x * main_info.width // lores_info.width
        h = h * main_info.height // lores_info.height
        w = w * main_info.width // lores_info.width

        c = int(cls)
        detection = Detection(c, labels[c], float(score), Rectangle(x, y, w, h))

        overlapped = False
        for idx, prev in enumerate(results):
            if prev.category != c:
                continue
            prev_area = prev.box.area()
            new_area = detection.box.area()
            overlap = prev.box.bounded_to(detection.box).area()
            if overlap > overlap_threshold * prev_area or overlap > overlap_threshold * new_area:
                if detection.confidence > prev.confidence:
                    results[idx] = detection
                overlapped = True
                break
        if not overlapped:
            results.append(detection)
    return results


@dataclass
class ObjectDetectTfConfig(TfConfig):
    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5


class ObjectDetectTfStage(TfStage):
    """Detects objects and attaches them as ``object_detect.results`` metadata."""

    def __init__(self, app: Any, model_loader: ModelLoader | None = None):
        super().__init__(app, WIDTH, HEIGHT, model_loader)
        self.config: ObjectDetectTfConfig = ObjectDetectTfConfig()
        self.labels: list[str] = []
        self.output_results: list[Detection] = []

    @property
    def name(self) -> str:
        return NAME

    def _read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.confidence_threshold = float(params.get("confidence_threshold", 0.5))
        cfg.overlap_threshold = float(params.get("overlap_threshold", 0.5))
        self.labels = read_detection_labels(str(params.get("labels_file", "")))
        if cfg.verbose:
            logger.info("Read %d labels", len(self.labels))

        assert self.interpreter is not None
        shape = tuple(self.interpreter.output_shape(0))
        if shape != (1, 10, 4):
            raise RuntimeError("ObjectDetectTfStage: unexpected output dimensions")

    def _check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("ObjectDetectTfStage: Main stream is required")

    def _interpret_outputs(self) -> None:
        interp = self.interpreter
        assert interp is not None
        self.output_results = interpret_detections(
            interp.output(0),
            interp.output(2),
            interp.output(1),
            self.labels,
            self.lores_info,
            self.main_stream_info,
            self.config.confidence_threshold,
            self.config.overlap_threshold,
        )
        if self.config.verbose:
            for detection in self.output_results:
                logger.info("%s", detection)

    def _apply_results(self, completed_request: CompletedRequest) -> None:
        completed_request.post_process_metadata.set("object_detect.results", list(self.output_results))


register_stage(NAME, ObjectDetectTfStage)