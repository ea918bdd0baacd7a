"""Base class for stages that run a neural network on the low resolution stream."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

import numpy as np

from .stage import (
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    execution_time,
    yuv420_to_rgb,
)

logger = logging.getLogger(__name__)


class Interpreter(Protocol):
    """What a stage needs from a loaded model."""

    input_dtype: Any
    input_bytes: int

    def output_shape(self, index: int) -> Sequence[int]: ...

    def set_input(self, data: np.ndarray) -> None: ...

    def invoke(self) -> None: ...

    def output(self, index: int) -> np.ndarray: ...


# Called with the model file and the requested thread count (-1 for the default).
ModelLoader = Callable[[str, int], Optional[Interpreter]]


@dataclass
class TfConfig:
    """Settings shared by all model-running stages."""

    number_of_threads: int = 3
    refresh_rate: int = 5
    model_file: str = ""
    verbose: bool = False
    normalisation_offset: float = 127.5
    normalisation_scale: float = 127.5


class TfStage(PostProcessingStage):
    """Runs a model asynchronously on the low resolution stream.

    Derived classes provide ``name`` and override the hooks ``_read_extras``,
    ``_check_configuration``, ``_interpret_outputs`` and ``_apply_results``.

    The app is expected to offer ``lores_stream()``, ``get_main_stream()`` and
    ``get_stream_info(stream)``; if no model loader is passed in, the app's
    ``load_model`` attribute is used instead.
    """

    def __init__(self, app: Any, tf_w: int, tf_h: int, model_loader: ModelLoader | None = None):
        super().__init__(app)
        if tf_w <= 0 or tf_h <= 0:
            raise RuntimeError("TfStage: Bad TFLite input dimensions")
        self.tf_w = tf_w
        self.tf_h = tf_h
        self.config: TfConfig = TfConfig()
        self._model_loader = model_loader
        self.interpreter: Interpreter | None = None
        self.lores_stream: Any = None
        self.lores_info = StreamInfo()
        self.main_stream: Any = None
        self.main_stream_info = StreamInfo()
        self._future_lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._future: Future | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._lores_copy = b""

    # Hooks for derived classes.

    def _read_extras(self, params: Mapping[str, Any]) -> None:
        """Read extra parameters; may also check the model."""

    def _check_configuration(self) -> None:
        """Check the stream configuration, raising on error."""

    def _interpret_outputs(self) -> None:
        """Turn the model outputs into results; runs on the inference thread."""

    def _apply_results(self, completed_request: CompletedRequest) -> None:
        """Use the latest results on a request; runs on the calling thread."""

    # Public interface.

    def read(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_threads = int(params.get("number_of_threads", 2))
        cfg.refresh_rate = int(params.get("refresh_rate", 5))
        cfg.model_file = str(params.get("model_file", ""))
        cfg.verbose = bool(int(params.get("verbose", 0)))
        cfg.normalisation_offset = float(params.get("normalisation_offset", 127.5))
        cfg.normalisation_scale = float(params.get("normalisation_scale", 127.5))

        self._initialise()
        self._read_extras(params)

    def _initialise(self) -> None:
        loader = self._model_loader or getattr(self.app, "load_model", None)
        if loader is None:
            raise RuntimeError("TfStage: No model loader available")
        interpreter = loader(self.config.model_file, self.config.number_of_threads)
        if interpreter is None:
            raise RuntimeError("TfStage: Failed to load model")
        logger.info("TfStage: Loaded model %s", self.config.model_file)

        dtype = np.dtype(interpreter.input_dtype)
        if dtype not in (np.dtype(np.uint8), np.dtype(np.float32)):
            raise RuntimeError("TfStage: Input tensor data type not supported")
        check = self.tf_w * self.tf_h * 3 * dtype.itemsize
        if check != interpreter.input_bytes:
            raise RuntimeError("TfStage: Input tensor size mismatch")
        self.interpreter = interpreter

    def configure(self) -> None:
        verbose = self.config.verbose
        self.lores_stream = self.app.lores_stream()
        if self.lores_stream is not None:
            self.lores_info = self.app.get_stream_info(self.lores_stream)
            if verbose:
                logger.info(
                    "TfStage: Low resolution stream is %dx%d",
                    self.lores_info.width,
                    self.lores_info.height,
                )
            if self.tf_w > self.lores_info.width or self.tf_h > self.lores_info.height:
                logger.error("TfStage: WARNING: Low resolution image too small")
                self.lores_stream = None
        elif verbose:
            logger.info("TfStage: no low resolution stream")

        self.main_stream = self.app.get_main_stream()
        if self.main_stream is not None:
            self.main_stream_info = self.app.get_stream_info(self.main_stream)
            if verbose:
                logger.info(
                    "TfStage: Main stream is %dx%d",
                    self.main_stream_info.width,
                    self.main_stream_info.height,
                )
        elif verbose:
            logger.info("TfStage: No main stream")

        self._check_configuration()

    def process(self, completed_request: CompletedRequest) -> bool:
        if self.lores_stream is None:
            return False

        refresh = self.config.refresh_rate
        with self._future_lock:
            if (
                refresh
                and completed_request.sequence % refresh == 0
                and (self._future is None or self._future.done())
            ):
                # Take a copy so the worker never touches the live buffer.
                self._lores_copy = bytes(completed_request.buffers[self.lores_stream])
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tf-stage")
                self._future = self._executor.submit(self._timed_inference)

        with self._output_lock:
            self._apply_results(completed_request)
        return False

    def _timed_inference(self) -> None:
        taken = execution_time(self.run_inference)
        if self.config.verbose:
            logger.info("TfStage: Inference time: %.3f ms", taken * 1000.0)

    def run_inference(self) -> None:
        """Convert the latest low resolution copy to RGB, run the model and interpret it."""
        interpreter = self.interpreter
        if interpreter is None:
            raise RuntimeError("TfStage: No model loaded")
        tf_info = StreamInfo(width=self.tf_w, height=self.tf_h, stride=self.tf_w * 3)
        rgb = yuv420_to_rgb(self._lores_copy, self.lores_info, tf_info)
        rgb = rgb.reshape(1, self.tf_h, self.tf_w, 3)

        if np.dtype(interpreter.input_dtype) == np.dtype(np.uint8):
            tensor = rgb
        else:
            offset = np.float32(self.config.normalisation_offset)
            scale = np.float32(self.config.normalisation_scale)
            tensor = (rgb.astype(np.float32) - offset) / scale

        interpreter.set_input(tensor)
        try:
            interpreter.invoke()
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to invoke TFLite") from exc

        with self._output_lock:
            self._interpret_outputs()

    def stop(self) -> None:
        with self._future_lock:
            future, executor = self._future, self._executor
            self._executor = None
        if future is not None:
            wait([future])
        if executor is not None:
            executor.shutdown(wait=True)