import numpy as np
import pytest

from campostproc.stage import CompletedRequest, StreamInfo, yuv420_to_rgb
from campostproc.tf_stage import TfStage

TF_W, TF_H = 4, 2
LORES = StreamInfo(width=6, height=4, stride=6)


def make_lores() -> bytes:
    y = (np.arange(24) * 10).astype(np.uint8)
    u = np.full(6, 100, dtype=np.uint8)
    v = np.full(6, 160, dtype=np.uint8)
    return np.concatenate([y, u, v]).tobytes()


class FakeInterpreter:
    def __init__(self, dtype=np.uint8, input_bytes=None, fail=False):
        self.input_dtype = dtype
        if input_bytes is None:
            input_bytes = TF_W * TF_H * 3 * np.dtype(dtype).itemsize
        self.input_bytes = input_bytes
        self.fail = fail
        self.inputs = []

    def output_shape(self, index):
        return (1,)

    def set_input(self, data):
        self.inputs.append(np.array(data))

    def invoke(self):
        if self.fail:
            raise ValueError("invoke failed")

    def output(self, index):
        return np.zeros(1)


def loader_for(interp, calls=None):
    def load(model_file, threads):
        if calls is not None:
            calls.append((model_file, threads))
        return interp

    return load


class FakeApp:
    def __init__(self, lores_info=LORES, main_info=None, load_model=None):
        self.infos = {}
        self._lores = self._main = None
        if lores_info is not None:
            self._lores = "lores"
            self.infos["lores"] = lores_info
        if main_info is not None:
            self._main = "main"
            self.infos["main"] = main_info
        if load_model is not None:
            self.load_model = load_model

    def lores_stream(self):
        return self._lores

    def get_main_stream(self):
        return self._main

    def get_stream_info(self, stream):
        return self.infos[stream]


def lores_app(**kwargs):
    return FakeApp(lores_info=StreamInfo(width=6, height=4, stride=6), **kwargs)


class RecordingStage(TfStage):
    name = "recording"

    def __init__(self, app, loader=None, tf_w=TF_W, tf_h=TF_H):
        super().__init__(app, tf_w, tf_h, loader)
        self.extras = []
        self.checked = 0
        self.interpreted = 0
        self.applied = []

    def _read_extras(self, params):
        self.extras.append(dict(params))

    def _check_configuration(self):
        self.checked += 1

    def _interpret_outputs(self):
        self.interpreted += 1

    def _apply_results(self, completed_request):
        self.applied.append(completed_request.sequence)


def request(sequence):
    return CompletedRequest(sequence=sequence, buffers={"lores": make_lores()})


@pytest.mark.parametrize("w,h", [(0, 2), (4, 0), (-1, 5)])
def test_bad_dimensions_rejected(w, h):
    with pytest.raises(RuntimeError, match="Bad TFLite input dimensions"):
        RecordingStage(lores_app(), loader_for(FakeInterpreter()), w, h)


def test_read_defaults():
    calls = []
    stage = RecordingStage(lores_app(), loader_for(FakeInterpreter(), calls))
    stage.read({})
    cfg = stage.config
    assert cfg.number_of_threads == 2
    assert cfg.refresh_rate == 5
    assert cfg.model_file == ""
    assert cfg.verbose is False
    assert cfg.normalisation_offset == 127.5
    assert cfg.normalisation_scale == 127.5
    assert calls == [("", 2)]
    assert stage.extras == [{}]


def test_read_overrides_reach_loader():
    calls = []
    stage = RecordingStage(lores_app(), loader_for(FakeInterpreter(), calls))
    stage.read({"model_file": "net.tflite", "number_of_threads": 4, "refresh_rate": 3, "verbose": 1})
    assert calls == [("net.tflite", 4)]
    assert stage.config.refresh_rate == 3
    assert stage.config.verbose is True


def test_loader_returning_none_fails():
    stage = RecordingStage(lores_app(), loader_for(None))
    with pytest.raises(RuntimeError, match="Failed to load model"):
        stage.read({})


def test_input_size_mismatch():
    stage = RecordingStage(lores_app(), loader_for(FakeInterpreter(input_bytes=7)))
    with pytest.raises(RuntimeError, match="size mismatch"):
        stage.read({})


def test_unsupported_dtype():
    stage = RecordingStage(lores_app(), loader_for(FakeInterpreter(dtype=np.int16)))
    with pytest.raises(RuntimeError, match="not supported"):
        stage.read({})


def test_missing_loader():
    stage = RecordingStage(lores_app())
    with pytest.raises(RuntimeError, match="No model loader"):
        stage.read({})


def test_app_loader_used_when_none_given():
    interp = FakeInterpreter()
    stage = RecordingStage(lores_app(load_model=loader_for(interp)))
    stage.read({})
    assert stage.interpreter is interp


def test_configure_records_main_and_checks():
    main = StreamInfo(width=64, height=48, stride=64)
    stage = RecordingStage(FakeApp(main_info=main), loader_for(FakeInterpreter()))
    stage.read({})
    stage.configure()
    assert stage.main_stream == "main"
    assert stage.main_stream_info == main
    assert stage.lores_stream == "lores"
    assert stage.checked == 1


def test_small_lores_disables_processing():
    interp = FakeInterpreter()
    small = StreamInfo(width=2, height=2, stride=2)
    stage = RecordingStage(FakeApp(lores_info=small), loader_for(interp))
    stage.read({})
    stage.configure()
    assert stage.lores_stream is None
    assert stage.process(request(0)) is False
    stage.stop()
    assert interp.inputs == []
    assert stage.applied == []


def test_uint8_inference_feeds_rgb():
    interp = FakeInterpreter()
    stage = RecordingStage(FakeApp(), loader_for(interp))
    stage.read({})
    stage.configure()
    assert stage.process(request(0)) is False
    stage.stop()
    expected = yuv420_to_rgb(make_lores(), LORES, StreamInfo(width=TF_W, height=TF_H, stride=TF_W * 3))
    assert len(interp.inputs) == 1
    assert interp.inputs[0].shape == (1, TF_H, TF_W, 3)
    assert np.array_equal(interp.inputs[0].reshape(-1), expected)
    assert stage.interpreted == 1
    assert stage.applied == [0]


def test_float_inference_is_normalised():
    interp = FakeInterpreter(dtype=np.float32)
    stage = RecordingStage(FakeApp(), loader_for(interp))
    stage.read({})
    stage.configure()
    stage.process(request(5))
    stage.stop()
    rgb = yuv420_to_rgb(make_lores(), LORES, StreamInfo(width=TF_W, height=TF_H, stride=TF_W * 3))
    fed = interp.inputs[0]
    assert fed.dtype == np.float32
    assert np.all(fed >= -1.0) and np.all(fed <= 1.0)
    assert np.allclose(fed.reshape(-1) * 127.5 + 127.5, rgb.astype(np.float32), atol=1e-3)


@pytest.mark.parametrize("params,sequence", [({}, 3), ({"refresh_rate": 0}, 0)])
def test_no_inference_off_refresh(params, sequence):
    interp = FakeInterpreter()
    stage = RecordingStage(FakeApp(), loader_for(interp))
    stage.read(params)
    stage.configure()
    stage.process(request(sequence))
    stage.stop()
    assert interp.inputs == []
    assert stage.applied == [sequence]


def test_invoke_failure_raises():
    interp = FakeInterpreter(fail=True)
    stage = RecordingStage(FakeApp(), loader_for(interp))
    stage.read({})
    stage.configure()
    stage.process(request(0))
    stage.stop()
    with pytest.raises(RuntimeError, match="Failed to invoke"):
        stage.run_inference()
    assert stage.interpreted == 0