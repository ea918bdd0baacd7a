# campostproc

Post-processing stages for camera frames, written around numpy arrays.
Frames are YUV420 buffers (bytes or flat `uint8` arrays) described by a
`StreamInfo` (width, height, stride, pixel format, colour space).

## Modules

- `campostproc.pwl`: piecewise linear functions. `Pwl` holds control
  points (`Point`) and offers `eval`, `eval_span`, `invert` (returning a
  `PerpType`, the point found and the span reached), `compose`, `map`,
  `map2`, `combine`, `match_domain`, `generate_lut`, `domain` and `range`
  (both `Interval`), `*=` scaling and `debug` output.
- `campostproc.stage`: the `PostProcessingStage` base class with its
  `read`, `adjust_config`, `configure`, `start`, `process`, `stop` and
  `teardown` hooks, the `StreamInfo`, `Metadata` and `CompletedRequest`
  types, and these helpers:
  - `yuv420_to_rgb` converts to packed RGB and crops from the centre when
    the source is larger.
  - `execution_time` returns elapsed seconds.
  - `get_json_array` reads a list, padded from a default.
  - `register_stage` and `get_post_processing_stages` form a stage
    registry; the latter returns the factories ordered by name.
- `campostproc.tf_stage`: `TfConfig` and `TfStage`, a base for stages that
  run a model on the low resolution stream in a background thread. A
  refresh is started every `refresh_rate` frames if the previous one has
  finished.
- `campostproc.detection`: `Rectangle`, `Detection`,
  `read_detection_labels`, `interpret_detections` (which also suppresses
  overlapping boxes of the same category) and `ObjectDetectTfStage`. The
  stage sets `object_detect.results` metadata.
- `campostproc.segmentation`: `Segmentation`, `read_segmentation_labels`,
  `segment`, `largest_categories`, `draw_segmentation` and
  `SegmentationTfStage`. The stage sets `segmentation.result` metadata and
  can draw the map into the image.
- `campostproc.pose`: `Feature`, `interpret_pose`, `draw_features`,
  `PoseEstimationTfStage` and `PlotPoseCvStage`. The estimation stage sets
  `pose_estimation.locations` and `pose_estimation.confidences` metadata,
  and the plotting stage draws them onto the luma plane.
- `campostproc.sobel`: `sobel_edges` and `SobelCvStage`. `sobel_edges`
  takes a `ksize` of 1, 3, 5 or 7. The stage replaces the image with its
  edges in greyscale.
- `campostproc.preview`: `PreviewOptions`, the `Preview` interface,
  `NullPreview`, `ImagePreview`, `yuv420_resample_to_rgb` and
  `make_preview`.
  - `NullPreview` hands each buffer straight back.
  - `ImagePreview` renders each frame into an RGB array held in memory,
    512x384 by default, with even dimensions required.
  - `make_preview` returns an `ImagePreview` when `qt_preview` is set and a
    `NullPreview` otherwise.

Importing `detection`, `segmentation`, `pose` or `sobel` registers their
stages under `object_detect_tf`, `segmentation_tf`, `pose_estimation_tf`,
`plot_pose_cv` and `sobel_cv`.

## What the stages expect

Stages are given an `app` object. Depending on the stage it must provide
`get_main_stream()`, `lores_stream()` and `get_stream_info(stream)`. Request
buffers are looked up in `CompletedRequest.buffers` by stream.

Model-running stages need a model loader. You either pass it as
`model_loader` or provide it as `app.load_model`. It is called with the
model file and thread count, and it returns an object with:

- `input_dtype`, which is `uint8` or `float32`;
- `input_bytes`;
- `output_shape(index)`;
- `set_input(array)`;
- `invoke()`;
- `output(index)`.

## What this package does not do

- It does not talk to a camera.
- It bundles no model runtime.
- It opens no window on screen: `ImagePreview` only fills an in-memory
  image.
- It has no command-line program.

## Installing

```
pip install .
```

## Example

```python
from campostproc.pwl import Pwl, Point

curve = Pwl([Point(0, 0), Point(100, 50), Point(255, 255)])
lut = curve.generate_lut()
print(curve.eval(100.0), len(lut))
```

```python
import numpy as np
from campostproc.stage import StreamInfo, yuv420_to_rgb

src_info = StreamInfo(width=640, height=480, stride=640)
dst_info = StreamInfo(width=300, height=300, stride=900)
frame = np.full(640 * 480 * 3 // 2, 128, dtype=np.uint8)
rgb = yuv420_to_rgb(frame, src_info, dst_info)
```

## Running the tests

```
pip install .[test]
pytest
```