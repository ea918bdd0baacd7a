"""Camera frame post-processing stages, piecewise linear functions and preview helpers."""

__version__ = "1.6.0"

__all__ = [
    "detection",
    "pose",
    "preview",
    "pwl",
    "segmentation",
    "sobel",
    "stage",
    "tf_stage",
]