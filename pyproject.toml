[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "campostproc"
version = "1.6.0"
description = "Camera frame post-processing stages, piecewise linear functions and preview helpers"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["camera", "post-processing", "yuv420", "image", "preview", "pwl", "segmentation", "pose"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["campostproc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
