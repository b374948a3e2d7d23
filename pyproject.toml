[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "babble_trainer"
version = "0.1.0"
description = "Capture-file loading, glitch detection, frame alignment and batching for eye-tracking training data"
requires-python = ">=3.10"
keywords = ["eye-tracking", "gaze", "dataset", "jpeg", "alignment", "glitch-detection"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["babble_trainer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
