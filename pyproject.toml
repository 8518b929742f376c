[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ugvcontrol"
version = "0.1.0"
description = "Multi-threaded control stack for an unmanned ground vehicle: laser, GNSS, vehicle control, controller and display modules supervised by heartbeats."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "ugv",
    "robotics",
    "lidar",
    "gnss",
    "crc32",
    "tcp",
    "heartbeat",
    "teleoperation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ugvcontrol = "ugvcontrol.manager:main"

[tool.hatch.build.targets.wheel]
packages = ["ugvcontrol"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
