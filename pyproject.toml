[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vmacdevices"
version = "0.1.0"
description = "Emulated peripheral devices and tick scheduling for a compact 68k Macintosh emulator"
requires-python = ">=3.10"
dependencies = []
keywords = ["emulator", "macintosh", "68k", "via", "6522", "scsi", "ncr5380", "disk-image", "disk-copy"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vmacdevices"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
