[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "agrimesh"
version = "0.1.0"
description = "Agricultural sensor mesh model: packed binary message protocol, time-synchronised collection cycles and gateway/sensor node logic"
requires-python = ">=3.10"
dependencies = []
keywords = ["mesh", "sensor", "agriculture", "time-sync", "protocol", "gateway", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
agrimesh-gateway = "agrimesh.gateway_app:main"
agrimesh-sensor = "agrimesh.sensor_app:main"

[tool.setuptools.packages.find]
include = ["agrimesh*"]

[tool.pytest.ini_options]
addopts = "-ra"
