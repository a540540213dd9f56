[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "modmqttd"
version = "1.0.0"
description = "Modbus to MQTT gateway core: configuration, register polling, scheduling and value conversion"
requires-python = ">=3.10"
dependencies = []
keywords = ["modbus", "mqtt", "gateway", "rtu", "tcp", "polling"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator",
    "Topic :: Home Automation",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.setuptools.packages.find]
include = ["modmqttd*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
