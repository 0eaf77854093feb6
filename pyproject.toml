[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "metricfmt"
version = "0.1.0"
description = "Write metric families in the text and OpenMetrics exposition formats, and encode them as protobuf messages."
requires-python = ">=3.10"
dependencies = []
keywords = ["metrics", "monitoring", "exposition", "openmetrics", "protobuf", "text-format"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["metricfmt*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
