[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubeletscrape"
version = "0.1.0"
description = "Collect and group node, pod, container and volume metrics from a Kubernetes kubelet"
requires-python = ">=3.10"
keywords = ["kubernetes", "kubelet", "cadvisor", "metrics", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
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
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kubeletscrape"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
