[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cronjob_operator"
version = "0.1.0"
description = "Cron schedule parsing, Cronjob defaulting and validation, and reconciliation of Cronjobs into Jobs"
requires-python = ">=3.10"
dependencies = []
keywords = ["cron", "cronjob", "scheduler", "reconciler", "controller", "webhook", "batch"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cronjob_operator"]

[tool.pytest.ini_options]
addopts = "-ra"
