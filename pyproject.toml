[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "filedrop"
version = "0.1.0"
description = "Building blocks for a self-hosted file transfer service with quotas, expiring uploads and live upload progress"
requires-python = ">=3.10"
keywords = ["file-transfer", "upload", "file-sharing", "server-sent-events", "jwt", "werkzeug"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]
dependencies = [
    "werkzeug>=3.0",
    "jinja2>=3.1",
    "pyjwt>=2.8",
    "redis>=5.0",
]

[project.optional-dependencies]
test = [
    "pytest>=8.0",
]

[tool.hatch.build.targets.wheel]
packages = ["filedrop"]

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
ignore_missing_imports = true
