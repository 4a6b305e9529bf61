[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ubmc"
version = "0.1.0"
description = "Physical memory access for ASPEED BMC SoCs and the GPIO, fan, UART, DNS and RDNSS services a BMC runs"
requires-python = ">=3.10"
keywords = [
    "bmc",
    "aspeed",
    "lpc",
    "gpio",
    "hwmon",
    "uart",
    "acme",
    "rdnss",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "dnspython",
    "pyserial",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ubmc"]

[tool.hatch.build.targets.sdist]
include = [
    "ubmc",
    "tests",
    "pyproject.toml",
]

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
