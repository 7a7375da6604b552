[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "roxy"
version = "0.1.0"
description = "Rule-based DNS server, connection destination sniffing and upstream proxy selection"
requires-python = ">=3.10"
keywords = ["proxy", "dns", "sni", "load-balancing", "jump-hash"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "pyyaml",
    "dnspython",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["roxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
