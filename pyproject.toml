[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "traefik-proxmox"
version = "0.1.0"
description = "Dynamic Traefik configuration from the labels of Proxmox VE virtual machines and containers"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["traefik", "proxmox", "reverse-proxy", "service-discovery", "dynamic-configuration"]
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
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["traefik_proxmox"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
