[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sngcap"
version = "1.6.0"
description = "SIP packet capture library: pcap reading and writing, IP/TCP reassembly, WebSocket unwrapping and HEP/EEP encapsulation"
requires-python = ">=3.10"
keywords = ["sip", "pcap", "hep", "eep", "voip", "capture", "reassembly", "websocket"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: Communications :: Telephony",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sngcap"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
