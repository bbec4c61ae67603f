"""Configuration exceptions: tool settings and project descriptors.

Configuration errors are fatal to the whole build session: no cycle runs.
"""

from pathlib import Path
from typing import Any

from .base import IncrementalBuildError


class ConfigurationError(IncrementalBuildError):
    """Base class for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when tool configuration values are invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            f"Invalid configuration for {key}: {value}",
            details={"key": key, "value": str(value), "reason": reason},
        )
        self.key = key
        self.value = value
        self.reason = reason


class ProjectConfigError(ConfigurationError):
    """Raised when the project descriptor is missing or cannot be parsed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Invalid project descriptor: {path}",
            details={"path": str(path), "reason": reason},
        )
        self.path = path
        self.reason = reason
