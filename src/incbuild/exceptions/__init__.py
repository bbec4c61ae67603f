"""Exception hierarchy for incbuild."""

from .base import IncrementalBuildError
from .build import (
    BuildError,
    FatalAnalysisError,
    FileAccessError,
    PersistenceError,
)
from .config import (
    ConfigurationError,
    InvalidConfigError,
    ProjectConfigError,
)

__all__ = [
    "IncrementalBuildError",
    "BuildError",
    "FatalAnalysisError",
    "FileAccessError",
    "PersistenceError",
    "ConfigurationError",
    "InvalidConfigError",
    "ProjectConfigError",
]
