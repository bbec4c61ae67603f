"""Configuration loading and management for incbuild.

Configuration sources are merged in priority order:
    1. Defaults (defined in BuildConfig)
    2. Global config (~/.incbuild.toml)
    3. Project config (./incbuild.toml)
    4. Explicit config file
    5. Environment variables (INCBUILD_* prefix)
    6. CLI overrides (passed as kwargs)

This is the orchestrator's own configuration. The project descriptor
(``incbuild.json`` by default) belongs to the analysis engine and is parsed
by it.

Example:
    >>> config = load_config(verbose=True, debounce_ms=500)
    >>> config.verbosity
    'verbose'
    >>> config.debounce_ms
    500
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional, get_type_hints

from .exceptions import ConfigurationError, InvalidConfigError

Verbosity = Literal["quiet", "normal", "verbose"]
FingerprintMode = Literal["content", "mtime"]

_FINGERPRINT_MODES = ("content", "mtime")
_VERBOSITY_LEVELS = ("quiet", "normal", "verbose")


@dataclass(frozen=True)
class BuildConfig:
    """Configuration for the build orchestrator.

    Attributes:
        Project layout:
            project_file: Project descriptor name, relative to the project dir
            state_dir: Directory for build state and caches
            state_file: Build snapshot file name inside ``state_dir``

        Change detection:
            fingerprint_mode: ``content`` hashes file bytes, ``mtime`` uses
                modification time and size
            fingerprint_cache: Cache content hashes on disk between runs

        Watch mode:
            debounce_ms: Window for coalescing rapid file-system events
            watch_extensions: Only these suffixes trigger a rebuild
                (empty = every file outside the output and state dirs)

        Output control:
            verbosity: Logging verbosity level
    """

    project_file: str = "incbuild.json"
    state_dir: str = ".incbuild"
    state_file: str = "buildstate.json"

    fingerprint_mode: FingerprintMode = "content"
    fingerprint_cache: bool = True

    debounce_ms: int = 200
    watch_extensions: list[str] = field(default_factory=list)

    verbosity: Verbosity = "normal"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.fingerprint_mode not in _FINGERPRINT_MODES:
            raise InvalidConfigError(
                "fingerprint_mode",
                self.fingerprint_mode,
                f"expected one of {', '.join(_FINGERPRINT_MODES)}",
            )
        if self.verbosity not in _VERBOSITY_LEVELS:
            raise InvalidConfigError(
                "verbosity", self.verbosity, f"expected one of {', '.join(_VERBOSITY_LEVELS)}"
            )
        if self.debounce_ms < 0:
            raise InvalidConfigError("debounce_ms", self.debounce_ms, "must be non-negative")
        if not self.project_file:
            raise InvalidConfigError("project_file", self.project_file, "must not be empty")
        if not self.state_file:
            raise InvalidConfigError("state_file", self.state_file, "must not be empty")
        for ext in self.watch_extensions:
            if not ext.startswith("."):
                raise InvalidConfigError("watch_extensions", ext, "extensions must start with '.'")

    def state_path(self, project_dir: Path) -> Path:
        """Location of the persisted build snapshot."""
        return project_dir / self.state_dir / self.state_file

    def cache_dir(self, project_dir: Path) -> Path:
        """Location of the fingerprint cache."""
        return project_dir / self.state_dir / "fingerprints"


def load_config(config_file: Optional[Path] = None, **overrides) -> BuildConfig:
    """Load configuration with auto-discovery and merging.

    Args:
        config_file: Optional explicit config file path
        **overrides: Direct overrides (typically from CLI flags)

    Returns:
        Validated BuildConfig instance

    Raises:
        ConfigurationError: If a config file is invalid or missing
    """
    merged: dict = {}

    global_config = Path.home() / ".incbuild.toml"
    if global_config.exists():
        try:
            merged.update(_load_toml_file(global_config))
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid global config '{global_config}': {e}")

    project_config = Path.cwd() / "incbuild.toml"
    if project_config.exists():
        try:
            merged.update(_load_toml_file(project_config))
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid project config '{project_config}': {e}")

    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")
        try:
            merged.update(_load_toml_file(config_file))
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid config file '{config_file}': {e}")

    merged.update(_load_env_vars())

    # Convert verbosity boolean flags to string
    if "verbose" in overrides:
        if overrides["verbose"]:
            overrides["verbosity"] = "verbose"
        del overrides["verbose"]
    if "quiet" in overrides:
        if overrides["quiet"]:
            overrides["verbosity"] = "quiet"
        del overrides["quiet"]

    merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BuildConfig(**merged)
    except TypeError as e:
        # Unknown field in config
        raise ConfigurationError(f"Invalid configuration: {e}")


def _load_env_vars() -> dict[str, Any]:
    """Load configuration from INCBUILD_* environment variables.

    Supported environment variables:
        INCBUILD_PROJECT_FILE: str
        INCBUILD_STATE_DIR: str
        INCBUILD_STATE_FILE: str
        INCBUILD_FINGERPRINT_MODE: content/mtime
        INCBUILD_FINGERPRINT_CACHE: bool (true/false/1/0)
        INCBUILD_DEBOUNCE_MS: int
        INCBUILD_VERBOSITY: quiet/normal/verbose

    Returns:
        Dict of field_name -> parsed_value for any INCBUILD_* vars found.
    """
    type_hints = get_type_hints(BuildConfig)

    result: dict[str, Any] = {}

    for field_name in BuildConfig.__dataclass_fields__:
        env_key = f"INCBUILD_{field_name.upper()}"
        env_value = os.environ.get(env_key)

        if env_value is None:
            continue

        type_hint = type_hints.get(field_name)
        if type_hint is None:
            continue

        try:
            parsed = _parse_env_value(env_value, type_hint)
        except ValueError as e:
            raise InvalidConfigError(env_key, env_value, str(e))
        if parsed is not None:
            result[field_name] = parsed

    return result


def _parse_env_value(value: str, type_hint: Any) -> Any:
    """Parse environment variable string to the correct type.

    Returns None for types that are not settable from the environment.

    Raises:
        ValueError: If value can't be parsed to expected type
    """
    origin = getattr(type_hint, "__origin__", None)

    # List types (like watch_extensions) are comma separated
    if origin is list or type_hint is list:
        return [part.strip() for part in value.split(",") if part.strip()]

    if type_hint is bool:
        lower = value.lower()
        if lower in ("true", "1", "yes", "on"):
            return True
        elif lower in ("false", "0", "no", "off"):
            return False
        else:
            raise ValueError(f"expected true/false, got '{value}'")

    if type_hint is int:
        return int(value)

    # String (including Literal types like Verbosity)
    if type_hint is str or origin is Literal:
        return value

    return None


def _load_toml_file(path: Path) -> dict:
    """Load TOML file and return parsed dict.

    An ``[incbuild]`` table is used when present so the settings can live in a
    shared file; otherwise the top level is read.
    """
    try:
        # Python 3.11+ has tomllib in stdlib
        import tomllib
    except ModuleNotFoundError:
        try:
            # Fallback to tomli for Python 3.10
            import tomli as tomllib  # type: ignore
        except ImportError:
            raise ConfigurationError(
                "TOML support requires Python 3.11+ or 'tomli' package. "
                "Install with: pip install tomli"
            )

    with open(path, "rb") as f:
        data = tomllib.load(f)
    section = data.get("incbuild")
    if isinstance(section, dict):
        return section
    return data
