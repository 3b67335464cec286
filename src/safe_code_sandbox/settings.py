from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .types import ExecutionOptions


def _default_settings_path() -> Path:
    """Return bundled default settings TOML path.

    Example:
        ```python
        path = _default_settings_path()
        ```
    """
    return Path(__file__).with_name("default_sandbox.toml")


def _read_settings_toml(path: Path) -> dict[str, Any]:
    """Read settings TOML and return the `[sandbox]` table (or the whole file).

    Example:
        ```python
        raw = _read_settings_toml(Path("/tmp/sandbox.toml"))
        ```
    """
    if not path.exists():
        raise FileNotFoundError(f"Sandbox settings file not found: {path}")
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    settings_obj = raw.get("sandbox", raw)
    if not isinstance(settings_obj, dict):
        raise ValueError("Sandbox settings must be a TOML table")
    return settings_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings settings field.

    Example:
        ```python
        blocked = _list_of_str(["os", "subprocess"], "blocked_imports")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _positive_int(value: Any, field_name: str) -> int:
    """Validate a positive integer settings field.

    Example:
        ```python
        timeout = _positive_int(5000, "timeout_ms")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{field_name}' must be a positive integer")
    return value


_DEFAULT_SETTINGS_RAW = _read_settings_toml(_default_settings_path())
DEFAULT_TIMEOUT_MS = int(_DEFAULT_SETTINGS_RAW.get("timeout_ms", 5000))
DEFAULT_MAX_OUTPUT_LINES = int(_DEFAULT_SETTINGS_RAW.get("max_output_lines", 1000))
DEFAULT_MAX_OUTPUT_CHARS = int(_DEFAULT_SETTINGS_RAW.get("max_output_chars", 1_000_000))
DEFAULT_STARTUP_TIMEOUT_SECONDS = int(_DEFAULT_SETTINGS_RAW.get("startup_timeout_seconds", 30))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_SETTINGS_RAW.get("memory_limit_mb", 256))
DEFAULT_PYTHON_EXECUTABLE = str(_DEFAULT_SETTINGS_RAW.get("python_executable", ""))
DEFAULT_NODE_EXECUTABLE = str(_DEFAULT_SETTINGS_RAW.get("node_executable", "node"))
DEFAULT_ALLOWED_IMPORTS = _list_of_str(
    _DEFAULT_SETTINGS_RAW.get("allowed_imports", []), "allowed_imports"
)
DEFAULT_BLOCKED_IMPORTS = _list_of_str(
    _DEFAULT_SETTINGS_RAW.get("blocked_imports", []), "blocked_imports"
)
DEFAULT_BLOCKED_BUILTINS = _list_of_str(
    _DEFAULT_SETTINGS_RAW.get("blocked_builtins", []), "blocked_builtins"
)


@dataclass(frozen=True, slots=True)
class SandboxSettings:
    """Process-level configuration shared by the registry and its executors.

    `allowed_imports` turns on allow mode for the Python worker: only the
    listed top-level modules can be imported. An empty list falls back to
    `blocked_imports` alone.

    Example:
        ```python
        settings = SandboxSettings(timeout_ms=2000, blocked_imports=["os"])
        ```
    """

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_lines: int = DEFAULT_MAX_OUTPUT_LINES
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS
    startup_timeout_seconds: int = DEFAULT_STARTUP_TIMEOUT_SECONDS
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    python_executable: str = DEFAULT_PYTHON_EXECUTABLE
    node_executable: str = DEFAULT_NODE_EXECUTABLE
    allowed_imports: list[str] = field(default_factory=lambda: DEFAULT_ALLOWED_IMPORTS.copy())
    blocked_imports: list[str] = field(default_factory=lambda: DEFAULT_BLOCKED_IMPORTS.copy())
    blocked_builtins: list[str] = field(default_factory=lambda: DEFAULT_BLOCKED_BUILTINS.copy())
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric fields after dataclass initialization.

        Example:
            ```python
            SandboxSettings(timeout_ms=100)
            ```
        """
        _positive_int(self.timeout_ms, "timeout_ms")
        _positive_int(self.max_output_lines, "max_output_lines")
        _positive_int(self.max_output_chars, "max_output_chars")
        _positive_int(self.startup_timeout_seconds, "startup_timeout_seconds")
        _positive_int(self.memory_limit_mb, "memory_limit_mb")

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxSettings":
        """Create a settings instance from a TOML file.

        Missing keys keep their bundled defaults.

        Example:
            ```python
            settings = SandboxSettings.from_file("/tmp/sandbox.toml")
            ```
        """
        raw = _read_settings_toml(Path(config_path))
        return cls(
            timeout_ms=raw.get("timeout_ms", DEFAULT_TIMEOUT_MS),
            max_output_lines=raw.get("max_output_lines", DEFAULT_MAX_OUTPUT_LINES),
            max_output_chars=raw.get("max_output_chars", DEFAULT_MAX_OUTPUT_CHARS),
            startup_timeout_seconds=raw.get(
                "startup_timeout_seconds", DEFAULT_STARTUP_TIMEOUT_SECONDS
            ),
            memory_limit_mb=raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB),
            python_executable=str(raw.get("python_executable", DEFAULT_PYTHON_EXECUTABLE)),
            node_executable=str(raw.get("node_executable", DEFAULT_NODE_EXECUTABLE)),
            allowed_imports=_list_of_str(
                raw.get("allowed_imports", DEFAULT_ALLOWED_IMPORTS), "allowed_imports"
            ),
            blocked_imports=_list_of_str(
                raw.get("blocked_imports", DEFAULT_BLOCKED_IMPORTS), "blocked_imports"
            ),
            blocked_builtins=_list_of_str(
                raw.get("blocked_builtins", DEFAULT_BLOCKED_BUILTINS), "blocked_builtins"
            ),
            config_path=config_path,
        )

    def default_options(self) -> ExecutionOptions:
        """Return the execution options applied when a caller leaves them unset.

        Example:
            ```python
            opts = SandboxSettings().default_options()
            assert opts.timeout == 5000
            ```
        """
        return ExecutionOptions(timeout=self.timeout_ms, max_output_lines=self.max_output_lines)
