from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ExecutorCapabilities:
    """Capability flags advertised by a language executor.

    Example:
        ```python
        caps = ExecutorCapabilities(True, False, True, True, True)
        ```
    """

    supports_import_blocking: bool
    supports_builtin_blocking: bool
    supports_memory_limit: bool
    supports_timeout: bool
    reports_error_columns: bool


PYTHON_CAPABILITIES = ExecutorCapabilities(
    supports_import_blocking=True,
    supports_builtin_blocking=True,
    supports_memory_limit=True,
    supports_timeout=True,
    reports_error_columns=True,
)
JAVASCRIPT_CAPABILITIES = ExecutorCapabilities(
    supports_import_blocking=False,
    supports_builtin_blocking=False,
    supports_memory_limit=True,
    supports_timeout=True,
    reports_error_columns=True,
)
