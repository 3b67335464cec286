from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import PurePath
from typing import Callable, Iterable

from .errors import UnsupportedLanguageError
from .execution.executor import CodeExecutor
from .execution.javascript_executor import JavaScriptExecutor
from .execution.python_executor import PythonExecutor
from .settings import SandboxSettings

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[SandboxSettings], CodeExecutor]


def file_extension(path: str) -> str:
    """Return the lower-cased extension of a path, including the dot.

    Example:
        ```python
        assert file_extension("scripts/Hello.PY") == ".py"
        ```
    """
    return PurePath(path).suffix.lower()


def is_valid_extension(path: str, valid_extensions: Iterable[str]) -> bool:
    """Return whether a path's extension is one of `valid_extensions`.

    Example:
        ```python
        assert is_valid_extension("app.mjs", {".js", ".mjs"})
        ```
    """
    ext = file_extension(path)
    return bool(ext) and ext in {item.lower() for item in valid_extensions}


@dataclass(frozen=True, slots=True)
class _Registration:
    """How to build one language's executor and which names select it.

    Example:
        ```python
        reg = _Registration("python", PythonExecutor, frozenset({".py"}), frozenset({"py"}))
        ```
    """

    language: str
    factory: ExecutorFactory
    extensions: frozenset[str]
    aliases: frozenset[str]


class ExecutorRegistry:
    """Map language identifiers and file extensions to executor instances.

    Executors are built lazily on first `resolve` and cached for the
    registry's lifetime; there is no teardown. Concurrent first resolves of
    one language share a single in-flight construction.

    Example:
        ```python
        registry = ExecutorRegistry.with_builtin_executors()
        executor = registry.resolve("py")
        ```
    """

    def __init__(self, settings: SandboxSettings | None = None) -> None:
        """Create an empty registry.

        Example:
            ```python
            registry = ExecutorRegistry(SandboxSettings(timeout_ms=2000))
            ```
        """
        self._settings = settings or SandboxSettings()
        self._lock = threading.Lock()
        self._registrations: dict[str, _Registration] = {}
        self._keys: dict[str, str] = {}
        self._instances: dict[str, Future[CodeExecutor]] = {}

    @classmethod
    def with_builtin_executors(cls, settings: SandboxSettings | None = None) -> "ExecutorRegistry":
        """Create a registry with the Python and JavaScript executors registered.

        Example:
            ```python
            registry = ExecutorRegistry.with_builtin_executors()
            ```
        """
        registry = cls(settings)
        for executor_cls in (PythonExecutor, JavaScriptExecutor):
            registry.register(
                executor_cls.language,
                executor_cls,
                extensions=executor_cls.file_extensions,
                aliases=executor_cls.aliases,
            )
        return registry

    @property
    def settings(self) -> SandboxSettings:
        """Return the settings passed to executor factories.

        Example:
            ```python
            settings = registry.settings
            ```
        """
        return self._settings

    def register(
        self,
        language: str,
        factory: ExecutorFactory,
        *,
        extensions: Iterable[str] = (),
        aliases: Iterable[str] = (),
    ) -> None:
        """Register an executor factory under a language and its extensions.

        Example:
            ```python
            registry.register("python", PythonExecutor, extensions={".py"}, aliases={"py"})
            ```
        """
        name = language.strip().lower()
        if not name:
            raise ValueError("Executor language must be a non-empty string")
        normalized_ext = frozenset(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions
        )
        normalized_aliases = frozenset(alias.strip().lower() for alias in aliases)
        with self._lock:
            if name in self._registrations:
                raise ValueError(f"An executor is already registered for '{name}'")
            keys = {name, *normalized_aliases, *normalized_ext, *(ext[1:] for ext in normalized_ext)}
            taken = sorted(key for key in keys if key in self._keys)
            if taken:
                raise ValueError(f"Identifiers already registered: {', '.join(taken)}")
            self._registrations[name] = _Registration(name, factory, normalized_ext, normalized_aliases)
            for key in keys:
                self._keys[key] = name

    def languages(self) -> list[str]:
        """Return the registered language names in sorted order.

        Example:
            ```python
            assert registry.languages() == ["javascript", "python"]
            ```
        """
        with self._lock:
            return sorted(self._registrations)

    def extensions(self, language: str) -> frozenset[str]:
        """Return the file extensions registered for a language identifier.

        Example:
            ```python
            assert ".py" in registry.extensions("python")
            ```
        """
        return self._registrations[self._language_for(language)].extensions

    def resolve(self, identifier: str) -> CodeExecutor:
        """Return the executor for a language name, alias or file extension.

        Raises `UnsupportedLanguageError` for unknown identifiers.

        Example:
            ```python
            executor = registry.resolve(".js")
            ```
        """
        language = self._language_for(identifier)
        with self._lock:
            pending = self._instances.get(language)
            owner = pending is None
            if pending is None:
                pending = self._instances[language] = Future()
            registration = self._registrations[language]
        if not owner:
            return pending.result()

        logger.debug("Constructing %s executor", language)
        try:
            executor = registration.factory(self._settings)
        except BaseException as exc:
            with self._lock:
                self._instances.pop(language, None)
            pending.set_exception(exc)
            raise
        pending.set_result(executor)
        return executor

    def resolve_path(self, path: str) -> CodeExecutor:
        """Return the executor registered for a file's extension.

        Example:
            ```python
            executor = registry.resolve_path("scripts/hello.py")
            ```
        """
        ext = file_extension(path)
        if not ext:
            raise UnsupportedLanguageError(path, self.languages())
        return self.resolve(ext)

    def cached(self) -> list[CodeExecutor]:
        """Return the executors constructed so far.

        Example:
            ```python
            live = registry.cached()
            ```
        """
        with self._lock:
            pending = list(self._instances.values())
        return [future.result() for future in pending if future.done() and future.exception() is None]

    def _language_for(self, identifier: str) -> str:
        """Map an identifier to its registered language name.

        Example:
            ```python
            assert registry._language_for("PY") == "python"
            ```
        """
        key = identifier.strip().lower()
        with self._lock:
            language = self._keys.get(key)
            supported = sorted(self._registrations)
        if language is None:
            raise UnsupportedLanguageError(identifier, supported)
        return language


GLOBAL_EXECUTOR_REGISTRY = ExecutorRegistry.with_builtin_executors()
