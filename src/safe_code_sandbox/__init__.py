from .errors import (
    BusyError,
    ErrorKind,
    InitializationError,
    NotInitializedError,
    SandboxError,
    UnsupportedLanguageError,
)
from .execution.javascript_executor import JavaScriptExecutor
from .execution.python_executor import PythonExecutor
from .registry import GLOBAL_EXECUTOR_REGISTRY, ExecutorRegistry
from .sandbox import Sandbox, execute
from .settings import SandboxSettings
from .types import (
    DEFAULT_EXECUTION_OPTIONS,
    ErrorInfo,
    ExecutionOptions,
    ExecutionRequest,
    ExecutionResult,
    ExecutorState,
)

__all__ = [
    "BusyError",
    "DEFAULT_EXECUTION_OPTIONS",
    "ErrorInfo",
    "ErrorKind",
    "ExecutionOptions",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutorRegistry",
    "ExecutorState",
    "GLOBAL_EXECUTOR_REGISTRY",
    "InitializationError",
    "JavaScriptExecutor",
    "NotInitializedError",
    "PythonExecutor",
    "Sandbox",
    "SandboxError",
    "SandboxSettings",
    "UnsupportedLanguageError",
    "execute",
]
