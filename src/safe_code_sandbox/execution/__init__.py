from .base import ProcessExecutor
from .capabilities import JAVASCRIPT_CAPABILITIES, PYTHON_CAPABILITIES, ExecutorCapabilities
from .executor import CodeExecutor
from .javascript_executor import JavaScriptExecutor
from .python_executor import PythonExecutor

__all__ = [
    "CodeExecutor",
    "ExecutorCapabilities",
    "JAVASCRIPT_CAPABILITIES",
    "JavaScriptExecutor",
    "ProcessExecutor",
    "PYTHON_CAPABILITIES",
    "PythonExecutor",
]
