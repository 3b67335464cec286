"""Long-lived Python runtime process.

Reads one JSON request per line from its protocol input and streams JSON
messages back: `output` chunks tagged with the request id while user code
runs, then one `result` per request. User code is compiled with
RestrictedPython and runs against guarded builtins, so attribute access,
item writes and imports all pass through the policy below.
"""

from __future__ import annotations

import ast
import builtins
import io
import json
import linecache
import operator
import os
import platform
import re
import sys
import traceback
from types import ModuleType
from typing import Any, Callable, TextIO

from RestrictedPython import compile_restricted_exec, safe_builtins
from RestrictedPython.Guards import (
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except Exception:  # pragma: no cover - platform specific
    _resource = None

FILENAME = "<sandbox>"
MODULE_NAME = "__main__"

_EXTRA_BUILTINS = (
    "all",
    "any",
    "bin",
    "bytearray",
    "classmethod",
    "dict",
    "enumerate",
    "filter",
    "format",
    "frozenset",
    "iter",
    "list",
    "map",
    "max",
    "min",
    "next",
    "object",
    "property",
    "reversed",
    "set",
    "staticmethod",
    "sum",
    "super",
    "type",
)

_INPLACE_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
    "@=": operator.imatmul,
}

_RESTRICTED_ERROR = re.compile(r"^Line (\d+|None): (.*)$", re.DOTALL)


def _set_limits(memory_limit_mb: int) -> list[str]:
    """Cap the address space of this process and return any warnings.

    Example:
        ```python
        warnings = _set_limits(256)
        ```
    """
    errors: list[str] = []
    if _resource is None:
        errors.append("RLIMIT limits unavailable on this platform")
        return errors

    mem_bytes = int(memory_limit_mb) * 1024 * 1024

    try:
        _, current_hard = _resource.getrlimit(_resource.RLIMIT_AS)
        if current_hard in (-1, _resource.RLIM_INFINITY):
            target_hard = mem_bytes
        else:
            target_hard = min(mem_bytes, current_hard)
        target_soft = min(mem_bytes, target_hard)
        _resource.setrlimit(_resource.RLIMIT_AS, (target_soft, target_hard))
    except (ValueError, OSError) as exc:
        errors.append(f"RLIMIT_AS not applied: {exc}")

    return errors


def _open_channels() -> tuple[TextIO, TextIO]:
    """Move the protocol off fds 0/1 so user code cannot reach it.

    Example:
        ```python
        protocol_in, protocol_out = _open_channels()
        ```
    """
    protocol_in = os.fdopen(os.dup(0), "r", encoding="utf-8")
    protocol_out = os.fdopen(os.dup(1), "w", encoding="utf-8")
    devnull = os.open(os.devnull, os.O_RDWR)
    os.dup2(devnull, 0)
    os.dup2(devnull, 1)
    os.close(devnull)
    sys.stdin = io.StringIO("")
    sys.stdout = io.StringIO()
    return protocol_in, protocol_out


def _send(channel: TextIO, message: dict[str, Any]) -> None:
    """Write one JSON line to the host.

    Example:
        ```python
        _send(protocol_out, {"type": "ready"})
        ```
    """
    channel.write(json.dumps(message, default=str) + "\n")
    channel.flush()


class _StreamWriter(io.TextIOBase):
    """File-like object forwarding every write to the host as an output message.

    Example:
        ```python
        stdout = _StreamWriter(protocol_out, "stdout", request_id=7)
        stdout.write("hi\\n")
        ```
    """

    def __init__(self, channel: TextIO, stream: str, request_id: Any) -> None:
        """Bind the writer to a channel, a stream name and a request.

        Example:
            ```python
            stderr = _StreamWriter(protocol_out, "stderr", request_id=7)
            ```
        """
        self._channel = channel
        self._stream = stream
        self._request_id = request_id

    def writable(self) -> bool:
        """Report the stream as writable.

        Example:
            ```python
            assert stdout.writable()
            ```
        """
        return True

    def write(self, text: str) -> int:
        """Send `text` as an output chunk and return its length.

        Example:
            ```python
            count = stdout.write("partial")
            ```
        """
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        if text:
            _send(
                self._channel,
                {"type": "output", "id": self._request_id, "stream": self._stream, "text": text},
            )
        return len(text)


class _PrintCollector:
    """Target of `print` in restricted code; writes to the current sys.stdout.

    Example:
        ```python
        _PrintCollector(guarded_getattr)._call_print("hi")
        ```
    """

    def __init__(self, _getattr_: Callable[..., Any] | None = None) -> None:
        """Remember the attribute guard used to validate `file=` targets.

        Example:
            ```python
            collector = _PrintCollector(guarded_getattr)
            ```
        """
        self._getattr = _getattr_

    def __call__(self) -> str:
        """Return collected text; output is streamed, so nothing is kept.

        Example:
            ```python
            assert collector() == ""
            ```
        """
        return ""

    def _call_print(self, *objects: Any, **kwargs: Any) -> None:
        """Print like the builtin, defaulting `file` to the sandbox stdout.

        Example:
            ```python
            collector._call_print("a", "b", sep="-")
            ```
        """
        target = kwargs.get("file")
        if target is None:
            kwargs["file"] = sys.stdout
        elif self._getattr is not None:
            self._getattr(target, "write")
        print(*objects, **kwargs)


def _import_allowed(name: str, allowed_imports: set[str], blocked_imports: set[str]) -> str | None:
    """Return a rejection message for module `name`, or None when importable.

    An empty allow list means every module outside the block list.

    Example:
        ```python
        assert _import_allowed("math", {"math"}, {"os"}) is None
        ```
    """
    root = name.split(".")[0]
    if root in blocked_imports or root == "importlib":
        return f"Import '{name}' is blocked by policy"
    if allowed_imports and root not in allowed_imports:
        return f"Import '{name}' is not allowed by policy"
    return None


def _safe_import_factory(allowed_imports: set[str], blocked_imports: set[str]) -> Callable[..., Any]:
    """Build the `__import__` replacement enforcing the import policy.

    Example:
        ```python
        safe_import = _safe_import_factory({"math"}, {"os"})
        math = safe_import("math")
        ```
    """

    def _safe_import(
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> Any:
        """Import `name` when the policy permits it and its `from` targets.

        Example:
            ```python
            json = _safe_import("json")
            ```
        """
        if level:
            raise ImportError("Relative imports are not available in the sandbox")
        rejection = _import_allowed(name, allowed_imports, blocked_imports)
        if rejection:
            raise ImportError(rejection)
        module = __import__(name, globals, locals, fromlist, level)
        for item in fromlist or ():
            value = getattr(module, item, None)
            if isinstance(value, ModuleType):
                rejection = _import_allowed(value.__name__, allowed_imports, blocked_imports)
                if rejection:
                    raise ImportError(rejection)
        return module

    return _safe_import


def _guarded_getattr_factory(
    allowed_imports: set[str],
    blocked_imports: set[str],
) -> Callable[..., Any]:
    """Build the `_getattr_` guard for restricted attribute reads.

    Private and introspection attributes are refused by `safer_getattr`.
    Modules re-exported as attributes must pass the import policy too.

    Example:
        ```python
        guarded_getattr = _guarded_getattr_factory({"json"}, {"os"})
        dumps = guarded_getattr(json, "dumps")
        ```
    """
    missing = object()

    def _guarded_getattr(obj: Any, name: str, default: Any = missing) -> Any:
        """Read `obj.name` through the guard.

        Example:
            ```python
            upper = _guarded_getattr("text", "upper")
            ```
        """
        value = safer_getattr(obj, name, missing if default is missing else default)
        if value is missing:
            raise AttributeError(f"{type(obj).__name__!r} object has no attribute {name!r}")
        if isinstance(value, ModuleType):
            rejection = _import_allowed(value.__name__, allowed_imports, blocked_imports)
            if rejection:
                raise AttributeError(f"Module attribute '{name}' is not accessible: {rejection}")
        return value

    return _guarded_getattr


def _write_guard(obj: Any) -> Any:
    """Allow writes except to modules and to classes defined outside the sandbox.

    Example:
        ```python
        _write_guard([])[0:0] = [1]
        ```
    """
    if isinstance(obj, ModuleType):
        raise TypeError(f"Cannot modify module '{obj.__name__}' in the sandbox")
    if isinstance(obj, type) and obj.__module__ != MODULE_NAME:
        raise TypeError(f"Cannot modify class '{obj.__name__}' in the sandbox")
    return obj


def _guarded_setattr(obj: Any, name: str, value: Any) -> None:
    """Restricted `setattr` builtin.

    Example:
        ```python
        _guarded_setattr(point, "x", 3)
        ```
    """
    if not isinstance(name, str) or name.startswith("_"):
        raise AttributeError(f"Cannot set attribute {name!r} in the sandbox")
    setattr(_write_guard(obj), name, value)


def _guarded_delattr(obj: Any, name: str) -> None:
    """Restricted `delattr` builtin.

    Example:
        ```python
        _guarded_delattr(point, "x")
        ```
    """
    if not isinstance(name, str) or name.startswith("_"):
        raise AttributeError(f"Cannot delete attribute {name!r} in the sandbox")
    delattr(_write_guard(obj), name)


def _inplace_var(op: str, target: Any, value: Any) -> Any:
    """Apply an augmented assignment such as `+=`.

    Example:
        ```python
        total = _inplace_var("+=", 1, 2)
        ```
    """
    return _INPLACE_OPERATORS[op](target, value)


def _apply(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call `func`; the hook for calls using `*args`/`**kwargs`.

    Example:
        ```python
        _apply(max, *[1, 2])
        ```
    """
    return func(*args, **kwargs)


def _no_input(prompt: Any = "") -> str:
    """Replacement `input`: the sandbox has no stdin.

    Example:
        ```python
        _no_input()  # raises EOFError
        ```
    """
    raise EOFError("EOF when reading a line")


def _build_safe_builtins(
    blocked_builtins: set[str],
    safe_import: Callable[..., Any],
    guarded_getattr: Callable[..., Any],
) -> dict[str, Any]:
    """Assemble the builtins visible to restricted code.

    Example:
        ```python
        names = _build_safe_builtins({"open"}, safe_import, guarded_getattr)
        ```
    """
    safe = dict(safe_builtins)
    for name in _EXTRA_BUILTINS:
        safe[name] = getattr(builtins, name)

    def _guarded_hasattr(obj: Any, name: str) -> bool:
        """Restricted `hasattr` built on the attribute guard.

        Example:
            ```python
            assert _guarded_hasattr([], "append")
            ```
        """
        try:
            guarded_getattr(obj, name)
        except AttributeError:
            return False
        return True

    safe.update(
        {
            "getattr": guarded_getattr,
            "hasattr": _guarded_hasattr,
            "setattr": _guarded_setattr,
            "delattr": _guarded_delattr,
            "input": _no_input,
            "__import__": safe_import,
            "_getattr_": guarded_getattr,
        }
    )
    for name in blocked_builtins:
        safe.pop(name, None)
    return safe


def _restricted_globals(policy: dict[str, Any]) -> dict[str, Any]:
    """Build a fresh global namespace with every restricted-code hook.

    Example:
        ```python
        namespace = _restricted_globals({"allowed_imports": ["math"]})
        ```
    """
    allowed_imports = set(policy.get("allowed_imports", []))
    blocked_imports = set(policy.get("blocked_imports", []))
    blocked_builtins = set(policy.get("blocked_builtins", []))
    guarded_getattr = _guarded_getattr_factory(allowed_imports, blocked_imports)
    safe_import = _safe_import_factory(allowed_imports, blocked_imports)
    return {
        "__builtins__": _build_safe_builtins(blocked_builtins, safe_import, guarded_getattr),
        "__name__": MODULE_NAME,
        "__metaclass__": type,
        "_print_": _PrintCollector,
        "_getattr_": guarded_getattr,
        "_getitem_": operator.getitem,
        "_getiter_": iter,
        "_write_": _write_guard,
        "_inplacevar_": _inplace_var,
        "_apply_": _apply,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
    }


def _restriction_error(errors: Any) -> SyntaxError:
    """Turn RestrictedPython's `Line N: message` strings into a SyntaxError.

    Example:
        ```python
        exc = _restriction_error(['Line 1: Exec calls are not allowed.'])
        assert exc.lineno == 1
        ```
    """
    messages: list[str] = []
    lineno: int | None = None
    for raw in errors:
        match = _RESTRICTED_ERROR.match(raw)
        if match is None:
            messages.append(raw)
            continue
        if lineno is None and match.group(1) != "None":
            lineno = int(match.group(1))
        messages.append(match.group(2))
    exc = SyntaxError("; ".join(messages) or "Code is not allowed in the sandbox")
    exc.filename = FILENAME
    exc.lineno = lineno
    return exc


def _compile(code: str) -> Any:
    """Parse then compile `code` under the restriction policy.

    Plain syntax errors keep their line and column; policy violations are
    raised as `SyntaxError` with the offending line.

    Example:
        ```python
        byte_code = _compile("print(1)")
        ```
    """
    try:
        tree = ast.parse(code, FILENAME, "exec")
    except ValueError as exc:
        raise SyntaxError(str(exc)) from None
    compiled = compile_restricted_exec(tree, filename=FILENAME)
    if compiled.errors:
        raise _restriction_error(compiled.errors)
    return compiled.code


def _user_frames(exc: BaseException) -> list[traceback.FrameSummary]:
    """Return the traceback frames that belong to user code.

    Example:
        ```python
        frames = _user_frames(exc)
        ```
    """
    return [frame for frame in traceback.extract_tb(exc.__traceback__) if frame.filename == FILENAME]


def _describe_exception(exc: BaseException) -> dict[str, Any]:
    """Describe an exception as the error payload of a result message.

    Example:
        ```python
        error = _describe_exception(ZeroDivisionError("division by zero"))
        ```
    """
    error: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc) or type(exc).__name__,
        "line": None,
        "column": None,
    }
    if isinstance(exc, SyntaxError):
        error["message"] = exc.msg or type(exc).__name__
        error["line"] = exc.lineno
        error["column"] = exc.offset
        return error
    frames = _user_frames(exc)
    if frames:
        innermost = frames[-1]
        error["line"] = innermost.lineno
        colno = getattr(innermost, "colno", None)
        if colno is not None:
            error["column"] = colno + 1
    return error


def _format_traceback(exc: BaseException) -> str:
    """Render a traceback limited to user frames.

    Example:
        ```python
        text = _format_traceback(exc)
        ```
    """
    if isinstance(exc, SyntaxError):
        return "".join(traceback.format_exception_only(type(exc), exc))
    lines = ["Traceback (most recent call last):\n"]
    lines.extend(traceback.format_list(_user_frames(exc)))
    lines.extend(traceback.format_exception_only(type(exc), exc))
    return "".join(lines)


def _normalize_system_exit(exit_code: Any) -> tuple[bool, str | None]:
    """Map a `SystemExit` code to success and an optional message.

    Example:
        ```python
        assert _normalize_system_exit(0) == (True, None)
        ```
    """
    if exit_code in (None, 0):
        return True, None
    return False, str(exit_code)


def _execute(request: dict[str, Any], channel: TextIO) -> dict[str, Any]:
    """Run one execute request and return its result message.

    Example:
        ```python
        response = _execute({"id": 1, "code": "print(1)"}, protocol_out)
        ```
    """
    code = str(request.get("code", ""))
    request_id = request.get("id")
    response: dict[str, Any] = {"type": "result", "id": request_id, "ok": True, "error": None}

    stdout = _StreamWriter(channel, "stdout", request_id)
    stderr = _StreamWriter(channel, "stderr", request_id)

    # Lets tracebacks show the offending source line.
    linecache.cache[FILENAME] = (len(code), None, code.splitlines(keepends=True), FILENAME)
    try:
        try:
            byte_code = _compile(code)
        except SyntaxError as exc:
            stderr.write(_format_traceback(exc))
            response.update(ok=False, error=_describe_exception(exc))
            return response

        exec_globals = _restricted_globals(request.get("policy") or {})
        saved = sys.stdin, sys.stdout, sys.stderr
        sys.stdin, sys.stdout, sys.stderr = io.StringIO(""), stdout, stderr
        try:
            exec(byte_code, exec_globals, exec_globals)
        except SystemExit as exc:
            ok, message = _normalize_system_exit(exc.code)
            if isinstance(exc.code, str):
                stderr.write(f"{exc.code}\n")
            if not ok:
                response.update(ok=False, error={"type": "SystemExit", "message": message})
        except BaseException as exc:
            stderr.write(_format_traceback(exc))
            response.update(ok=False, error=_describe_exception(exc))
        finally:
            sys.stdin, sys.stdout, sys.stderr = saved
    finally:
        linecache.cache.pop(FILENAME, None)
    return response


def main() -> int:
    """Announce readiness, then serve execute requests until stdin closes.

    Example:
        ```python
        raise SystemExit(main())
        ```
    """
    config = json.loads(sys.argv[1]) if len(sys.argv) > 1 else {}
    limit_errors = _set_limits(int(config.get("memory_limit_mb", 256)))
    protocol_in, protocol_out = _open_channels()
    _send(
        protocol_out,
        {
            "type": "ready",
            "runtime": "cpython",
            "version": platform.python_version(),
            "warnings": limit_errors,
        },
    )
    for line in protocol_in:
        if not line.strip():
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            continue
        if request.get("type") != "execute":
            continue
        try:
            response = _execute(request, protocol_out)
        except MemoryError:
            response = {
                "type": "result",
                "id": request.get("id"),
                "ok": False,
                "error": {"type": "MemoryError", "message": "Memory limit exceeded"},
            }
        _send(protocol_out, response)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
