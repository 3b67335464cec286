import shutil
import time
from pathlib import Path
from typing import Iterator

import pytest

from safe_code_sandbox import (
    ExecutionOptions,
    ExecutorRegistry,
    Sandbox,
    SandboxSettings,
    UnsupportedLanguageError,
)

requires_node = pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")


@pytest.fixture
def sandbox() -> Iterator[Sandbox]:
    instance = Sandbox(ExecutorRegistry.with_builtin_executors(SandboxSettings()))
    yield instance
    for executor in instance.registry.cached():
        executor.terminate()


def test_execute_initializes_on_first_use(sandbox: Sandbox) -> None:
    assert not sandbox.executor("python").is_ready

    result = sandbox.execute("python", "print('Hello')")

    assert result.success
    assert result.stdout == "Hello\n"
    assert sandbox.executor("python").is_ready


def test_language_aliases(sandbox: Sandbox) -> None:
    assert sandbox.execute("py", "print(6 * 7)").stdout == "42\n"


def test_runtime_error_scenario(sandbox: Sandbox) -> None:
    result = sandbox.execute("python", "1/0")

    assert not result.success
    assert result.error is not None
    assert result.error.type == "ZeroDivisionError"
    assert result.error.line == 1


@pytest.mark.parametrize("code", ["", "   \n\t"])
def test_blank_code_succeeds_without_starting_runtime(sandbox: Sandbox, code: str) -> None:
    result = sandbox.execute("python", code)

    assert result.success
    assert result.stdout == ""
    assert result.stderr == ""
    assert result.error is None
    assert not sandbox.executor("python").is_ready


def test_unsupported_language_raises_even_for_blank_code(sandbox: Sandbox) -> None:
    with pytest.raises(UnsupportedLanguageError, match="ruby"):
        sandbox.execute("ruby", "")


def test_options_override_settings(sandbox: Sandbox) -> None:
    result = sandbox.execute("python", "while True:\n    pass", ExecutionOptions(timeout=200))

    assert result.timed_out
    assert result.error is not None
    assert "timeout" in result.error.message.lower()


def test_settings_supply_default_options() -> None:
    instance = Sandbox(ExecutorRegistry.with_builtin_executors(SandboxSettings(max_output_lines=2)))
    try:
        result = instance.execute("python", "for i in range(5):\n    print(i)")
        assert result.stdout == "0\n1\n"
        assert result.truncated
    finally:
        instance.terminate("python")


def test_run_file_by_extension(sandbox: Sandbox, tmp_path: Path) -> None:
    script = tmp_path / "hello.py"
    script.write_text("print('from file')\n", encoding="utf-8")

    result = sandbox.run_file(str(script))
    assert result.stdout == "from file\n"


def test_run_file_rejects_mismatched_extension(sandbox: Sandbox, tmp_path: Path) -> None:
    script = tmp_path / "hello.txt"
    script.write_text("print(1)\n", encoding="utf-8")

    with pytest.raises(UnsupportedLanguageError):
        sandbox.run_file(str(script))
    with pytest.raises(UnsupportedLanguageError):
        sandbox.run_file(str(script), language="python")


def test_terminate_via_facade(sandbox: Sandbox) -> None:
    sandbox.execute("python", "print(1)")
    sandbox.terminate("python")

    assert not sandbox.executor("python").is_ready
    assert sandbox.execute("python", "print(2)").stdout == "2\n"


@requires_node
def test_javascript_scenarios(sandbox: Sandbox) -> None:
    hello = sandbox.execute("javascript", "console.log('Hello')")
    assert hello.stdout == "Hello\n"

    looped = sandbox.execute("js", "while(true){}", ExecutionOptions(timeout=200))
    assert looped.timed_out
    assert looped.error is not None
    assert "timeout" in looped.error.message.lower()


def test_execution_time_excludes_context_recreation(
    sandbox: Sandbox, monkeypatch: pytest.MonkeyPatch
) -> None:
    timed_out = sandbox.execute("python", "while True:\n    pass", ExecutionOptions(timeout=200))
    assert timed_out.timed_out

    executor = sandbox.executor("python")
    original = executor._start_context  # type: ignore[attr-defined]

    def _slow_start(generation: int):  # type: ignore[no-untyped-def]
        time.sleep(0.3)
        return original(generation)

    monkeypatch.setattr(executor, "_start_context", _slow_start)
    result = sandbox.execute("python", "print('quick')")

    assert result.success
    assert result.stdout == "quick\n"
    assert result.execution_time < 300
