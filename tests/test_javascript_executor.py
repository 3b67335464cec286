import shutil
from typing import Iterator

import pytest

from safe_code_sandbox import (
    ExecutionOptions,
    ExecutorState,
    InitializationError,
    JavaScriptExecutor,
    SandboxSettings,
)
from safe_code_sandbox.execution.javascript_executor import parse_stack_position

requires_node = pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")


@pytest.fixture
def executor() -> Iterator[JavaScriptExecutor]:
    instance = JavaScriptExecutor(SandboxSettings())
    instance.initialize()
    yield instance
    instance.terminate()


def test_parse_stack_position() -> None:
    stack = "ReferenceError: x is not defined\n    at <sandbox>:2:5\n    at Script.runInContext (node:vm:1:1)"
    assert parse_stack_position(stack) == (2, 5)
    assert parse_stack_position("<sandbox>:3\nlet = ;\n    ^") == (3, None)
    assert parse_stack_position("at node:internal/x:1:1") == (None, None)
    assert parse_stack_position(None) == (None, None)


def test_missing_node_binary_fails_initialize() -> None:
    instance = JavaScriptExecutor(SandboxSettings(node_executable="definitely-not-node-binary"))

    with pytest.raises(InitializationError, match="definitely-not-node-binary"):
        instance.initialize()
    assert instance.state is ExecutorState.UNINITIALIZED


@requires_node
def test_console_log(executor: JavaScriptExecutor) -> None:
    result = executor.execute("console.log('Hello'); console.log(1 + 2, [1, 2].length)")

    assert result.success
    assert result.stdout == "Hello\n3 2\n"


@requires_node
def test_objects_are_pretty_printed(executor: JavaScriptExecutor) -> None:
    result = executor.execute("console.log({ a: 1 })")
    assert result.stdout == '{\n  "a": 1\n}\n'


@requires_node
def test_console_streams(executor: JavaScriptExecutor) -> None:
    result = executor.execute("console.warn('careful'); console.error('broken'); console.info('fyi')")

    assert result.stdout == "[warn] careful\nfyi\n"
    assert result.stderr == "broken\n"
    assert result.success


@requires_node
def test_console_clear_discards_previous_stdout(executor: JavaScriptExecutor) -> None:
    result = executor.execute("console.log('old'); console.clear(); console.log('new')")
    assert result.stdout == "new\n"


@requires_node
def test_reference_error_type_and_line(executor: JavaScriptExecutor) -> None:
    result = executor.execute("const a = 1;\nundefinedVar;")

    assert not result.success
    assert result.error is not None
    assert result.error.type == "ReferenceError"
    assert result.error.line == 2
    assert "undefinedVar" in result.error.message


@requires_node
def test_syntax_error(executor: JavaScriptExecutor) -> None:
    result = executor.execute("let = ;")

    assert result.error is not None
    assert result.error.type == "SyntaxError"
    assert result.error.line == 1


@requires_node
def test_thrown_string_has_no_type(executor: JavaScriptExecutor) -> None:
    result = executor.execute("throw 'x'")

    assert not result.success
    assert result.error is not None
    assert result.error.type is None
    assert result.error.message == "x"


@requires_node
def test_host_globals_are_shadowed(executor: JavaScriptExecutor) -> None:
    result = executor.execute(
        "console.log(typeof process, typeof require, typeof window, typeof fetch, typeof setTimeout)"
    )
    assert result.stdout == "undefined undefined undefined undefined undefined\n"


@requires_node
def test_shadowed_names_can_be_redeclared(executor: JavaScriptExecutor) -> None:
    result = executor.execute("let window = 1; console.log(window)")
    assert result.stdout == "1\n"


@requires_node
def test_fresh_context_per_execution(executor: JavaScriptExecutor) -> None:
    assert executor.execute("globalThis.leaked = 1").success
    result = executor.execute("console.log(typeof leaked)")
    assert result.stdout == "undefined\n"


@requires_node
def test_infinite_loop_times_out_then_usable(executor: JavaScriptExecutor) -> None:
    result = executor.execute("while(true){}", ExecutionOptions(timeout=200))

    assert result.timed_out
    assert not result.success
    assert result.error is not None
    assert "timeout" in result.error.message.lower()

    after = executor.execute("console.log('after')")
    assert after.stdout == "after\n"


@requires_node
def test_truncation(executor: JavaScriptExecutor) -> None:
    result = executor.execute(
        "for (let i = 0; i < 10; i++) console.log(i)",
        ExecutionOptions(max_output_lines=3),
    )

    assert result.stdout == "0\n1\n2\n"
    assert result.truncated


@requires_node
def test_promise_output_stays_with_its_run(executor: JavaScriptExecutor) -> None:
    first = executor.execute(
        "Promise.resolve().then(() => console.log('late'))\nconsole.log('first')"
    )
    assert first.success
    assert first.stdout == "first\nlate\n"

    second = executor.execute("console.log('second')")
    assert second.stdout == "second\n"


@requires_node
def test_async_throw_fails_the_run(executor: JavaScriptExecutor) -> None:
    result = executor.execute("(async () => { throw new TypeError('async boom') })()")

    assert not result.success
    assert result.error is not None
    assert result.error.type == "TypeError"
    assert result.error.message == "async boom"

    assert executor.execute("console.log('still alive')").stdout == "still alive\n"


@requires_node
def test_unhandled_rejection_fails_the_run(executor: JavaScriptExecutor) -> None:
    result = executor.execute("console.log('before')\nPromise.reject(new RangeError('nope'))")

    assert not result.success
    assert result.stdout == "before\n"
    assert result.error is not None
    assert result.error.type == "RangeError"
    assert result.error.message == "nope"
    assert executor.state is ExecutorState.READY

    after = executor.execute("console.log('after')")
    assert after.success
    assert after.stdout == "after\n"


@requires_node
def test_handled_rejection_is_not_an_error(executor: JavaScriptExecutor) -> None:
    result = executor.execute(
        "Promise.reject(new Error('x')).catch((err) => console.log('caught', err.message))"
    )

    assert result.success
    assert result.stdout == "caught x\n"


@requires_node
def test_string_code_generation_is_disabled(executor: JavaScriptExecutor) -> None:
    result = executor.execute(
        "try { this.constructor.constructor('return process')() }"
        " catch (err) { console.log(err.name) }"
    )

    assert result.success
    assert result.stdout == "EvalError\n"
