from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from safe_code_sandbox import ErrorInfo, ExecutionOptions, ExecutionResult, UnsupportedLanguageError
from safe_code_sandbox.execution import CodeExecutor
from scs import cli


class _FakeSandbox:
    calls: list[tuple] = []
    result = ExecutionResult(success=True, stdout="Hello\n", execution_time=12)

    def __init__(self, registry) -> None:
        self.registry = registry

    def executor(self, language: str) -> CodeExecutor:
        return self.registry.resolve(language)

    def execute(self, language: str, code: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        self.calls.append(("execute", language, code, options))
        return self.result

    def run_file(self, path: str, language: str | None = None, options: ExecutionOptions | None = None) -> ExecutionResult:
        self.calls.append(("run_file", path, language, options))
        if language is None and not path.endswith((".py", ".js")):
            raise UnsupportedLanguageError(path, ["javascript", "python"])
        return self.result


@pytest.fixture(autouse=True)
def _patch_sandbox(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeSandbox.calls = []
    _FakeSandbox.result = ExecutionResult(success=True, stdout="Hello\n", execution_time=12)
    monkeypatch.setattr(cli, "Sandbox", _FakeSandbox)


def test_cli_eval_prints_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["eval", "python", "print('Hello')"])
    output = capsys.readouterr().out

    assert code == 0
    assert "Hello" in output
    assert "12ms" in output
    assert _FakeSandbox.calls == [
        ("execute", "python", "print('Hello')", ExecutionOptions())
    ]


def test_cli_python_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "hello.py"
    script.write_text("print('Hello')\n", encoding="utf-8")

    code = cli.main(["--timeout-ms", "200", "python", str(script)])

    assert code == 0
    assert _FakeSandbox.calls == [
        ("run_file", str(script), "python", ExecutionOptions(timeout=200))
    ]
    assert "Hello" in capsys.readouterr().out


def test_cli_node_rejects_wrong_extension(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "hello.py"
    script.write_text("print(1)\n", encoding="utf-8")

    code = cli.main(["node", str(script)])
    output = capsys.readouterr().out

    assert code == 2
    assert "Unsupported file type" in output
    assert _FakeSandbox.calls == []


def test_cli_missing_file(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", "does-not-exist.py"])
    assert code == 2
    assert "No such file" in capsys.readouterr().out


def test_cli_run_unsupported_extension(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "notes.txt"
    script.write_text("hi\n", encoding="utf-8")

    code = cli.main(["run", str(script)])
    assert code == 2
    assert "Unsupported language" in capsys.readouterr().out


def test_cli_runtime_error_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    _FakeSandbox.result = ExecutionResult(
        success=False,
        stderr="Traceback...\n",
        error=ErrorInfo(message="division by zero", type="ZeroDivisionError", line=1, column=1),
    )

    code = cli.main(["eval", "py", "1/0"])
    output = capsys.readouterr().out

    assert code == 1
    assert "ZeroDivisionError" in output
    assert "at line 1:1" in output


def test_cli_timeout_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    _FakeSandbox.result = ExecutionResult(
        success=False,
        error=ErrorInfo(message="Execution timeout: exceeded 200ms", type="TimeoutError"),
        execution_time=201,
        timed_out=True,
    )

    code = cli.main(["eval", "js", "while(true){}"])
    output = capsys.readouterr().out

    assert code == 124
    assert "timed out" in output


def test_cli_no_output(capsys: pytest.CaptureFixture[str]) -> None:
    _FakeSandbox.result = ExecutionResult(success=True)

    assert cli.main(["eval", "python", "x = 1"]) == 0
    assert "No output" in capsys.readouterr().out


def test_cli_json_output(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--json", "eval", "python", "print('Hello')"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 0
    assert payload["stdout"] == "Hello\n"
    assert payload["timedOut"] is False


def test_cli_unknown_language(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["eval", "ruby", "puts 1"])
    assert code == 2
    assert "Unsupported language" in capsys.readouterr().out


def test_cli_languages_table(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["languages"])
    output = capsys.readouterr().out

    assert code == 0
    assert "python" in output
    assert "javascript" in output
    assert ".mjs" in output


def test_cli_config_file(tmp_path: Path) -> None:
    config = tmp_path / "sandbox.toml"
    config.write_text("[sandbox]\ntimeout_ms = 250\n", encoding="utf-8")

    args = cli.build_parser().parse_args(["--config", str(config), "languages"])
    sandbox = cli.build_sandbox(args)

    assert sandbox.registry.settings.timeout_ms == 250


def test_cli_invalid_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "sandbox.toml"
    config.write_text("[sandbox]\ntimeout_ms = -1\n", encoding="utf-8")

    code = cli.main(["--config", str(config), "languages"])
    assert code == 2
    assert "Invalid settings" in capsys.readouterr().out


def test_cli_rejects_non_positive_timeout(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--timeout-ms", "0", "eval", "python", "1"])
    assert exc.value.code == 2
    assert "positive integer" in capsys.readouterr().out


def test_cli_subcommand_help(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["node", "--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Supported extensions" in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m scs languages" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    output = capsys.readouterr().out
    assert output == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "safe-code-sandbox CLI" in help_text


def test_cli_run_with_language_override(tmp_path: Path) -> None:
    script = tmp_path / "app.mjs"
    script.write_text("console.log(1)\n", encoding="utf-8")

    code = cli.main(["run", str(script), "--language", "js"])

    assert code == 0
    assert _FakeSandbox.calls == [("run_file", str(script), "js", ExecutionOptions())]
