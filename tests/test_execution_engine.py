from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

from cmdtail.diagnostics.base import InMemoryDiagnosticsStore
from cmdtail.execution.base import (
    CommandLaunchError,
    CommandSpec,
    CommandTimeoutError,
)
from cmdtail.execution.local_exec import LocalExecutor


def _python(code: str, **kwargs: object) -> CommandSpec:
    return CommandSpec(executable=sys.executable, arguments=("-u", "-c", code), **kwargs)  # type: ignore[arg-type]


def _assert_process_gone(pid: int) -> None:
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


@pytest.mark.asyncio
async def test_echo_command_without_limits() -> None:
    executor = LocalExecutor()

    result = await executor.run(_python("print('hello')"))

    assert result.stdout == "hello\n"
    assert result.stderr == ""
    assert result.exit_code == 0
    assert result.stdout_truncated is False
    assert result.stderr_truncated is False
    assert result.was_cancelled is False
    assert result.timed_out is False
    assert result.is_success is True
    assert result.duration_s >= 0
    assert result.command == [sys.executable, "-u", "-c", "print('hello')"]


@pytest.mark.asyncio
async def test_non_zero_exit_is_returned_not_raised() -> None:
    executor = LocalExecutor()

    result = await executor.run(
        _python("import sys; sys.stderr.write('boom\\n'); sys.exit(3)")
    )

    assert result.exit_code == 3
    assert result.stderr == "boom\n"
    assert result.is_success is False


@pytest.mark.asyncio
async def test_large_output_keeps_only_the_tail() -> None:
    executor = LocalExecutor()
    code = (
        "import sys\n"
        "head = b'a' * (10_000_000 - 1024)\n"
        "sys.stdout.buffer.write(head)\n"
        "sys.stdout.buffer.write(b'z' * 1024)\n"
        "sys.stdout.flush()\n"
    )

    result = await executor.run(_python(code, capture_limit_bytes=1024, timeout_s=60))

    assert result.stdout_truncated is True
    assert result.stdout_bytes_total == 10_000_000
    assert result.stdout == "[output truncated: showing last 1024 of 10000000 bytes]\n" + "z" * 1024
    record = executor.load_last_diagnostics()
    assert record is not None
    assert record.stdout_bytes_captured == 1024
    assert record.stdout_bytes_total == 10_000_000
    assert record.capture_limit_bytes == 1024


@pytest.mark.asyncio
async def test_timeout_raises_and_kills_process() -> None:
    executor = LocalExecutor()
    code = "import os, time; print(os.getpid(), flush=True); time.sleep(10)"

    with pytest.raises(CommandTimeoutError) as exc_info:
        await executor.run(_python(code, timeout_s=1.0))

    result = exc_info.value.result
    assert result.timed_out is True
    assert result.duration_s < 9
    _assert_process_gone(int(result.stdout.strip()))
    record = executor.load_last_diagnostics()
    assert record is not None
    assert record.timed_out is True
    assert record.status_summary == "Timed out"


@pytest.mark.asyncio
async def test_cancel_event_returns_partial_output_and_kills_process() -> None:
    executor = LocalExecutor()
    code = "import os, time; print(os.getpid(), flush=True); time.sleep(30)"
    cancel_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.5, cancel_event.set)

    result = await executor.run(_python(code), cancel_event=cancel_event)

    assert result.was_cancelled is True
    assert result.timed_out is False
    assert result.is_success is False
    assert result.stdout.strip().isdigit()
    _assert_process_gone(int(result.stdout.strip()))
    record = executor.load_last_diagnostics()
    assert record is not None
    assert record.was_cancelled is True


@pytest.mark.asyncio
async def test_task_cancellation_records_diagnostics_and_reraises() -> None:
    executor = LocalExecutor()
    code = "import time; print('started', flush=True); time.sleep(30)"
    task = asyncio.create_task(executor.run(_python(code)))
    await asyncio.sleep(0.5)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    record = executor.load_last_diagnostics()
    assert record is not None
    assert record.was_cancelled is True
    assert record.stdout_bytes_total == len("started\n")
    assert executor.observability.metrics.counters["commands.cancelled"] == 1


@pytest.mark.asyncio
async def test_missing_executable_is_launch_failure(tmp_path: Path) -> None:
    diagnostics = InMemoryDiagnosticsStore()
    executor = LocalExecutor(diagnostics=diagnostics)
    missing = tmp_path / "does-not-exist"

    with pytest.raises(CommandLaunchError) as exc_info:
        await executor.run_command(missing, ["--version"])

    assert exc_info.value.reason
    assert exc_info.value.executable == str(missing)
    record = diagnostics.load_last()
    assert record is not None
    assert record.launch_error
    assert record.exit_code is None
    assert record.arguments == ["--version"]
    assert record.status_summary.startswith("Launch error:")
    assert executor.observability.metrics.counters["commands.launch_failed"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("arguments", "env"),
    [
        (("nul\0byte",), None),
        ((), {"BAD=NAME": "value"}),
    ],
)
async def test_invalid_launch_arguments_are_launch_failures(
    arguments: tuple[str, ...], env: dict[str, str] | None
) -> None:
    diagnostics = InMemoryDiagnosticsStore()
    executor = LocalExecutor(diagnostics=diagnostics)

    with pytest.raises(CommandLaunchError) as exc_info:
        await executor.run(CommandSpec(executable=sys.executable, arguments=arguments, env=env))

    assert exc_info.value.reason
    assert isinstance(exc_info.value.__cause__, ValueError)
    record = diagnostics.load_last()
    assert record is not None
    assert record.launch_error == exc_info.value.reason
    assert record.exit_code is None


@pytest.mark.asyncio
async def test_exit_is_not_delayed_by_grandchild_holding_pipes() -> None:
    executor = LocalExecutor(drain_timeout_s=0.2)
    code = (
        "import subprocess, sys\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(5)'])\n"
        "print('parent done')\n"
    )

    result = await asyncio.wait_for(executor.run(_python(code, timeout_s=10)), timeout=8)

    assert result.exit_code == 0
    assert result.stdout == "parent done\n"
    assert result.timed_out is False
    assert result.duration_s < 3


@pytest.mark.asyncio
async def test_environment_overrides_win_over_ambient(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CMDTAIL_AMBIENT", "ambient")
    monkeypatch.setenv("CMDTAIL_OVERRIDE", "old")
    executor = LocalExecutor()
    code = "import os; print(os.environ['CMDTAIL_AMBIENT'], os.environ['CMDTAIL_OVERRIDE'])"

    result = await executor.run(_python(code, env={"CMDTAIL_OVERRIDE": "new"}))

    assert result.stdout == "ambient new\n"


@pytest.mark.asyncio
async def test_runs_in_requested_working_directory(tmp_path: Path) -> None:
    executor = LocalExecutor()

    result = await executor.run(_python("import os; print(os.getcwd())", cwd=tmp_path))

    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_concurrent_invocations_do_not_share_output() -> None:
    executor = LocalExecutor()

    results = await asyncio.gather(
        *(executor.run(_python(f"print('run-{index}')")) for index in range(5))
    )

    assert [result.stdout for result in results] == [f"run-{index}\n" for index in range(5)]
    assert executor.observability.metrics.counters["commands.succeeded"] == 5


@pytest.mark.asyncio
async def test_every_outcome_overwrites_last_diagnostics(tmp_path: Path) -> None:
    executor = LocalExecutor()

    await executor.run(_python("print('first')"))
    first = executor.load_last_diagnostics()
    with pytest.raises(CommandLaunchError):
        await executor.run_command(tmp_path / "missing")
    second = executor.load_last_diagnostics()

    assert first is not None and first.exit_code == 0
    assert second is not None and second.launch_error is not None
    assert second.executable == str(tmp_path / "missing")


def test_command_spec_is_normalized_and_immutable() -> None:
    env = {"KEY": "value"}
    spec = CommandSpec(executable="tool", arguments=["a", "b"], env=env, capture_limit_bytes=-3)
    env["KEY"] = "changed"

    assert spec.arguments == ("a", "b")
    assert spec.env is not None and spec.env["KEY"] == "value"
    assert spec.capture_limit_bytes == 0
    with pytest.raises(TypeError):
        spec.env["KEY"] = "other"  # type: ignore[index]


def test_command_spec_rejects_empty_executable_and_negative_timeout() -> None:
    with pytest.raises(ValueError):
        CommandSpec(executable="  ")
    with pytest.raises(ValueError):
        CommandSpec(executable="tool", timeout_s=-1)


def test_merged_environment_keeps_ambient_variables() -> None:
    spec = CommandSpec(executable="true", env={"EXTRA_ENV": "yes"})

    merged_env = spec.merged_environment()

    assert merged_env["EXTRA_ENV"] == "yes"
    assert os.environ.items() <= merged_env.items()
