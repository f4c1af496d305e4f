from __future__ import annotations

import subprocess
import time

import allure
import pytest

from sf_org_source.config import SecurityPolicy
from sf_org_source.executor.command import CommandSpec
from sf_org_source.executor.diagnostics import CliFailureKind
from sf_org_source.executor.errors import CommandTimeout, NonZeroExit, SpawnFailure
from sf_org_source.executor.runner import (
    CompletionLatch,
    SecureCommandExecutor,
    _ProcessExited,
    _ProcessTimedOut,
)

pytestmark = [
    allure.epic("Secure Executor"),
    allure.feature("Process Supervision"),
]


def _spec(timeout_seconds: float = 5.0, **overrides) -> CommandSpec:
    values = {
        "program": "sf",
        "subcommand_path": ("org", "list"),
        "arguments": ("--json",),
        "timeout_seconds": timeout_seconds,
        "policy": SecurityPolicy(),
    }
    values.update(overrides)
    return CommandSpec(**values)


def test_completion_latch_first_settle_wins() -> None:
    latch = CompletionLatch()
    assert not latch.completed

    assert latch.settle(_ProcessExited(returncode=0)) is True
    assert latch.settle(_ProcessTimedOut(timeout_seconds=1.0)) is False

    assert latch.completed
    assert latch.outcome == _ProcessExited(returncode=0)


def test_run_spawns_argv_without_shell(recording_popen, make_process) -> None:
    recording_popen.processes.append(make_process(stdout=b'{"status": 0}', stderr=b"warn"))
    executor = SecureCommandExecutor(popen=recording_popen)

    result = executor.run(_spec())

    assert result.stdout == '{"status": 0}'
    assert result.stderr == "warn"
    assert len(recording_popen.calls) == 1
    call = recording_popen.calls[0]
    assert call.argv == ["sf", "org", "list", "--json"]
    assert call.kwargs["shell"] is False
    assert call.kwargs["stdin"] == subprocess.DEVNULL
    assert call.kwargs["stdout"] == subprocess.PIPE
    assert call.kwargs["stderr"] == subprocess.PIPE


def test_invalid_output_bytes_are_replaced(recording_popen, make_process) -> None:
    recording_popen.processes.append(make_process(stdout=b"ok \xff"))
    result = SecureCommandExecutor(popen=recording_popen).run(_spec())
    assert result.stdout == "ok \ufffd"


def test_non_zero_exit_carries_code_stderr_and_classification(
    recording_popen,
    make_process,
) -> None:
    recording_popen.processes.append(
        make_process(
            returncode=1,
            stderr=b"Error (1): No authorization information found for dev\n",
        ),
    )

    with pytest.raises(NonZeroExit) as excinfo:
        SecureCommandExecutor(popen=recording_popen).run(_spec())

    error = excinfo.value
    assert error.exit_code == 1
    assert "No authorization information found" in error.stderr
    assert str(error).startswith("Command failed with code 1: Error (1)")
    assert error.classification is not None
    assert error.classification.kind == CliFailureKind.ORG_NOT_FOUND


def test_non_zero_exit_without_stderr_reports_unknown_error(recording_popen, make_process) -> None:
    recording_popen.processes.append(make_process(returncode=2))

    with pytest.raises(NonZeroExit, match="Command failed with code 2: Unknown error"):
        SecureCommandExecutor(popen=recording_popen).run(_spec())


def test_missing_binary_is_spawn_failure(recording_popen) -> None:
    recording_popen.processes.append(FileNotFoundError(2, "No such file"))

    with pytest.raises(SpawnFailure, match="Command not found: sf"):
        SecureCommandExecutor(popen=recording_popen).run(_spec())


def test_os_error_on_spawn_is_spawn_failure(recording_popen) -> None:
    recording_popen.processes.append(PermissionError(13, "Permission denied"))

    with pytest.raises(SpawnFailure, match="Failed to execute command sf"):
        SecureCommandExecutor(popen=recording_popen).run(_spec())


def test_timeout_terminates_process(recording_popen, make_process) -> None:
    process = make_process(hang=True)
    recording_popen.processes.append(process)

    with pytest.raises(CommandTimeout, match="Command timeout after 0.05s: sf org list") as excinfo:
        SecureCommandExecutor(popen=recording_popen, kill_grace_seconds=1.0).run(
            _spec(timeout_seconds=0.05),
        )

    assert excinfo.value.timeout_seconds == pytest.approx(0.05)
    assert process.terminated is True
    assert process.killed is False


def test_timeout_escalates_to_kill_when_terminate_is_ignored(
    recording_popen,
    make_process,
) -> None:
    process = make_process(hang=True, ignore_terminate=True)
    recording_popen.processes.append(process)

    with pytest.raises(CommandTimeout):
        SecureCommandExecutor(popen=recording_popen, kill_grace_seconds=0.05).run(
            _spec(timeout_seconds=0.05),
        )

    assert process.terminated is True
    assert process.killed is True


class _FiresOnCancelTimer:
    """Watchdog that only fires once the process has already been reaped."""

    def __init__(self, interval, function, kwargs=None) -> None:
        self.function = function
        self.kwargs = kwargs or {}
        self.daemon = False

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        self.function(**self.kwargs)


def test_watchdog_firing_after_exit_does_not_report_timeout(
    recording_popen,
    make_process,
    monkeypatch,
) -> None:
    process = make_process(stdout=b"ok")
    recording_popen.processes.append(process)
    monkeypatch.setattr("sf_org_source.executor.runner.threading.Timer", _FiresOnCancelTimer)

    result = SecureCommandExecutor(popen=recording_popen).run(_spec())

    assert result.stdout == "ok"
    assert process.terminated is False


def test_real_process_output_is_captured(fake_sf) -> None:
    result = SecureCommandExecutor().run(_spec())

    assert '"status": 0' in result.stdout
    assert fake_sf.calls()[0]["args"] == ["org", "list", "--json"]


def test_real_process_failure_is_reported(fake_sf, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_SF_FAIL", "ERROR: getaddrinfo ENOTFOUND login.salesforce.com")

    with pytest.raises(NonZeroExit) as excinfo:
        SecureCommandExecutor().run(_spec())

    assert excinfo.value.exit_code == 1
    assert excinfo.value.classification.kind == CliFailureKind.NETWORK


def test_real_process_timeout_is_terminated(fake_sf, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_SF_SLEEP", "10")

    started = time.monotonic()
    with pytest.raises(CommandTimeout):
        SecureCommandExecutor(kill_grace_seconds=1.0).run(_spec(timeout_seconds=0.5))

    assert time.monotonic() - started < 5.0


def test_real_process_runs_in_working_directory(fake_sf, tmp_path) -> None:
    workdir = tmp_path / "cache" / "org-dev"
    workdir.mkdir(parents=True)
    policy = SecurityPolicy().with_allowed_roots(tmp_path / "cache")

    SecureCommandExecutor().run(_spec(policy=policy, working_directory=workdir))

    assert fake_sf.calls()[0]["cwd"] == str(workdir.resolve())
