"""Shell-free subprocess runner with timeout and terminate-then-kill escalation."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import IO

from sf_org_source.executor.command import CommandSpec, ExecutionResult
from sf_org_source.executor.diagnostics import classify_cli_failure
from sf_org_source.executor.errors import CommandTimeout, NonZeroExit, SpawnFailure

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024
_READER_JOIN_SECONDS = 5.0

PopenFactory = Callable[..., subprocess.Popen[bytes]]


@dataclass(frozen=True, slots=True)
class _ProcessExited:
    returncode: int


@dataclass(frozen=True, slots=True)
class _ProcessTimedOut:
    timeout_seconds: float


_Outcome = _ProcessExited | _ProcessTimedOut


class CompletionLatch:
    """Holds the single outcome of one process; the first settle wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcome: _Outcome | None = None

    def settle(self, outcome: _Outcome) -> bool:
        """Record ``outcome`` unless already completed. Returns whether it was recorded."""

        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
            return True

    @property
    def completed(self) -> bool:
        with self._lock:
            return self._outcome is not None

    @property
    def outcome(self) -> _Outcome | None:
        with self._lock:
            return self._outcome


class SecureCommandExecutor:
    """The only code path that spawns external processes.

    Receives an already-validated ``CommandSpec``, spawns it with an argv list and
    no shell, drains stdout/stderr incrementally, and arms a watchdog for the
    command's timeout. Holds no state between calls.
    """

    def __init__(
        self,
        *,
        kill_grace_seconds: float = 5.0,
        popen: PopenFactory = subprocess.Popen,
        env: dict[str, str] | None = None,
    ) -> None:
        self._kill_grace_seconds = max(0.0, kill_grace_seconds)
        self._popen = popen
        self._env = env

    def run(self, spec: CommandSpec) -> ExecutionResult:
        logger.debug(
            "Executing %s (timeout=%.1fs, cwd=%s)",
            spec.describe(),
            spec.timeout_seconds,
            spec.working_directory,
        )
        try:
            process = self._popen(  # noqa: S603
                spec.argv,
                cwd=spec.working_directory,
                env=self._env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=False,
            )
        except FileNotFoundError as error:
            raise SpawnFailure(f"Command not found: {spec.program}") from error
        except OSError as error:
            raise SpawnFailure(f"Failed to execute command {spec.program}: {error}") from error

        return self._supervise(process, spec)

    def _supervise(self, process: subprocess.Popen[bytes], spec: CommandSpec) -> ExecutionResult:
        latch = CompletionLatch()
        stdout_buffer = bytearray()
        stderr_buffer = bytearray()
        readers = [
            _start_reader(process.stdout, stdout_buffer, name=f"{spec.program}-stdout"),
            _start_reader(process.stderr, stderr_buffer, name=f"{spec.program}-stderr"),
        ]

        watchdog = threading.Timer(
            spec.timeout_seconds,
            self._expire,
            kwargs={"process": process, "latch": latch, "spec": spec},
        )
        watchdog.daemon = True
        watchdog.start()
        try:
            returncode = process.wait()
            latch.settle(_ProcessExited(returncode=returncode))
        finally:
            watchdog.cancel()

        for reader in readers:
            if reader is None:
                continue
            reader.join(timeout=_READER_JOIN_SECONDS)
            if reader.is_alive():
                logger.warning("Output reader %s did not finish after process exit", reader.name)

        outcome = latch.outcome
        if isinstance(outcome, _ProcessTimedOut):
            raise CommandTimeout(
                f"Command timeout after {outcome.timeout_seconds:g}s: {spec.describe()}",
                timeout_seconds=outcome.timeout_seconds,
            )

        stdout = stdout_buffer.decode("utf-8", errors="replace")
        stderr = stderr_buffer.decode("utf-8", errors="replace")
        if returncode != 0:
            classification = classify_cli_failure(
                program=spec.program,
                stdout=stdout,
                stderr=stderr,
            )
            logger.debug(
                "%s exited with %s (%s)",
                spec.describe(),
                returncode,
                classification.reason_code,
            )
            raise NonZeroExit(
                f"Command failed with code {returncode}: {stderr.strip() or 'Unknown error'}",
                exit_code=returncode,
                stderr=stderr,
                classification=classification,
            )
        return ExecutionResult(stdout=stdout, stderr=stderr)

    def _expire(
        self,
        *,
        process: subprocess.Popen[bytes],
        latch: CompletionLatch,
        spec: CommandSpec,
    ) -> None:
        if not latch.settle(_ProcessTimedOut(timeout_seconds=spec.timeout_seconds)):
            return
        logger.warning(
            "%s exceeded %.1fs, terminating pid %s",
            spec.describe(),
            spec.timeout_seconds,
            process.pid,
        )
        _terminate_process(process, grace_seconds=self._kill_grace_seconds)


def _start_reader(
    stream: IO[bytes] | None,
    buffer: bytearray,
    *,
    name: str,
) -> threading.Thread | None:
    if stream is None:
        return None
    reader = threading.Thread(target=_drain, args=(stream, buffer), name=name, daemon=True)
    reader.start()
    return reader


def _drain(stream: IO[bytes], buffer: bytearray) -> None:
    try:
        while True:
            chunk = stream.read1(_READ_CHUNK_BYTES)  # type: ignore[attr-defined]
            if not chunk:
                break
            buffer.extend(chunk)
    except (OSError, ValueError):
        logger.debug("Output stream closed while reading", exc_info=True)
    finally:
        stream.close()


def _terminate_process(process: subprocess.Popen[bytes], *, grace_seconds: float) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning(
            "pid %s ignored SIGTERM for %.1fs, sending SIGKILL",
            process.pid,
            grace_seconds,
        )
        try:
            process.kill()
        except OSError:
            return
