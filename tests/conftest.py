"""Shared test fixtures."""

from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest

_FAKE_SF_SOURCE = """
import json
import os
import sys
import time
from pathlib import Path

args = sys.argv[1:]
log_path = os.environ.get("FAKE_SF_LOG")
if log_path:
    with open(log_path, "a", encoding="utf-8") as handle:
        record = {"program": Path(sys.argv[0]).name, "args": args, "cwd": os.getcwd()}
        handle.write(json.dumps(record) + "\\n")

if args == ["--version"]:
    print("@salesforce/cli/2.30.8 linux-x64 node-v20.11.1")
    sys.exit(0)

delay = float(os.environ.get("FAKE_SF_SLEEP", "0"))
if delay:
    time.sleep(delay)

failure = os.environ.get("FAKE_SF_FAIL")
if failure:
    sys.stderr.write(failure + "\\n")
    sys.exit(1)

if args[:3] == ["project", "retrieve", "start"]:
    manifest = Path(args[args.index("--manifest") + 1])
    if not manifest.is_file():
        sys.stderr.write("package.xml not found\\n")
        sys.exit(1)
    classes = Path("force-app", "main", "default", "classes")
    classes.mkdir(parents=True, exist_ok=True)
    (classes / "Foo.cls").write_text("public class Foo {}\\n", encoding="utf-8")
    (classes / "Foo.cls-meta.xml").write_text("<ApexClass/>\\n", encoding="utf-8")

print(json.dumps({"status": 0, "result": {"args": args}}))
"""


class FakeProcess:
    """In-memory stand-in for ``subprocess.Popen`` driven by a threading event."""

    def __init__(
        self,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        hang: bool = False,
        ignore_terminate: bool = False,
    ) -> None:
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self.pid = 4242
        self.returncode: int | None = None if hang else returncode
        self.ignore_terminate = ignore_terminate
        self.terminated = False
        self.killed = False
        self._exited = threading.Event()
        if not hang:
            self._exited.set()

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("fake", timeout)
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_terminate:
            self.returncode = -15
            self._exited.set()

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9
        self._exited.set()


@dataclass(slots=True)
class PopenCall:
    argv: list[str]
    kwargs: dict


@dataclass(slots=True)
class RecordingPopen:
    """Popen factory that records every spawn and hands out queued fake processes."""

    processes: list[FakeProcess | BaseException] = field(default_factory=list)
    calls: list[PopenCall] = field(default_factory=list)

    def __call__(self, argv, **kwargs):
        self.calls.append(PopenCall(argv=list(argv), kwargs=kwargs))
        outcome = self.processes.pop(0) if self.processes else FakeProcess()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@dataclass(slots=True)
class FakeSfInstall:
    bin_dir: Path
    log_path: Path

    def install(self, name: str = "sf") -> Path:
        script = self.bin_dir / name
        script.write_text(f"#!{sys.executable}\n{_FAKE_SF_SOURCE}", "utf-8")
        script.chmod(0o755)
        return script

    def calls(self) -> list[dict]:
        if not self.log_path.exists():
            return []
        return [
            json.loads(line)
            for line in self.log_path.read_text("utf-8").splitlines()
            if line.strip()
        ]


@pytest.fixture()
def recording_popen() -> RecordingPopen:
    return RecordingPopen()


@pytest.fixture()
def fake_sf(tmp_path, monkeypatch) -> FakeSfInstall:
    """Put a scripted ``sf`` executable first on PATH and log its invocations."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    fake = FakeSfInstall(bin_dir=bin_dir, log_path=tmp_path / "sf-calls.jsonl")
    fake.install("sf")
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_SF_LOG", str(fake.log_path))
    monkeypatch.delenv("FAKE_SF_FAIL", raising=False)
    monkeypatch.delenv("FAKE_SF_SLEEP", raising=False)
    return fake


@pytest.fixture()
def isolated_env(monkeypatch, tmp_path) -> Path:
    """Clear SF_ORG_SOURCE_* variables and point the cache root at a temp dir."""

    for name in list(os.environ):
        if name.startswith("SF_ORG_SOURCE_"):
            monkeypatch.delenv(name, raising=False)
    cache_root = tmp_path / "cache"
    monkeypatch.setenv("SF_ORG_SOURCE_CACHE_ROOT", str(cache_root))
    return cache_root


@pytest.fixture()
def make_process():
    return FakeProcess
