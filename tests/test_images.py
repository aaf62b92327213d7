"""Tests for timeout-bounded image pulls."""
from __future__ import annotations

import threading

import pytest

from chainctl.errors import ChainError, ErrorKind
from chainctl.providers.images import ImagePuller


class FakeProcess:
    """Minimal ``Popen`` stand-in for ``docker pull``."""

    def __init__(self, lines: list[str], returncode: int = 0, *, hang: bool = False) -> None:
        self.stdout = [f"{line}\n" for line in lines]
        self.returncode = returncode
        self.hang = hang
        self.terminated = threading.Event()

    def wait(self) -> int:
        if self.hang:
            self.terminated.wait(timeout=5)
            return -15
        return self.returncode

    def poll(self) -> int | None:
        return None if not self.terminated.is_set() else -15

    def terminate(self) -> None:
        self.terminated.set()


class FakeDocker:
    """Hand out scripted processes per image reference."""

    def __init__(self, processes: dict[str, FakeProcess]) -> None:
        self.processes = processes
        self.pulled: list[str] = []

    def start_pull(self, reference: str) -> FakeProcess:
        self.pulled.append(reference)
        return self.processes[reference]


def _puller(docker: FakeDocker, **kwargs: object) -> ImagePuller:
    return ImagePuller(
        docker,  # type: ignore[arg-type]
        registry="quay.io",
        backup_registry="docker.io",
        **kwargs,  # type: ignore[arg-type]
    )


def test_candidates_order_and_dedupe() -> None:
    """The primary registry is tried before the backup, without duplicates."""
    puller = _puller(FakeDocker({}))
    assert puller.candidates("chainctl/node") == ["quay.io/chainctl/node", "docker.io/chainctl/node"]

    bare = ImagePuller(FakeDocker({}))  # type: ignore[arg-type]
    assert bare.candidates("chainctl/node") == ["chainctl/node"]


def test_primary_success_streams_progress() -> None:
    """A successful primary pull reports every progress line."""
    docker = FakeDocker({"quay.io/chainctl/node": FakeProcess(["layer 1", "done"])})
    lines: list[str] = []

    result = _puller(docker, progress=lines.append).pull("chainctl/node")

    assert result.reference == "quay.io/chainctl/node"
    assert docker.pulled == ["quay.io/chainctl/node"]
    assert lines == ["layer 1", "done"]


def test_progress_lines_survive_repeated_fast_pulls() -> None:
    """Progress is fully drained before ``pull`` returns, however quick the pull."""
    for attempt in range(20):
        docker = FakeDocker({"quay.io/chainctl/node": FakeProcess([f"pulled {attempt}"])})
        lines: list[str] = []

        _puller(docker, progress=lines.append).pull("chainctl/node")

        assert lines == [f"pulled {attempt}"]


def test_failed_pull_still_reports_progress() -> None:
    """Output from failing attempts is displayed before the error is raised."""
    docker = FakeDocker(
        {
            "quay.io/chainctl/node": FakeProcess(["denied"], returncode=1),
            "docker.io/chainctl/node": FakeProcess(["not found"], returncode=1),
        }
    )
    lines: list[str] = []

    with pytest.raises(ChainError):
        _puller(docker, progress=lines.append).pull("chainctl/node")

    assert lines == ["denied", "not found"]


def test_backup_registry_fallback() -> None:
    """A failed primary pull falls back to the backup registry."""
    docker = FakeDocker(
        {
            "quay.io/chainctl/node": FakeProcess(["denied"], returncode=1),
            "docker.io/chainctl/node": FakeProcess(["ok"]),
        }
    )

    result = _puller(docker).pull("chainctl/node")

    assert result.reference == "docker.io/chainctl/node"
    assert docker.pulled == ["quay.io/chainctl/node", "docker.io/chainctl/node"]


def test_both_registries_failing_is_runtime_error() -> None:
    """When every reference fails the pull is a runtime error."""
    docker = FakeDocker(
        {
            "quay.io/chainctl/node": FakeProcess([], returncode=1),
            "docker.io/chainctl/node": FakeProcess([], returncode=1),
        }
    )

    with pytest.raises(ChainError) as excinfo:
        _puller(docker).pull("chainctl/node")

    assert excinfo.value.kind is ErrorKind.RUNTIME
    assert "quay.io/chainctl/node (exit 1)" in str(excinfo.value)


def test_timeout_terminates_pull() -> None:
    """A pull past the ceiling fails with a timeout and the client is terminated."""
    hanging = FakeProcess(["waiting"], hang=True)
    docker = FakeDocker({"quay.io/chainctl/node": hanging})

    with pytest.raises(ChainError) as excinfo:
        _puller(docker, timeout=0.05).pull("chainctl/node")

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert excinfo.value.hint
    assert hanging.terminated.wait(timeout=5)
