"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest

from chainctl.chains import ChainManager
from chainctl.config import AppConfig, load_config
from chainctl.definitions import (
    DefinitionLoader,
    Maintainer,
    OperationsSpec,
    ServiceDefinition,
    ServiceSpec,
    service_container_name,
)
from chainctl.providers.docker import DockerError


class FakeDocker:
    """In-memory stand-in for :class:`chainctl.providers.docker.DockerProvider`.

    Containers map to their running state; volumes are a set of names. Every
    call is recorded in ``calls``. ``fail(method)`` makes the next and every
    following call of *method* raise; ``fail("exec_service:chown")`` only
    fails exec calls whose command starts with ``chown``.
    """

    def __init__(self) -> None:
        self.containers: dict[str, bool] = {}
        self.volumes: set[str] = set()
        self.calls: list[tuple[object, ...]] = []
        self.failures: dict[str, Exception] = {}
        self.runs: list[tuple[ServiceSpec, OperationsSpec]] = []
        self.execs: list[tuple[ServiceSpec, OperationsSpec]] = []
        self.imported: dict[str, list[str]] = {}
        self.exec_output = "ok\n"

    def fail(self, method: str, exc: Exception | None = None) -> None:
        self.failures[method] = exc or DockerError(f"{method} failed", output="boom")

    def _call(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        exc = self.failures.get(method)
        if exc is not None:
            raise exc

    def methods(self) -> list[str]:
        return [str(call[0]) for call in self.calls]

    # queries ----------------------------------------------------------
    def is_running(self, container: str) -> bool:
        self._call("is_running", container)
        return self.containers.get(container, False)

    def exists(self, container: str) -> bool:
        self._call("exists", container)
        return container in self.containers

    def volume_exists(self, volume: str) -> bool:
        self._call("volume_exists", volume)
        return volume in self.volumes

    def port_mappings(self, container: str) -> str:
        self._call("port_mappings", container)
        return "46657/tcp -> 0.0.0.0:32768\n"

    def inspect(self, container: str, field: str = "all") -> str:
        self._call("inspect", container, field)
        return "running\n" if field != "all" else '[{"State": {"Status": "running"}}]\n'

    def logs(self, service: ServiceSpec, ops: OperationsSpec, *, follow: bool, tail: str) -> str:
        self._call("logs", ops.container_name, follow, tail)
        return "node started\n"

    # data volumes -----------------------------------------------------
    def create_data(self, ops: OperationsSpec) -> None:
        self._call("create_data", ops.data_container_name)
        self.volumes.add(ops.data_container_name)

    def exec_data(self, ops: OperationsSpec, args: list[str]) -> str:
        self._call("exec_data", ops.data_container_name, list(args))
        return ""

    def import_data(self, ops: OperationsSpec, source: Path, destination: str) -> None:
        self._call("import_data", ops.data_container_name, source, destination)
        self.imported[destination] = sorted(
            str(path.relative_to(source)) for path in source.rglob("*") if path.is_file()
        )

    # containers -------------------------------------------------------
    def run_service(self, service: ServiceSpec, ops: OperationsSpec) -> None:
        self._call("run_service", ops.container_name)
        self.runs.append((copy.deepcopy(service), copy.deepcopy(ops)))
        self.containers[ops.container_name] = True

    def exec_service(self, service: ServiceSpec, ops: OperationsSpec) -> str:
        self.calls.append(("exec_service", list(ops.args)))
        if ops.args:
            keyed = self.failures.get(f"exec_service:{ops.args[0]}")
            if keyed is not None:
                raise keyed
        exc = self.failures.get("exec_service")
        if exc is not None:
            raise exc
        self.execs.append((copy.deepcopy(service), copy.deepcopy(ops)))
        return self.exec_output

    def stop(self, service: ServiceSpec, ops: OperationsSpec, timeout: int) -> None:
        self._call("stop", ops.container_name, timeout)
        if ops.container_name in self.containers:
            self.containers[ops.container_name] = False

    def remove(
        self,
        service: ServiceSpec,
        ops: OperationsSpec,
        remove_data: bool,
        remove_volumes: bool,
        force: bool,
    ) -> None:
        self._call("remove", ops.container_name, remove_data, remove_volumes, force)
        self.containers.pop(ops.container_name, None)
        if remove_data:
            self.volumes.discard(ops.data_container_name)

    def rebuild(self, service: ServiceSpec, ops: OperationsSpec, *, pull: bool, timeout: int) -> None:
        self._call("rebuild", ops.container_name, pull, timeout)
        self.runs.append((copy.deepcopy(service), copy.deepcopy(ops)))
        self.containers[ops.container_name] = True


@pytest.fixture(autouse=True)
def _fixed_maintainer(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep provisioning independent of the host's git configuration."""
    monkeypatch.setattr(
        "chainctl.chains.provision.git_maintainer",
        lambda: Maintainer(name="Test Maintainer", email="test@example.com"),
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted in the temporary directory."""
    return load_config(
        tmp_path / "missing-config.yml",
        env={},
        overrides={"root_dir": str(tmp_path / "chainctl")},
    )


@pytest.fixture
def loader(app_config: AppConfig) -> DefinitionLoader:
    """Return a definition loader for the temporary layout."""
    return DefinitionLoader(
        app_config.chains_dir,
        app_config.services_dir,
        chain_image=app_config.chain_image,
    )


@pytest.fixture
def docker() -> FakeDocker:
    """Return a fresh in-memory container runtime."""
    return FakeDocker()


@pytest.fixture
def manager(app_config: AppConfig, loader: DefinitionLoader, docker: FakeDocker) -> ChainManager:
    """Return a chain manager wired to the fake runtime."""
    return ChainManager(app_config, loader, docker)  # type: ignore[arg-type]


@pytest.fixture
def default_chain_dir(app_config: AppConfig) -> Path:
    """Create the default chain template directory."""
    directory = app_config.default_chain_dir
    directory.mkdir(parents=True)
    (directory / "config.toml").write_text('moniker = "default"\n', encoding="utf-8")
    (directory / "priv_validator.json").write_text(json.dumps({"address": "ABCD"}), encoding="utf-8")
    return directory


@pytest.fixture
def keys_service(loader: DefinitionLoader) -> ServiceDefinition:
    """Write and return a ``keys`` service definition."""
    definition = ServiceDefinition(
        name="keys",
        service=ServiceSpec(name="keys", image="chainctl/keys:latest"),
        operations=OperationsSpec(container_name=service_container_name("keys")),
    )
    loader.write_service(definition)
    return definition
