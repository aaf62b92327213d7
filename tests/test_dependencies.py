"""Tests for booting chain dependencies."""
from __future__ import annotations

import pytest

from chainctl.chains.dependencies import boot_dependencies, service_dependencies
from chainctl.definitions import (
    ChainDefinition,
    DefinitionLoader,
    DependencySpec,
    OperationsSpec,
    RuntimeRequest,
    ServiceDefinition,
    ServiceSpec,
    service_container_name,
)
from chainctl.errors import ChainError, ErrorKind

from .conftest import FakeDocker


def _write_service(loader: DefinitionLoader, name: str) -> None:
    loader.write_service(
        ServiceDefinition(
            name=name,
            service=ServiceSpec(name=name, image=f"chainctl/{name}:latest"),
            operations=OperationsSpec(container_name=service_container_name(name)),
        )
    )


def _chain(services: list[str] | None = None, chains: list[str] | None = None) -> ChainDefinition:
    return ChainDefinition(
        name="mychain",
        dependencies=DependencySpec(services=services or [], chains=chains or []),
    )


def test_stopped_service_is_started(loader: DefinitionLoader, docker: FakeDocker) -> None:
    """A declared service that is not running is started from its definition."""
    _write_service(loader, "keys")

    started = boot_dependencies(
        _chain(services=["keys"]),
        RuntimeRequest(name="mychain"),
        loader=loader,
        runtime=docker,  # type: ignore[arg-type]
    )

    assert started == ["keys"]
    assert docker.containers[service_container_name("keys")] is True
    assert docker.runs[0][0].image == "chainctl/keys:latest"


def test_running_service_is_left_alone(loader: DefinitionLoader, docker: FakeDocker) -> None:
    """Running services are not started again."""
    _write_service(loader, "keys")
    docker.containers[service_container_name("keys")] = True

    started = boot_dependencies(
        _chain(services=["keys"]),
        RuntimeRequest(name="mychain"),
        loader=loader,
        runtime=docker,  # type: ignore[arg-type]
    )

    assert started == []
    assert "run_service" not in docker.methods()


def test_logrotate_is_appended_once() -> None:
    """Requesting logrotate never lists it twice."""
    request = RuntimeRequest(name="mychain", logrotate=True)

    assert service_dependencies(_chain(services=["keys"]), request) == ["keys", "logrotate"]
    assert service_dependencies(_chain(services=["logrotate"]), request) == ["logrotate"]
    assert service_dependencies(_chain(services=["keys"]), RuntimeRequest(name="x")) == ["keys"]


def test_logrotate_declared_and_requested_starts_once(
    loader: DefinitionLoader,
    docker: FakeDocker,
) -> None:
    """A declared logrotate plus the logrotate flag starts a single container."""
    _write_service(loader, "logrotate")

    boot_dependencies(
        _chain(services=["logrotate"]),
        RuntimeRequest(name="mychain", logrotate=True),
        loader=loader,
        runtime=docker,  # type: ignore[arg-type]
    )

    assert docker.methods().count("run_service") == 1


def test_service_failure_aborts_remaining(loader: DefinitionLoader, docker: FakeDocker) -> None:
    """The first failing service stops the boot; later services are not started."""
    _write_service(loader, "ipfs")

    with pytest.raises(ChainError) as excinfo:
        boot_dependencies(
            _chain(services=["missing", "ipfs"]),
            RuntimeRequest(name="mychain"),
            loader=loader,
            runtime=docker,  # type: ignore[arg-type]
        )

    assert excinfo.value.kind is ErrorKind.DEPENDENCY
    assert "missing" in excinfo.value.message
    assert "run_service" not in docker.methods()


def test_service_start_error_is_dependency_error(
    loader: DefinitionLoader,
    docker: FakeDocker,
) -> None:
    """Runtime failures while starting a service surface as dependency errors."""
    _write_service(loader, "keys")
    docker.fail("run_service")

    with pytest.raises(ChainError) as excinfo:
        boot_dependencies(
            _chain(services=["keys"]),
            RuntimeRequest(name="mychain"),
            loader=loader,
            runtime=docker,  # type: ignore[arg-type]
        )

    assert excinfo.value.kind is ErrorKind.DEPENDENCY
    assert "run_service failed" in str(excinfo.value)


def test_stopped_chain_dependency_fails(loader: DefinitionLoader, docker: FakeDocker) -> None:
    """Chain dependencies are never started; a stopped one names both chains."""
    loader.write_chain(loader.mock_chain("parent", "parent"))

    with pytest.raises(ChainError) as excinfo:
        boot_dependencies(
            _chain(chains=["parent"]),
            RuntimeRequest(name="mychain"),
            loader=loader,
            runtime=docker,  # type: ignore[arg-type]
        )

    assert excinfo.value.kind is ErrorKind.DEPENDENCY
    assert "'mychain'" in excinfo.value.message
    assert "'parent'" in excinfo.value.message
    assert "run_service" not in docker.methods()


def test_missing_chain_dependency_fails(loader: DefinitionLoader, docker: FakeDocker) -> None:
    """A chain dependency without a definition is a dependency error."""
    with pytest.raises(ChainError) as excinfo:
        boot_dependencies(
            _chain(chains=["ghost"]),
            RuntimeRequest(name="mychain"),
            loader=loader,
            runtime=docker,  # type: ignore[arg-type]
        )

    assert excinfo.value.kind is ErrorKind.DEPENDENCY
    assert isinstance(excinfo.value.cause, ChainError)
    assert excinfo.value.cause.kind is ErrorKind.NOT_FOUND


def test_running_chain_dependency_passes(loader: DefinitionLoader, docker: FakeDocker) -> None:
    """A running chain dependency satisfies the check."""
    parent = loader.mock_chain("parent", "parent")
    loader.write_chain(parent)
    docker.containers[parent.operations.container_name] = True

    assert boot_dependencies(
        _chain(chains=["parent"]),
        RuntimeRequest(name="mychain"),
        loader=loader,
        runtime=docker,  # type: ignore[arg-type]
    ) == []


@pytest.mark.parametrize("services", [["keys"], ["missing"]])
def test_request_name_unchanged(
    loader: DefinitionLoader,
    docker: FakeDocker,
    services: list[str],
) -> None:
    """The request's target name is the same after success and after failure."""
    _write_service(loader, "keys")
    request = RuntimeRequest(name="mychain")

    try:
        boot_dependencies(
            _chain(services=services),
            request,
            loader=loader,
            runtime=docker,  # type: ignore[arg-type]
        )
    except ChainError:
        pass

    assert request.name == "mychain"
