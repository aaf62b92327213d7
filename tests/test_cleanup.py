"""Tests for throwaway and temporary service cleanup."""
from __future__ import annotations

import pytest

from chainctl.chains import ChainManager, cleanup
from chainctl.chains.cleanup import is_throwaway
from chainctl.config import AppConfig
from chainctl.definitions import ChainType, DefinitionLoader, RuntimeRequest
from chainctl.errors import ChainError, ErrorKind

from .conftest import FakeDocker


def _throwaway(loader: DefinitionLoader, docker: FakeDocker, app_config: AppConfig, name: str) -> None:
    definition = loader.mock_chain(name, name)
    definition.chain_type = ChainType.THROWAWAY
    loader.write_chain(definition)
    docker.containers[definition.operations.container_name] = True
    docker.volumes.add(definition.operations.data_container_name)
    (app_config.data_dir / name).mkdir(parents=True)


def test_throwaway_chain_is_destroyed(
    manager: ChainManager,
    docker: FakeDocker,
    loader: DefinitionLoader,
    app_config: AppConfig,
) -> None:
    """Container, volume, host data and definition file of a throwaway are removed."""
    _throwaway(loader, docker, app_config, "test_0123abcd")

    report = cleanup(manager, RuntimeRequest(name="test_0123abcd"))

    assert docker.containers == {}
    assert docker.volumes == set()
    assert ("stop", "chainctl_chain_test_0123abcd_1", 0) in docker.calls
    assert not (app_config.data_dir / "test_0123abcd").exists()
    assert not loader.chain_exists("test_0123abcd")
    assert str(loader.chain_path("test_0123abcd")) in report.removed


def test_default_chain_definition_survives(
    manager: ChainManager,
    docker: FakeDocker,
    loader: DefinitionLoader,
    app_config: AppConfig,
) -> None:
    """Cleaning up the default chain removes its data but keeps its definition."""
    _throwaway(loader, docker, app_config, "default")

    cleanup(manager, RuntimeRequest(name="default"))

    assert loader.chain_exists("default")
    assert not (app_config.data_dir / "default").exists()
    assert docker.containers == {}


def test_standard_chain_is_left_alone(
    manager: ChainManager,
    docker: FakeDocker,
    loader: DefinitionLoader,
    app_config: AppConfig,
) -> None:
    """A standard chain is not destroyed by cleanup."""
    definition = loader.mock_chain("keeper", "keeper")
    loader.write_chain(definition)
    docker.containers[definition.operations.container_name] = True

    report = cleanup(manager, RuntimeRequest(name="keeper"))

    assert report.removed == []
    assert loader.chain_exists("keeper")
    assert docker.containers[definition.operations.container_name] is True


def test_request_chain_type_marks_throwaway(manager: ChainManager, loader: DefinitionLoader) -> None:
    """The request's chain type or the stored definition identifies a throwaway."""
    loader.write_chain(loader.mock_chain("plain", "plain"))

    assert is_throwaway(manager, RuntimeRequest(name="plain")) is False
    assert is_throwaway(manager, RuntimeRequest(name="plain", chain_type=ChainType.THROWAWAY))
    assert is_throwaway(manager, RuntimeRequest(name="absent")) is False


def test_service_data_and_container_removed_independently(
    manager: ChainManager,
    docker: FakeDocker,
    app_config: AppConfig,
) -> None:
    """Service cleanup runs without any throwaway chain involved."""
    service_dir = app_config.data_dir / "tmpsvc"
    service_dir.mkdir(parents=True)
    docker.containers["chainctl_service_tmpsvc_1"] = False

    report = cleanup(manager, RuntimeRequest(name="", service_name="tmpsvc", rm=True, rm_data=True))

    assert not service_dir.exists()
    assert ("remove", "chainctl_service_tmpsvc_1", True, True, False) in docker.calls
    assert "chainctl_service_tmpsvc_1" in report.removed


def test_errors_are_collected(
    manager: ChainManager,
    docker: FakeDocker,
    loader: DefinitionLoader,
    app_config: AppConfig,
) -> None:
    """Runtime failures are reported after the remaining cleanup ran."""
    _throwaway(loader, docker, app_config, "test_deadbeef")
    docker.fail("stop")

    with pytest.raises(ChainError) as excinfo:
        cleanup(manager, RuntimeRequest(name="test_deadbeef"))

    assert excinfo.value.kind is ErrorKind.RUNTIME
    assert "stop failed" in excinfo.value.message
    assert not loader.chain_exists("test_deadbeef")
    assert not (app_config.data_dir / "test_deadbeef").exists()
