"""Tear down throwaway chains and temporary service state."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from ..definitions.models import (
    ChainType,
    OperationsSpec,
    RuntimeRequest,
    ServiceSpec,
    data_container_name,
    service_container_name,
)
from ..errors import ChainError, ErrorKind
from ..providers.docker import DockerError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .manager import ChainManager

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupReport:
    """What a cleanup run removed, and what it could not."""

    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def is_throwaway(manager: ChainManager, request: RuntimeRequest) -> bool:
    """Return ``True`` when the target chain is a throwaway chain."""
    if request.chain_type is ChainType.THROWAWAY:
        return True
    if not request.name or not manager.loader.chain_exists(request.name):
        return False
    try:
        return manager.loader.load_chain(request.name).chain_type is ChainType.THROWAWAY
    except ChainError as exc:
        LOGGER.debug("Could not read chain type of %s: %s", request.name, exc)
        return False


def cleanup(manager: ChainManager, request: RuntimeRequest) -> CleanupReport:
    """Remove throwaway chain state and, independently, temporary service state.

    The definition file of the default chain is shared and always kept; only
    its host data directory is removed.
    """
    request = replace(request, force=True)
    report = CleanupReport()
    config = manager.config

    if request.name and is_throwaway(manager, request):
        name = request.name
        LOGGER.debug("Destroying throwaway chain %s", name)
        try:
            manager.kill(replace(request, rm=True, rm_data=True, volumes=True))
            report.removed.append(f"chain {name}")
        except ChainError as exc:
            report.errors.append(str(exc))

        host_dir = config.data_dir / name
        LOGGER.debug("Removing latent dir %s", host_dir)
        shutil.rmtree(host_dir, ignore_errors=True)
        report.removed.append(str(host_dir))
        if name != config.default_chain:
            if manager.loader.remove_chain(name):
                report.removed.append(str(manager.loader.chain_path(name)))
    else:
        LOGGER.debug("No throwaway chain to destroy")

    if request.rm_data and request.service_name:
        service_dir = config.data_dir / request.service_name
        LOGGER.debug("Removing data dir %s", service_dir)
        shutil.rmtree(service_dir, ignore_errors=True)
        report.removed.append(str(service_dir))

    if request.rm and request.service_name:
        ops = OperationsSpec(
            container_name=service_container_name(request.service_name),
            data_container_name=data_container_name(request.service_name),
        )
        LOGGER.debug("Removing temporary service container %s", ops.container_name)
        try:
            manager.runtime.remove(
                ServiceSpec(name=request.service_name),
                ops,
                remove_data=True,
                remove_volumes=True,
                force=False,
            )
            report.removed.append(ops.container_name)
        except DockerError as exc:
            report.errors.append(str(exc))

    if report.errors:
        raise ChainError(
            ErrorKind.RUNTIME,
            f"cleanup finished with errors: {'; '.join(report.errors)}",
            hint="remove leftover containers with `docker rm -vf <container>`",
        )
    return report


__all__ = ["CleanupReport", "cleanup", "is_throwaway"]
