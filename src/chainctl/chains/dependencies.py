"""Boot the services and check the chains a definition depends on."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import ChainError, ErrorKind
from ..providers.docker import DockerError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..definitions.loader import DefinitionLoader
    from ..definitions.models import ChainDefinition, RuntimeRequest
    from ..providers.docker import DockerProvider

LOGGER = logging.getLogger(__name__)

LOGROTATE_SERVICE = "logrotate"


def service_dependencies(definition: ChainDefinition, request: RuntimeRequest) -> list[str]:
    """Return the services to boot for *definition*, in declaration order."""
    services = list(definition.dependencies.services)
    if request.logrotate and LOGROTATE_SERVICE not in services:
        services.append(LOGROTATE_SERVICE)
    return services


def boot_dependencies(
    definition: ChainDefinition,
    request: RuntimeRequest,
    *,
    loader: DefinitionLoader,
    runtime: DockerProvider,
) -> list[str]:
    """Ensure every declared dependency of *definition* is running.

    Services that are not running are started from their stored definition.
    Chains are only checked: a stopped chain dependency is an error. The first
    failure aborts the remaining dependencies. Returns the services started.
    """
    started: list[str] = []
    for name in service_dependencies(definition, request):
        try:
            service = loader.load_service(name)
            container = service.operations.container_name
            if runtime.is_running(container):
                LOGGER.debug("Service %s is already running", name)
                continue
            LOGGER.info("Starting service dependency %s", name)
            runtime.run_service(service.service, service.operations)
        except (ChainError, DockerError) as exc:
            raise ChainError(
                ErrorKind.DEPENDENCY,
                f"could not start service dependency '{name}' of chain '{definition.name}'",
                cause=exc,
                hint=f"check the service definition at {loader.service_path(name)}",
            ) from exc
        started.append(name)

    for name in definition.dependencies.chains:
        try:
            dependency = loader.load_chain(name)
            running = runtime.is_running(dependency.operations.container_name)
        except (ChainError, DockerError) as exc:
            raise ChainError(
                ErrorKind.DEPENDENCY,
                f"chain '{definition.name}' depends on chain '{name}', which could not be found",
                cause=exc,
            ) from exc
        if not running:
            raise ChainError(
                ErrorKind.DEPENDENCY,
                f"chain '{definition.name}' depends on chain '{name}', which is not running",
                hint=f"start it first with `chainctl chains start {name}`",
            )
    return started


__all__ = ["LOGROTATE_SERVICE", "boot_dependencies", "service_dependencies"]
