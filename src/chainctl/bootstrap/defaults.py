"""First-run initialisation: directory layout, default services and images.

``initialize`` is safe to re-run. Directories that exist are left alone,
service definitions that already exist are never overwritten, and images are
pulled again only when requested.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..config import AppConfig
from ..definitions.loader import DefinitionLoader
from ..definitions.models import OperationsSpec, ServiceDefinition, ServiceSpec, service_container_name
from ..providers.images import ImagePuller, PullResult
from .filesystem import apply_directory_plan, layout, plan_directories

LOGGER = logging.getLogger(__name__)

KEYS_IMAGE = "chainctl/keys:latest"
LOGROTATE_IMAGE = "chainctl/logrotate:latest"


def default_services() -> list[ServiceDefinition]:
    """Return the service definitions written by ``chainctl init``."""
    return [
        ServiceDefinition(
            name="keys",
            service=ServiceSpec(
                name="keys",
                image=KEYS_IMAGE,
                ports=["4767"],
                user="chain",
            ),
            operations=OperationsSpec(container_name=service_container_name("keys")),
        ),
        ServiceDefinition(
            name="logrotate",
            service=ServiceSpec(
                name="logrotate",
                image=LOGROTATE_IMAGE,
                environment=["LOGROTATE_FILESIZE=10M", "LOGROTATE_COPIES=5"],
            ),
            operations=OperationsSpec(container_name=service_container_name("logrotate")),
        ),
    ]


@dataclass(slots=True)
class InitReport:
    """What ``initialize`` created, kept and pulled."""

    created_dirs: list[Path] = field(default_factory=list)
    written_services: list[str] = field(default_factory=list)
    kept_services: list[str] = field(default_factory=list)
    pulled: list[PullResult] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Return the number of changes made."""
        return len(self.created_dirs) + len(self.written_services) + len(self.pulled)


def initialize(
    config: AppConfig,
    loader: DefinitionLoader,
    puller: ImagePuller | None = None,
    *,
    pull: bool = True,
    on_pull: Callable[[int, int, str], None] | None = None,
) -> InitReport:
    """Create the layout, drop default services and pull the default images.

    A pull that fails or times out raises :class:`~chainctl.errors.ChainError`
    and stops initialisation; everything done before it is kept.
    """
    report = InitReport()
    report.created_dirs = apply_directory_plan(plan_directories(layout(config)))

    for definition in default_services():
        if loader.write_service(definition):
            report.written_services.append(definition.name)
        else:
            LOGGER.debug("Service definition %s already exists", definition.name)
            report.kept_services.append(definition.name)

    if pull and puller is not None:
        total = len(config.images)
        for index, image in enumerate(config.images, start=1):
            if on_pull is not None:
                on_pull(index, total, image)
            LOGGER.info("Pulling image %d out of %d: %s", index, total, image)
            report.pulled.append(puller.pull(image))
    return report


__all__ = ["InitReport", "default_services", "initialize"]
