"""Lifecycle operations for chains.

:class:`ChainManager` is the single entry point used by the CLI. It owns the
resolved configuration, the definition loader and the container runtime, and
never caches whether a container is running: every check asks the runtime.
"""
from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from ..config import AppConfig
from ..definitions.loader import DefinitionLoader
from ..definitions.models import (
    CatKind,
    ChainDefinition,
    ChainStatus,
    ChainType,
    CommandMode,
    OperationsSpec,
    RuntimeConfig,
    RuntimeRequest,
    ServiceSpec,
    chain_container_name,
    data_container_name,
)
from ..errors import ChainError, ErrorKind
from ..providers.docker import DockerError, DockerProvider
from .dependencies import boot_dependencies
from .materialize import materialize
from .provision import ProvisioningPipeline, ProvisionResult

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..logging import OperationScope

LOGGER = logging.getLogger(__name__)

THROWAWAY_SUFFIX_LENGTH = 8
NODE_INFO_ADDRESS = "http://chain:46657"


@dataclass(slots=True)
class CheckoutResult:
    """Outcome of ``checkout``."""

    previous: str
    current: str

    @property
    def changed(self) -> bool:
        """Return ``True`` when the checked-out chain changed."""
        return self.previous != self.current


class ChainManager:
    """Create, start, exec against, stop and remove chains."""

    def __init__(self, config: AppConfig, loader: DefinitionLoader, runtime: DockerProvider) -> None:
        """Bind the manager to its configuration, loader and runtime."""
        self.config = config
        self.loader = loader
        self.runtime = runtime

    def gateway_for(self, request: RuntimeRequest) -> str:
        """Return the node address advertised to a chain container."""
        return request.gateway if request.gateway is not None else self.config.gateway

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    def new(
        self,
        request: RuntimeRequest,
        *,
        mode: CommandMode = CommandMode.NEW,
        scope: OperationScope | None = None,
    ) -> ProvisionResult:
        """Provision a new chain, replacing any host-side data for its name."""
        if request.name:
            host_dir = self.config.data_dir / request.name
            if host_dir.exists():
                LOGGER.warning("Overwriting existing chain data in %s", host_dir)
                try:
                    shutil.rmtree(host_dir)
                except OSError as exc:
                    raise ChainError(
                        ErrorKind.SETUP,
                        f"could not remove existing chain data {host_dir}",
                        cause=exc,
                    ) from exc
        pipeline = ProvisioningPipeline(self, scope=scope)
        return pipeline.run(request, mode)

    def throwaway(self, request: RuntimeRequest, *, scope: OperationScope | None = None) -> str:
        """Provision and start a uniquely named disposable chain, returning its name."""
        name = f"{request.name}_{uuid.uuid4().hex[:THROWAWAY_SUFFIX_LENGTH]}"
        throwaway = replace(
            request,
            name=name,
            chain_id=name,
            chain_type=ChainType.THROWAWAY,
            path=str(self.config.default_chain_dir),
        )
        LOGGER.debug("Making throwaway chain %s from %s", name, throwaway.path)
        self.new(throwaway, scope=scope)
        self.start(replace(throwaway, run=True))
        LOGGER.debug("Throwaway chain %s started", name)
        return name

    # ------------------------------------------------------------------
    # Running chains
    # ------------------------------------------------------------------
    def start(self, request: RuntimeRequest) -> RuntimeConfig:
        """Boot dependencies and run the chain container."""
        definition = self._load_named(request.name)
        runtime_config = self._prepare(definition, request, CommandMode.START)
        LOGGER.info("Starting chain %s", definition.name)
        try:
            self.runtime.run_service(runtime_config.service, runtime_config.operations)
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not start chain '{definition.name}'",
                cause=exc,
            ) from exc
        return runtime_config

    def exec(self, request: RuntimeRequest) -> str:
        """Run a one-off command alongside the chain and return its output."""
        definition = self._load_named(request.name)
        runtime_config = self._prepare(definition, request, CommandMode.EXEC)
        LOGGER.debug("Executing %s against chain %s", list(request.args), definition.name)
        try:
            return self.runtime.exec_service(runtime_config.service, runtime_config.operations)
        except DockerError as exc:
            raise ChainError(
                ErrorKind.EXEC,
                f"error executing command against chain '{definition.name}'",
                cause=exc,
            ) from exc

    def kill(self, request: RuntimeRequest) -> bool:
        """Stop the chain container; returns ``False`` when it was not running."""
        definition = self._load_or_derive(request.name)
        timeout = 0 if request.force else request.timeout
        ops = definition.operations
        stopped = False
        try:
            if self.runtime.is_running(ops.container_name):
                LOGGER.info("Stopping chain %s", definition.name)
                self.runtime.stop(definition.service, ops, timeout)
                stopped = True
            else:
                LOGGER.info("Chain %s is not running; skipping", definition.name)
            if request.rm:
                self.runtime.remove(
                    definition.service,
                    ops,
                    request.rm_data,
                    request.volumes,
                    request.force,
                )
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not stop chain '{definition.name}'",
                cause=exc,
            ) from exc
        return stopped

    def remove(self, request: RuntimeRequest) -> None:
        """Remove the chain container (and optionally data); absent state is fine."""
        definition = self._load_or_derive(request.name)
        try:
            self.runtime.remove(
                definition.service,
                definition.operations,
                request.rm_data,
                request.volumes,
                request.force,
            )
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not remove chain '{definition.name}'",
                cause=exc,
            ) from exc
        if request.rm_host_dir:
            host_dir = self.config.data_dir / request.name
            LOGGER.warning("Removing directory %s", host_dir)
            shutil.rmtree(host_dir, ignore_errors=True)

    def update(self, request: RuntimeRequest) -> None:
        """Rebuild the chain container with the caller's environment and links."""
        definition = self._load_named(request.name)
        service = definition.service
        try:
            if self.runtime.is_running(definition.operations.container_name):
                service.environment = [f"CHAIN_ID={request.name}", *request.env]
                service.links = [*service.links, *request.links]
                service.command = CommandMode.START.value
            self.runtime.rebuild(
                service,
                definition.operations,
                pull=request.pull,
                timeout=request.timeout,
            )
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not update chain '{definition.name}'",
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    def cat(self, name: str, kind: CatKind) -> str:
        """Return the requested document for chain *name*."""
        if kind is CatKind.DEFINITION:
            path = self.loader.chain_path(name)
            if not path.exists():
                raise ChainError(ErrorKind.NOT_FOUND, f"no chain definition found for '{name}'")
            return path.read_text(encoding="utf-8")

        definition = self._load_named(name)
        root = f"{self.config.container_root}/chains/{definition.chain_id}"
        if kind is CatKind.GENESIS:
            args: tuple[str, ...] = ("cat", f"{root}/genesis.json")
        elif kind is CatKind.CONFIG:
            args = ("cat", f"{root}/config.toml")
        elif kind is CatKind.STATUS:
            args = ("mintinfo", "--node-addr", NODE_INFO_ADDRESS, "status")
        elif kind is CatKind.VALIDATORS:
            args = ("mintinfo", "--node-addr", NODE_INFO_ADDRESS, "validators")
        else:  # pragma: no cover - exhaustive over CatKind
            raise ValueError(f"Unhandled cat kind {kind!r}")
        return self.exec(RuntimeRequest(name=name, args=args, publish_all_ports=True))

    def logs(self, name: str, *, follow: bool = False, tail: str = "150") -> str:
        """Return the chain container logs (streamed to the terminal when following)."""
        definition = self._load_named(name)
        try:
            return self.runtime.logs(definition.service, definition.operations, follow=follow, tail=tail)
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not read logs for chain '{name}'",
                cause=exc,
            ) from exc

    def ports(self, name: str) -> str:
        """Return the published ports of the chain container (empty when absent)."""
        definition = self._load_named(name)
        container = definition.operations.container_name
        try:
            if not self.runtime.exists(container):
                return ""
            return self.runtime.port_mappings(container)
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not read port mappings for chain '{name}'",
                cause=exc,
            ) from exc

    def inspect(self, name: str, field: str = "all") -> str:
        """Return *field* (or everything) from the chain container's inspect data.

        Nothing is returned when the container does not exist.
        """
        definition = self._load_or_derive(name)
        container = definition.operations.container_name
        try:
            if not self.runtime.exists(container):
                LOGGER.info("Chain container %s does not exist", container)
                return ""
            return self.runtime.inspect(container, field)
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not inspect chain '{name}'",
                cause=exc,
                hint="field paths look like State.Status or Config.Image",
            ) from exc

    def list_chains(self) -> list[ChainStatus]:
        """Return every known chain with its current container state."""
        statuses: list[ChainStatus] = []
        for name in self.loader.list_chains():
            try:
                definition = self.loader.load_chain(name)
            except ChainError as exc:
                LOGGER.warning("Skipping chain %s: %s", name, exc)
                continue
            container = definition.operations.container_name or chain_container_name(
                name, definition.operations.container_number
            )
            try:
                running = self.runtime.is_running(container)
                exists = self.runtime.exists(container)
            except DockerError as exc:
                raise ChainError(ErrorKind.RUNTIME, "could not list chain containers", cause=exc) from exc
            statuses.append(
                ChainStatus(
                    name=name,
                    chain_id=definition.chain_id,
                    running=running,
                    exists=exists,
                    definition_path=self.loader.chain_path(name),
                )
            )
        return statuses

    def checkout(self, name: str) -> CheckoutResult:
        """Make *name* the checked-out chain; an empty name clears it."""
        previous = self.loader.get_head()
        if name and name == previous:
            return CheckoutResult(previous=previous, current=previous)
        self.loader.set_head(name)
        return CheckoutResult(previous=previous, current=name)

    def current(self) -> str:
        """Return the checked-out chain name (empty when none)."""
        return self.loader.get_head()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _load_named(self, name: str) -> ChainDefinition:
        definition = self.loader.load_chain(name)
        if not definition.name:
            raise ChainError(
                ErrorKind.VALIDATION,
                "no chain name",
                hint=f"provide a chain name in the definition file {self.loader.chain_path(name)}",
            )
        return definition

    def _load_or_derive(self, name: str) -> ChainDefinition:
        try:
            return self._load_named(name)
        except ChainError as exc:
            if exc.kind is not ErrorKind.NOT_FOUND:
                raise
        LOGGER.debug("No definition for chain %s; using derived container names", name)
        return ChainDefinition(
            name=name,
            service=ServiceSpec(name=name),
            operations=OperationsSpec(
                container_name=chain_container_name(name),
                data_container_name=data_container_name(name),
            ),
        )

    def _prepare(
        self,
        definition: ChainDefinition,
        request: RuntimeRequest,
        mode: CommandMode,
    ) -> RuntimeConfig:
        runtime_config = materialize(definition, request, mode, gateway=self.gateway_for(request))
        boot_dependencies(definition, request, loader=self.loader, runtime=self.runtime)
        return runtime_config


__all__ = ["ChainManager", "CheckoutResult", "NODE_INFO_ADDRESS"]
