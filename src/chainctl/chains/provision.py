"""Provisioning pipeline for new chains.

Provisioning turns a bare chain name (plus optional source directory, genesis,
config and validator files) into a running chain container with its own data
volume. The steps run strictly in order::

    INIT -> DATA_VOLUME_ENSURED -> FILES_STAGED -> FILES_IMPORTED
         -> DEFINITION_PERSISTED -> CONFIG_INJECTED -> DEPENDENCIES_BOOTED
         -> CONTAINER_RUNNING -> KEYS_IMPORTED -> OWNERSHIP_FIXED -> DONE

Once the data volume exists a rollback is armed. Any failure before the chain
container is running removes the container and the volume (forced) and the
caller receives the original error, combined with the rollback error when the
rollback fails too. Failures while importing keys or fixing ownership are
reported as exec errors and leave the running chain in place.
"""
from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ..definitions.loader import git_maintainer
from ..definitions.models import (
    ChainDefinition,
    CommandMode,
    OperationsSpec,
    RuntimeRequest,
    ServiceSpec,
    chain_container_name,
    data_container_name,
)
from ..errors import ChainError, ErrorKind
from ..providers.docker import DockerError
from .dependencies import boot_dependencies
from .materialize import materialize

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..logging import OperationScope
    from .manager import ChainManager

LOGGER = logging.getLogger(__name__)

GENESIS_FILE = "genesis.json"
CONFIG_FILE = "config.toml"
PRIV_VALIDATOR_FILE = "priv_validator.json"
KEY_IMPORT_COMMAND = ("mintkey", "chain")


class ProvisionState(str, Enum):
    """Steps of the provisioning pipeline, in execution order."""

    INIT = "init"
    DATA_VOLUME_ENSURED = "data_volume_ensured"
    FILES_STAGED = "files_staged"
    FILES_IMPORTED = "files_imported"
    DEFINITION_PERSISTED = "definition_persisted"
    CONFIG_INJECTED = "config_injected"
    DEPENDENCIES_BOOTED = "dependencies_booted"
    CONTAINER_RUNNING = "container_running"
    KEYS_IMPORTED = "keys_imported"
    OWNERSHIP_FIXED = "ownership_fixed"
    DONE = "done"
    ERROR_ROLLBACK = "error_rollback"


@dataclass(slots=True)
class ProvisionResult:
    """Summary of a successful provisioning run."""

    name: str
    chain_id: str
    container: str
    source: Path | None
    definition_written: bool
    states: list[ProvisionState] = field(default_factory=list)


class ProvisioningPipeline:
    """Run the provisioning steps for a single chain."""

    def __init__(self, manager: ChainManager, *, scope: OperationScope | None = None) -> None:
        """Bind the pipeline to *manager* and an optional logging scope."""
        self.manager = manager
        self.config = manager.config
        self.loader = manager.loader
        self.runtime = manager.runtime
        self.scope = scope
        self.state = ProvisionState.INIT
        self.history: list[ProvisionState] = [ProvisionState.INIT]

    # ------------------------------------------------------------------
    def run(self, request: RuntimeRequest, mode: CommandMode = CommandMode.NEW) -> ProvisionResult:
        """Provision ``request.name``, rolling back on failure."""
        if not mode.provisioning:
            raise ValueError(f"{mode!r} is not a provisioning mode")
        name = request.name
        if not name:
            raise ChainError(ErrorKind.VALIDATION, "no chain name", hint="provide a chain name")

        source = self.resolve_source(request)
        chain_id = self.resolve_chain_id(request, source)
        target = f"{self.config.container_root}/chains/{chain_id}"
        data_ops = self.loader.data_operations(name)

        self._ensure_volume(data_ops, target)

        written = False
        try:
            staging = self._stage_files(request, source, target)
            self._advance(ProvisionState.FILES_STAGED, str(staging))

            self.runtime.import_data(data_ops, staging, target)
            self._advance(ProvisionState.FILES_IMPORTED, target)

            definition, written = self._persist_definition(request, chain_id)
            self._advance(
                ProvisionState.DEFINITION_PERSISTED,
                "written" if written else "kept existing definition",
            )

            runtime_config = materialize(
                definition,
                request,
                mode,
                gateway=self.manager.gateway_for(request),
            )
            self._advance(ProvisionState.CONFIG_INJECTED, runtime_config.service.command)

            started = boot_dependencies(
                definition,
                request,
                loader=self.loader,
                runtime=self.runtime,
            )
            self._advance(ProvisionState.DEPENDENCIES_BOOTED, ", ".join(started))

            self.runtime.run_service(runtime_config.service, runtime_config.operations)
            self._advance(
                ProvisionState.CONTAINER_RUNNING,
                runtime_config.operations.container_name,
            )
        except Exception as exc:
            raise self._rollback(name, exc) from exc

        # The chain is up from here on; failures are reported without rollback.
        key_path = f"{target}/{PRIV_VALIDATOR_FILE}"
        self._exec_setup(name, (*KEY_IMPORT_COMMAND, key_path), "importing keys")
        self._advance(ProvisionState.KEYS_IMPORTED, key_path)

        self._exec_setup(
            name,
            ("chown", "--recursive", self.config.run_user, self.config.container_root),
            "changing owner",
        )
        self._advance(ProvisionState.OWNERSHIP_FIXED, self.config.run_user)

        self._advance(ProvisionState.DONE)
        return ProvisionResult(
            name=name,
            chain_id=chain_id,
            container=chain_container_name(name),
            source=source,
            definition_written=written,
            states=list(self.history),
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def resolve_source(self, request: RuntimeRequest) -> Path | None:
        """Return the directory whose contents seed the chain, if any.

        An explicit path that is not a directory is looked up under the chains
        directory. Without a path, genesis file or config options the default
        chain directory is used.
        """
        if request.path:
            candidate = Path(request.path).expanduser()
            if candidate.is_dir():
                return candidate
            LOGGER.info("Path %s is not a directory; trying %s", candidate, self.config.chains_dir)
            fallback = self.config.chains_dir / request.path
            if fallback.is_dir():
                return fallback
            raise ChainError(
                ErrorKind.NOT_FOUND,
                f"chain source directory '{request.path}' does not exist",
                hint=f"pass an existing directory or one under {self.config.chains_dir}",
            )
        if not request.genesis_file and not request.config_opts:
            default_dir = self.config.default_chain_dir
            if not default_dir.is_dir():
                raise ChainError(
                    ErrorKind.NOT_FOUND,
                    f"default chain directory {default_dir} does not exist",
                    hint="run `chainctl init` or pass a genesis file or chain directory",
                )
            return default_dir
        return None

    def resolve_chain_id(self, request: RuntimeRequest, source: Path | None) -> str:
        """Return the chain id: explicit, read from genesis, or the chain name."""
        if request.chain_id:
            return request.chain_id
        genesis = self._genesis_path(request, source)
        if genesis is not None:
            try:
                data = json.loads(genesis.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                LOGGER.debug("Could not read chain id from %s: %s", genesis, exc)
            else:
                chain_id = data.get("chain_id") if isinstance(data, dict) else None
                if isinstance(chain_id, str) and chain_id:
                    return chain_id
        return request.name

    @staticmethod
    def _genesis_path(request: RuntimeRequest, source: Path | None) -> Path | None:
        if request.genesis_file:
            return Path(request.genesis_file).expanduser()
        if source is not None:
            candidate = source / GENESIS_FILE
            if candidate.is_file():
                return candidate
        return None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _ensure_volume(self, data_ops: OperationsSpec, target: str) -> None:
        volume = data_ops.data_container_name
        try:
            if self.runtime.volume_exists(volume):
                LOGGER.debug("Data volume %s already exists", volume)
            else:
                self.runtime.create_data(data_ops)
                self.runtime.exec_data(data_ops, ["mkdir", "-p", target])
        except DockerError as exc:
            raise ChainError(
                ErrorKind.RUNTIME,
                f"could not create data volume {volume}",
                cause=exc,
                hint=f"check that the {self.config.docker.data_image} image is available",
            ) from exc
        self._advance(ProvisionState.DATA_VOLUME_ENSURED, volume)

    def _stage_files(self, request: RuntimeRequest, source: Path | None, target: str) -> Path:
        staging = self.config.data_dir / request.name / target.lstrip("/")
        staging.mkdir(parents=True, exist_ok=True, mode=0o700)
        copies = [
            (source, ""),
            (request.genesis_file, GENESIS_FILE),
            (request.config_file, CONFIG_FILE),
            (request.priv_validator, PRIV_VALIDATOR_FILE),
        ]
        LOGGER.info("Copying chain files into %s", staging)
        for origin, destination in copies:
            if not origin:
                continue
            _copy(Path(origin).expanduser(), staging / destination if destination else staging)
        return staging

    def _persist_definition(
        self, request: RuntimeRequest, chain_id: str
    ) -> tuple[ChainDefinition, bool]:
        name = request.name
        draft = self.loader.mock_chain(name, chain_id)
        draft.chain_type = request.chain_type
        try:
            draft.maintainer = git_maintainer()
        except (OSError, RuntimeError) as exc:
            LOGGER.debug("Maintainer information unavailable: %s", exc)
        written = self.loader.write_chain(draft)
        # Later steps operate on the persisted definition, not on the draft.
        return self.loader.load_chain(name), written

    def _exec_setup(self, name: str, args: tuple[str, ...], action: str) -> None:
        request = RuntimeRequest(name=name, args=args)
        try:
            output = self.manager.exec(request)
        except (ChainError, DockerError) as exc:
            output = getattr(exc, "output", "") or getattr(exc.__cause__, "output", "")
            if output:
                LOGGER.error(output)
            self._record(action, "error", str(exc))
            raise ChainError(
                ErrorKind.EXEC,
                f"error executing chain command while {action} for '{name}'",
                cause=exc,
                hint="the chain container is running; fix the problem and retry the command",
            ) from exc
        LOGGER.debug("%s: %s", action, output.strip())

    def _rollback(self, name: str, error: BaseException) -> ChainError:
        failed_at = self.state
        self._advance(ProvisionState.ERROR_ROLLBACK, f"after {failed_at.value}: {error}")
        LOGGER.warning("Error setting up chain %s; removing partially created state", name)
        ops = OperationsSpec(
            container_name=chain_container_name(name),
            data_container_name=data_container_name(name),
        )
        try:
            self.runtime.remove(
                ServiceSpec(name=name),
                ops,
                remove_data=True,
                remove_volumes=True,
                force=True,
            )
        except (DockerError, ChainError) as rollback_error:
            return ChainError.combine(error, rollback_error)
        if isinstance(error, ChainError):
            return error
        return ChainError(
            ErrorKind.SETUP,
            f"error setting up chain '{name}' at step {failed_at.value}",
            cause=error,
        )

    # ------------------------------------------------------------------
    def _advance(self, state: ProvisionState, detail: str = "") -> None:
        self.state = state
        self.history.append(state)
        LOGGER.debug("Provisioning %s", state.value)
        status = "error" if state is ProvisionState.ERROR_ROLLBACK else "success"
        self._record(state.value, status, detail)

    def _record(self, name: str, status: str, detail: str) -> None:
        if self.scope is not None:
            self.scope.add_step(f"provision.{name}", status=status, detail=detail)


def _copy(source: Path, destination: Path) -> None:
    LOGGER.debug("Copying %s to %s", source, destination)
    if source.is_dir():
        shutil.copytree(source, destination, dirs_exist_ok=True)
    else:
        shutil.copy2(source, destination)


__all__ = ["ProvisionResult", "ProvisionState", "ProvisioningPipeline"]
