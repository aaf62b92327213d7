"""Helpers for reading and writing chain and service definition files.

Definitions live as YAML files under the chains and services directories
(``~/.chainctl/chains/<name>.yml`` by default). Chain definition files are
write-once: provisioning never overwrites a definition that already exists so
hand edits survive re-provisioning. Writes are atomic.
"""
from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage chain definitions. Install with `pip install chainctl`."
    ) from exc

from ..errors import ChainError, ErrorKind
from .models import (
    ChainDefinition,
    Maintainer,
    OperationsSpec,
    ServiceDefinition,
    ServiceSpec,
    chain_container_name,
    data_container_name,
    service_container_name,
)

LOGGER = logging.getLogger(__name__)

DEFINITION_SUFFIX = ".yml"
HEAD_FILE = "HEAD"


@dataclass(frozen=True)
class DefinitionLoader:
    """Resolve chain and service names to definitions stored on disk."""

    chains_dir: Path
    services_dir: Path
    chain_image: str = "chainctl/node:latest"

    def __post_init__(self) -> None:
        """Normalise directory paths after initialisation."""
        object.__setattr__(self, "chains_dir", self.chains_dir.expanduser())
        object.__setattr__(self, "services_dir", self.services_dir.expanduser())

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    def chain_path(self, name: str) -> Path:
        """Return the definition file path for chain *name*."""
        return self.chains_dir / f"{name}{DEFINITION_SUFFIX}"

    def service_path(self, name: str) -> Path:
        """Return the definition file path for service *name*."""
        return self.services_dir / f"{name}{DEFINITION_SUFFIX}"

    def chain_exists(self, name: str) -> bool:
        """Return ``True`` when a definition file exists for *name*."""
        return self.chain_path(name).exists()

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------
    def load_chain(self, name: str) -> ChainDefinition:
        """Load the chain definition for *name*."""
        path = self.chain_path(name)
        raw = self._read(path, kind="chain", name=name)
        try:
            definition = ChainDefinition.from_mapping(raw)
        except ValueError as exc:
            raise ChainError(ErrorKind.VALIDATION, f"invalid chain definition {path}", cause=exc) from exc
        if not definition.name:
            # An empty name is reported by callers as a distinct error.
            return definition
        _fill_chain_names(definition)
        return definition

    def mock_chain(self, name: str, chain_id: str) -> ChainDefinition:
        """Return a draft definition for first-time provisioning of *name*."""
        definition = ChainDefinition(
            name=name,
            chain_id=chain_id or name,
            service=ServiceSpec(name=name, image=self.chain_image),
        )
        _fill_chain_names(definition)
        return definition

    def write_chain(self, definition: ChainDefinition, *, overwrite: bool = False) -> bool:
        """Persist *definition*, returning ``False`` when an existing file was kept."""
        path = self.chain_path(definition.name)
        if path.exists() and not overwrite:
            LOGGER.debug("Definition %s already exists; leaving it untouched", path)
            return False
        self._write(path, definition.to_dict())
        return True

    def remove_chain(self, name: str) -> bool:
        """Delete the definition file for *name*; ``False`` when it was absent."""
        path = self.chain_path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def list_chains(self) -> list[str]:
        """Return the names of all chains with a definition file."""
        if not self.chains_dir.exists():
            return []
        return sorted(
            path.stem for path in self.chains_dir.glob(f"*{DEFINITION_SUFFIX}") if path.is_file()
        )

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------
    def load_service(self, name: str) -> ServiceDefinition:
        """Load the service definition for *name*."""
        path = self.service_path(name)
        raw = self._read(path, kind="service", name=name)
        try:
            definition = ServiceDefinition.from_mapping(raw)
        except ValueError as exc:
            raise ChainError(ErrorKind.VALIDATION, f"invalid service definition {path}", cause=exc) from exc
        if not definition.name:
            definition.name = name
        if not definition.service.name:
            definition.service.name = definition.name
        if not definition.operations.container_name:
            definition.operations.container_name = service_container_name(
                definition.name, definition.operations.container_number
            )
        return definition

    def write_service(self, definition: ServiceDefinition, *, overwrite: bool = False) -> bool:
        """Persist a service definition unless one already exists."""
        path = self.service_path(definition.name)
        if path.exists() and not overwrite:
            return False
        self._write(path, definition.to_dict())
        return True

    def data_operations(self, name: str) -> OperationsSpec:
        """Return operations addressing the data volume of chain *name*."""
        return OperationsSpec(
            container_name=data_container_name(name),
            data_container_name=data_container_name(name),
        )

    # ------------------------------------------------------------------
    # Checked-out chain
    # ------------------------------------------------------------------
    @property
    def head_path(self) -> Path:
        """Return the file recording the checked-out chain."""
        return self.chains_dir / HEAD_FILE

    def get_head(self) -> str:
        """Return the checked-out chain name (empty when none)."""
        try:
            return self.head_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""

    def set_head(self, name: str) -> None:
        """Record *name* as the checked-out chain; blank clears it."""
        self.chains_dir.mkdir(parents=True, exist_ok=True)
        self.head_path.write_text(f"{name}\n" if name else "", encoding="utf-8")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _read(self, path: Path, *, kind: str, name: str) -> Mapping[str, object]:
        if not path.exists():
            raise ChainError(
                ErrorKind.NOT_FOUND,
                f"no {kind} definition found for '{name}'",
                hint=f"expected a definition file at {path}",
            )
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ChainError(
                ErrorKind.VALIDATION,
                f"failed to parse {kind} definition {path}",
                cause=exc,
                hint="check that the definition file is properly formatted",
            ) from exc
        if not isinstance(data, Mapping):
            raise ChainError(
                ErrorKind.VALIDATION,
                f"{kind} definition {path} must contain a mapping at the top level",
            )
        return data

    def _write(self, path: Path, payload: Mapping[str, object]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o644)
        finally:
            tmp_path.unlink(missing_ok=True)


def git_maintainer(git_bin: str = "git") -> Maintainer:
    """Return the maintainer recorded in the host's git configuration."""
    values: list[str] = []
    for key in ("user.name", "user.email"):
        result = subprocess.run(  # noqa: S603
            [git_bin, "config", "--get", key],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            raise RuntimeError(f"git config {key} is not set")
        values.append(result.stdout.strip())
    return Maintainer(name=values[0], email=values[1])


def _fill_chain_names(definition: ChainDefinition) -> None:
    number = definition.operations.container_number
    if not definition.service.name:
        definition.service.name = definition.name
    if not definition.operations.container_name:
        definition.operations.container_name = chain_container_name(definition.name, number)
    if not definition.operations.data_container_name:
        definition.operations.data_container_name = data_container_name(definition.name, number)


__all__ = ["DefinitionLoader", "git_maintainer"]
