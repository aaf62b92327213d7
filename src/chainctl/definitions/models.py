"""Data model for chain and service definitions and per-call requests."""
from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

CONTAINER_PREFIX = "chainctl"


class ChainType(str, Enum):
    """Lifetime class of a chain instance."""

    STANDARD = "standard"
    THROWAWAY = "throwaway"

    @classmethod
    def parse(cls, value: object) -> ChainType:
        """Return the member for *value*, defaulting to ``STANDARD``."""
        if isinstance(value, ChainType):
            return value
        text = str(value or "").strip().lower()
        if not text:
            return cls.STANDARD
        try:
            return cls(text)
        except ValueError as exc:
            allowed = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown chain type '{value}'. Allowed: {allowed}.") from exc


class CatKind(str, Enum):
    """What ``cat`` should display for a chain."""

    GENESIS = "genesis"
    CONFIG = "config"
    STATUS = "status"
    VALIDATORS = "validators"
    DEFINITION = "definition"


class CommandMode(str, Enum):
    """Which container command a materialised configuration should carry."""

    NEW = "new"
    INSTALL = "install"
    START = "start"
    EXEC = ""

    @property
    def provisioning(self) -> bool:
        """Return ``True`` for the modes used while provisioning a chain."""
        return self in (CommandMode.NEW, CommandMode.INSTALL)


def container_name(kind: str, name: str, number: int = 1) -> str:
    """Return the runtime container name for *name* of the given *kind*."""
    return f"{CONTAINER_PREFIX}_{kind}_{name}_{number}"


def chain_container_name(name: str, number: int = 1) -> str:
    """Return the container name of a chain's node container."""
    return container_name("chain", name, number)


def data_container_name(name: str, number: int = 1) -> str:
    """Return the name of the data volume owned by chain *name*."""
    return container_name("data", name, number)


def service_container_name(name: str, number: int = 1) -> str:
    """Return the container name of a service."""
    return container_name("service", name, number)


@dataclass(slots=True)
class ServiceSpec:
    """Image, command and environment for a container."""

    name: str = ""
    image: str = ""
    command: str = ""
    entrypoint: str = ""
    environment: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    ports: list[str] = field(default_factory=list)
    user: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "image": self.image,
            "command": self.command,
            "entrypoint": self.entrypoint,
            "environment": list(self.environment),
            "links": list(self.links),
            "ports": list(self.ports),
            "user": self.user,
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> ServiceSpec:
        """Build a spec from a parsed definition mapping."""
        data = raw or {}
        return cls(
            name=str(data.get("name") or ""),
            image=str(data.get("image") or ""),
            command=str(data.get("command") or ""),
            entrypoint=str(data.get("entrypoint") or ""),
            environment=_string_list(data.get("environment")),
            links=_string_list(data.get("links")),
            ports=_string_list(data.get("ports")),
            user=str(data.get("user") or ""),
        )


@dataclass(slots=True)
class OperationsSpec:
    """Runtime naming and invocation details for a container."""

    container_name: str = ""
    data_container_name: str = ""
    container_number: int = 1
    args: list[str] = field(default_factory=list)
    interactive: bool = False
    publish_all_ports: bool = False
    ports: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "container_name": self.container_name,
            "data_container_name": self.data_container_name,
            "container_number": self.container_number,
            "publish_all_ports": self.publish_all_ports,
            "ports": list(self.ports),
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> OperationsSpec:
        """Build operations from a parsed definition mapping."""
        data = raw or {}
        raw_number = data.get("container_number")
        if raw_number is None:
            raw_number = 1
        try:
            number = int(raw_number)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"container_number must be an integer, got {raw_number!r}") from exc
        if number < 1:
            raise ValueError(f"container_number must be positive, got {number}")
        return cls(
            container_name=str(data.get("container_name") or ""),
            data_container_name=str(data.get("data_container_name") or ""),
            container_number=number,
            publish_all_ports=bool(data.get("publish_all_ports", False)),
            ports=_string_list(data.get("ports")),
        )


@dataclass(slots=True)
class DependencySpec:
    """Services and chains that must be live before a chain starts."""

    services: list[str] = field(default_factory=list)
    chains: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"services": list(self.services), "chains": list(self.chains)}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> DependencySpec:
        """Build dependencies from a parsed definition mapping."""
        data = raw or {}
        return cls(
            services=_string_list(data.get("services")),
            chains=_string_list(data.get("chains")),
        )


@dataclass(slots=True)
class Maintainer:
    """Descriptive owner metadata stored alongside a definition."""

    name: str = ""
    email: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "email": self.email}


@dataclass(slots=True)
class ChainDefinition:
    """Persisted declarative description of a chain."""

    name: str
    chain_id: str = ""
    chain_type: ChainType = ChainType.STANDARD
    service: ServiceSpec = field(default_factory=ServiceSpec)
    operations: OperationsSpec = field(default_factory=OperationsSpec)
    dependencies: DependencySpec = field(default_factory=DependencySpec)
    maintainer: Maintainer = field(default_factory=Maintainer)

    def __post_init__(self) -> None:
        """Default the chain id to the chain name."""
        if not self.chain_id:
            self.chain_id = self.name

    def copy(self) -> ChainDefinition:
        """Return a deep copy that callers may modify freely."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, object]:
        """Return the representation written to the definition file."""
        return {
            "name": self.name,
            "chain_id": self.chain_id,
            "chain_type": self.chain_type.value,
            "service": self.service.to_dict(),
            "operations": self.operations.to_dict(),
            "dependencies": self.dependencies.to_dict(),
            "maintainer": self.maintainer.to_dict(),
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ChainDefinition:
        """Build a definition from a parsed definition file."""
        maintainer = raw.get("maintainer") or {}
        return cls(
            name=str(raw.get("name") or ""),
            chain_id=str(raw.get("chain_id") or ""),
            chain_type=ChainType.parse(raw.get("chain_type")),
            service=ServiceSpec.from_mapping(_mapping(raw.get("service"))),
            operations=OperationsSpec.from_mapping(_mapping(raw.get("operations"))),
            dependencies=DependencySpec.from_mapping(_mapping(raw.get("dependencies"))),
            maintainer=Maintainer(
                name=str(_mapping(maintainer).get("name") or ""),
                email=str(_mapping(maintainer).get("email") or ""),
            ),
        )


@dataclass(slots=True)
class ServiceDefinition:
    """Persisted description of a supporting service such as ``keys``."""

    name: str
    service: ServiceSpec = field(default_factory=ServiceSpec)
    operations: OperationsSpec = field(default_factory=OperationsSpec)
    dependencies: DependencySpec = field(default_factory=DependencySpec)

    def to_dict(self) -> dict[str, object]:
        """Return the representation written to the definition file."""
        return {
            "name": self.name,
            "service": self.service.to_dict(),
            "operations": self.operations.to_dict(),
            "dependencies": self.dependencies.to_dict(),
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ServiceDefinition:
        """Build a service definition from a parsed definition file."""
        return cls(
            name=str(raw.get("name") or ""),
            service=ServiceSpec.from_mapping(_mapping(raw.get("service"))),
            operations=OperationsSpec.from_mapping(_mapping(raw.get("operations"))),
            dependencies=DependencySpec.from_mapping(_mapping(raw.get("dependencies"))),
        )


@dataclass(frozen=True, slots=True)
class RuntimeRequest:
    """Caller intent for a single chain operation.

    Requests are immutable. The only sanctioned changes are the additive
    helpers below (``with_env``/``with_links``) and ``dataclasses.replace`` for
    documented identity injection, each of which returns a new request.
    """

    name: str
    chain_id: str = ""
    chain_type: ChainType = ChainType.STANDARD
    image: str = ""
    env: tuple[str, ...] = ()
    links: tuple[str, ...] = ()
    config_opts: tuple[str, ...] = ()
    args: tuple[str, ...] = ()
    ports: tuple[str, ...] = ()
    run: bool = False
    force: bool = False
    rm: bool = False
    rm_data: bool = False
    rm_host_dir: bool = False
    volumes: bool = False
    logrotate: bool = False
    interactive: bool = False
    publish_all_ports: bool = False
    pull: bool = False
    path: str = ""
    genesis_file: str = ""
    config_file: str = ""
    priv_validator: str = ""
    service_name: str = ""
    gateway: str | None = None
    timeout: int = 10

    def with_env(self, *pairs: str) -> RuntimeRequest:
        """Return a request with *pairs* appended to the environment."""
        return replace(self, env=(*self.env, *pairs))

    def with_links(self, *links: str) -> RuntimeRequest:
        """Return a request with *links* appended."""
        return replace(self, links=(*self.links, *links))


@dataclass(slots=True)
class RuntimeConfig:
    """Fully materialised container configuration for one runtime call."""

    service: ServiceSpec
    operations: OperationsSpec
    mode: CommandMode


@dataclass(slots=True)
class ChainStatus:
    """A known chain and whether its container is live."""

    name: str
    chain_id: str
    running: bool
    exists: bool
    definition_path: Path | None = None


def _string_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, Sequence):
        return [str(item) for item in value]
    return [str(value)]


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


__all__ = [
    "CatKind",
    "ChainDefinition",
    "ChainStatus",
    "ChainType",
    "CommandMode",
    "DependencySpec",
    "Maintainer",
    "OperationsSpec",
    "RuntimeConfig",
    "RuntimeRequest",
    "ServiceDefinition",
    "ServiceSpec",
    "chain_container_name",
    "container_name",
    "data_container_name",
    "service_container_name",
]
