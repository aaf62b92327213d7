"""Chain and service definitions."""
from __future__ import annotations

from .loader import DefinitionLoader, git_maintainer
from .models import (
    CatKind,
    ChainDefinition,
    ChainStatus,
    ChainType,
    CommandMode,
    DependencySpec,
    Maintainer,
    OperationsSpec,
    RuntimeConfig,
    RuntimeRequest,
    ServiceDefinition,
    ServiceSpec,
    chain_container_name,
    data_container_name,
    service_container_name,
)

__all__ = [
    "CatKind",
    "ChainDefinition",
    "ChainStatus",
    "ChainType",
    "CommandMode",
    "DefinitionLoader",
    "DependencySpec",
    "Maintainer",
    "OperationsSpec",
    "RuntimeConfig",
    "RuntimeRequest",
    "ServiceDefinition",
    "ServiceSpec",
    "chain_container_name",
    "data_container_name",
    "git_maintainer",
    "service_container_name",
]
