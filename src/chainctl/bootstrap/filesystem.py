"""Plan and create the chainctl directory layout."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..config import AppConfig


class DirectoryAction(str, Enum):
    """What applying a plan entry does."""

    CREATE = "create"
    EXISTS = "exists"


@dataclass(frozen=True, slots=True)
class DirectorySpec:
    """A directory chainctl needs, with the mode it is created with."""

    path: Path
    mode: int = 0o755


@dataclass(frozen=True, slots=True)
class DirectoryPlan:
    """A directory and the action required to provide it."""

    spec: DirectorySpec
    action: DirectoryAction


def layout(config: AppConfig) -> list[DirectorySpec]:
    """Return the directories making up the chainctl layout."""
    return [
        DirectorySpec(config.root_dir),
        DirectorySpec(config.chains_dir),
        DirectorySpec(config.default_chain_dir),
        DirectorySpec(config.services_dir),
        DirectorySpec(config.data_dir, mode=0o700),
        DirectorySpec(config.logs_dir),
    ]


def plan_directories(specs: Iterable[DirectorySpec]) -> list[DirectoryPlan]:
    """Return one plan entry per spec, noting which directories already exist."""
    return [
        DirectoryPlan(
            spec=spec,
            action=DirectoryAction.EXISTS if spec.path.is_dir() else DirectoryAction.CREATE,
        )
        for spec in specs
    ]


def apply_directory_plan(plan: Iterable[DirectoryPlan]) -> list[Path]:
    """Create the missing directories and return the paths created."""
    created: list[Path] = []
    for entry in plan:
        if entry.action is DirectoryAction.EXISTS:
            continue
        entry.spec.path.mkdir(parents=True, exist_ok=True, mode=entry.spec.mode)
        created.append(entry.spec.path)
    return created


__all__ = [
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "apply_directory_plan",
    "layout",
    "plan_directories",
]
