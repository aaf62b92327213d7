"""Helper utilities used by ``chainctl init``."""
from __future__ import annotations

from .defaults import InitReport, default_services, initialize
from .filesystem import (
    DirectoryAction,
    DirectoryPlan,
    DirectorySpec,
    apply_directory_plan,
    layout,
    plan_directories,
)

__all__ = [
    # filesystem helpers
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "layout",
    "plan_directories",
    "apply_directory_plan",
    # defaults
    "InitReport",
    "default_services",
    "initialize",
]
