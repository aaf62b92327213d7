"""Chain lifecycle orchestration: provisioning, lifecycle operations and cleanup."""
from __future__ import annotations

from .cleanup import CleanupReport, cleanup
from .dependencies import boot_dependencies
from .manager import ChainManager, CheckoutResult
from .materialize import format_config_options, materialize, parse_config_options
from .provision import ProvisioningPipeline, ProvisionResult, ProvisionState

__all__ = [
    "ChainManager",
    "CheckoutResult",
    "CleanupReport",
    "ProvisionResult",
    "ProvisionState",
    "ProvisioningPipeline",
    "boot_dependencies",
    "cleanup",
    "format_config_options",
    "materialize",
    "parse_config_options",
]
