"""Provider interfaces for chainctl."""
from __future__ import annotations

from .docker import DockerError, DockerProvider
from .images import ImagePuller, PullResult

__all__ = [
    "DockerError",
    "DockerProvider",
    "ImagePuller",
    "PullResult",
]
