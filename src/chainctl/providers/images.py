"""Timeout-bounded image pulls.

The progress consumer runs on its own thread and is started before the pull
task is submitted. The pull task always closes the progress stream (by sending
``None``) when it exits, so the consumer terminates whether the pull succeeded,
failed or was abandoned. When the pull does not finish within the ceiling the
``docker pull`` client process is terminated; the daemon may still finish the
transfer in the background.
"""
from __future__ import annotations

import concurrent.futures
import logging
import queue
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..errors import ChainError, ErrorKind
from .docker import DockerError, DockerProvider

LOGGER = logging.getLogger(__name__)

DEFAULT_PULL_TIMEOUT = 300.0


@dataclass(slots=True)
class PullResult:
    """Outcome of a completed image pull."""

    image: str
    reference: str
    duration_ms: int


@dataclass(slots=True)
class _PullHandle:
    """Track the active ``docker pull`` process so it can be terminated."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    process: subprocess.Popen[str] | None = None
    cancelled: bool = False

    def attach(self, process: subprocess.Popen[str]) -> None:
        with self.lock:
            self.process = process
            if self.cancelled:
                process.terminate()

    def cancel(self) -> None:
        with self.lock:
            self.cancelled = True
            if self.process is not None and self.process.poll() is None:
                self.process.terminate()


class ImagePuller:
    """Pull images from the primary registry, falling back to the backup."""

    def __init__(
        self,
        docker: DockerProvider,
        *,
        registry: str = "",
        backup_registry: str = "",
        timeout: float = DEFAULT_PULL_TIMEOUT,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        """Configure registries, the pull ceiling and the progress sink."""
        self.docker = docker
        self.registry = registry.strip("/")
        self.backup_registry = backup_registry.strip("/")
        self.timeout = timeout
        self.progress = progress

    def candidates(self, image: str) -> list[str]:
        """Return the references tried, in order, for *image*."""
        references = [f"{self.registry}/{image}" if self.registry else image]
        fallback = f"{self.backup_registry}/{image}" if self.backup_registry else image
        if fallback not in references:
            references.append(fallback)
        return references

    def pull(self, image: str) -> PullResult:
        """Pull *image*, raising a timeout error past the configured ceiling."""
        start = time.perf_counter()
        output: queue.Queue[str | None] = queue.Queue()
        handle = _PullHandle()
        display = threading.Thread(
            target=self._display,
            args=(output,),
            name="chainctl-pull-progress",
            daemon=True,
        )
        display.start()
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="chainctl-pull",
        )
        try:
            pull_future = executor.submit(self._pull_worker, image, output, handle)
            done, _ = concurrent.futures.wait([pull_future], timeout=self.timeout)
            if not done:
                handle.cancel()
                raise ChainError(
                    ErrorKind.TIMEOUT,
                    f"pulling image '{image}' did not complete within {self.timeout:g} seconds",
                    hint="this is likely a network issue; retry the command later",
                )
            # The worker has closed the stream, so the consumer drains and exits.
            display.join()
            try:
                reference = pull_future.result()
            except DockerError as exc:
                raise ChainError(
                    ErrorKind.RUNTIME,
                    f"failed to pull image '{image}'",
                    cause=exc,
                    hint="check your network connection and registry configuration",
                ) from exc
        finally:
            executor.shutdown(wait=False)
        duration_ms = int((time.perf_counter() - start) * 1000)
        return PullResult(image=image, reference=reference, duration_ms=duration_ms)

    def _pull_worker(
        self,
        image: str,
        output: queue.Queue[str | None],
        handle: _PullHandle,
    ) -> str:
        try:
            failures: list[str] = []
            for reference in self.candidates(image):
                if handle.cancelled:
                    break
                process = self.docker.start_pull(reference)
                handle.attach(process)
                if process.stdout is not None:
                    for line in process.stdout:
                        output.put(line.rstrip())
                returncode = process.wait()
                if returncode == 0:
                    return reference
                failures.append(f"{reference} (exit {returncode})")
            raise DockerError(f"docker pull failed for {', '.join(failures) or image}")
        finally:
            output.put(None)

    def _display(self, output: queue.Queue[str | None]) -> None:
        while True:
            line = output.get()
            if line is None:
                return
            if self.progress is not None:
                self.progress(line)
            else:
                LOGGER.debug(line)


__all__ = ["ImagePuller", "PullResult"]
