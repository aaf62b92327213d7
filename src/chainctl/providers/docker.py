"""Docker provider for managing chain, service and data containers."""
from __future__ import annotations

import logging
import shlex
import subprocess
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..definitions.models import OperationsSpec, ServiceSpec

LOGGER = logging.getLogger(__name__)


class DockerError(RuntimeError):
    """Raised when docker operations fail."""

    def __init__(self, message: str, *, output: str = "") -> None:
        """Store the failure message and any captured command output."""
        super().__init__(message)
        self.output = output


@dataclass(slots=True)
class DockerProvider:
    """Drive containers and data volumes through the ``docker`` CLI."""

    container_root: str
    data_image: str
    docker_bin: str = "docker"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_running(self, container: str) -> bool:
        """Return ``True`` when *container* is currently running."""
        return container in self._list_containers(all_containers=False)

    def exists(self, container: str) -> bool:
        """Return ``True`` when *container* exists, running or not."""
        return container in self._list_containers(all_containers=True)

    def volume_exists(self, volume: str) -> bool:
        """Return ``True`` when the named data volume exists."""
        result = self._docker("volume", "inspect", volume, check=False)
        return result.returncode == 0

    def port_mappings(self, container: str) -> str:
        """Return the published port mappings of *container*."""
        return self._docker("port", container).stdout

    def inspect(self, container: str, field: str = "all") -> str:
        """Return *field* of the container's inspect document, or all of it.

        *field* uses the template path syntax of ``docker inspect``, for example
        ``State.Status`` or ``NetworkSettings.IPAddress``.
        """
        if field == "all":
            return self._docker("inspect", container).stdout
        template = f"{{{{.{field.lstrip('.')}}}}}"
        return self._docker("inspect", "--format", template, container).stdout

    def logs(self, service: ServiceSpec, ops: OperationsSpec, *, follow: bool, tail: str) -> str:
        """Return (or stream, when following) the logs of a service container."""
        args = ["logs"]
        if follow:
            args.append("--follow")
        if tail:
            args.extend(["--tail", tail])
        args.append(ops.container_name)
        result = self._run_command(
            [self.docker_bin, *args],
            check=True,
            error_prefix=f"{self.docker_bin} logs {ops.container_name}",
            capture_output=not follow,
        )
        return (result.stdout or "") + (result.stderr or "")

    # ------------------------------------------------------------------
    # Data volumes
    # ------------------------------------------------------------------
    def create_data(self, ops: OperationsSpec) -> None:
        """Create the data volume named by *ops*."""
        self._docker("volume", "create", ops.data_container_name)

    def exec_data(self, ops: OperationsSpec, args: Sequence[str]) -> str:
        """Run *args* in a disposable container with the data volume mounted."""
        command = [
            self.docker_bin,
            "run",
            "--rm",
            "--user",
            "root",
            "--volume",
            f"{ops.data_container_name}:{self.container_root}",
            self.data_image,
            *args,
        ]
        result = self._run_command(
            command,
            check=True,
            error_prefix=f"{self.docker_bin} run {self.data_image} {' '.join(args)}",
            combine_output=True,
        )
        return result.stdout or ""

    def import_data(self, ops: OperationsSpec, source: Path, destination: str) -> None:
        """Copy the contents of host directory *source* into the data volume."""
        command = [
            self.docker_bin,
            "run",
            "--rm",
            "--user",
            "root",
            "--volume",
            f"{ops.data_container_name}:{self.container_root}",
            "--volume",
            f"{source}:/import:ro",
            self.data_image,
            "sh",
            "-c",
            f"mkdir -p {shlex.quote(destination)} && cp -a /import/. {shlex.quote(destination)}",
        ]
        self._run_command(
            command,
            check=True,
            error_prefix=f"import {source} -> {ops.data_container_name}:{destination}",
            combine_output=True,
        )

    # ------------------------------------------------------------------
    # Service containers
    # ------------------------------------------------------------------
    def run_service(self, service: ServiceSpec, ops: OperationsSpec) -> None:
        """Start the service container, creating it when it does not exist."""
        container = ops.container_name
        if self.is_running(container):
            LOGGER.info("Container %s is already running", container)
            return
        if self.exists(container):
            LOGGER.info("Restarting existing container %s", container)
            self._docker("start", container)
            return

        command = [self.docker_bin, "run", "--detach", "--name", container]
        command.extend(self._container_args(service, ops))
        command.append(service.image)
        command.extend(shlex.split(service.command))
        self._run_command(
            command,
            check=True,
            error_prefix=f"{self.docker_bin} run {container}",
            combine_output=True,
        )

    def exec_service(self, service: ServiceSpec, ops: OperationsSpec) -> str:
        """Run a one-off command container and return its combined output.

        Interactive commands are attached to the terminal, so nothing is
        captured and the returned output is empty.
        """
        name = f"{ops.container_name}_exec_{uuid.uuid4().hex[:8]}"
        command = [self.docker_bin, "run", "--rm", "--name", name]
        if ops.interactive:
            command.extend(["--interactive", "--tty"])
        command.extend(self._container_args(service, ops))
        command.append(service.image)
        command.extend(ops.args)
        result = self._run_command(
            command,
            check=True,
            error_prefix=f"{self.docker_bin} run {name}",
            capture_output=not ops.interactive,
            combine_output=True,
        )
        return result.stdout or ""

    def stop(self, service: ServiceSpec, ops: OperationsSpec, timeout: int) -> None:
        """Stop the service container, waiting at most *timeout* seconds."""
        self._docker("stop", "--time", str(timeout), ops.container_name)

    def remove(
        self,
        service: ServiceSpec,
        ops: OperationsSpec,
        remove_data: bool,
        remove_volumes: bool,
        force: bool,
    ) -> None:
        """Remove the container and, when asked, its data volume.

        Absent containers and volumes are skipped.
        """
        if self.exists(ops.container_name):
            args = ["rm"]
            if force:
                args.append("--force")
            if remove_volumes:
                args.append("--volumes")
            self._docker(*args, ops.container_name)
        else:
            LOGGER.debug("Container %s does not exist", ops.container_name)

        volume = ops.data_container_name
        if remove_data and volume and self.volume_exists(volume):
            args = ["volume", "rm"]
            if force:
                args.append("--force")
            self._docker(*args, volume)

    def rebuild(self, service: ServiceSpec, ops: OperationsSpec, *, pull: bool, timeout: int) -> None:
        """Recreate the service container with the current specification."""
        if self.is_running(ops.container_name):
            self.stop(service, ops, timeout)
        self.remove(service, ops, remove_data=False, remove_volumes=False, force=True)
        if pull:
            self._docker("pull", service.image)
        self.run_service(service, ops)

    def start_pull(self, image: str) -> subprocess.Popen[str]:
        """Start ``docker pull`` for *image* and return the running process."""
        try:
            return subprocess.Popen(  # noqa: S603
                [self.docker_bin, "pull", image],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as exc:
            raise DockerError(f"{self.docker_bin} not found: {exc}") from exc

    # ------------------------------------------------------------------
    def _container_args(self, service: ServiceSpec, ops: OperationsSpec) -> list[str]:
        args: list[str] = []
        if ops.publish_all_ports:
            args.append("--publish-all")
        for port in [*service.ports, *ops.ports]:
            args.extend(["--publish", port])
        for entry in service.environment:
            args.extend(["--env", entry])
        for link in service.links:
            args.extend(["--link", link])
        if ops.data_container_name:
            args.extend(["--volume", f"{ops.data_container_name}:{self.container_root}"])
        if service.entrypoint:
            args.extend(["--entrypoint", service.entrypoint])
        if service.user:
            args.extend(["--user", service.user])
        return args

    def _list_containers(self, *, all_containers: bool) -> set[str]:
        args = ["ps", "--format", "{{.Names}}"]
        if all_containers:
            args.insert(1, "--all")
        result = self._docker(*args)
        return {line.strip() for line in (result.stdout or "").splitlines() if line.strip()}

    def _docker(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        joined = " ".join(args)
        return self._run_command(
            [self.docker_bin, *args],
            check=check,
            error_prefix=f"{self.docker_bin} {joined}".rstrip(),
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        capture_output: bool = True,
        combine_output: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(args))
        try:
            if not capture_output:
                result = subprocess.run(  # noqa: S603
                    list(args),
                    text=True,
                    check=False,
                )
            elif combine_output:
                result = subprocess.run(  # noqa: S603
                    list(args),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    check=False,
                )
            else:
                result = subprocess.run(  # noqa: S603
                    list(args),
                    capture_output=True,
                    text=True,
                    check=False,
                )
        except FileNotFoundError as exc:
            raise DockerError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise DockerError(
                f"{error_prefix} failed (exit {result.returncode}): {message}",
                output=stdout,
            )
        return result


__all__ = ["DockerError", "DockerProvider"]
