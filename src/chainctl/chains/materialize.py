"""Turn a chain definition plus caller intent into a runtime configuration.

The definition is copied before anything is merged into it, so the loaded
definition (and anything cached by the caller) is never modified in place.
Environment entries are appended in a fixed order because later duplicates
override earlier ones inside the container.
"""
from __future__ import annotations

from collections.abc import Sequence

from ..errors import ChainError, ErrorKind
from ..definitions.models import (
    ChainDefinition,
    CommandMode,
    RuntimeConfig,
    RuntimeRequest,
    data_container_name,
)

# Workaround for docker/docker#14203 (environment values truncated). Must stay
# byte-for-byte identical for existing node images.
DOCKER_FIX_PADDING = " " * 40
API_ENABLE_VAR = "ERISDB_API=true"
CHAIN_LINK_ALIAS = "chain"


def parse_config_options(options: Sequence[str]) -> list[tuple[str, str]]:
    """Split ``key=value`` options, rejecting any without exactly one ``=``."""
    parsed: list[tuple[str, str]] = []
    bad: list[str] = []
    for option in options:
        parts = option.split("=")
        if len(parts) != 2:
            bad.append(option)
            continue
        parsed.append((parts[0], parts[1]))
    if bad:
        raise ChainError(
            ErrorKind.VALIDATION,
            f"bad config option(s): {', '.join(repr(item) for item in bad)}",
            hint="pass config options as key=value",
        )
    return parsed


def format_config_options(options: Sequence[str]) -> str:
    """Return the ``CONFIG_OPTS`` flag string for *options*."""
    return "".join(f" --{key}={value}" for key, value in parse_config_options(options))


def build_environment(
    *,
    chain_id: str,
    container_name: str,
    config_opts: str,
    gateway: str,
    extra: Sequence[str] = (),
    run: bool = False,
) -> list[str]:
    """Return the generated environment, followed by the caller's entries."""
    env = [
        f"CHAIN_ID={chain_id}",
        f"CONTAINER_NAME={container_name}",
        f"CONFIG_OPTS={config_opts}",
        f"NODE_ADDR={gateway}",
        f"DOCKER_FIX={DOCKER_FIX_PADDING}",
    ]
    env.extend(extra)
    if run:
        env.append(API_ENABLE_VAR)
    return env


def materialize(
    definition: ChainDefinition,
    request: RuntimeRequest,
    mode: CommandMode,
    *,
    gateway: str = "",
) -> RuntimeConfig:
    """Merge *request* into a copy of *definition* for the given *mode*."""
    draft = definition.copy()
    service = draft.service
    ops = draft.operations

    config_opts = format_config_options(request.config_opts)
    service.environment = [
        *service.environment,
        *build_environment(
            chain_id=draft.chain_id,
            container_name=ops.container_name,
            config_opts=config_opts,
            gateway=gateway,
            extra=request.env,
            run=request.run,
        ),
    ]
    service.links = [*service.links, *request.links]
    if not ops.data_container_name:
        ops.data_container_name = data_container_name(draft.name, ops.container_number)

    if mode.provisioning:
        service.command = mode.value
        ops.publish_all_ports = request.publish_all_ports
        ops.ports = list(request.ports)
    elif mode is CommandMode.START:
        service.command = CommandMode.START.value
        ops.publish_all_ports = ops.publish_all_ports or request.publish_all_ports
        ops.ports = [*ops.ports, *request.ports]
    elif mode is CommandMode.EXEC:
        if request.image:
            service.image = request.image
        # The image's own entrypoint must not wrap the one-off command.
        service.entrypoint = ""
        service.command = ""
        # Never collide with the fixed ports of the running chain.
        ops.publish_all_ports = True
        ops.ports = []
        service.links.append(f"{ops.container_name}:{CHAIN_LINK_ALIAS}")
        ops.args = list(request.args)
        ops.interactive = request.interactive
    else:  # pragma: no cover - exhaustive over CommandMode
        raise ValueError(f"Unhandled command mode {mode!r}")

    return RuntimeConfig(service=service, operations=ops, mode=mode)


__all__ = [
    "API_ENABLE_VAR",
    "CHAIN_LINK_ALIAS",
    "DOCKER_FIX_PADDING",
    "build_environment",
    "format_config_options",
    "materialize",
    "parse_config_options",
]
