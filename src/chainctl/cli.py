"""Typer-powered command line interface for ``chainctl``.

Every command runs inside a structured logging operation so the outcome of
each invocation is appended to ``operations.jsonl``. Chain operations raise
:class:`~chainctl.errors.ChainError`; the CLI renders the message, cause and
hint in red and exits with the code mapped from the error class.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .bootstrap import initialize
from .chains import ChainManager, cleanup
from .config import AppConfig, ConfigError, load_config
from .definitions import CatKind, ChainType, CommandMode, DefinitionLoader, RuntimeRequest
from .errors import ChainError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger, configure_logging
from .providers import DockerProvider, ImagePuller

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to chainctl's YAML config file.",
)
ENV_OPTION = typer.Option(
    None,
    "--env",
    "-e",
    help="Extra KEY=VALUE environment entries for the chain container (repeatable).",
)
LINKS_OPTION = typer.Option(
    None,
    "--links",
    "-l",
    help="Extra container links as name:alias (repeatable).",
)
PUBLISH_OPTION = typer.Option(
    False,
    "--publish",
    "-P",
    help="Publish all exposed ports to random host ports.",
)
PORTS_OPTION = typer.Option(
    None,
    "--ports",
    "-p",
    help="Publish a port mapping such as 46656:46656 (repeatable).",
)
LOGROTATE_OPTION = typer.Option(
    False,
    "--logrotate",
    help="Start the logrotate service alongside the chain.",
)
API_OPTION = typer.Option(
    False,
    "--api",
    "-a",
    help="Enable the node's HTTP API.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit output as JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Chain lifecycle manager.

        Provision chain nodes in containers with their own data volume, run
        commands against them, and tear them down again.
        """
    ).strip(),
)
chains_app = typer.Typer(help="Create, run and remove chains.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(chains_app, name="chains")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    loader: DefinitionLoader
    docker: DockerProvider
    puller: ImagePuller
    logger: StructuredLogger
    manager: ChainManager


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    loader = DefinitionLoader(config.chains_dir, config.services_dir, chain_image=config.chain_image)
    docker = DockerProvider(
        container_root=config.container_root,
        data_image=config.docker.data_image,
        docker_bin=config.docker.bin,
    )
    puller = ImagePuller(
        docker,
        registry=config.docker.registry,
        backup_registry=config.docker.backup_registry,
        timeout=config.docker.pull_timeout,
        progress=lambda line: console.print(line, markup=False, highlight=False),
    )
    runtime = RuntimeContext(
        config=config,
        loader=loader,
        docker=docker,
        puller=puller,
        logger=StructuredLogger(config.logs_dir),
        manager=ChainManager(config, loader, docker),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the chainctl version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    configure_logging(verbose=verbose)
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"chainctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _chain_error(op: OperationScope, exc: ChainError) -> NoReturn:
    """Render a :class:`ChainError` and exit with its mapped code."""
    _command_error(op, exc.render(), rc=int(exc.exit_code), errors=[str(exc)])


def _print_output(output: str) -> None:
    if output:
        console.print(output.rstrip("\n"), markup=False, highlight=False)


def _chain_target(name: str) -> dict[str, object]:
    return {"kind": "chain", "name": name}


# ----------------------------------------------------------------------
# chains
# ----------------------------------------------------------------------
@chains_app.command("new")
def chains_new(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain to create."),
    directory: str = typer.Option(
        "",
        "--dir",
        help="Directory (or name under the chains directory) with the chain's files.",
    ),
    genesis: str = typer.Option("", "--genesis", help="Path to a genesis.json file."),
    config_file: str = typer.Option("", "--config", help="Path to a config.toml file."),
    priv: str = typer.Option("", "--priv", help="Path to a priv_validator.json file."),
    chain_id: str = typer.Option("", "--chain-id", help="Chain id (defaults to genesis or name)."),
    options: list[str] | None = typer.Option(
        None,
        "--options",
        "-o",
        help="Node config option as key=value (repeatable).",
    ),
    gateway: str | None = typer.Option(None, "--gateway", help="Node address to advertise."),
    install: bool = typer.Option(False, "--install", help="Run the install command instead of new."),
    env: list[str] | None = ENV_OPTION,
    links: list[str] | None = LINKS_OPTION,
    publish: bool = PUBLISH_OPTION,
    ports: list[str] | None = PORTS_OPTION,
    logrotate: bool = LOGROTATE_OPTION,
    api: bool = API_OPTION,
) -> None:
    """Provision a new chain and start it."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        chain_id=chain_id,
        path=directory,
        genesis_file=genesis,
        config_file=config_file,
        priv_validator=priv,
        config_opts=tuple(options or ()),
        ports=tuple(ports or ()),
        publish_all_ports=publish,
        logrotate=logrotate,
        run=api,
        gateway=gateway,
    ).with_env(*(env or ())).with_links(*(links or ()))
    mode = CommandMode.INSTALL if install else CommandMode.NEW
    with runtime.logger.operation(
        "chains new",
        args={"dir": directory, "genesis": genesis, "config": config_file, "mode": mode.value},
        target=_chain_target(name),
    ) as op:
        try:
            result = runtime.manager.new(request, mode=mode, scope=op)
        except ChainError as exc:
            _chain_error(op, exc)
        console.print(
            f"[green]Chain '{result.name}' ({result.chain_id}) is running as {result.container}.[/green]"
        )
        op.success(
            "Chain provisioned.",
            changed=1,
            context={"chain_id": result.chain_id, "definition_written": result.definition_written},
        )


@chains_app.command("start")
def chains_start(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain to start."),
    env: list[str] | None = ENV_OPTION,
    links: list[str] | None = LINKS_OPTION,
    publish: bool = PUBLISH_OPTION,
    ports: list[str] | None = PORTS_OPTION,
    logrotate: bool = LOGROTATE_OPTION,
    api: bool = API_OPTION,
) -> None:
    """Start an existing chain."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        ports=tuple(ports or ()),
        publish_all_ports=publish,
        logrotate=logrotate,
        run=api,
    ).with_env(*(env or ())).with_links(*(links or ()))
    with runtime.logger.operation(
        "chains start",
        args={"api": api, "logrotate": logrotate},
        target=_chain_target(name),
    ) as op:
        try:
            runtime.manager.start(request)
        except ChainError as exc:
            _chain_error(op, exc)
        console.print(f"[green]Chain '{name}' started.[/green]")
        op.success("Chain started.", changed=1)


@chains_app.command("exec", context_settings={"allow_interspersed_args": False})
def chains_exec(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain to run against."),
    args: list[str] | None = typer.Argument(None, help="Command and arguments to run."),
    image: str = typer.Option("", "--image", help="Run the command in this image instead."),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Attach a TTY."),
    env: list[str] | None = ENV_OPTION,
    links: list[str] | None = LINKS_OPTION,
) -> None:
    """Run a one-off command linked to a chain."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        image=image,
        args=tuple(args or ()),
        interactive=interactive,
    ).with_env(*(env or ())).with_links(*(links or ()))
    with runtime.logger.operation(
        "chains exec",
        args={"args": list(request.args), "image": image},
        target=_chain_target(name),
    ) as op:
        try:
            output = runtime.manager.exec(request)
        except ChainError as exc:
            _chain_error(op, exc)
        _print_output(output)
        op.success("Command executed.", changed=0)


@chains_app.command("stop")
def chains_stop(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain to stop."),
    force: bool = typer.Option(False, "--force", "-f", help="Kill without a grace period."),
    timeout: int | None = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Seconds to wait for a graceful stop.",
    ),
    rm: bool = typer.Option(False, "--rm", help="Remove the container after stopping it."),
    data: bool = typer.Option(False, "--data", "-x", help="Also remove the data volume."),
    volumes: bool = typer.Option(False, "--vol", help="Also remove anonymous volumes."),
) -> None:
    """Stop a running chain."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        force=force,
        timeout=timeout if timeout is not None else runtime.config.stop_timeout,
        rm=rm,
        rm_data=data,
        volumes=volumes,
    )
    with runtime.logger.operation(
        "chains stop",
        args={"force": force, "rm": rm, "data": data},
        target=_chain_target(name),
    ) as op:
        try:
            stopped = runtime.manager.kill(request)
        except ChainError as exc:
            _chain_error(op, exc)
        if stopped:
            console.print(f"[green]Chain '{name}' stopped.[/green]")
            op.success("Chain stopped.", changed=1)
        else:
            console.print(f"[yellow]Chain '{name}' is not running.[/yellow]")
            op.success("Chain was not running.", changed=1 if rm else 0)


@chains_app.command("rm")
def chains_rm(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain to remove."),
    force: bool = typer.Option(False, "--force", "-f", help="Remove even when running."),
    data: bool = typer.Option(False, "--data", "-x", help="Also remove the data volume."),
    volumes: bool = typer.Option(False, "--vol", help="Also remove anonymous volumes."),
    host_dir: bool = typer.Option(
        False,
        "--dir",
        "-r",
        help="Also remove the chain's host data directory.",
    ),
) -> None:
    """Remove a chain's container and, optionally, its data."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        force=force,
        rm_data=data,
        volumes=volumes,
        rm_host_dir=host_dir,
    )
    with runtime.logger.operation(
        "chains rm",
        args={"force": force, "data": data, "dir": host_dir},
        target=_chain_target(name),
    ) as op:
        try:
            runtime.manager.remove(request)
        except ChainError as exc:
            _chain_error(op, exc)
        console.print(f"[green]Chain '{name}' removed.[/green]")
        op.success("Chain removed.", changed=1)


@chains_app.command("throwaway")
def chains_throwaway(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Base name for the disposable chain."),
    env: list[str] | None = ENV_OPTION,
    links: list[str] | None = LINKS_OPTION,
    publish: bool = PUBLISH_OPTION,
) -> None:
    """Create and start a uniquely named disposable chain."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        publish_all_ports=publish,
    ).with_env(*(env or ())).with_links(*(links or ()))
    with runtime.logger.operation(
        "chains throwaway",
        args={"publish": publish},
        target=_chain_target(name),
    ) as op:
        try:
            created = runtime.manager.throwaway(request, scope=op)
        except ChainError as exc:
            _chain_error(op, exc)
        console.print(created)
        op.success("Throwaway chain started.", changed=1, context={"name": created})


@chains_app.command("cleanup")
def chains_cleanup(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Chain to destroy when it is a throwaway chain."),
    throwaway: bool = typer.Option(
        False,
        "--throwaway",
        help="Treat the chain as a throwaway chain even if its definition says otherwise.",
    ),
    service: str = typer.Option("", "--service", help="Temporary service to clean up."),
    rm: bool = typer.Option(False, "--rm", help="Remove the temporary service container."),
    data: bool = typer.Option(False, "--data", "-x", help="Remove the service's host data directory."),
) -> None:
    """Destroy throwaway chains and temporary service state."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        chain_type=ChainType.THROWAWAY if throwaway else ChainType.STANDARD,
        service_name=service,
        rm=rm,
        rm_data=data,
    )
    with runtime.logger.operation(
        "chains cleanup",
        args={"throwaway": throwaway, "service": service, "rm": rm, "data": data},
        target=_chain_target(name),
    ) as op:
        try:
            report = cleanup(runtime.manager, request)
        except ChainError as exc:
            _chain_error(op, exc)
        for item in report.removed:
            console.print(f"removed {item}", markup=False)
        op.success("Cleanup complete.", changed=len(report.removed), context={"removed": report.removed})


@chains_app.command("cat")
def chains_cat(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain."),
    kind: CatKind = typer.Argument(..., help="What to display."),
) -> None:
    """Display a chain's genesis, config, status, validators or definition."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "chains cat",
        args={"kind": kind.value},
        target=_chain_target(name),
    ) as op:
        try:
            output = runtime.manager.cat(name, kind)
        except ChainError as exc:
            _chain_error(op, exc)
        _print_output(output)
        op.success(f"Displayed {kind.value}.", changed=0)


@chains_app.command("logs")
def chains_logs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain."),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow the log output."),
    tail: str = typer.Option("150", "--tail", "-t", help="Lines to show from the end ('all' for every line)."),
) -> None:
    """Show the logs of a chain container."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "chains logs",
        args={"follow": follow, "tail": tail},
        target=_chain_target(name),
    ) as op:
        try:
            output = runtime.manager.logs(name, follow=follow, tail=tail)
        except ChainError as exc:
            _chain_error(op, exc)
        _print_output(output)
        op.success("Displayed logs.", changed=0)


@chains_app.command("ports")
def chains_ports(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain."),
) -> None:
    """Show the published ports of a chain container."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("chains ports", target=_chain_target(name)) as op:
        try:
            output = runtime.manager.ports(name)
        except ChainError as exc:
            _chain_error(op, exc)
        _print_output(output)
        op.success("Displayed port mappings.", changed=0)


@chains_app.command("inspect")
def chains_inspect(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain."),
    field: str = typer.Argument(
        "all",
        help="Inspect field path such as State.Status, or 'all' for the full document.",
    ),
) -> None:
    """Show low-level information about a chain container."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "chains inspect",
        args={"field": field},
        target=_chain_target(name),
    ) as op:
        try:
            output = runtime.manager.inspect(name, field)
        except ChainError as exc:
            _chain_error(op, exc)
        if not output:
            console.print(f"[yellow]Chain container for '{escape(name)}' does not exist.[/yellow]")
            op.success("Chain container absent.", changed=0)
            return
        _print_output(output)
        op.success("Displayed inspect output.", changed=0)


@chains_app.command("ls")
def chains_ls(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List known chains and whether they are running."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "chains ls",
        args={"json": json_output},
        target={"kind": "chains"},
    ) as op:
        try:
            statuses = runtime.manager.list_chains()
        except ChainError as exc:
            _chain_error(op, exc)
        head = runtime.manager.current()
        if json_output:
            console.print_json(
                data={
                    "chains": [
                        {
                            "name": status.name,
                            "chain_id": status.chain_id,
                            "running": status.running,
                            "exists": status.exists,
                            "checked_out": status.name == head,
                        }
                        for status in statuses
                    ]
                }
            )
            op.success("Reported chains as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Chain", style="bold")
        table.add_column("Chain ID")
        table.add_column("State")
        if not statuses:
            table.add_row("(none)", "", "")
        for status in statuses:
            state = "running" if status.running else ("stopped" if status.exists else "absent")
            label = f"{status.name} *" if status.name == head else status.name
            table.add_row(label, status.chain_id, state)
        console.print(table)
        op.success("Reported chains.", changed=0)


@chains_app.command("checkout")
def chains_checkout(
    ctx: typer.Context,
    name: str = typer.Argument("", help="Chain to check out; omit to clear."),
) -> None:
    """Set (or clear) the checked-out chain."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("chains checkout", target=_chain_target(name)) as op:
        result = runtime.manager.checkout(name)
        if not result.changed:
            console.print("no change")
            op.success("Checked-out chain unchanged.", changed=0)
            return
        console.print(f"Checked out '{name}'." if name else "Cleared the checked-out chain.")
        op.success("Checked-out chain updated.", changed=1, context={"previous": result.previous})


@chains_app.command("current")
def chains_current(ctx: typer.Context) -> None:
    """Show the checked-out chain."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("chains current", target={"kind": "chains"}) as op:
        head = runtime.manager.current()
        console.print(head or "There is no chain checked out.")
        op.success("Reported checked-out chain.", changed=0, context={"head": head})


@chains_app.command("update")
def chains_update(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the chain to rebuild."),
    pull: bool = typer.Option(False, "--pull", help="Pull the image before rebuilding."),
    timeout: int | None = typer.Option(None, "--timeout", "-t", help="Seconds to wait for the stop."),
    env: list[str] | None = ENV_OPTION,
    links: list[str] | None = LINKS_OPTION,
) -> None:
    """Rebuild a chain container with the current definition."""
    runtime = _get_runtime(ctx)
    request = RuntimeRequest(
        name=name,
        pull=pull,
        timeout=timeout if timeout is not None else runtime.config.stop_timeout,
    ).with_env(*(env or ())).with_links(*(links or ()))
    with runtime.logger.operation(
        "chains update",
        args={"pull": pull},
        target=_chain_target(name),
    ) as op:
        try:
            runtime.manager.update(request)
        except ChainError as exc:
            _chain_error(op, exc)
        console.print(f"[green]Chain '{name}' updated.[/green]")
        op.success("Chain rebuilt.", changed=1)


# ----------------------------------------------------------------------
# init / config
# ----------------------------------------------------------------------
@app.command("init")
def init(
    ctx: typer.Context,
    pull: bool = typer.Option(True, "--pull/--no-pull", help="Pull the default images."),
) -> None:
    """Create chainctl's directories, default services and images."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "init",
        args={"pull": pull},
        target={"kind": "system", "root": str(runtime.config.root_dir)},
    ) as op:
        try:
            report = initialize(
                runtime.config,
                runtime.loader,
                runtime.puller,
                pull=pull,
                on_pull=lambda index, total, image: console.print(
                    f"[bold]Pulling image {index} out of {total}: {image}[/bold]"
                ),
            )
        except ChainError as exc:
            _chain_error(op, exc)
        except OSError as exc:
            _command_error(op, f"Initialisation failed: {exc}", rc=int(ExitCode.ENVIRONMENT))
        for path in report.created_dirs:
            op.add_step("init.directory", detail=str(path))
        for service in report.written_services:
            op.add_step("init.service", detail=service)
        for result in report.pulled:
            op.add_step("init.pull", detail=result.reference)
        console.print(f"[green]Initialised chainctl in {runtime.config.root_dir}.[/green]")
        op.success("Initialised.", changed=report.changed)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, (dict, list)):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
