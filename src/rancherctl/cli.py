"""Typer-powered command line entry point for ``rancherctl``.

A single command accepts one action flag (or ``--install --start``) plus
options, loads the layered configuration, and hands the resolved action to
the :class:`~rancherctl.lifecycle.LifecycleController` inside one logged
operation.
"""
from __future__ import annotations

import os
import textwrap
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .actions import Action, resolve_action
from .config import AppConfig, load_config
from .confirm import confirmer_for
from .errors import ConfigError, LifecycleError, PathNotWritable
from .exit_codes import ExitCode
from .gate import ExecutionGate, ExecutionMode
from .lifecycle import ActionResult, LifecycleController
from .logging import OperationScope, StructuredLogger
from .providers.docker import ContainerRuntime, DockerRuntime
from .providers.host import HostProvider
from .state import DEFAULT_CHANNEL

console = Console()

RANCHER_VERSION_OPTION = typer.Option(
    None,
    "--rancher-version",
    help="Rancher image tag (default: stable).",
)

ACME_DOMAIN_OPTION = typer.Option(
    None,
    "--acme-domain",
    help="Domain for Let's Encrypt certificates.",
)

VOLUME_VALUE_OPTION = typer.Option(
    None,
    "--volume-value",
    help="Custom volume arguments, e.g. '-v /opt/rancher:/var/lib/rancher'.",
)

DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    dir_okay=True,
    file_okay=False,
    help="Host directory for Rancher data (default: ./rancher-data).",
)

LOG_FILE_OPTION = typer.Option(
    None,
    "--log-file",
    dir_okay=False,
    help="Lifecycle log file (default: ./rancher-lifecycle.log).",
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to rancherctl's YAML config file.",
)

EXAMPLES: tuple[tuple[str, str], ...] = (
    ("rancherctl --install --start", "Install prerequisites and start Rancher (stable)."),
    (
        "rancherctl --install --start --rancher-version v2.8.5",
        "Install and start a pinned Rancher release.",
    ),
    (
        "rancherctl --start --acme-domain rancher.example.com",
        "Start with a Let's Encrypt certificate for the domain.",
    ),
    ("rancherctl --upgrade --rancher-version v2.9.0", "Upgrade to a newer release."),
    ("rancherctl --status", "Show whether the container exists and runs."),
    ("rancherctl --verify", "Exit non-zero unless Rancher is running."),
    ("rancherctl --stop", "Stop and remove the container; data is kept."),
    ("rancherctl --cleanup --force", "Remove container and data without prompting."),
    ("rancherctl --rebuild", "Back up data, reinstall from scratch and start."),
    (
        "rancherctl --start --volume-value '-v /opt/rancher:/var/lib/rancher'",
        "Use a custom volume mount instead of the data directory.",
    ),
    ("rancherctl --install --start --dry-run", "Print what would be executed."),
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Lifecycle manager for a single-node Rancher server container.

        Choose one action (or --install together with --start). Every
        mutation is logged and can be previewed with --dry-run.
        """
    ).strip(),
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"rancherctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)


def _build_runtime(config: AppConfig) -> ContainerRuntime:
    return DockerRuntime(docker_bin=config.runtime.docker_bin)


def _build_host(config: AppConfig) -> HostProvider:
    return HostProvider(
        systemctl_bin=config.runtime.systemctl_bin,
        sudo_bin=config.runtime.sudo_bin,
        package_managers=config.dependencies.package_managers,
    )


def _print_examples() -> None:
    table = Table("Command", "Purpose", title="rancherctl examples")
    for command, purpose in EXAMPLES:
        table.add_row(command, purpose)
    console.print(table)


def _render_status(result: ActionResult) -> None:
    table = Table("Container", "State", "Image", "Started")
    description = result.description
    table.add_row(
        str(result.details.get("name", "")),
        result.state.value.replace("_", " "),
        description.image if description else "-",
        description.started_at if description else "-",
    )
    console.print(table)


def _prepare_paths(config: AppConfig, action: Action) -> None:
    """Check that the data directory and log locations are writable.

    Nothing is created here; the installer creates the data directory
    through the execution gate.
    """
    if action.mutating:
        ancestor = _existing_ancestor(config.data_dir.parent)
        if not os.access(ancestor, os.W_OK):
            raise PathNotWritable(f"Cannot write to directory {ancestor}.")

    log_dir = config.log_file.parent
    if not os.access(log_dir, os.W_OK):
        raise PathNotWritable(f"Cannot write log file {config.log_file}.")


def _existing_ancestor(path: Path) -> Path:
    while not path.exists() and path != path.parent:
        path = path.parent
    return path


def _command_error(op: OperationScope, exc: LifecycleError) -> NoReturn:
    """Log a lifecycle error and terminate with its exit code."""
    rc = int(exc.exit_code)
    if exc.completed:
        op.info(f"Steps completed before the failure: {', '.join(exc.completed)}")
    op.error(str(exc), errors=[str(exc)], rc=rc, context={"completed": exc.completed})
    raise typer.Exit(code=rc)


def _dry_run_complete(op: OperationScope, result: ActionResult) -> None:
    """Standardise dry-run completion messaging."""
    console.print(
        f"[yellow]Dry run[/yellow]: no changes were made for '{result.action.value}'.",
        soft_wrap=True,
    )
    op.success(
        f"Action '{result.action.value}' completed successfully",
        changed=0,
        context=result.to_dict(),
    )


@app.command()
def run(
    install: bool = typer.Option(False, "--install", help="Install prerequisites and pull."),
    start: bool = typer.Option(False, "--start", help="Start or create the container."),
    upgrade: bool = typer.Option(False, "--upgrade", help="Pull a new tag and recreate."),
    stop: bool = typer.Option(False, "--stop", help="Stop and remove the container."),
    cleanup: bool = typer.Option(False, "--cleanup", help="Remove container, optionally data."),
    verify: bool = typer.Option(False, "--verify", help="Fail unless the container runs."),
    status: bool = typer.Option(False, "--status", help="Show container status."),
    rebuild: bool = typer.Option(False, "--rebuild", help="Back up, reinstall and start."),
    rancher_version: str | None = RANCHER_VERSION_OPTION,
    acme_domain: str | None = ACME_DOMAIN_OPTION,
    volume_value: str | None = VOLUME_VALUE_OPTION,
    data_dir: Path | None = DATA_DIR_OPTION,
    log_file: Path | None = LOG_FILE_OPTION,
    force: bool = typer.Option(False, "--force", help="Skip confirmation prompts."),
    offline: bool = typer.Option(False, "--offline", help="Never pull images or packages."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be executed."),
    example: bool = typer.Option(False, "--example", help="Show usage examples and exit."),
    config_file: Path | None = CONFIG_FILE_OPTION,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the rancherctl version and exit.",
    ),
) -> None:
    """Manage the lifecycle of the Rancher server container."""
    if example:
        _print_examples()
        raise typer.Exit(code=ExitCode.OK)

    selected = {
        Action.INSTALL: install,
        Action.START: start,
        Action.UPGRADE: upgrade,
        Action.STOP: stop,
        Action.CLEANUP: cleanup,
        Action.VERIFY: verify,
        Action.STATUS: status,
        Action.REBUILD: rebuild,
    }
    flags = [action for action, enabled in selected.items() if enabled]
    overrides: dict[str, object | None] = {
        "version": rancher_version,
        "acme_domain": acme_domain,
        "volume_value": volume_value,
        "data_dir": str(data_dir) if data_dir is not None else None,
        "log_file": str(log_file) if log_file is not None else None,
        "force": True if force else None,
        "offline": True if offline else None,
        "dry_run": True if dry_run else None,
    }

    try:
        config = load_config(config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]ERROR: {exc}[/red]", soft_wrap=True)
        raise typer.Exit(code=int(exc.exit_code)) from exc

    logger = StructuredLogger(config.log_file, console=console)
    with logger.operation(
        "rancherctl",
        args={"actions": [flag.value for flag in flags], **overrides},
        target={"kind": "container", "name": config.container.name},
    ) as op:
        try:
            action = resolve_action(flags)
            _prepare_paths(config, action)
            result = _execute(config, action, op)
        except LifecycleError as exc:
            _command_error(op, exc)

        if action is Action.STATUS:
            _render_status(result)
        if config.dry_run and action.mutating:
            _dry_run_complete(op, result)
            return
        op.success(
            f"Action '{action.value}' completed successfully",
            changed=result.changed,
            backups=result.backups,
            context=result.to_dict(),
        )


def _execute(config: AppConfig, action: Action, op: OperationScope) -> ActionResult:
    mode = ExecutionMode.DRY_RUN if config.dry_run else ExecutionMode.REAL
    op.info(
        f"Action: {action.value} | Data: {config.data_dir} | "
        f"Version: {config.version or DEFAULT_CHANNEL} | Dry Run: {str(config.dry_run).lower()}"
    )
    controller = LifecycleController(
        config,
        runtime=_build_runtime(config),
        host=_build_host(config),
        gate=ExecutionGate(op=op, mode=mode),
        confirmer=confirmer_for(config.force),
    )
    result = controller.run(action)
    result.details.setdefault("name", config.container.name)
    return result


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    app(args=list(argv) if argv is not None else None)


__all__ = ["app", "main"]
