"""Command line interface for volumelink."""

from __future__ import annotations

import difflib
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from volumelink.config import ConfigError, ConfigManager, VolumeLinkConfig, resolve_with_precedence
from volumelink.drives import DriveDirectory, DriveError, default_drive_directory, locate_mount_path
from volumelink.links import (
    BulkCopier,
    LinkError,
    LinkReconciler,
    ReconcileOutcome,
    ReconcileTrigger,
    ReconciliationAction,
    StateKind,
    VolumeNotMountedError,
    classify,
    describe,
)
from volumelink.logs import configure_logging
from volumelink.offline import OfflineModel, OfflineModelCache, OfflineModelError
from volumelink.service import (
    MOUNT_PROBES,
    ScriptParameters,
    ServiceError,
    default_installer,
    render_script,
    write_script,
)
from volumelink.watch import LinkWatchService, WatchPassResult

console = Console()

_PROBE_CHOICES = click.Choice(["auto", *MOUNT_PROBES])


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """
    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, quiet: bool, mode: str = "detail") -> None:
    """Print ``message`` unless quiet mode suppresses it.

    Args:
        message: Renderable or string to emit.
        quiet: Whether quiet mode is active.
        mode: ``detail``, ``summary``, ``warning`` or ``error``; errors always print.
    """
    if quiet and mode != "error":
        return
    console.print(message)


def _load_config(json_output: bool = False) -> tuple[ConfigManager, VolumeLinkConfig]:
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        config = manager.load()
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        raise  # pragma: no cover - _handle_cli_error always raises
    configure_logging(config.logging)
    return manager, config


def _drive_directory(config: VolumeLinkConfig) -> DriveDirectory:
    return default_drive_directory(config.watch)


def _copier(config: VolumeLinkConfig) -> BulkCopier:
    settings = config.transfer
    return BulkCopier(
        rsync_candidates=settings.rsync_candidates,
        cp_candidates=settings.cp_candidates,
        timeout_seconds=settings.timeout_seconds or None,
    )


def _reconciler(config: VolumeLinkConfig) -> LinkReconciler:
    return LinkReconciler(copier=_copier(config))


def _offline_cache(config: VolumeLinkConfig) -> OfflineModelCache:
    settings = config.offline
    return OfflineModelCache(
        Path(settings.cache_path).expanduser(),
        drives=_drive_directory(config),
        copier=_copier(config),
        models_subpath=settings.models_subpath,
    )


def _outcome_payload(outcome: ReconcileOutcome) -> dict[str, Any]:
    return {
        "link": outcome.link.name,
        "local_path": str(outcome.link.local_path),
        "trigger": outcome.trigger.value,
        "action": outcome.action.value,
        "before": describe(outcome.before),
        "after": describe(outcome.after) if outcome.after is not None else None,
        "backup_path": str(outcome.backup_path) if outcome.backup_path else None,
        "messages": list(outcome.messages),
        "error": str(outcome.error) if outcome.error is not None else None,
    }


def _offline_model_payload(model: OfflineModel) -> dict[str, Any]:
    return {
        "model": model.relative_path,
        "publisher": model.publisher,
        "name": model.name,
        "size": model.size,
        "synced": model.synced,
    }


def _pass_payload(result: WatchPassResult) -> dict[str, Any]:
    return {
        "trigger": result.trigger.value,
        "mount_path": str(result.mount_path) if result.mount_path else None,
        "event": (
            {"kind": result.event.kind.value, "path": str(result.event.path)}
            if result.event is not None
            else None
        ),
        "outcomes": [_outcome_payload(outcome) for outcome in result.outcomes],
    }


def _emit_outcomes(outcomes: list[ReconcileOutcome], *, quiet: bool) -> None:
    for outcome in outcomes:
        if outcome.ok:
            style = "dim" if outcome.action is ReconciliationAction.NO_OP else "green"
            _emit_message(
                f"[{style}]{escape(outcome.link.name)}: {outcome.action.value}[/{style}]"
                f" ({escape(describe(outcome.after or outcome.before))})",
                quiet=quiet,
            )
            if outcome.backup_path is not None:
                _emit_message(
                    f"[yellow]  local data kept at {escape(str(outcome.backup_path))}[/yellow]",
                    quiet=quiet,
                    mode="warning",
                )
        else:
            _emit_message(
                f"[red]{escape(outcome.link.name)}: {escape(str(outcome.error))}[/red]",
                quiet=quiet,
                mode="error",
            )


def _emit_watch_pass(result: WatchPassResult, *, json_output: bool, quiet: bool) -> None:
    if json_output:
        console.print_json(data=_pass_payload(result))
        return
    where = str(result.mount_path) if result.mount_path else "not mounted"
    _emit_message(
        f"[bold]{result.trigger.value}[/bold] pass (drive {escape(where)})",
        quiet=quiet,
        mode="summary",
    )
    _emit_outcomes(result.outcomes, quiet=quiet)


def _without_timestamp(lines: list[str]) -> list[str]:
    return [line for line in lines if not line.startswith("# Last updated:")]


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign ``value`` at the dotted ``path`` inside ``target``.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """
    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(f"Cannot assign into '{segment}' because it is not a mapping in the config file.")
        node = existing
    node[path[-1]] = value


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="volumelink")
def cli() -> None:
    """volumelink keeps application directories linked onto a removable drive."""


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
def status(json_output: bool) -> None:
    """Show the configured drive, each managed link and the OS service."""
    _, config = _load_config(json_output)
    drives = _drive_directory(config)
    service = default_installer(config)
    mount_path = locate_mount_path(config.drive, drives)
    reconciler = _reconciler(config)
    links = []
    for link in config.links:
        state = classify(link.local_path)
        try:
            pending: Optional[str] = reconciler.plan(link, mount_path, trigger=ReconcileTrigger.STARTUP).action.value
        except LinkError:
            pending = None
        links.append(
            {
                "name": link.name,
                "local_path": str(link.local_path),
                "expected_target": str(link.expected_target(mount_path)) if mount_path else None,
                "state": describe(state),
                "pending_action": pending,
                # Real directories hold data written while the drive was away.
                "local_usage": drives.storage_usage(link.local_path) if state.kind is StateKind.DIRECTORY else None,
            }
        )
    service_state = service.status()

    if json_output:
        console.print_json(
            data={
                "drive": config.drive.model_dump(mode="json"),
                "mounted": mount_path is not None,
                "mount_path": str(mount_path) if mount_path else None,
                "initialized": config.initialized,
                "links": links,
                "service": service_state,
            }
        )
        return

    console.print(f"Target drive: {escape(config.drive.path or '(none)')}")
    if config.drive.configured:
        console.print(f"Mounted: {'yes at ' + escape(str(mount_path)) if mount_path else 'no'}")
        if mount_path is not None:
            storage = drives.volume_storage(mount_path)
            if storage is not None:
                console.print(f"Capacity: {storage.used} used of {storage.total}, {storage.available} free")
    console.print(f"Initialized: {config.initialized}")
    for entry in links:
        line = f"{escape(entry['local_path'])}: {escape(entry['state'])}"
        if entry["local_usage"]:
            line += f" ({escape(entry['local_usage'])} stored locally)"
        if entry["pending_action"] and entry["pending_action"] != ReconciliationAction.NO_OP.value:
            line += f" [yellow]next sync: {entry['pending_action']}[/yellow]"
        console.print(line)
    installed = service_state.get("Installed", False)
    console.print(f"System service: {'installed' if installed else 'not installed'}")
    if installed:
        for key, value in sorted(service_state.items()):
            if key != "Installed":
                console.print(f"  {key}: {'ok' if value else 'inactive'}")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of a table.")
def drives(json_output: bool) -> None:
    """List external and removable drives that can hold the links."""
    _, config = _load_config(json_output)
    directory = _drive_directory(config)
    try:
        found = directory.list_drives()
    except DriveError as exc:
        _handle_cli_error(str(exc), code="drive_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"drives": [drive.model_dump(mode="json") for drive in found]})
        return
    if not found:
        console.print("[yellow]No external drives found.[/yellow]")
        return

    table = Table(title="Drives", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Mount path")
    table.add_column("Id", overflow="fold")
    for index, drive in enumerate(found, start=1):
        table.add_row(str(index), escape(drive.display_name), escape(str(drive.mount_path or "")), escape(drive.id))
    console.print(table)


@cli.command()
@click.option("--drive", "drive_path", type=str, help="Mount path of the drive to use.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
def configure(drive_path: Optional[str], json_output: bool) -> None:
    """Choose the drive that managed links are relocated onto."""
    manager, config = _load_config(json_output)
    directory = _drive_directory(config)

    if drive_path is None:
        if json_output:
            _handle_cli_error("--drive is required with --json.", code="cli_error", json_output=True)
            return
        try:
            found = directory.list_drives()
        except DriveError as exc:
            raise click.ClickException(str(exc)) from exc
        if not found:
            raise click.ClickException("No drives found. Pass --drive PATH explicitly.")
        console.print("Available drives:")
        for index, drive in enumerate(found, start=1):
            console.print(f"  {index}. {escape(drive.display_name)}  {escape(str(drive.mount_path))}")
        answer = click.prompt("Enter a path or number", type=str).strip()
        if answer.isdigit() and 1 <= int(answer) <= len(found):
            drive_path = str(found[int(answer) - 1].mount_path)
        else:
            drive_path = answer

    drive = directory.drive_info(Path(drive_path).expanduser())
    if drive is None or drive.mount_path is None:
        _handle_cli_error(
            f"Path not found or not a valid mount: {drive_path}", code="drive_error", json_output=json_output
        )
        return

    changes: dict[str, Any] = {
        "drive.path": str(drive.mount_path),
        "drive.id": drive.id,
        "drive.name": drive.display_name,
    }
    if config.drive.path and config.drive.path != str(drive.mount_path):
        changes["initialized"] = False
    try:
        updated = manager.update(**changes)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"drive": updated.drive.model_dump(mode="json"), "initialized": updated.initialized})
        return
    console.print(f"[green]Configured target drive: {escape(str(drive.mount_path))}[/green]")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def init(json_output: bool, quiet: bool) -> None:
    """Move existing local data onto the drive and create the links."""
    manager, config = _load_config(json_output)
    if not config.drive.path:
        _handle_cli_error("Run `volumelink configure` first to set the target drive.", code="cli_error", json_output=json_output)
        return

    mount_path = locate_mount_path(config.drive, _drive_directory(config))
    if mount_path is None:
        # A leftover mount point directory is not the drive; never migrate into it.
        missing = VolumeNotMountedError(config.drive.path)
        _handle_cli_error(str(missing), code="link_error", json_output=json_output, original=missing)
        return
    progress = None if json_output or quiet else (lambda message: console.print(escape(message)))
    if progress is not None:
        console.print(f"Initializing links for {escape(str(mount_path))}...")
    try:
        outcomes = _reconciler(config).initialize(config.links, mount_path, progress=progress)
        manager.update(initialized=True)
    except (LinkError, ConfigError) as exc:
        code = "config_error" if isinstance(exc, ConfigError) else "link_error"
        _handle_cli_error(str(exc), code=code, json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"initialized": True, "outcomes": [_outcome_payload(o) for o in outcomes]})
        return
    _emit_message("[green]Done.[/green]", quiet=quiet, mode="summary")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def sync(json_output: bool, quiet: bool) -> None:
    """Reconcile every managed link once against the drive's current status."""
    _, config = _load_config(json_output)
    if not config.drive.configured:
        _handle_cli_error("Run `volumelink configure` first to set the target drive.", code="cli_error", json_output=json_output)
        return
    service = LinkWatchService(
        config,
        drives=_drive_directory(config),
        reconciler=_reconciler(config),
    )
    try:
        result = service.process_once(ReconcileTrigger.STARTUP)
    except DriveError as exc:
        _handle_cli_error(str(exc), code="drive_error", json_output=json_output, original=exc)
        return
    _emit_watch_pass(result, json_output=json_output, quiet=quiet)
    if result.failures:
        raise SystemExit(1)


@cli.command()
@click.option("--once", is_flag=True, help="Run a single pass and exit.")
@click.option("--settle", type=float, help="Seconds to wait after a mount event before reconciling.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing each pass.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def watch(once: bool, settle: Optional[float], json_output: bool, quiet: bool) -> None:
    """Watch for the drive coming and going and reconcile the links each time."""
    _, config = _load_config(json_output)
    if not config.drive.configured:
        _handle_cli_error("Run `volumelink configure` first to set the target drive.", code="cli_error", json_output=json_output)
        return
    if settle is not None and settle < 0:
        raise click.ClickException("--settle must not be negative.")

    drives_directory = _drive_directory(config)
    if once:
        service = LinkWatchService(config, drives=drives_directory, reconciler=_reconciler(config))
        result = service.process_once(ReconcileTrigger.STARTUP)
        _emit_watch_pass(result, json_output=json_output, quiet=quiet)
        if result.failures:
            raise SystemExit(1)
        return

    service = LinkWatchService(
        config,
        drives=drives_directory,
        reconciler=_reconciler(config),
        settle_override=settle,
    )
    if not json_output:
        _emit_message("[cyan]Watching for drive changes. Press Ctrl+C to stop.[/cyan]", quiet=quiet)
    try:
        service.watch(lambda result: _emit_watch_pass(result, json_output=json_output, quiet=quiet))
    except KeyboardInterrupt:
        service.stop()
        if not json_output:
            _emit_message("[yellow]Watch stopped by user request.[/yellow]", quiet=quiet, mode="summary")
    except RuntimeError as exc:
        _handle_cli_error(str(exc), code="watch_runtime_error", json_output=json_output, original=exc)


@cli.command()
@click.option("--output", type=click.Path(dir_okay=False, path_type=str), help="Write the script to this file.")
@click.option("--probe", type=_PROBE_CHOICES, help="How the script confirms the drive is mounted.")
def script(output: Optional[str], probe: Optional[str]) -> None:
    """Print or write the unattended reconciliation script."""
    _, config = _load_config()
    try:
        text = render_script(ScriptParameters.from_config(config, probe=probe))
        if output is None:
            click.echo(text, nl=False)
            return
        path = write_script(Path(output), text)
    except ServiceError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Wrote {escape(str(path))}[/green]")


@cli.group()
def service() -> None:
    """Install the unattended script as a systemd user unit or launchd agent."""


@service.command("install")
@click.option("--probe", type=_PROBE_CHOICES, help="How the script confirms the drive is mounted.")
@click.option("--no-activate", is_flag=True, help="Write files without calling systemctl or launchctl.")
def service_install(probe: Optional[str], no_activate: bool) -> None:
    """Write the script and service definition, then activate it."""
    _, config = _load_config()
    if not config.drive.path:
        raise click.ClickException("Run `volumelink configure` and `volumelink init` first.")
    installer = default_installer(config, manage=not no_activate)
    try:
        text = render_script(ScriptParameters.from_config(config, probe=probe))
        written = installer.install(text)
    except ServiceError as exc:
        raise click.ClickException(str(exc)) from exc
    for path in written:
        console.print(f"Wrote {escape(str(path))}")
    console.print("[green]Service installed. Links are reconciled at login and when drives change.[/green]")


@service.command("uninstall")
@click.option("--no-activate", is_flag=True, help="Remove files without calling systemctl or launchctl.")
def service_uninstall(no_activate: bool) -> None:
    """Deactivate the service and remove its files."""
    _, config = _load_config()
    installer = default_installer(config, manage=not no_activate)
    try:
        removed = installer.uninstall()
    except ServiceError as exc:
        raise click.ClickException(str(exc)) from exc
    for path in removed:
        console.print(f"Removed {escape(str(path))}")
    console.print("[green]Service uninstalled.[/green]")


@service.command("status")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
def service_status(json_output: bool) -> None:
    """Report whether the service is installed and active."""
    _, config = _load_config(json_output)
    state = default_installer(config).status()
    if json_output:
        console.print_json(data=state)
        return
    for key, value in sorted(state.items()):
        console.print(f"{key}: {'yes' if value else 'no'}")


@cli.group()
def offline() -> None:
    """Keep local copies of drive models for use while the drive is unplugged."""


@offline.command("list")
@click.option("--no-sizes", is_flag=True, help="Skip measuring each model with du.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of a table.")
def offline_list(no_sizes: bool, json_output: bool) -> None:
    """List models on the drive and whether each one is cached locally."""
    _, config = _load_config(json_output)
    cache = _offline_cache(config)
    mount_path = locate_mount_path(config.drive, _drive_directory(config)) if config.drive.configured else None
    if mount_path is not None:
        models = cache.list_models(mount_path, with_sizes=not no_sizes)
    else:
        models = cache.cached_models(with_sizes=not no_sizes)

    if json_output:
        console.print_json(
            data={
                "mounted": mount_path is not None,
                "mount_path": str(mount_path) if mount_path else None,
                "cache_path": str(cache.cache_root),
                "models": [_offline_model_payload(model) for model in models],
            }
        )
        return
    if mount_path is None:
        console.print("[yellow]Drive not mounted; showing cached models only.[/yellow]")
    if not models:
        console.print("[yellow]No models found.[/yellow]")
        return

    table = Table(title="Offline models", show_lines=False)
    table.add_column("Model", overflow="fold")
    table.add_column("Size", justify="right")
    table.add_column("Offline")
    for model in models:
        table.add_row(
            escape(model.relative_path),
            escape(model.size or "-"),
            "[green]yes[/green]" if model.synced else "[dim]no[/dim]",
        )
    console.print(table)


@offline.command("sync")
@click.argument("model")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def offline_sync(model: str, json_output: bool, quiet: bool) -> None:
    """Copy MODEL (publisher/repo) from the drive into the offline cache."""
    _, config = _load_config(json_output)
    if not config.drive.configured:
        _handle_cli_error("Run `volumelink configure` first to set the target drive.", code="cli_error", json_output=json_output)
        return
    mount_path = locate_mount_path(config.drive, _drive_directory(config))
    if mount_path is None:
        missing = VolumeNotMountedError(config.drive.path)
        _handle_cli_error(str(missing), code="link_error", json_output=json_output, original=missing)
        return
    progress = None if json_output or quiet else (lambda message: console.print(escape(message)))
    try:
        path = _offline_cache(config).sync(model, mount_path, progress=progress)
    except OfflineModelError as exc:
        _handle_cli_error(str(exc), code="offline_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"model": model.strip("/"), "synced": True, "path": str(path)})
        return
    _emit_message(f"[green]{escape(model)} is available offline at {escape(str(path))}[/green]", quiet=quiet, mode="summary")


@offline.command("unsync")
@click.argument("model")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of text.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
def offline_unsync(model: str, json_output: bool, quiet: bool) -> None:
    """Remove MODEL (publisher/repo) from the offline cache."""
    _, config = _load_config(json_output)
    progress = None if json_output or quiet else (lambda message: console.print(escape(message)))
    try:
        removed = _offline_cache(config).unsync(model, progress=progress)
    except OfflineModelError as exc:
        _handle_cli_error(str(exc), code="offline_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"model": model.strip("/"), "synced": False, "removed": removed})
        return
    if removed:
        _emit_message(f"[green]Removed {escape(model)} from the offline cache.[/green]", quiet=quiet, mode="summary")
    else:
        _emit_message(f"[yellow]{escape(model)} is not in the offline cache.[/yellow]", quiet=quiet, mode="warning")


@cli.group()
def config() -> None:
    """Manage volumelink configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="json"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = _without_timestamp(manager.read_text().splitlines())
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'watch.settle_seconds'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=VolumeLinkConfig(), file_overrides=file_data)
        manager.save(file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    after = _without_timestamp(manager.read_text().splitlines())
    diff = list(
        difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )

    if not diff:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session."""
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=VolumeLinkConfig(), file_overrides=parsed)
        manager.save(parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
