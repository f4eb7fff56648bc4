"""modsync CLI — install and keep content modules in sync with a project."""

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modsync import __version__

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Console log level (default: MODSYNC_LOG_LEVEL or WARNING)")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also log to this file")
def main(log_level: str | None, log_file: str | None):
    """modsync — install content modules and keep them in sync.

    Modules are bundles of agents, workflows, tasks and tools. modsync
    copies them into a project, tracks every file it writes, and on
    update never silently discards local edits.
    """
    from modsync.utils.logging_config import setup_logging

    setup_logging(log_level, log_file)


def _load_config(project_dir: str, config_path: str | None = None, source_root: str | None = None):
    from modsync.config import load_config
    from modsync.errors import ConfigError

    try:
        config = load_config(project_dir, config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        raise SystemExit(2)
    if source_root:
        config.source_root = source_root
    return config


def _parse_pairs(values: tuple, what: str) -> dict[str, str]:
    pairs = {}
    for value in values:
        key, sep, rest = value.partition("=")
        if not sep or not key or not rest:
            raise click.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint=what)
        pairs[key.strip()] = rest.strip()
    return pairs


def _parse_settings(values: tuple) -> dict[str, dict]:
    settings: dict[str, dict] = {}
    for key, value in _parse_pairs(values, "--set").items():
        module_id, dot, name = key.partition(".")
        if not dot or not name:
            raise click.BadParameter(f"expected MODULE.KEY=VALUE, got {key!r}", param_hint="--set")
        settings.setdefault(module_id, {})[name] = value
    return settings


# ── Install ──────────────────────────────────────────────────────────


@main.command()
@click.argument("project_dir", type=click.Path(file_okay=False))
@click.option("--module", "-m", "modules", multiple=True, help="Module to install (repeatable)")
@click.option("--custom", multiple=True, help="Custom module source as ID=PATH")
@click.option("--external", multiple=True, help="Already fetched external module source as ID=PATH")
@click.option("--target", "targets", multiple=True, help="Integration target to record (repeatable)")
@click.option("--remove", multiple=True, help="Installed module to remove (repeatable)")
@click.option("--set", "settings", multiple=True, help="Module config value as MODULE.KEY=VALUE")
@click.option("--update/--no-update", default=None, help="Confirm or refuse updating an existing install")
@click.option("--source-root", default=None, type=click.Path(file_okay=False), help="Built-in module root")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file")
def install(
    project_dir: str,
    modules: tuple,
    custom: tuple,
    external: tuple,
    targets: tuple,
    remove: tuple,
    settings: tuple,
    update: bool | None,
    source_root: str | None,
    config_path: str | None,
):
    """Install or update modules in PROJECT_DIR."""
    from modsync.errors import DecisionRequired, ModsyncError, ReconcileError, UpdateConfirmationRequired
    from modsync.sync.preflight import DecisionAction, DecisionRecord
    from modsync.sync.reconciler import InstallRequest, Reconciler

    config = _load_config(project_dir, config_path, source_root)
    custom_paths = _parse_pairs(custom, "--custom")
    request = InstallRequest(
        project_dir=project_dir,
        modules=list(dict.fromkeys([*modules, *custom_paths])),
        custom_paths=custom_paths,
        external_paths=_parse_pairs(external, "--external"),
        targets=list(targets) or None,
        remove=list(remove),
        module_config=_parse_settings(settings),
        confirm_update=bool(update),
    )

    console.print(f"\n[bold blue]modsync[/] — Installing into: {project_dir}\n")

    reconciler = Reconciler(config)
    decisions = DecisionRecord()
    while True:
        try:
            result = reconciler.run(request, decisions)
            break
        except UpdateConfirmationRequired as e:
            if update is False or not click.confirm(f"{e} Update now?", default=True):
                console.print("[yellow]Existing installation left unchanged.[/]")
                raise SystemExit(1)
            request.confirm_update = True
        except DecisionRequired as e:
            for module in e.report.ambiguous:
                console.print(f"  [yellow]![/] Source of custom module [cyan]{module.module_id}[/] is missing: {module.source_path}")
                action = click.prompt(
                    "  Keep it as installed, relocate its source, or remove it?",
                    type=click.Choice([a.value for a in DecisionAction]),
                    default=DecisionAction.KEEP.value,
                )
                new_path = None
                if action == DecisionAction.RELOCATE.value:
                    new_path = click.prompt("  New source path", type=click.Path(exists=True, file_okay=False))
                decisions.set(module.module_id, action, new_path)
        except ReconcileError as e:
            console.print(Panel(str(e), title=f"Failed while {e.phase.value.replace('_', ' ')}", style="red"))
            if e.result is not None and e.result.backup_dirs:
                console.print("  Local edits are safe in:")
                for path in e.result.backup_dirs:
                    console.print(f"    {path}")
                console.print("  Re-run the same command to finish the install.")
            raise SystemExit(1)
        except ModsyncError as e:
            console.print(f"[red]{e}[/]")
            raise SystemExit(1)

    _print_result(result)


def _print_result(result):
    table = Table(title=f"Modules ({'update' if result.update else 'fresh install'})")
    table.add_column("Module", style="cyan")
    table.add_column("Status")

    rows = (
        [(m, "[green]installed[/]") for m in result.installed]
        + [(m, "[yellow]partial[/]") for m in result.partial]
        + [(m, "[dim]preserved[/]") for m in result.preserved]
        + [(m, "[red]removed[/]") for m in result.removed]
    )
    for module_id, status in rows:
        table.add_row(module_id, status)
    console.print(table)

    console.print(f"  Files written: {result.files_written}")
    if result.pruned:
        console.print(f"  Stale files removed: {len(result.pruned)}")
    if result.custom_restored:
        console.print(f"  Custom files kept: {len(result.custom_restored)}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")
    console.print("\n[green]Done.[/]")


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@click.argument("project_dir", type=click.Path(file_okay=False))
@click.option("--source-root", default=None, type=click.Path(file_okay=False), help="Built-in module root")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file")
def status(project_dir: str, source_root: str | None, config_path: str | None):
    """Show what is installed in PROJECT_DIR."""
    from modsync.sources.provider import ModuleSourceProvider
    from modsync.state.detector import StateDetector

    config = _load_config(project_dir, config_path, source_root)
    provider = ModuleSourceProvider(config.source_root or None, skip_dirs=config.skip_dirs)
    state = StateDetector(config, provider).detect(config.install_root(project_dir))

    if not state.installed:
        console.print("[yellow]Nothing installed.[/]")
        return

    source = "manifest" if state.from_manifest else "directory scan"
    console.print(f"\n[bold blue]modsync[/] — {state.root} (version {state.version or 'unknown'}, from {source})\n")

    table = Table(title=f"Installed modules ({len(state.modules)})")
    table.add_column("Module", style="cyan")
    table.add_column("Origin")
    table.add_column("Version")
    table.add_column("Installed")
    table.add_column("Updated")
    table.add_column("Notes")
    for record in state.modules:
        notes = []
        if record.partial:
            notes.append("[yellow]partial[/]")
        if record.id in state.orphaned:
            notes.append("[red]source missing[/]")
        table.add_row(
            record.id, record.origin.value, record.version or "",
            record.install_date[:10], record.last_updated[:10], " ".join(notes),
        )
    console.print(table)

    if state.targets:
        console.print(f"  Targets: {', '.join(state.targets)}")
    if state.manifest_error:
        console.print(f"  [yellow]![/] Manifest unreadable: {state.manifest_error}")


# ── Modules ──────────────────────────────────────────────────────────


@main.command(name="modules")
@click.option("--source-root", default=None, type=click.Path(file_okay=False), help="Built-in module root")
def list_modules(source_root: str | None):
    """List the built-in modules available to install."""
    from modsync.sources.provider import ModuleSourceProvider

    config = _load_config(".", None, source_root)
    available = ModuleSourceProvider(config.source_root or None, skip_dirs=config.skip_dirs).list_available()

    if not available:
        console.print("[yellow]No modules found. Set --source-root or MODSYNC_SOURCE_ROOT.[/]")
        return

    table = Table(title=f"Available modules ({len(available)})")
    table.add_column("Module", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Default", justify="center")
    table.add_column("Description")
    for source in available:
        default = "[green]Y[/]" if source.default_selected else ""
        table.add_row(source.module_id, source.display_name, source.version or "", default, source.description[:60])
    console.print(table)


# ── Catalog ──────────────────────────────────────────────────────────


@main.command()
@click.argument("project_dir", type=click.Path(file_okay=False))
@click.option(
    "--kind", "-k", default="modules",
    type=click.Choice(["modules", "workflows", "agents", "tasks", "files"]),
)
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file")
def catalog(project_dir: str, kind: str, config_path: str | None):
    """Print one of the generated catalogs of PROJECT_DIR."""
    from modsync.catalog.tables import TABLES_BY_KIND, read_table

    config = _load_config(project_dir, config_path)
    spec = TABLES_BY_KIND[kind]
    rows = read_table(config.state_dir(config.install_root(project_dir)), spec)

    if not rows:
        console.print(f"[yellow]No {kind} catalogued.[/]")
        return

    table = Table(title=f"{spec.filename} ({len(rows)} rows)")
    for column in spec.columns:
        table.add_column(column, style="cyan" if column == "name" else None)
    for row in sorted(rows, key=spec.sort_key):
        table.add_row(*(row[c][:12] if c == "hash" else row[c] for c in spec.columns))
    console.print(table)


# ── Resolve ──────────────────────────────────────────────────────────


@main.command()
@click.argument("project_dir", type=click.Path(file_okay=False))
@click.argument("flat_name")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="Config file")
def resolve(project_dir: str, flat_name: str, config_path: str | None):
    """Map a flat artifact name back to its installed file."""
    from modsync.errors import NamingError
    from modsync.utils.naming import installed_path_for, parse_flat_name

    config = _load_config(project_dir, config_path)
    try:
        artifact = parse_flat_name(flat_name)
    except NamingError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)

    install_root = config.install_root(project_dir)
    candidates = [installed_path_for(artifact, suffix) for suffix in (".md", ".xml", ".yaml", ".yml")]
    for rel in candidates:
        if (install_root / rel).is_file():
            console.print(f"{artifact.key} ({artifact.kind.value}) -> {config.folder_name}/{rel}")
            return
    console.print(f"[yellow]{artifact.key} ({artifact.kind.value}) is not installed.[/]")
    raise SystemExit(1)


# ── Cache ────────────────────────────────────────────────────────────


@main.group()
def cache():
    """Inspect and prune the custom module cache."""


@cache.command(name="list")
@click.argument("project_dir", type=click.Path(file_okay=False))
def cache_list(project_dir: str):
    """List cached module sources."""
    from modsync.cache.module_cache import ModuleCache
    from modsync.sync.reconciler import CACHE_DIR

    config = _load_config(project_dir)
    module_cache = ModuleCache(config.state_dir(config.install_root(project_dir)) / CACHE_DIR, config.skip_dirs)
    entries = module_cache.list_entries()

    if not entries:
        console.print("[yellow]Cache is empty.[/]")
        return

    table = Table(title=f"Cached modules ({len(entries)})")
    table.add_column("Module", style="cyan")
    table.add_column("Cached at")
    table.add_column("Source hash")
    table.add_column("Copy hash")
    for entry in entries:
        table.add_row(entry.module_id, entry.cached_at[:19], entry.source_hash[:12], entry.cache_hash[:12])
    console.print(table)


@cache.command(name="prune")
@click.argument("project_dir", type=click.Path(file_okay=False))
def cache_prune(project_dir: str):
    """Drop cached modules that are no longer installed."""
    from modsync.cache.module_cache import ModuleCache
    from modsync.models.installation import Origin
    from modsync.state.detector import StateDetector
    from modsync.sync.reconciler import CACHE_DIR

    config = _load_config(project_dir)
    install_root = config.install_root(project_dir)
    state = StateDetector(config).detect(install_root)
    keep = [m.id for m in state.modules if m.origin is not Origin.BUILT_IN]

    module_cache = ModuleCache(config.state_dir(install_root) / CACHE_DIR, config.skip_dirs)
    pruned = module_cache.reconcile_against(keep)
    if not pruned:
        console.print("[green]Nothing to prune.[/]")
        return
    for module_id in pruned:
        console.print(f"  Pruned: [cyan]{module_id}[/]")


# ── Uninstall ────────────────────────────────────────────────────────


@main.command()
@click.argument("project_dir", type=click.Path(file_okay=False))
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def uninstall(project_dir: str, yes: bool):
    """Remove every unmodified file modsync installed in PROJECT_DIR."""
    from modsync.sync.reconciler import Reconciler

    config = _load_config(project_dir)
    if not config.install_root(project_dir).is_dir():
        console.print("[yellow]Nothing installed.[/]")
        return
    if not yes and not click.confirm(f"Uninstall modsync content from {project_dir}?", default=False):
        return

    result = Reconciler(config).uninstall(project_dir)
    console.print(f"  Removed {len(result.removed)} files.")
    if result.kept:
        console.print(f"  [yellow]Kept {len(result.kept)} custom or modified files:[/]")
        for rel in result.kept:
            console.print(f"    {rel}")


if __name__ == "__main__":
    main()
