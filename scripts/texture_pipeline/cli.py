"""
Command-line interface for the texture pipeline.
Provides build, watch, deploy, list, status and decompose commands.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table

from .builder import PackBuilder
from .config import ENV_PREFIX, PipelineConfig, DEFAULT_CONFIG_FILES
from .errors import PipelineError, ConfigurationError
from .pipeline import setup_logging
from .processing.atlas import AtlasDecomposer, CoordinateMap
from .processing.package import PACK_DESCRIPTOR
from .utils.deploy import Deployer, load_deploy_config
from .watch import (
    ChangeScopeResolver,
    WatchSession,
    create_build_runner,
    resolve_profiles_to_watch,
    watch_paths_for,
)

__version__ = "1.0.0"

TERRAIN_MAP_FILENAME = "atlas_coordinates_terrain.json"
ITEMS_MAP_FILENAME = "atlas_coordinates_items.json"

app = typer.Typer(
    name="texture-pipeline",
    help="Texture pipeline for the Pluie texture pack - build, watch, deploy and decompose profiles",
    add_completion=False,
    rich_markup_mode="rich",
    epilog="""
[bold]Examples:[/bold]
  [cyan]texture-pipeline build b1.7.3[/cyan]                     Build one profile
  [cyan]texture-pipeline build all[/cyan]                        Build every profile
  [cyan]texture-pipeline watch all --no-deploy[/cyan]            Rebuild on change without deploying
  [cyan]texture-pipeline decompose terrain.png --detect-only[/cyan]  Report occupied atlas cells

[bold]Environment Variables:[/bold]
  Use [cyan]texture-pipeline config --env-vars[/cyan] to see all available variables.
    """
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Texture pipeline command line."""
    setup_logging(logging.DEBUG if verbose else logging.INFO)


@app.command()
def build(
    profile: Optional[str] = typer.Argument(None, help="Profile to build, or 'all'"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Build texture pack archives."""
    config = _load_config(config_file)
    builder = PackBuilder(config)
    profiles = _select_profiles(profile or config.default_profile, builder)

    if len(profiles) > 1:
        console.print(f"[bold blue]Building all profiles:[/bold blue] {', '.join(profiles)}")

    succeeded, failed = 0, 0
    for profile_id in profiles:
        console.print(f"[bold blue]Building {config.pack_name} {profile_id}...[/bold blue]")
        try:
            report = builder.build_sync(profile_id)
        except PipelineError as e:
            console.print(f"[red]✗[/red] {profile_id}: {e}")
            failed += 1
            continue

        console.print(f"[green]✓[/green] Processed {len(report.result.processed)} files", end="")
        if report.result.skipped:
            console.print(f", skipped {len(report.result.skipped)}", end="")
        console.print()
        console.print(f"[green]✓[/green] {report.artifact} ({report.size_kb:.2f} KB)")
        succeeded += 1

    if len(profiles) > 1:
        console.print(f"\n[bold]Build summary:[/bold] {succeeded} succeeded, {failed} failed")
    if failed:
        raise typer.Exit(1)


@app.command()
def watch(
    profile: Optional[str] = typer.Argument(None, help="Profile to watch, or 'all'"),
    no_deploy: bool = typer.Option(False, "--no-deploy", help="Build on change without deploying"),
    debounce: Optional[int] = typer.Option(None, "--debounce", help="Debounce window in milliseconds"),
    no_notifications: bool = typer.Option(False, "--no-notifications", help="Suppress change notifications"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Watch sources and rebuild affected profiles on change."""
    config = _load_config(config_file).apply_hotreload_rc()
    if no_deploy:
        config.deploy_on_change = False
    if debounce is not None:
        config.debounce_ms = max(100, debounce)
    if no_notifications:
        config.notifications = False

    builder = PackBuilder(config)
    try:
        profiles = resolve_profiles_to_watch(profile, builder.available_profiles(), config.watch_all_profiles)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    paths = watch_paths_for(config, profiles)
    if not paths:
        console.print("[red]✗[/red] Nothing to watch")
        raise typer.Exit(1)

    resolver = ChangeScopeResolver(config.versions_dir, profiles, config.shared_name)
    session = WatchSession(config, resolver, create_build_runner(config, builder))

    console.print("[bold blue]Starting hot reload[/bold blue]")
    console.print(
        f"[dim]Auto-deploy {'ON' if config.deploy_on_change else 'OFF'}, "
        f"debounce {config.debounce_ms}ms[/dim]"
    )
    console.print(f"[green]✓[/green] Watching: {', '.join(profiles)}")
    console.print("Press Ctrl+C to stop.")

    try:
        asyncio.run(_run_watch(session, paths))
    except KeyboardInterrupt:
        console.print("\n[green]✓[/green] Hot reload stopped")


@app.command()
def deploy(
    profile: Optional[str] = typer.Argument(None, help="Profile to deploy, or 'all' (default: every configured profile)"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Build and deploy texture packs to the locations in .deployrc."""
    config = _load_config(config_file)
    try:
        targets = load_deploy_config(config.deploy_config)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    builder = PackBuilder(config)
    deployer = Deployer(config.backups_dir, config.pack_name)
    profiles = _select_profiles(profile, builder) if profile else sorted(targets)

    succeeded, failed = 0, 0
    for profile_id in profiles:
        target = targets.get(profile_id)
        if target is None:
            console.print(f"[yellow]Warning:[/yellow] No deployment configuration for profile: {profile_id}")
            continue
        try:
            report = builder.build_sync(profile_id)
            destination = deployer.deploy(profile_id, report.artifact, target)
        except PipelineError as e:
            console.print(f"[red]✗[/red] {profile_id}: {e}")
            failed += 1
            continue
        console.print(f"[green]✓[/green] Deployed {profile_id} to {destination}")
        succeeded += 1

    console.print(f"\n[bold]Deploy summary:[/bold] {succeeded} succeeded, {failed} failed")
    if failed:
        raise typer.Exit(1)


@app.command("list")
def list_profiles(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """List available profiles."""
    config = _load_config(config_file)
    builder = PackBuilder(config)
    profiles = builder.available_profiles()

    if not profiles:
        console.print(f"[yellow]No profiles found in {config.versions_dir}[/yellow]")
        return

    table = Table(title="Available Profiles")
    table.add_column("Profile", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("pack.txt", justify="center")
    table.add_column("pack.png", justify="center")
    table.add_column("Transformer", justify="center")

    for profile_id in profiles:
        profile_dir = config.profile_dir(profile_id)
        table.add_row(
            profile_id,
            builder.describe(profile_id),
            _mark((profile_dir / PACK_DESCRIPTOR).is_file()),
            _mark((profile_dir / "pack.png").is_file()),
            _mark(profile_id in builder.pipeline.registry),
        )
    console.print(table)


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Show project directories, config files and registered transformers."""
    config = _load_config(config_file)
    builder = PackBuilder(config)

    table = Table(title="Texture Pipeline Status")
    table.add_column("Item", style="cyan")
    table.add_column("Path", style="white")
    table.add_column("Present", justify="center")

    coordinates_dir = Path(config.coordinates_dir)
    for label, path in [
        ("Versions directory", Path(config.versions_dir)),
        ("Shared assets", config.shared_assets_dir),
        ("Output directory", Path(config.output_dir)),
        ("Backups directory", Path(config.backups_dir)),
        ("Deploy config", Path(config.deploy_config)),
        ("Hot reload config", Path(config.hotreload_config)),
        ("Terrain coordinates", coordinates_dir / TERRAIN_MAP_FILENAME),
        ("Item coordinates", coordinates_dir / ITEMS_MAP_FILENAME),
    ]:
        table.add_row(label, str(path), _mark(path.exists()))
    console.print(table)

    profiles = builder.available_profiles()
    console.print(f"\n[bold]Profiles:[/bold] {', '.join(profiles) if profiles else 'none'}")
    console.print("[bold]Transformers:[/bold]")
    for transformer in builder.pipeline.registry.list():
        console.print(f"  • {transformer.profile_id}: {transformer.name}")


@app.command()
def decompose(
    atlas_file: Path = typer.Argument(..., help="Atlas image to slice (terrain.png or items.png)"),
    detect_only: bool = typer.Option(False, "--detect-only", help="Only report non-empty cells"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing texture files"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Output directory"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Slice an atlas back into individual textures."""
    config = _load_config(config_file)
    if not atlas_file.is_file():
        console.print(f"[red]✗[/red] Atlas file not found: {atlas_file}")
        raise typer.Exit(1)

    is_items = "items" in atlas_file.name.lower()
    map_path = Path(config.coordinates_dir) / (ITEMS_MAP_FILENAME if is_items else TERRAIN_MAP_FILENAME)
    default_dir = config.shared_assets_dir / ("items" if is_items else "blocks")
    decomposer = AtlasDecomposer()

    console.print(f"[bold blue]Decomposing {atlas_file}[/bold blue]")
    try:
        coordinate_map = CoordinateMap.from_file(map_path) if map_path.is_file() else None

        if detect_only:
            cell_size = coordinate_map.cell_size if coordinate_map else config.tile_size
            cells = decomposer.detect_non_empty(atlas_file, cell_size)
            console.print(f"[green]✓[/green] Found {len(cells)} non-empty cells")
            for grid_x, grid_y in cells:
                console.print(f"  ({grid_x}, {grid_y})")
            return

        if coordinate_map is not None:
            target = output_dir or default_dir
            console.print(f"[dim]Using coordinate map: {map_path}[/dim]")
            report = decomposer.decompose(atlas_file, coordinate_map, target, force=force)
        else:
            target = output_dir or config.shared_assets_dir
            console.print("[dim]No coordinate map found, using built-in terrain layout[/dim]")
            report = decomposer.decompose_by_category(atlas_file, target, force=force)
    except PipelineError as e:
        console.print(f"[red]✗[/red] Failed to decompose textures: {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Extracted {len(report.extracted)} textures into {target}")
    if report.skipped:
        console.print(f"[yellow]Skipped {len(report.skipped)} existing files (use --force to overwrite)[/yellow]")
    if report.failed:
        console.print(f"[red]Failed to extract {len(report.failed)} textures[/red]")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    validate_config: bool = typer.Option(False, "--validate", help="Validate configuration file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Configuration file path"),
    env_vars: bool = typer.Option(False, "--env-vars", help="Show available environment variables")
):
    """Manage pipeline configuration."""
    if env_vars:
        _display_env_vars()
        return

    if not (show or validate_config):
        console.print("Use --show to display configuration, --validate to check it, or --env-vars to see environment variables.")
        return

    config = _load_config(config_file)
    if show:
        _display_config(config)

    if validate_config:
        errors = config.validate()
        if errors:
            console.print("[red]Configuration validation errors:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            raise typer.Exit(1)
        console.print("[green]✓ Configuration is valid[/green]")


@app.command()
def version():
    """Show texture pipeline version information."""
    console.print("[bold]Texture Pipeline for the Pluie texture pack[/bold]")
    console.print(f"Version: {__version__}")
    console.print("Python: " + sys.version.split()[0])

    import importlib.metadata

    table = Table(show_header=False)
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")
    for name in ("Pillow", "numpy", "watchdog", "Jinja2", "typer", "rich"):
        try:
            table.add_row(name, importlib.metadata.version(name))
        except importlib.metadata.PackageNotFoundError:
            table.add_row(name, "[red]Not installed[/red]")

    console.print("\n[bold]Dependencies:[/bold]")
    console.print(table)


async def _run_watch(session: WatchSession, paths: List[Path]) -> None:
    await session.start(paths)
    try:
        await asyncio.Event().wait()
    finally:
        await session.stop()


def _select_profiles(target: str, builder: PackBuilder) -> List[str]:
    if target != "all":
        return [target]
    profiles = builder.available_profiles()
    if not profiles:
        console.print(f"[red]✗[/red] No profile directories found in {builder.config.versions_dir}")
        raise typer.Exit(1)
    return profiles


def _mark(present: bool) -> str:
    return "[green]✓[/green]" if present else "[red]✗[/red]"


def _load_config(config_file: Optional[Path]) -> PipelineConfig:
    """Load configuration from file or use defaults with environment variable support."""
    if config_file:
        if not config_file.exists():
            console.print(f"[red]Configuration file not found:[/red] {config_file}")
            raise typer.Exit(1)
        config = PipelineConfig._apply_env_overrides(PipelineConfig.from_file(config_file))
        console.print(f"[dim]Using configuration: {config_file}[/dim]")
    else:
        found = next((Path(p) for p in DEFAULT_CONFIG_FILES if Path(p).exists()), None)
        if found:
            console.print(f"[dim]Using configuration: {found}[/dim]")
        config = PipelineConfig.discover()

    env_vars_used = [key for key in os.environ if key.startswith(ENV_PREFIX)]
    if env_vars_used:
        console.print(f"[dim]Environment overrides applied: {len(env_vars_used)} variables[/dim]")

    return config


def _display_config(config: PipelineConfig) -> None:
    """Display configuration in a formatted table."""
    table = Table(title="Texture Pipeline Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Pack Name", config.pack_name)
    table.add_row("Pack Description", config.pack_description)
    table.add_row("Default Profile", config.default_profile)

    table.add_row("Versions Directory", config.versions_dir)
    table.add_row("Shared Directory", str(config.shared_dir))
    table.add_row("Output Directory", config.output_dir)
    table.add_row("Backups Directory", config.backups_dir)
    table.add_row("Coordinates Directory", config.coordinates_dir)

    table.add_row("Tile Size", f"{config.tile_size}×{config.tile_size}")
    table.add_row("Terrain Output", config.terrain_output)
    table.add_row("Placeholder", config.placeholder_path or "(generated)")
    table.add_row("Output Format", config.output_format)
    table.add_row("Compression Level", str(config.compression_level))

    table.add_row("Debounce", f"{config.debounce_ms} ms")
    table.add_row("Deploy On Change", str(config.deploy_on_change))
    table.add_row("Notifications", str(config.notifications))
    table.add_row("Watch All Profiles", str(config.watch_all_profiles))

    console.print(table)


def _display_env_vars() -> None:
    """Display available environment variables for configuration."""
    table = Table(title="Texture Pipeline Environment Variables")
    table.add_column("Environment Variable", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Example", style="green")

    env_vars = [
        ("PACK_NAME", "Pack name used in archive names", "Pluie"),
        ("PACK_DESCRIPTION", "Fallback pack description", "A gentle texture pack"),
        ("DEFAULT_PROFILE", "Profile built when none is given", "b1.7.3"),
        ("VERSIONS_DIR", "Directory holding shared and profile sources", "versions"),
        ("OUTPUT_DIR", "Archive output directory", "output"),
        ("BACKUPS_DIR", "Deploy backup directory", "backups"),
        ("COORDINATES_DIR", "Directory searched for coordinate maps", "."),
        ("DEPLOY_CONFIG", "Deploy targets file", ".deployrc"),
        ("HOTRELOAD_CONFIG", "Watch settings file", ".hotreloadrc"),
        ("TILE_SIZE", "Atlas cell size in pixels", "16"),
        ("PLACEHOLDER_PATH", "Image used for unused atlas cells", "placeholder.png"),
        ("OUTPUT_FORMAT", "Atlas image format", "PNG"),
        ("COMPRESSION_LEVEL", "Compression level (0-9)", "6"),
        ("DEBOUNCE_MS", "Watch debounce window", "500"),
        ("DEPLOY_ON_CHANGE", "Deploy after watch builds (true/false)", "true"),
        ("NOTIFICATIONS", "Print change notifications (true/false)", "true"),
        ("WATCH_ALL_PROFILES", "Watch every profile by default (true/false)", "false"),
    ]

    for name, description, example in env_vars:
        table.add_row(f"{ENV_PREFIX}{name}", description, example)

    console.print(table)
    console.print("\n[dim]Set these environment variables to override configuration file settings.[/dim]")
    console.print(f"[dim]Example: export {ENV_PREFIX}DEBOUNCE_MS=250[/dim]")


if __name__ == "__main__":
    app()
