import threading
import typer
import yaml
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console

from pdfbatch.config.loader import load_config
from pdfbatch.config.models import AppConfig
from pdfbatch.config.preferences import YamlPreferenceStore
from pdfbatch.domain.errors import InvalidOptions
from pdfbatch.domain.models import BatchRequest, CompressionProfile
from pdfbatch.infrastructure.engine_locator import EngineLocator
from pdfbatch.infrastructure.event_bus import EventBus
from pdfbatch.infrastructure.file_manager import LocalFileManager
from pdfbatch.infrastructure.file_scanner import FileScanner
from pdfbatch.infrastructure.ghostscript import GhostscriptInvoker
from pdfbatch.infrastructure.logging import setup_logging
from pdfbatch.pipeline.dispatcher import BatchDispatcher
from pdfbatch.pipeline.service import CompressionService
from pdfbatch.ui.console import ConsoleProgress, render_stats, render_summary

app = typer.Typer(help="pdfbatch - batch PDF compression with Ghostscript")
prefs_app = typer.Typer(help="Show or change stored preferences")
app.add_typer(prefs_app, name="prefs")

DEFAULT_CONFIG_PATH = Path("conf/pdfbatch.yaml")


def _load(config_path: Path) -> AppConfig:
    try:
        # The default location is optional, an explicit --config must exist
        return load_config(config_path, missing_ok=config_path == DEFAULT_CONFIG_PATH)
    except (FileNotFoundError, ValueError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def build_service(config: AppConfig, bus: EventBus) -> CompressionService:
    invoker = GhostscriptInvoker(debug=config.general.debug)
    dispatcher = BatchDispatcher(config.general, bus, invoker)
    return CompressionService(
        config=config,
        event_bus=bus,
        locator=EngineLocator(config.engine),
        dispatcher=dispatcher,
        preferences=YamlPreferenceStore(Path(config.preferences_path).expanduser()),
        file_manager=LocalFileManager(),
    )


def _parse_assignments(assignments: List[str]) -> Dict[str, object]:
    changes: Dict[str, object] = {}
    for item in assignments:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise InvalidOptions(f"Expected KEY=VALUE, got {item!r}")
        # YAML scalars: "true" -> bool, "150" -> int, "" -> None
        changes[key.strip()] = yaml.safe_load(raw) if raw else None
    return changes


@app.command()
def compress(
    inputs: List[Path] = typer.Argument(..., help="PDF files or directories to compress"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config"),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="balanced, aggressive or maximum"),
    dpi: Optional[int] = typer.Option(None, "--dpi", help="Target image resolution"),
    quality: Optional[int] = typer.Option(None, "--quality", help="Image quality (1-100)"),
    pdf_version: Optional[str] = typer.Option(None, "--pdf-version", help="Output PDF compatibility level"),
    strip_metadata: Optional[bool] = typer.Option(None, "--strip-metadata/--keep-metadata", help="Remove document metadata"),
    embed_fonts: Optional[bool] = typer.Option(None, "--embed-fonts/--no-embed-fonts", help="Embed all fonts"),
    thumbnails: Optional[bool] = typer.Option(None, "--thumbnails/--no-thumbnails", help="Generate page thumbnails"),
    grayscale: Optional[bool] = typer.Option(None, "--grayscale/--color", help="Convert to grayscale first"),
    save: Optional[bool] = typer.Option(None, "--save/--no-save", help="Copy results to the download folder (default: auto_save preference)"),
    save_to: Optional[Path] = typer.Option(None, "--save-to", help="Copy results to this folder (implies --save)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Override max parallel engine processes"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Compress PDF documents in parallel."""
    config = _load(config_path)
    if workers is not None:
        if not 1 <= workers <= 8:
            typer.secho("Error: --workers must be between 1 and 8", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        config.general.max_workers = workers
    if log_path is not None: config.general.log_path = str(log_path)
    if debug: config.general.debug = True

    logger = setup_logging(
        Path(config.general.log_dir).expanduser(),
        debug=config.general.debug,
        log_path=Path(config.general.log_path) if config.general.log_path else None,
    )

    files = FileScanner(config.general.extensions).expand(inputs)
    missing = [str(p) for p in files if not p.exists()]
    if missing:
        typer.secho(f"Error: file(s) not found: {', '.join(missing)}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    bus = EventBus()
    service = build_service(config, bus)

    overrides = {
        "target_dpi": dpi,
        "image_quality": quality,
        "pdf_version": pdf_version,
        "strip_metadata": strip_metadata,
        "embed_fonts": embed_fonts,
        "generate_thumbnails": thumbnails,
        "to_grayscale": grayscale,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    options = None
    if overrides:
        options = service.resolve_options(None).model_copy()
        # Assignment runs the field validators, so bad values get defaulted
        for key, value in overrides.items():
            setattr(options, key, value)

    request = BatchRequest(
        files=files,
        profile=CompressionProfile.parse(profile) if profile else None,
        options=options,
        save_to_folder=service.resolve_auto_save(True if save_to is not None else save),
        download_folder=save_to,
    )
    logger.info(f"pdfbatch started: files={len(files)}, workers={config.general.max_workers}, debug={config.general.debug}")

    console = Console()
    cancel_event = threading.Event()
    try:
        with ConsoleProgress(bus, console) as progress:
            result = service.compress_all(request, cancel_event=cancel_event)
    except KeyboardInterrupt:
        typer.secho("\n✓ Compression stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    if not result.success:
        typer.secho(f"Error: {result.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    console.print(render_summary(result))
    if progress.last_stats is not None:
        console.print(render_stats(progress.last_stats))
    if result.failed:
        raise typer.Exit(code=2)


@app.command()
def engine(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config"),
):
    """Show which compression engine would be used."""
    config = _load(config_path)
    status = build_service(config, EventBus()).engine_status()
    if not status["available"]:
        typer.secho(f"Error: {status['error']}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Engine: {status['binary_path']} ({'bundled' if status['bundled'] else 'system'})")
    for path in status["library_search_paths"]:
        typer.echo(f"  lib: {path}")
    for path in status["resource_search_paths"]:
        typer.echo(f"  resources: {path}")
    typer.echo(f"Working directory: {status['working_dir']}")


@prefs_app.command("show")
def prefs_show(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config"),
):
    """Print the stored preferences."""
    config = _load(config_path)
    store = YamlPreferenceStore(Path(config.preferences_path).expanduser())
    for key, value in sorted(store.load().flatten().items()):
        typer.echo(f"{key}: {value}")


@prefs_app.command("set")
def prefs_set(
    assignments: List[str] = typer.Argument(..., help="KEY=VALUE pairs, e.g. target_dpi=120"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config"),
):
    """Update stored preferences. Unknown keys are rejected."""
    config = _load(config_path)
    store = YamlPreferenceStore(Path(config.preferences_path).expanduser())
    try:
        store.update(_parse_assignments(assignments))
    except InvalidOptions as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho("Preferences saved", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
