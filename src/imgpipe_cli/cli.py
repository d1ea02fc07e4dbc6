from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .build import ImageBuild
from .config import ConfigError, load_config_or_default
from .errors import ImageError
from .manifest import ManifestError, read_manifest, to_request
from .metadata import read_metadata, local_source
from .services.registry import ServiceRegistry
from .types import TransformRequest

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_config(config_path: Optional[Path]):
    try:
        return load_config_or_default(config_path)
    except ConfigError as e:
        console.print(f"[bold red]Config error:[/bold red] {e}")
        raise typer.Exit(code=2) from e


def _parse_quality(value: Optional[str]) -> Optional[Union[int, str]]:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


@app.command()
def inspect(image: Path = typer.Argument(..., exists=True, dir_okay=False)):
    """Print the intrinsic metadata of a local image."""
    try:
        meta = read_metadata(image)
    except ImageError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(title=str(image))
    table.add_column("Width")
    table.add_column("Height")
    table.add_column("Format")
    table.add_row(str(meta.width), str(meta.height), meta.format)
    console.print(table)


@app.command()
def resolve(
    image: Path = typer.Argument(..., exists=True, dir_okay=False),
    width: Optional[float] = typer.Option(None, "--width", "-w"),
    height: Optional[float] = typer.Option(None, "--height", "-h"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f"),
    quality: Optional[str] = typer.Option(None, "--quality", "-q", help="Preset name or 0-100"),
    config: Optional[Path] = typer.Option(None, "--config", dir_okay=False),
):
    """Show how a transform request resolves, without writing anything."""
    cfg = _load_config(config)
    build = ImageBuild.from_config(cfg)
    try:
        request = TransformRequest(
            source=local_source(image),
            width=width,
            height=height,
            quality=_parse_quality(quality),
            format=fmt.lower() if fmt else None,
        )
        resolved = build.resolve(request)
        path = build.registry.register(resolved)
    except ImageError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        build.close()

    table = Table(title="Resolved transform")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("width", str(resolved.width))
    table.add_row("height", str(resolved.height))
    table.add_row("format", resolved.format)
    table.add_row("quality", "(service default)" if resolved.quality is None else str(resolved.quality))
    table.add_row("output", path)
    console.print(table)


@app.command()
def formats(config: Optional[Path] = typer.Option(None, "--config", dir_okay=False)):
    """List what the configured image service accepts and produces."""
    cfg = _load_config(config)
    service = ServiceRegistry(cfg).get_default_service()

    table = Table(title=f"Image service: {service.service_id}")
    table.add_column("Output format")
    table.add_column("Quality")
    for fmt in service.supported_output_formats:
        table.add_row(fmt, "yes" if service.supports_quality(fmt) else "no")
    console.print(table)
    console.print(f"Inputs: {', '.join(service.supported_input_formats)}")


@app.command()
def build(
    manifest_path: Path = typer.Argument(..., exists=True, dir_okay=False),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o"),
    force: bool = typer.Option(False, "--force", help="Re-encode even when outputs are cached"),
    config: Optional[Path] = typer.Option(None, "--config", dir_okay=False),
):
    """Resolve every image in a manifest and write the outputs."""
    cfg = _load_config(config)
    try:
        manifest = read_manifest(manifest_path)
    except (ValidationError, ManifestError) as e:
        console.print(f"[bold red]Invalid manifest:[/bold red] {e}")
        raise typer.Exit(code=2) from e

    request_errors: list[tuple[str, str]] = []
    with ImageBuild.from_config(cfg, out_dir=out_dir, force=force) as image_build:
        for spec in manifest.images:
            try:
                image_build.get_image(to_request(spec, manifest_path.parent))
            except ImageError as e:
                request_errors.append((spec.src, str(e)))
        result = image_build.write_all()

    table = Table(title="Image build")
    table.add_column("Written", style="green")
    table.add_column("Skipped", style="yellow")
    table.add_column("Errors", style="red")
    errors = request_errors + result.errors
    table.add_row(str(len(result.written)), str(len(result.skipped)), str(len(errors)))
    console.print(table)

    if result.asset_map:
        console.print(f"Asset map: {result.asset_map}")

    if errors:
        console.print("\n[bold red]Errors:[/bold red]")
        for src, error in errors:
            console.print(f"  - {src}: {error}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
