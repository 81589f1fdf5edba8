# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Main CLI entry point for pyfilter.

Runs a batch of readings through a filter stage outside the host, for
developing and checking filter scripts.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from pyfilter import __version__
from pyfilter.config import default_config, load_category_file
from pyfilter.errors import ConfigError
from pyfilter.plugin import plugin_info, plugin_init, plugin_ingest, plugin_shutdown
from pyfilter.records import ReadingSet
from pyfilter.runtime import RuntimeHandle


app = typer.Typer(
    name="pyfilter",
    help="Python script filter stage for telemetry pipelines",
    no_args_is_help=True,
)


def _load_readings(path: Path) -> ReadingSet:
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("readings file must contain a JSON list")
    return ReadingSet.from_list(data)


@app.command()
def run(
    script: str = typer.Argument(..., help="Script module name (without .py extension)"),
    input_path: Path = typer.Option(..., "--input", "-i", help="JSON file with a list of readings"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Category file (YAML or JSON)"),
    scripts_dir: Optional[Path] = typer.Option(None, "--scripts-dir", "-d", help="Directory holding the script"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one batch of readings through a script and print the result."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    try:
        category = load_category_file(config_path) if config_path else default_config()
        readings = _load_readings(input_path)
    except (FileNotFoundError, ConfigError, ValueError, KeyError, TypeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    # Command line always runs the named script, enabled
    category["script"] = {"value": script}
    category["enable"] = {"value": "true"}

    results = []
    handle = plugin_init(
        category,
        results.append,
        category_name="pyfilter-cli",
        runtime_handle=RuntimeHandle(),
        scripts_dir=scripts_dir,
    )
    if handle is None:
        typer.echo("Error: filter failed to initialise", err=True)
        raise typer.Exit(1)

    try:
        plugin_ingest(handle, readings)
    finally:
        plugin_shutdown(handle)

    output = [r for batch in results for r in batch.to_list()]
    typer.echo(json.dumps(output, indent=2))


@app.command()
def info():
    """Show plugin information and default configuration."""
    typer.echo(json.dumps(plugin_info(), indent=2))


@app.command()
def version():
    """Show version information."""
    typer.echo(f"pyfilter version {__version__}")


from pyfilter.commands import script

app.add_typer(script.app, name="script")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
