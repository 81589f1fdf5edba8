# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Script command for pyfilter.

Lists filter scripts in the scripts directory and checks that a script
loads and exposes both entry points.
"""

from pathlib import Path
from typing import List, Optional

import typer

from pyfilter.binding import CONFIG_ENTRY_POINT, ScriptBinding, entry_point_name
from pyfilter.config import get_scripts_dir
from pyfilter.errors import RuntimeUnavailableError, ScriptLoadError
from pyfilter.runtime import RuntimeHandle

app = typer.Typer(help="Inspect filter scripts in the scripts directory")


def list_scripts(scripts_dir: Path) -> List[dict]:
    """List script modules in scripts_dir.

    Returns:
        One dict per module with name, path and filter entry point.
    """
    if not scripts_dir.exists():
        return []
    scripts = []
    for path in sorted(scripts_dir.glob("*.py")):
        if path.name.startswith("_"):
            continue
        scripts.append(
            {
                "name": path.stem,
                "path": str(path),
                "entry_point": entry_point_name(path.stem),
            }
        )
    return scripts


def check_script(name: str, scripts_dir: Path) -> bool:
    """Load a script in a private runtime and bind its entry points."""
    handle = RuntimeHandle()
    runtime = handle.acquire()
    try:
        with runtime.lock.hold():
            binding = ScriptBinding.from_config_value(runtime, name)
            try:
                return binding.load(scripts_dir)
            finally:
                binding.release()
    finally:
        handle.release()


def _scripts_dir_option(value: Optional[Path]) -> Path:
    return value if value is not None else get_scripts_dir()


@app.command("list")
def list_command(
    scripts_dir: Optional[Path] = typer.Option(
        None, "--scripts-dir", "-d", help="Directory to search (default: <data dir>/scripts)"
    ),
):
    """List all filter scripts.

    Examples:
        pyfilter script list
        pyfilter script list --scripts-dir ./scripts
    """
    directory = _scripts_dir_option(scripts_dir)
    scripts = list_scripts(directory)

    if not scripts:
        typer.echo(f"No scripts found in {directory}")
        return

    typer.echo(f"Scripts in {directory}:\n")
    for script in scripts:
        typer.echo(f"  {script['name']}")
        typer.echo(f"    Entry points: {CONFIG_ENTRY_POINT}, {script['entry_point']}")


@app.command("check")
def check_command(
    name: str = typer.Argument(..., help="Script module name (without .py extension)"),
    scripts_dir: Optional[Path] = typer.Option(
        None, "--scripts-dir", "-d", help="Directory to search (default: <data dir>/scripts)"
    ),
):
    """Check that a script loads and exposes both entry points.

    Examples:
        pyfilter script check readings_filter
    """
    directory = _scripts_dir_option(scripts_dir)
    try:
        ok = check_script(name, directory)
    except (ScriptLoadError, RuntimeUnavailableError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not ok:
        typer.echo(f"Script '{name}' is not usable (see log for details)", err=True)
        raise typer.Exit(1)
    typer.echo(f"Script '{name}' OK")
