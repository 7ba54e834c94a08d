"""
Configuration file command.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from sparkbot.cli import app
from sparkbot.cli_common import setup_logging
from sparkbot.settings import ensure_config_file, generate_config_template


@app.command("config-init")
def config_init(
    data_dir: Annotated[
        Path | None,
        typer.Option(
            "--data-dir", help="Data directory (default: ~/.sparkbot or $SPARKBOT_DATA_DIR)"
        ),
    ] = None,
    stdout: Annotated[
        bool, typer.Option("--stdout", help="Print the template instead of writing it")
    ] = False,
) -> None:
    """Write a commented config.toml template (existing files are left alone)."""
    setup_logging()
    if stdout:
        typer.echo(generate_config_template())
        return
    path = ensure_config_file(data_dir)
    typer.echo(f"Config file: {path}")
