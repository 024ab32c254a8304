"""Command-line interface for Stoke.

This module defines the CLI commands using Click framework.

Commands:
- build: Generate the whole site once.
- watch: Generate the site, then regenerate affected pages as templates and
  data files change.

Both commands flush the script cache to disk exactly once before exiting,
including on Ctrl-C and SIGTERM, and exit with status 1 if any error was
reported.
"""

from __future__ import annotations

import asyncio
import functools
import signal
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

import click

from . import __version__
from .config import load_config
from .console import log
from .engine import SiteEngine
from .errors import ConfigurationError
from .utils import copy_tree, ensure_clean_dir
from .watcher import SiteWatcher

_DIR_OPTIONS = {
    "input_dir": "--input",
    "data_dir": "--data",
    "output_dir": "--output",
    "cache_dir": "--cache",
    "public_dir": "--public",
}


def site_options(command: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the directory and verbosity options shared by all commands."""
    for key, flag in reversed(_DIR_OPTIONS.items()):
        command = click.option(
            flag,
            key,
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help=f"Override {key} from stoke.yaml",
        )(command)
    command = click.option("--verbose", "-v", is_flag=True, help="Verbose output")(command)
    command = click.option(
        "--root",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        default=".",
        help="Project root containing stoke.yaml",
    )(command)
    return command


@click.group()
@click.version_option(version=__version__, prog_name="stoke")
def cli():
    """Stoke incremental static site engine."""


@cli.command()
@site_options
def build(root: Path, verbose: bool, **dirs: Path | None):
    """Generate the site into the output directory."""
    engine = _prepare(root, verbose, dirs)
    _run(engine, engine.build)


@cli.command()
@site_options
def watch(root: Path, verbose: bool, **dirs: Path | None):
    """Generate the site and keep it up to date as files change."""
    engine = _prepare(root, verbose, dirs)
    _run(engine, functools.partial(_watch, engine))


def _prepare(root: Path, verbose: bool, dirs: dict[str, Path | None]) -> SiteEngine:
    project_root = root.resolve()
    try:
        config = load_config(project_root)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from None
    for key, value in dirs.items():
        if value is not None:
            config[key] = str(value.resolve())
    if verbose:
        config["verbose"] = True

    output_dir = project_root / config["output_dir"]
    if config["clear_output"]:
        ensure_clean_dir(output_dir)
    else:
        output_dir.mkdir(parents=True, exist_ok=True)
    copied = copy_tree(project_root / config["public_dir"], output_dir)
    if copied:
        log(f"Copied {copied} public files into {output_dir}", fg="green")
    return SiteEngine.from_config(project_root, config)


def _terminate(signum: int, frame: Any) -> None:
    raise SystemExit(128 + signum)


def _run(engine: SiteEngine, main: Callable[[], Coroutine[Any, Any, Any]]) -> None:
    """Run ``main`` on a fresh event loop, then flush the cache and report."""
    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log("Interrupted", fg="yellow")
    finally:
        signal.signal(signal.SIGTERM, previous)
        engine.flush_cache()
        engine.summary()
    if engine.error_count:
        raise SystemExit(1)


async def _watch(engine: SiteEngine) -> None:
    await engine.build()
    watcher = SiteWatcher(engine.input_dir, engine.data_dir, asyncio.get_running_loop())
    watcher.start()
    log(f"Watching {engine.input_dir} and {engine.data_dir} for changes", fg="green")
    try:
        while True:
            notification = await watcher.queue.get()
            log(f"{notification.reason.value}: {notification.path}", fg="green")
            await engine.handle_change(notification)
    finally:
        watcher.stop()


def main():
    """Entry point for the CLI application."""
    cli()
