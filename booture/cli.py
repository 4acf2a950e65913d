"""
booture CLI - inspect and run service graphs.

Commands:
    check   - Validate a dependency graph
    layers  - Show the acquisition layers
    graph   - Export the graph (DOT or tree)
    up      - Acquire every service, hold until interrupted, release

TARGET is "module:attribute", naming either a sequence of declarations
or a zero-argument callable returning one.
"""

import asyncio
import importlib
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import click

from . import __version__
from .config import BootConfig, ConfigLoader
from .declarations import Declaration
from .faults import Fault, FlawedGraphFault
from .graph import ServiceGraph
from .lifecycle import BootManager


_CHECK = "✓"
_CROSS = "✗"


def success(message: str) -> None:
    click.echo(click.style(message, fg="green"))


def error(message: str) -> None:
    click.echo(click.style(message, fg="red"), err=True)


def kv(key: str, value: str, *, key_width: int = 12) -> None:
    padding = " " * max(1, key_width - len(key) - 1)
    click.echo(f"  {key}:{padding}{click.style(str(value), fg='cyan')}")


def load_target(target: str) -> List[Declaration]:
    """
    Import the declarations named by "module:attribute".

    The current directory is importable, so local modules resolve.
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise click.BadParameter(f"expected 'module:attribute', got '{target}'", param_hint="TARGET")

    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import '{module_name}': {e}", param_hint="TARGET")

    try:
        value = getattr(module, attribute)
    except AttributeError:
        raise click.BadParameter(f"'{module_name}' has no attribute '{attribute}'", param_hint="TARGET")

    if callable(value):
        value = value()

    declarations = list(value)
    for declaration in declarations:
        if not isinstance(declaration, Declaration):
            raise click.BadParameter(
                f"'{target}' contains {type(declaration).__name__}, expected Declaration",
                param_hint="TARGET",
            )
    return declarations


@click.group()
@click.version_option(version=__version__, prog_name="booture")
@click.option("--config", "config_paths", multiple=True, type=click.Path(), help="YAML/JSON config file")
@click.option("--env-file", type=click.Path(), help=".env file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_paths: tuple, env_file: Optional[str], verbose: bool):
    """Validate, inspect and run declared service graphs."""
    ctx.ensure_object(dict)
    try:
        config = ConfigLoader.load(paths=list(config_paths), env_file=env_file).boot_config()
    except Fault as e:
        error(f"{_CROSS} {e.message}")
        ctx.exit(2)

    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj["config"] = config


@cli.command("check")
@click.argument("target")
def check_cmd(target: str):
    """Validate the dependency graph of TARGET."""
    graph = ServiceGraph(load_target(target))

    try:
        layers = graph.layers()
    except FlawedGraphFault as e:
        error(f"{_CROSS} {e.message}")
        sys.exit(1)

    success(f"{_CHECK} Dependency graph is valid")
    kv("Services", str(len(graph)))
    kv("Layers", str(len(layers)))


@cli.command("layers")
@click.argument("target")
def layers_cmd(target: str):
    """Show the layers TARGET is acquired in."""
    graph = ServiceGraph(load_target(target))

    try:
        layers = graph.layers()
    except FlawedGraphFault as e:
        error(f"{_CROSS} {e.message}")
        sys.exit(1)

    for index, layer in enumerate(layers, 1):
        click.echo(f"Layer {index}: {', '.join(layer)}")


@cli.command("graph")
@click.argument("target")
@click.option("--format", "fmt", type=click.Choice(["dot", "tree"]), default="tree", show_default=True)
@click.option("--root", type=str, help="Only show the tree under this service")
def graph_cmd(target: str, fmt: str, root: Optional[str]):
    """Export the dependency graph of TARGET."""
    graph = ServiceGraph(load_target(target))

    if fmt == "dot":
        click.echo(graph.to_dot())
    else:
        click.echo(graph.tree_view(root=root))


async def _hold(resources) -> None:
    """Wait for SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    click.echo("Services are up. Press Ctrl+C to stop.")
    await stop.wait()


@cli.command("up")
@click.argument("target")
@click.option("--once", is_flag=True, help="Release immediately after everything is acquired")
@click.option("--acquire-timeout", type=float, help="Seconds each layer may take")
@click.pass_context
def up_cmd(ctx, target: str, once: bool, acquire_timeout: Optional[float]):
    """Acquire every service of TARGET, hold, then release."""
    config: BootConfig = ctx.obj["config"]
    declarations = load_target(target)

    async def _consume(resources):
        success(f"{_CHECK} Acquired {len(resources)} services")
        if not once:
            await _hold(resources)

    try:
        if acquire_timeout is not None:
            config = replace(config, acquire_timeout=acquire_timeout)
        manager = BootManager(declarations, config=config)
        asyncio.run(manager.run(_consume))
    except Fault as e:
        error(f"{_CROSS} {e.message}")
        sys.exit(1)

    success(f"{_CHECK} Released all services")


def main():
    """Entry point for `booture` command."""
    cli(obj={})


if __name__ == "__main__":
    main()
