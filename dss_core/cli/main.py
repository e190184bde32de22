#!/usr/bin/env python3
# dss_core/cli/main.py

import sys
from typing import Optional

import click
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dss_core import __version__
from dss_core.config.settings import Settings, setup_logging
from dss_core.consensus.checkpoint import CheckpointStore
from dss_core.consensus.consensus_errors import DSSError
from dss_core.core.datatypes import CheckpointState
from dss_core.crypto.bls import BlsKeyPair

console = Console()


def load_settings(env_file: Optional[str]) -> Settings:
    try:
        if env_file:
            return Settings(_env_file=env_file)
        return Settings()
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red]\n{e}")
        sys.exit(2)


@click.group()
@click.version_option(__version__, prog_name="dsscore")
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Read settings from this .env file instead of ./.env",
)
@click.pass_context
def dsscore(ctx, env_file):
    """Square-number DSS aggregator and operator node."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


# --- Nodes ---


@dsscore.group()
def aggregator():
    """Aggregator node commands."""


@aggregator.command("run")
@click.pass_context
def aggregator_run(ctx):
    """Watch the DSS for task requests and submit quorum responses."""
    from dss_core.runner import AggregatorRunner

    settings = load_settings(ctx.obj["env_file"])
    setup_logging(settings.LOG_LEVEL)
    try:
        runner = AggregatorRunner(settings)
    except DSSError as e:
        console.print(f"[bold red]Aggregator failed to start:[/bold red] {e}")
        sys.exit(1)
    console.print(
        Panel.fit(
            f"[bold cyan]Aggregator[/] mode=[yellow]{settings.QUORUM_MODE.value}[/] "
            f"listening on [green]{settings.HOST}:{settings.PORT}[/]",
            border_style="cyan",
            box=box.ROUNDED,
        )
    )
    runner.run()


@dsscore.group()
def operator():
    """Operator node commands."""


@operator.command("run")
@click.pass_context
def operator_run(ctx):
    """Register the operator and serve the task endpoint."""
    from dss_core.runner import OperatorRunner

    settings = load_settings(ctx.obj["env_file"])
    setup_logging(settings.LOG_LEVEL)
    try:
        runner = OperatorRunner(settings)
    except (DSSError, ValueError) as e:
        console.print(f"[bold red]Operator failed to start:[/bold red] {e}")
        sys.exit(1)
    console.print(
        Panel.fit(
            f"[bold cyan]Operator[/] [yellow]{runner.account.address}[/] "
            f"listening on [green]{settings.HOST}:{settings.PORT}[/]",
            border_style="cyan",
            box=box.ROUNDED,
        )
    )
    runner.run()


# --- Keys ---


@dsscore.group()
def keys():
    """BLS key management."""


@keys.command("generate-bls")
def generate_bls():
    """Generate a BN254 BLS key pair for BLS_KEYPAIR."""
    keypair = BlsKeyPair.generate()
    g1_hex, g2_hex = keypair.public_key_hex()

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value", overflow="fold")
    table.add_row("BLS_KEYPAIR", keypair.to_base64())
    table.add_row("G1 public key", g1_hex)
    table.add_row("G2 public key", g2_hex)
    console.print(Panel(table, title="New BLS key pair", border_style="green"))
    console.print("[yellow]Keep BLS_KEYPAIR secret; it is the operator's signing key.[/yellow]")


# --- Checkpoint ---


@dsscore.group()
def checkpoint():
    """Inspect or move the aggregator block checkpoint."""


def _store(ctx, path: Optional[str]) -> CheckpointStore:
    if path:
        return CheckpointStore(path)
    return CheckpointStore(load_settings(ctx.obj["env_file"]).BLOCK_NUMBER_STORE)


@checkpoint.command("show")
@click.option("--store", "store_path", default=None, help="Checkpoint file (default: BLOCK_NUMBER_STORE)")
@click.pass_context
def checkpoint_show(ctx, store_path):
    """Print the next block the aggregator will read from."""
    store = _store(ctx, store_path)
    try:
        state = store.load()
    except DSSError as e:
        console.print(f"[bold red]{e}[/bold red]")
        sys.exit(1)
    console.print(f"Checkpoint [cyan]{store.path}[/cyan]: block [bold green]{state.block_number}[/bold green]")


@checkpoint.command("set")
@click.argument("block", type=click.IntRange(min=0))
@click.option("--store", "store_path", default=None, help="Checkpoint file (default: BLOCK_NUMBER_STORE)")
@click.option("--yes", is_flag=True, help="Skip confirmation when moving the checkpoint backwards.")
@click.pass_context
def checkpoint_set(ctx, block, store_path, yes):
    """Overwrite the checkpoint with BLOCK."""
    store = _store(ctx, store_path)
    try:
        current = store.load().block_number
    except DSSError as e:
        console.print(f"[yellow]Existing checkpoint unreadable, overwriting: {e}[/yellow]")
        current = None

    if current is not None and block < current and not yes:
        click.confirm(
            f"Move checkpoint back from {current} to {block}? Tasks may be submitted twice",
            abort=True,
        )
    store.save(CheckpointState(block_number=block))
    console.print(f"✅ Checkpoint [cyan]{store.path}[/cyan] set to block [bold green]{block}[/bold green]")


def main():
    dsscore(obj={})


if __name__ == "__main__":
    main()
