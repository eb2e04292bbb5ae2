#!/usr/bin/env python3
"""
Swyft CLI

Command-line interface for PIN-paired peer-to-peer file transfer.

Usage:
    swyft serve                     # Run the signaling server
    swyft send FILE [FILE...]       # Send files, prints a PIN
    swyft receive PIN               # Receive files from a PIN
    swyft send --manual FILE        # Pair by copy-pasting codes instead
    swyft code CODE                 # Inspect a connection code
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.table import Table

from . import __version__
from .config import load_config
from .errors import SwyftError
from .negotiation import decode_connection_code
from .node import ReceivingPeer, SendingPeer
from .rendezvous import run_signaling_server
from .transfer.sender import SenderState

console = Console()

STATUS_STYLES = {
    'info': 'dim',
    'success': 'green',
    'error': 'red',
}


def setup_logging(verbose: bool = False):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def transfer_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )


def print_status(message: str, level: str):
    style = STATUS_STYLES.get(level, 'dim')
    console.print(f"[{style}]{message}[/{style}]")


@click.group()
@click.version_option(__version__)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.option('--server', default=None, help='Signaling server URL (ws://host:port/ws)')
@click.pass_context
def cli(ctx, verbose, config_path, server):
    """Swyft - send files directly between two machines using a 6-digit PIN."""
    config = load_config(Path(config_path) if config_path else None)
    if server:
        config.server_url = server
    setup_logging(verbose or config.log_level.upper() == 'DEBUG')

    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Bind address')
@click.option('--port', default=None, type=int, help='Listen port')
@click.pass_context
def serve(ctx, host, port):
    """Run the signaling server."""
    config = ctx.obj['config']
    if host:
        config.host = host
    if port:
        config.port = port

    console.print(Panel.fit(
        f"[bold green]Signaling Server[/bold green]\n\n"
        f"Listening: [yellow]{config.host}:{config.port}[/yellow]\n"
        f"WebSocket: [cyan]ws://{config.host}:{config.port}/ws[/cyan]\n"
        f"Room TTL: [yellow]{config.room_ttl:.0f}s[/yellow]",
        title="Swyft"
    ))

    try:
        asyncio.run(run_signaling_server(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--bundle', is_flag=True, help='Zip everything into one file')
@click.option('--manual', is_flag=True, help='Pair with connection codes instead of a PIN')
@click.pass_context
def send(ctx, paths, bundle, manual):
    """Send files or folders."""
    config = ctx.obj['config']

    async def run():
        with transfer_progress() as progress:
            task = progress.add_task("Waiting for receiver...", total=None)

            def update_progress(p):
                batch = f" [{p.index + 1}/{p.total_files}]" if p.total_files else ""
                progress.update(
                    task,
                    total=100,
                    completed=p.progress_percent,
                    description=f"{p.file_name}{batch} {p.describe()}"
                )

            peer = SendingPeer(config, progress_callback=update_progress,
                               status_callback=print_status)
            try:
                if manual:
                    code = await peer.create_code()
                    progress.stop()
                    console.print(Panel(code, title="Give this code to the receiver"))
                    answer = click.prompt("Paste the receiver's code")
                    progress.start()
                    await peer.accept_code(answer)
                else:
                    pin = await peer.host()
                    console.print(Panel.fit(
                        f"[bold]PIN:[/bold] [green]{pin}[/green]\n\n"
                        f"[dim]On the other machine run: swyft receive {pin}[/dim]",
                        title="Ready to send"
                    ))
                    await peer.wait_for_peer()

                state = await peer.send(paths, bundle=bundle)
            finally:
                await peer.close()

        if state is SenderState.COMPLETE:
            console.print("\n[green]✓ Transfer complete[/green]")
        else:
            console.print("\n[yellow]Transfer cancelled[/yellow]")

    try:
        asyncio.run(run())
    except SwyftError as e:
        console.print(f"\n[red]✗ {e.message}[/red]")
        raise SystemExit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")


@cli.command()
@click.argument('pin', required=False)
@click.option('--output', '-o', type=click.Path(file_okay=False), help='Output directory')
@click.option('--expand', is_flag=True, help='Unpack received zip bundles')
@click.option('--manual', is_flag=True, help='Pair with connection codes instead of a PIN')
@click.pass_context
def receive(ctx, pin, output, expand, manual):
    """Receive files from a sender."""
    config = ctx.obj['config']
    if output:
        config.output_dir = Path(output)
    if not pin and not manual:
        raise click.UsageError("Give a PIN, or use --manual")

    async def run():
        with transfer_progress() as progress:
            task = progress.add_task("Connecting...", total=None)

            def update_progress(p):
                batch = f" [{p.index + 1}/{p.total_files}]" if p.total_files else ""
                progress.update(
                    task,
                    total=100,
                    completed=p.progress_percent,
                    description=f"{p.file_name}{batch} {p.describe()}"
                )

            peer = ReceivingPeer(config, progress_callback=update_progress,
                                 status_callback=print_status)
            try:
                if manual:
                    progress.stop()
                    offer = click.prompt("Paste the sender's code")
                    answer = await peer.answer_code(offer)
                    console.print(Panel(answer, title="Give this code to the sender"))
                    progress.start()
                else:
                    await peer.join(pin)

                progress.update(task, description="Waiting for file...")
                saved = await peer.receive(expand=expand)
            finally:
                await peer.close()

        if not saved:
            console.print("\n[yellow]Nothing received[/yellow]")
            return

        table = Table(title="Received Files")
        table.add_column("Path", style="cyan")
        table.add_column("Size", justify="right", style="yellow")
        for path in saved:
            table.add_row(str(path), format_size(path.stat().st_size))
        console.print(table)

    try:
        asyncio.run(run())
    except SwyftError as e:
        console.print(f"\n[red]✗ {e.message}[/red]")
        raise SystemExit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")


@cli.command()
@click.argument('code')
def code(code):
    """Check a connection code and show what it contains."""
    try:
        blob = decode_connection_code(code)
    except SwyftError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Connection code ({blob['type']})")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("token", blob['token'][:16] + "...")
    for candidate in blob.get('candidates', []):
        table.add_row("candidate", f"{candidate['host']}:{candidate['port']}")
    console.print(table)


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
