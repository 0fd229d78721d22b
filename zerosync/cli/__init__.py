"""
ZeroSync CLI Tool

Command-line interface for running and inspecting a ZeroSync sequencer. Commands
other than `serve` work directly on the configured ledger database, so they can
be used next to a running server or on their own.
"""

import json
from contextlib import contextmanager

import click

from zerosync import __version__
from zerosync.consensus.sequencer import Sequencer
from zerosync.core.exceptions import RollupError
from zerosync.security.secure_logging import configure_logging


def echo_json(data) -> None:
    """Print data as indented JSON"""
    click.echo(json.dumps(data, indent=2, default=str))


@contextmanager
def open_sequencer(ctx: click.Context):
    """Sequencer over the selected database, shut down on exit"""
    config = {"auto_start": False}
    if ctx.obj.get("database_url"):
        config["database_url"] = ctx.obj["database_url"]
    if ctx.obj.get("proof_mode"):
        config["proof_mode"] = ctx.obj["proof_mode"]

    try:
        sequencer = Sequencer(config)
    except (RollupError, ValueError) as e:
        raise click.ClickException(str(e))

    try:
        yield sequencer
    except RollupError as e:
        raise click.ClickException(f"{e.error_type}: {e.message}")
    finally:
        sequencer.shutdown()


@click.group()
@click.option('--database-url', envvar='DATABASE_URL', default=None, help='Ledger database URL')
@click.option('--proof-mode', type=click.Choice(['mock', 'real']), default=None, help='Proof engine')
@click.option('--log-level', default=None, help='Log level (DEBUG, INFO, WARNING)')
@click.version_option(__version__, prog_name='zerosync')
@click.pass_context
def zerosync(ctx, database_url, proof_mode, log_level):
    """ZeroSync - rollup sequencer toolkit"""
    ctx.ensure_object(dict)
    ctx.obj['database_url'] = database_url
    ctx.obj['proof_mode'] = proof_mode
    configure_logging(log_level)


@zerosync.command()
@click.option('--host', default=None, help='Bind address')
@click.option('--port', type=int, default=None, help='Bind port')
def serve(host, port):
    """Run the HTTP API with a background sequencer"""
    from zerosync.api.server import run_server

    run_server(host=host, port=port)


@zerosync.command()
@click.option('--from', 'sender', required=True, help='Sender address')
@click.option('--to', 'recipient', required=True, help='Recipient address')
@click.option('--value', required=True, help='Amount (non-negative integer)')
@click.option('--data', default='', help='Opaque payload')
@click.option('--nonce', type=int, default=0, help='Sender nonce')
@click.pass_context
def submit(ctx, sender, recipient, value, data, nonce):
    """Submit a transaction to the pool"""
    with open_sequencer(ctx) as sequencer:
        tx = sequencer.add_transaction({
            "from": sender,
            "to": recipient,
            "value": value,
            "data": data,
            "nonce": nonce,
        })

    if tx["duplicate"]:
        click.echo(f"Transaction already known: {tx['tx_hash']} ({tx['status']})")
    else:
        click.echo(f"Submitted transaction {tx['tx_hash']}")


@zerosync.command()
@click.pass_context
def trigger(ctx):
    """Create and prove a batch from pending transactions"""
    with open_sequencer(ctx) as sequencer:
        batch = sequencer.process_pending_batch()

    if batch is None:
        click.echo("No pending transactions")
        return
    click.echo(f"Batch #{batch['batch_id']}: {batch['tx_count']} txs, status {batch['status']}")
    click.echo(f"New state root: {batch['new_state_root']}")


@zerosync.command()
@click.pass_context
def stats(ctx):
    """Show ledger and sequencer statistics"""
    with open_sequencer(ctx) as sequencer:
        echo_json(sequencer.get_stats())


@zerosync.command()
@click.option('--limit', type=int, default=10, help='Number of batches')
@click.pass_context
def batches(ctx, limit):
    """List recent batches"""
    with open_sequencer(ctx) as sequencer:
        recent = sequencer.get_batches(limit)

    if not recent:
        click.echo("No batches yet")
        return
    for batch in recent:
        click.echo(
            f"#{batch['batch_id']:<5} {batch['status']:<10} txs={batch['tx_count']:<4} "
            f"root={batch['new_state_root'][:18]}..."
        )


@zerosync.command()
@click.pass_context
def state(ctx):
    """Show the current state root"""
    with open_sequencer(ctx) as sequencer:
        current = sequencer.get_current_state()
    click.echo(f"Height: {current['height']}")
    click.echo(f"State root: {current['state_root']}")


if __name__ == '__main__':
    zerosync()
