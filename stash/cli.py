"""
STASH CLI
=========

Command-line interface for the STASH session store.

Usage:
    stash init               — Create the session tables
    stash sweep              — Run one expiry sweep now
    stash sweeper            — Run the scheduled sweeper (foreground)
    stash status             — Show paths, sweeper and store stats
    stash config             — Show current config
    stash sessions           — Inspect and delete sessions
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime

import click

from stash.config import CONFIG_FILE, LOG_FILE, PID_FILE, StashConfig, load_config
from stash.daemon import read_pidfile, run_sweeper, setup_logging
from stash.errors import CodecError, StashError, SweepError
from stash.sessions.store import SessionStore


@click.group()
@click.version_option(version="0.1.0", prog_name="STASH")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help=f"Config file (default: {CONFIG_FILE}).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """STASH — session store for wide-column tables."""
    try:
        ctx.obj = load_config(config_path)
    except StashError as e:
        raise click.ClickException(str(e))


def _run(coro):
    try:
        return asyncio.run(coro)
    except StashError as e:
        raise click.ClickException(str(e))


# ── stash init ───────────────────────────────────────────────────────────

@cli.command()
@click.pass_obj
def init(config: StashConfig) -> None:
    """Create the session tables if they don't exist."""
    async def _init() -> None:
        async with SessionStore(config.store):
            pass

    _run(_init())
    click.echo(f"Tables ready in {config.store.db_path} ({config.store.table_name}).")


# ── stash sweep ──────────────────────────────────────────────────────────

@cli.command()
@click.pass_obj
def sweep(config: StashConfig) -> None:
    """Delete expired sessions once."""
    async def _sweep():
        async with SessionStore(config.store) as store:
            return await store.sweep_expired(timeout=config.sweeper.timeout)

    try:
        result = asyncio.run(_sweep())
    except SweepError as e:
        result = e.result
        _echo_sweep(result)
        for session_id, error in sorted(result.failures.items()):
            click.echo(f"  failed {session_id}: {error}", err=True)
        sys.exit(1)
    except StashError as e:
        raise click.ClickException(str(e))
    _echo_sweep(result)


def _echo_sweep(result) -> None:
    click.echo(
        f"Scanned {result.scanned}, deleted {len(result.deleted)}, "
        f"renewed {len(result.renewed)}, failed {len(result.failures)}."
    )


# ── stash sweeper ────────────────────────────────────────────────────────

@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.pass_obj
def sweeper(config: StashConfig, debug: bool) -> None:
    """Run the scheduled expiry sweeper in the foreground."""
    setup_logging(debug=debug)
    try:
        _run(run_sweeper(config))
    except KeyboardInterrupt:
        click.echo("\nStopped.")


# ── stash status ─────────────────────────────────────────────────────────

@cli.command()
@click.pass_obj
def status(config: StashConfig) -> None:
    """Show STASH status and store stats."""
    pid = read_pidfile()

    click.echo("╔══════════════════════════════════╗")
    click.echo("║       STASH Status               ║")
    click.echo("╠══════════════════════════════════╣")

    if pid:
        click.echo(f"║  Sweeper: 🟢 Running (PID {pid})")
    else:
        click.echo("║  Sweeper: 🔴 Stopped")

    click.echo(f"║  Cron:    {config.sweeper.cleanup_cron}")
    click.echo(f"║  Flush:   {config.store.flush_mode.value}")
    click.echo(f"║  Config:  {CONFIG_FILE}")
    click.echo(f"║  DB:      {config.store.db_path}")
    click.echo(f"║  Table:   {config.store.table_name}")
    click.echo(f"║  Log:     {LOG_FILE}")
    click.echo(f"║  PID:     {PID_FILE}")

    async def _stats():
        async with SessionStore(config.store) as store:
            return await store.stats()

    try:
        stats = asyncio.run(_stats())
        click.echo(
            f"║  Sessions: {stats.total} ({stats.expired} expired, "
            f"{stats.principals} principals)"
        )
    except StashError as e:
        click.echo(f"║  Sessions: (db error: {e})")

    click.echo("╚══════════════════════════════════╝")


# ── stash config ─────────────────────────────────────────────────────────

@cli.command("config")
@click.pass_obj
def show_config(config: StashConfig) -> None:
    """Show current configuration."""
    click.echo(json.dumps(config.model_dump(mode="json"), indent=2))


# ── stash sessions ───────────────────────────────────────────────────────

@cli.group()
def sessions() -> None:
    """Inspect and delete stored sessions."""
    pass


@sessions.command("show")
@click.argument("session_id")
@click.pass_obj
def sessions_show(config: StashConfig, session_id: str) -> None:
    """Show one session's metadata and attributes."""
    async def _find():
        async with SessionStore(config.store) as store:
            return await store.find_by_id(session_id, touch=False)

    session = _run(_find())
    if session is None:
        click.echo(f"No session {session_id} (absent or expired).")
        sys.exit(1)

    click.echo(f"ID:          {session.id}")
    click.echo(f"Created:     {_fmt_ms(session.creation_time)}")
    click.echo(f"Accessed:    {_fmt_ms(session.last_accessed_time)}")
    expiry = session.expiry_time
    click.echo(f"Expires:     {_fmt_ms(expiry) if expiry is not None else 'never'}")
    click.echo(f"Principal:   {session.indexed_principal or '-'}")
    click.echo("Attributes:")
    for name in sorted(session.attribute_names):
        try:
            value = repr(session.get_attribute(name))
        except CodecError as e:
            value = f"<undecodable: {e}>"
        click.echo(f"  {name} = {value[:200]}")


@sessions.command("principal")
@click.argument("principal_name")
@click.pass_obj
def sessions_principal(config: StashConfig, principal_name: str) -> None:
    """List live sessions belonging to a principal."""
    async def _find():
        async with SessionStore(config.store) as store:
            return await store.find_by_principal(principal_name)

    found = _run(_find())
    if not found:
        click.echo(f"No sessions for {principal_name}.")
        return

    click.echo(f"{'Session ID':<38} {'Attrs':>5} {'Last Active'}")
    click.echo("-" * 65)
    for session in found.values():
        click.echo(
            f"{session.id:<38} {len(session.attribute_names):>5} "
            f"{_fmt_ms(session.last_accessed_time)}"
        )


@sessions.command("delete")
@click.argument("session_id")
@click.confirmation_option(prompt="Are you sure?")
@click.pass_obj
def sessions_delete(config: StashConfig, session_id: str) -> None:
    """Delete a session."""
    async def _delete() -> None:
        async with SessionStore(config.store) as store:
            await store.delete_by_id(session_id)

    _run(_delete())
    click.echo(f"Session {session_id} deleted.")


# ── Helpers ──────────────────────────────────────────────────────────────

def _fmt_ms(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M:%S")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
