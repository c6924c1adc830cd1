"""
CLI entry point for the Teleport relayer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
import uvicorn
from pydantic import ValidationError

from .config import ConfigurationError, RelayerConfig
from .db import STATUS_DEAD_LETTER, RelayerDatabase

app = typer.Typer(
    name="teleport-relayer",
    help="Lock-and-mint relayer for Teleport",
    add_completion=False,
)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for console output."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


def _load_config(config_path: Optional[Path]) -> RelayerConfig:
    try:
        config = RelayerConfig.from_env(config_path)
    except ValidationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)
    configure_logging(config.settings.log_level)
    return config


async def _open_database(config: RelayerConfig) -> RelayerDatabase:
    db = RelayerDatabase(config.settings.database_url)
    await db.init()
    return db


@app.command()
def run(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(
        False,
        "--once",
        help="Run one polling round without the API and exit (useful for testing)",
    ),
) -> None:
    """
    Start the relayer and its status API.
    """
    from .api import create_app
    from .relayer import TeleportRelayer

    config = _load_config(config_path)

    try:
        relayer = TeleportRelayer(config)
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)

    if once:

        async def one_round():
            try:
                await relayer.run_once()
                return await relayer.chain_statuses()
            finally:
                await relayer.close()

        typer.echo("Running a single polling round...")
        try:
            statuses = asyncio.run(one_round())
        except ConfigurationError as e:
            typer.echo(f"Configuration error: {e}", err=True)
            raise typer.Exit(code=1)
        for status in statuses:
            mark = "✗" if status.last_error else "✓"
            typer.echo(
                f"{mark} {status.name}: block {status.last_scanned_block}"
                + (f" ({status.last_error})" if status.last_error else "")
            )
        return

    settings = config.settings
    typer.echo(f"Relayer API listening on {settings.host}:{settings.port}. Press Ctrl+C to stop.")
    uvicorn.run(
        create_app(relayer),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def chains(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List configured source chains and their persisted cursors.
    """
    config = _load_config(config_path)

    async def load() -> tuple[dict[int, int], dict[str, int]]:
        db = await _open_database(config)
        try:
            return await db.get_cursors(), await db.count_by_status()
        finally:
            await db.close()

    cursors, counts = asyncio.run(load())

    if not config.source_chains:
        typer.echo("No source chains configured.")

    for chain in config.source_chains:
        cursor = cursors.get(chain.chain_id)
        typer.echo(f"  {chain.name} (chain id {chain.chain_id})")
        typer.echo(f"    RPC: {chain.rpc_url}")
        typer.echo(f"    Lock contract: {chain.lock_contract}")
        typer.echo(f"    Last scanned block: {cursor if cursor is not None else '-'}")
        typer.echo("")

    if counts:
        summary = ", ".join(f"{status}={count}" for status, count in sorted(counts.items()))
        typer.echo(f"Deposits: {summary}")


@app.command("dead-letters")
def dead_letters(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List deposits whose mint exhausted its retries.
    """
    config = _load_config(config_path)

    async def load():
        db = await _open_database(config)
        try:
            return await db.get_by_status(STATUS_DEAD_LETTER)
        finally:
            await db.close()

    entries = asyncio.run(load())

    if not entries:
        typer.echo("No dead-lettered deposits.")

    for entry in entries:
        typer.echo(f"  {entry.source_chain} (chain id {entry.source_chain_id})")
        typer.echo(f"    Lock tx: {entry.tx_hash} log {entry.log_index}")
        typer.echo(f"    Depositor: {entry.depositor}")
        typer.echo(f"    Amount: {entry.amount}")
        typer.echo(f"    Attempts: {entry.attempts}")
        if entry.mint_tx_hash:
            typer.echo(f"    Last mint tx: {entry.mint_tx_hash}")
        typer.echo(f"    Error: {entry.last_error}")
        typer.echo("")


@app.command()
def requeue(
    chain_id: int = typer.Argument(..., help="Source chain id"),
    tx_hash: str = typer.Argument(..., help="Lock transaction hash (0x...)"),
    log_index: int = typer.Argument(..., help="Log index of the lock event"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Put a dead-lettered deposit back on the retry queue.
    """
    config = _load_config(config_path)

    async def apply() -> bool:
        db = await _open_database(config)
        try:
            return await db.requeue(chain_id, tx_hash.lower(), log_index)
        finally:
            await db.close()

    if not asyncio.run(apply()):
        typer.echo("No dead-lettered deposit matches.", err=True)
        raise typer.Exit(code=1)
    typer.echo("✓ Requeued")


@app.command()
def version() -> None:
    """Show the relayer version."""
    from teleport_relayer import __version__
    typer.echo(f"teleport-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
