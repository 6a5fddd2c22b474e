"""CLI entry point for the chunk ledger."""

from __future__ import annotations

import sys

import click

from .context import LedgerContext
from .core.errors import ConfigError, IntegrityMismatch, LedgerError, ParseError
from .observability.logger import get_logger, ledger_operation, setup_logging

EXIT_INTEGRITY = 1
EXIT_PARSE = 2
EXIT_CONFIG = 3


def _context(config: str | None) -> LedgerContext:
    try:
        ctx = LedgerContext.from_config(config)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(EXIT_CONFIG)
    setup_logging(ctx.settings.observability.log_level, ctx.settings.observability.log_format)
    return ctx


@click.group()
def main() -> None:
    """Chunked ledger tools."""


@main.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--config", default=None, help="Settings file (parameter grammar)")
def verify(directory: str, config: str | None) -> None:
    """Check every chunk in DIRECTORY against its manifest digest."""
    from .ledger.manager import verify_directory

    with _context(config) as ctx, ledger_operation("verify"):
        try:
            results = verify_directory(directory, ctx)
        except IntegrityMismatch as exc:
            click.echo(f"Manifest: {exc}", err=True)
            sys.exit(EXIT_INTEGRITY)
        except ParseError as exc:
            click.echo(f"Manifest: {exc}", err=True)
            sys.exit(EXIT_PARSE)

        failed = [r for r in results if not r.ok]
        get_logger(__name__).info(
            "ledger_verified", directory=directory, chunks=len(results), failed=len(failed),
        )
    for result in results:
        if result.ok:
            click.echo(f"  OK    {result.chunk_id}  {result.entry_count:5d} entries  {result.digest}")
        else:
            click.echo(f"  FAIL  {result.chunk_id}  {result.error_type}: {result.error}")
    click.echo(f"{len(results) - len(failed)}/{len(results)} chunks verified")

    if any(r.error_type == IntegrityMismatch.__name__ for r in failed):
        sys.exit(EXIT_INTEGRITY)
    if failed:
        sys.exit(EXIT_PARSE)


@main.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--config", default=None, help="Settings file (parameter grammar)")
def summary(directory: str, config: str | None) -> None:
    """Print per-chunk and overall aggregates for DIRECTORY."""
    from .ledger.manager import ChunkManager

    with _context(config) as ctx, ledger_operation("summary"):
        try:
            manager = ChunkManager.open(directory, ctx)
        except IntegrityMismatch as exc:
            click.echo(f"Integrity failure: {exc}", err=True)
            sys.exit(EXIT_INTEGRITY)
        except LedgerError as exc:
            click.echo(f"Load failure: {exc}", err=True)
            sys.exit(EXIT_PARSE)

        get_logger(__name__).info("ledger_opened", directory=directory, chunks=len(manager))
        for snap in manager.snapshots():
            click.echo(f"\n--- {snap.chunk_id} ({snap.state.value}) ---")
            click.echo(f"  Entries:         {snap.entry_count}")
            for name, value in sorted(snap.aggregates.items()):
                click.echo(f"  {name:16s} {value:,.2f}")

        click.echo(f"\n{'=' * 40}")
        for name, value in sorted(manager.totals().items()):
            click.echo(f"  {name:16s} {value:,.2f}")


if __name__ == "__main__":
    main()
