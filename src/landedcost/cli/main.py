"""Command-line interface for landedcost."""

from __future__ import annotations

import csv
import functools
import io
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import httpx
from pydantic import ValidationError

from landedcost.errors import LandedCostError
from landedcost.money import parse_iso_date

FETCH_TIMEOUT = float(os.getenv("FX_HTTP_TIMEOUT", "20"))


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _handle_errors(func):
    """Turn domain and validation errors into a clean exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LandedCostError as exc:
            raise click.ClickException(str(exc)) from exc
        except ValidationError as exc:
            raise click.ClickException(f"invalid input: {exc}") from exc

    return wrapper


def _parse_rows(text: str, name: str) -> List[Dict[str, Any]]:
    if name.lower().endswith(".csv"):
        return list(csv.DictReader(io.StringIO(text)))
    payload = json.loads(text)
    if isinstance(payload, dict):
        payload = payload.get("rows", [])
    if not isinstance(payload, list):
        raise click.ClickException(f"{name}: expected a JSON list of rows or an object with 'rows'")
    return payload


def _load_rows(location: str) -> List[Dict[str, Any]]:
    """Rows from a local JSON/CSV file or an http(s) URL."""
    if location.startswith(("http://", "https://")):
        try:
            response = httpx.get(location, timeout=FETCH_TIMEOUT, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise click.ClickException(f"fetch failed for {location}: {exc}") from exc
        return _parse_rows(response.text, location.split("?", 1)[0])
    path = Path(location)
    if not path.exists():
        raise click.ClickException(f"no such file: {location}")
    return _parse_rows(path.read_text(encoding="utf-8"), path.name)


@click.group()
@click.option("--database-url", default=None, help="SQLAlchemy database URL; overrides DATABASE_URL.")
@click.option("--log-level", envvar="LOG_LEVEL", default="INFO", show_default=True)
def cli(database_url: Optional[str], log_level: str) -> None:
    """Landed-cost rate store and quote engine."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if database_url:
        from landedcost.db.session import configure_engine

        configure_engine(database_url)


@cli.command("fx-refresh")
@_handle_errors
def fx_refresh() -> None:
    """Fetch today's ECB reference rates into the FX store."""
    from landedcost.fx.refresh import refresh_fx

    _emit(refresh_fx().to_dict())


@cli.command("import")
@click.argument("location")
@click.option("--source", required=True, help="Source name, e.g. WITS, CSV, OPENAI.")
@click.option("--job", required=True, help="Job id; its prefix selects the entity (duties:eu, vat:eu, ...).")
@click.option("--entity", default=None, help="Override the entity inferred from --job.")
@click.option("--import-id", default=None, help="ImportRun id; a succeeded id replays as a no-op.")
@click.option("--source-url", default=None, help="Provenance URL recorded for every row.")
@click.option("--batch-size", type=int, default=None, help="Records per committed batch.")
@click.option("--min-confidence", type=float, default=None, help="Drop rows below this confidence.")
@click.option("--dry-run", is_flag=True, help="Report planned changes without writing.")
@_handle_errors
def import_command(
    location: str,
    source: str,
    job: str,
    entity: Optional[str],
    import_id: Optional[str],
    source_url: Optional[str],
    batch_size: Optional[int],
    min_confidence: Optional[float],
    dry_run: bool,
) -> None:
    """Import rows from a JSON/CSV file or URL."""
    from landedcost.imports.pipeline import run_import

    rows = _load_rows(location)
    result = run_import(
        source.upper(),
        job,
        rows,
        entity=entity,
        import_id=import_id,
        source_url=source_url or (location if location.startswith("http") else None),
        batch_size=batch_size,
        min_confidence=min_confidence,
        dry_run=dry_run,
    )
    _emit(result.to_dict())


@cli.command("sweep-stale")
@click.option("--threshold-minutes", type=int, default=None, help="Default: IMPORT_STALE_MINUTES.")
@click.option("--limit", type=int, default=None)
@_handle_errors
def sweep_stale(threshold_minutes: Optional[int], limit: Optional[int]) -> None:
    """Mark running imports without a recent heartbeat as failed."""
    from landedcost.imports.maintenance import sweep_stale_imports

    _emit(sweep_stale_imports(threshold_minutes=threshold_minutes, limit=limit).to_dict())


@cli.command("prune")
@click.option("--days", type=int, default=None, help="Default: IMPORT_PRUNE_DAYS.")
@_handle_errors
def prune(days: Optional[int]) -> None:
    """Delete old provenance and finished import runs."""
    from landedcost.imports.maintenance import prune_imports

    _emit(prune_imports(days=days).to_dict())


@cli.command("quote")
@click.option("--input", "input_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--as-of", default=None, help="Quote date (YYYY-MM-DD); default today UTC.")
@click.option("--currency", default=None, help="Result currency; default the destination's.")
@_handle_errors
def quote(input_path: str, as_of: Optional[str], currency: Optional[str]) -> None:
    """Compute a landed-cost quote from a JSON request."""
    from landedcost.quotes import QuoteInput, compute_quote

    payload = json.loads(Path(input_path).read_text(encoding="utf-8"))
    quote_input = QuoteInput.model_validate(payload)
    on = parse_iso_date(as_of) if as_of else None
    _emit(compute_quote(quote_input, as_of=on, result_currency=currency).to_dict())


@cli.command("counters")
def counters() -> None:
    """Print this process's import counters."""
    from landedcost.observability import counters_snapshot

    _emit(counters_snapshot())


if __name__ == "__main__":
    cli()
