#!/usr/bin/env python3
"""
Run CLI - Matching Pipeline Command

Loads a JSON batch of documents and transactions, runs the matching
pipeline and writes the results to the output directory.

Batch format:
    {"docs": [...], "txs": [...]}

"documents" / "transactions" are accepted as aliases. Records use the
field names of Doc.from_dict / Tx.from_dict (snake_case or camelCase).
"""

from datetime import datetime
from pathlib import Path
from typing import Any

import click
import pandas as pd

from ..core.config import get_config
from ..core.dates import FinancialDate
from ..core.errors import BookmatchError, InvalidRecordError
from ..core.json_utils import read_json, write_json
from ..core.models import Doc, MatchDecision, Tx
from ..matching.pipeline import EventType, PipelineInput, PipelineOptions, generate_match_summary, run_pipeline
from ..matching.repository import InMemoryMatchRepository, JsonFileMatchRepository


@click.command()
@click.argument("batch_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--tenant", help="Only match records of this tenant")
@click.option("--month", help="Only match transactions booked in this month (YYYY-MM)")
@click.option("--now", "now_str", help="Reference date for overdue checks (YYYY-MM-DD, default: today)")
@click.option("--max-tx", type=int, help="Maximum number of transactions to process")
@click.option("--max-docs", type=int, help="Maximum number of documents to process")
@click.option("--max-relations-per-tx", type=int, help="Maximum relations evaluated per transaction and kind")
@click.option(
    "--event-type",
    type=click.Choice([e.value for e in EventType]),
    default=EventType.NIGHTLY.value,
    show_default=True,
    help="What triggered this run",
)
@click.option("--dry-run", is_flag=True, help="Match without touching the persistent match store")
@click.option("--report", "report_path", type=click.Path(dir_okay=False, path_type=Path), help="Write decisions CSV")
@click.option("--output-dir", help="Override output directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def run(
    ctx: click.Context,
    batch_file: Path,
    tenant: str | None,
    month: str | None,
    now_str: str | None,
    max_tx: int | None,
    max_docs: int | None,
    max_relations_per_tx: int | None,
    event_type: str,
    dry_run: bool,
    report_path: Path | None,
    output_dir: str | None,
    verbose: bool,
) -> None:
    """
    Match a batch of documents and transactions.

    Examples:
      bookmatch run batch.json
      bookmatch run batch.json --tenant acme --month 2024-03
      bookmatch run batch.json --dry-run --report decisions.csv
    """
    config = get_config()
    verbose = verbose or ctx.obj.get("verbose", False)

    output_path = Path(output_dir) if output_dir else config.output_dir
    output_path.mkdir(parents=True, exist_ok=True)

    now = _parse_date_option(now_str, "--now") if now_str else FinancialDate.today()
    if month:
        _parse_date_option(f"{month}-01", "--month")

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    try:
        docs, txs = load_batch(batch_file)

        if dry_run:
            repo = InMemoryMatchRepository(event_time=timestamp)
        else:
            repo = JsonFileMatchRepository(config.data_dir / "store", event_time=timestamp)
        docs, txs = repo.store_records(docs, txs)

        if month:
            txs = filter_txs_by_month(txs, month)

        if verbose:
            click.echo("bookmatch run")
            click.echo(f"Batch: {batch_file}")
            click.echo(f"Tenant: {tenant or 'all'}")
            click.echo(f"Month: {month or 'all'}")
            click.echo(f"Loaded {len(docs)} documents, {len(txs)} transactions")
            click.echo(f"Store: {'in-memory (dry run)' if dry_run else config.data_dir / 'store'}")
            click.echo()

        options = PipelineOptions(
            now=now,
            tenant_filter=tenant,
            max_tx=max_tx,
            max_docs=max_docs,
            max_relations_per_tx=max_relations_per_tx,
            event_type=EventType(event_type),
            debug=ctx.obj.get("debug", False),
        )
        result = run_pipeline(PipelineInput(docs=docs, txs=txs, now=now), repo, options, cfg=config.matching)
    except BookmatchError as e:
        click.echo(f"Error during matching: {e}", err=True)
        raise click.ClickException(str(e)) from e

    summary = generate_match_summary(result)
    output_file = output_path / f"{timestamp}_bookmatch_run.json"
    write_json(
        output_file,
        {
            "metadata": {
                "batch_file": str(batch_file),
                "tenant": tenant,
                "month": month,
                "now": now.to_iso_string(),
                "event_type": event_type,
                "dry_run": dry_run,
                "timestamp": timestamp,
            },
            "summary": summary,
            "result": result.to_dict(),
        },
    )

    if report_path:
        decisions_frame(result.decisions).to_csv(report_path, index=False)

    by_state = summary["by_state"]
    click.echo(
        f"Decisions: {summary['total_decisions']} "
        f"(final {by_state.get('final', 0)}, partial {by_state.get('partial', 0)}, "
        f"suggested {by_state.get('suggested', 0)}, ambiguous {by_state.get('ambiguous', 0)})"
    )
    click.echo(f"Unmatched documents classified: {len(result.doc_lifecycle)}")
    click.echo(f"Unmatched transactions classified: {len(result.tx_lifecycle)}")
    click.echo(f"Results saved to: {output_file}")
    if report_path:
        click.echo(f"Report saved to: {report_path}")


def load_batch(batch_file: Path) -> tuple[list[Doc], list[Tx]]:
    """
    Load documents and transactions from a batch file.

    Raises:
        InvalidRecordError: If the file is not a batch object or a record is malformed
    """
    try:
        data = read_json(batch_file)
    except ValueError as e:
        raise InvalidRecordError("batch", str(batch_file), f"not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidRecordError("batch", str(batch_file), "expected an object with docs and txs")

    raw_docs = data.get("docs", data.get("documents")) or []
    raw_txs = data.get("txs", data.get("transactions")) or []
    for kind, records in (("document", raw_docs), ("transaction", raw_txs)):
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise InvalidRecordError(kind, None, f"{kind} records must be a list of objects")

    return [Doc.from_dict(record) for record in raw_docs], [Tx.from_dict(record) for record in raw_txs]


def filter_txs_by_month(txs: list[Tx], month: str) -> list[Tx]:
    """Transactions booked in the given YYYY-MM month; documents are not period-filtered."""
    return [tx for tx in txs if tx.date is not None and tx.date.month_key() == month]


def decisions_frame(decisions: list[MatchDecision]) -> pd.DataFrame:
    """Flatten decisions into one report row each."""
    rows: list[dict[str, Any]] = [
        {
            "tenant_id": d.tenant_id,
            "state": d.state.value,
            "relation_type": d.relation_type.value,
            "tx_ids": ";".join(d.tx_ids),
            "doc_ids": ";".join(d.doc_ids),
            "confidence": round(d.confidence, 4),
            "reason_codes": ";".join(d.reason_codes),
            "match_group_id": d.match_group_id or "",
            "open_amount_after": d.open_amount_after.to_amount_str() if d.open_amount_after is not None else "",
        }
        for d in decisions
    ]
    columns = [
        "tenant_id",
        "state",
        "relation_type",
        "tx_ids",
        "doc_ids",
        "confidence",
        "reason_codes",
        "match_group_id",
        "open_amount_after",
    ]
    return pd.DataFrame(rows, columns=columns)


def _parse_date_option(value: str, option: str) -> FinancialDate:
    try:
        return FinancialDate.from_string(value)
    except ValueError as e:
        raise click.BadParameter(f"invalid date {value!r}", param_hint=option) from e
