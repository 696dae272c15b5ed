#!/usr/bin/env python3
"""
Match Repository

The only mutable boundary of the matching pipeline. The pipeline hands
resolved decisions to a MatchRepository and asks it for transaction
history; how and where state is stored is up to the implementation.

Implementations:
- InMemoryMatchRepository: tables held in memory (tests, dry runs)
- JsonFileMatchRepository: the same tables persisted as JSON files

Both apply the projected operations from persistence.to_apply_ops as
upserts keyed by composite keys, so re-applying a run is a no-op.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..core.dates import FinancialDate
from ..core.errors import InvalidRecordError, RepositoryError
from ..core.json_utils import read_json, write_json
from ..core.models import Doc, MatchDecision, Tx, normalize_tenant_id
from .persistence import (
    ApplyOp,
    EdgeOp,
    GroupOp,
    UpdateDocOp,
    UpdateLineItemOp,
    UpdateTxOp,
    project_unique_edge_refs,
    to_apply_ops,
    to_audit_record,
)
from .resolver import decision_key

logger = logging.getLogger(__name__)

TABLE_NAMES = ("groups", "doc_edges", "tx_edges", "docs", "txs", "line_items", "suggestions")


class MatchRepository(Protocol):
    """Storage boundary used by run_pipeline."""

    def apply_matches(self, decisions: list[MatchDecision]) -> None:
        """Persist accepted final/partial decisions."""
        ...

    def save_suggestions(self, decisions: list[MatchDecision]) -> None:
        """Persist suggested and ambiguous decisions for review."""
        ...

    def audit(self, decisions: list[MatchDecision]) -> None:
        """Append an audit record for every decision of a run."""
        ...

    def load_tx_history(
        self,
        tenant_id: str,
        lookback_days: int,
        limit: int,
        vendor_key: str | None = None,
        until: FinancialDate | None = None,
    ) -> list[Tx]:
        """
        Earlier transactions of a tenant, newest first.

        Args:
            tenant_id: Tenant to load history for
            lookback_days: Only transactions at most this many days before until
            limit: Maximum number of transactions returned
            vendor_key: Restrict to one vendor when given
            until: Reference date (default: today)
        """
        ...


@dataclass
class ApplySummary:
    """Counts of one apply_matches / save_suggestions call."""

    ops: int = 0
    doc_edges: int = 0
    tx_edges: int = 0


class InMemoryMatchRepository:
    """
    Repository keeping all tables in memory.

    Tables are dictionaries keyed by composite string keys:
    groups by group id, doc edges by group|doc, tx edges by group|tx,
    documents and transactions by tenant|id, line items by
    tenant|invoice|item key.
    """

    def __init__(self, event_time: str | None = None):
        self.tables: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in TABLE_NAMES}
        self.audit_log: list[dict[str, Any]] = []
        self.event_time = event_time
        self.last_summary = ApplySummary()

    # Records

    def store_records(self, docs: list[Doc], txs: list[Tx]) -> tuple[list[Doc], list[Tx]]:
        """
        Upsert input records, keeping persisted matching state.

        Link state, open amounts and line item state already stored win over
        the incoming payload, since those only change through applied
        operations. Returns the merged records.
        """
        merged_docs = [Doc.from_dict(self._merge_record("docs", doc.to_dict())) for doc in docs]
        merged_txs = [Tx.from_dict(self._merge_record("txs", tx.to_dict())) for tx in txs]
        self._flush()
        return merged_docs, merged_txs

    def _merge_record(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        key = _record_key(record.get("tenant_id"), record["id"])
        existing = self.tables[table].get(key)
        merged = dict(record)
        if existing:
            for name in ("link_state", "open_amount"):
                if existing.get(name) is not None:
                    merged[name] = existing[name]
            if existing.get("items") and merged.get("items"):
                merged["items"] = _merge_items(merged["items"], existing["items"])
        self.tables[table][key] = merged
        return merged

    # MatchRepository

    def apply_matches(self, decisions: list[MatchDecision]) -> None:
        self.last_summary = self._apply(decisions)
        logger.info(
            "Applied %d final decisions (%d ops, %d doc edges, %d tx edges)",
            len(decisions),
            self.last_summary.ops,
            self.last_summary.doc_edges,
            self.last_summary.tx_edges,
        )

    def save_suggestions(self, decisions: list[MatchDecision]) -> None:
        for decision in decisions:
            self.tables["suggestions"][decision_key(decision)] = decision.to_dict()
        self._apply(decisions)
        logger.info("Saved %d suggestions", len(decisions))

    def audit(self, decisions: list[MatchDecision]) -> None:
        self.audit_log.extend(to_audit_record(d, self.event_time).to_dict() for d in decisions)
        self._flush_audit()

    def load_tx_history(
        self,
        tenant_id: str,
        lookback_days: int,
        limit: int,
        vendor_key: str | None = None,
        until: FinancialDate | None = None,
    ) -> list[Tx]:
        tenant = normalize_tenant_id(tenant_id)
        reference = until or FinancialDate.today()
        cutoff = reference.add_days(-lookback_days)

        history = []
        for record in self.tables["txs"].values():
            if normalize_tenant_id(record.get("tenant_id")) != tenant:
                continue
            try:
                tx = Tx.from_dict(record)
            except InvalidRecordError as e:
                logger.warning("Skipping stored transaction: %s", e)
                continue
            if vendor_key and tx.vendor_key != vendor_key:
                continue
            if tx.date is None or not cutoff <= tx.date <= reference:
                continue
            history.append(tx)

        history.sort(key=lambda tx: (tx.date.to_iso_string(), tx.id), reverse=True)
        return history[:limit]

    # Operations

    def apply_ops(self, ops: list[ApplyOp]) -> ApplySummary:
        """Apply projected operations as idempotent upserts."""
        for op in ops:
            if isinstance(op, GroupOp):
                self.tables["groups"][op.match_group_id] = op.to_dict()
            elif isinstance(op, EdgeOp):
                self._upsert_edge(op)
            elif isinstance(op, UpdateDocOp):
                self._update_state("docs", op.tenant_id, op.doc_id, op.to_dict())
            elif isinstance(op, UpdateTxOp):
                self._update_state("txs", op.tenant_id, op.tx_id, op.to_dict())
            elif isinstance(op, UpdateLineItemOp):
                self._update_line_item(op)

        doc_refs, tx_refs = project_unique_edge_refs(ops)
        return ApplySummary(ops=len(ops), doc_edges=len(doc_refs), tx_edges=len(tx_refs))

    def _apply(self, decisions: list[MatchDecision]) -> ApplySummary:
        ops = [op for decision in decisions for op in to_apply_ops(decision, self.event_time)]
        summary = self.apply_ops(ops)
        self._flush()
        return summary

    def _upsert_edge(self, op: EdgeOp) -> None:
        row = op.to_dict()
        doc_row = {k: v for k, v in row.items() if k != "tx_id"}
        tx_row = {k: v for k, v in row.items() if k != "doc_id"}
        self.tables["doc_edges"][f"{op.match_group_id}|{op.doc_id}"] = doc_row
        self.tables["tx_edges"][f"{op.match_group_id}|{op.tx_id}"] = tx_row

    def _update_state(self, table: str, tenant_id: str, record_id: str, update: dict[str, Any]) -> None:
        key = _record_key(tenant_id, record_id)
        record = self.tables[table].setdefault(key, {"id": record_id, "tenant_id": tenant_id})
        record["link_state"] = update["link_state"]
        if "open_amount" in update and update["open_amount"] is not None:
            record["open_amount"] = update["open_amount"]

    def _update_line_item(self, op: UpdateLineItemOp) -> None:
        key = f"{normalize_tenant_id(op.tenant_id)}|{op.invoice_id}|{op.item_key}"
        self.tables["line_items"][key] = op.to_dict()

        doc = self.tables["docs"].get(_record_key(op.tenant_id, op.invoice_id))
        if not doc:
            return
        for index, item in enumerate(doc.get("items") or []):
            line_index = item.get("line_index") if item.get("line_index") is not None else index
            if (op.line_item_id and item.get("id") == op.line_item_id) or (
                not op.line_item_id and line_index == op.line_index
            ):
                item["link_state"] = op.link_state.value
                item["open_amount"] = op.open_amount.to_amount_str()

    def _flush(self) -> None:
        """Persist tables; in-memory storage has nothing to do."""

    def _flush_audit(self) -> None:
        """Persist the audit log; in-memory storage has nothing to do."""


class JsonFileMatchRepository(InMemoryMatchRepository):
    """
    Repository persisting its tables as JSON files in a directory.

    Each table lives in <store_dir>/<table>.json, the audit log in
    <store_dir>/audit.json. Files are rewritten atomically after each call.
    """

    def __init__(self, store_dir: Path, event_time: str | None = None):
        """
        Initialize the repository, loading existing tables.

        Args:
            store_dir: Directory holding the table files (created on demand)
            event_time: Timestamp stamped on edges, groups and audit records

        Raises:
            RepositoryError: If an existing table cannot be read
        """
        super().__init__(event_time=event_time)
        self.store_dir = Path(store_dir)
        try:
            for name in TABLE_NAMES:
                self.tables[name] = read_json(self.store_dir / f"{name}.json", default={})
            self.audit_log = read_json(self.store_dir / "audit.json", default=[])
        except (OSError, ValueError) as e:
            raise RepositoryError(f"Failed to load match store from {self.store_dir}: {e}") from e

    def _flush(self) -> None:
        try:
            for name in TABLE_NAMES:
                write_json(self.store_dir / f"{name}.json", self.tables[name], sort_keys=True)
        except OSError as e:
            raise RepositoryError(f"Failed to write match store to {self.store_dir}: {e}") from e

    def _flush_audit(self) -> None:
        try:
            write_json(self.store_dir / "audit.json", self.audit_log)
        except OSError as e:
            raise RepositoryError(f"Failed to write audit log to {self.store_dir}: {e}") from e


def _record_key(tenant_id: str | None, record_id: str) -> str:
    return f"{normalize_tenant_id(tenant_id)}|{record_id}"


def _merge_items(incoming: list[dict[str, Any]], stored: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Carry stored line item state over to incoming items with the same id or index."""
    by_key = {_item_key(item, index): item for index, item in enumerate(stored)}

    merged = []
    for index, item in enumerate(incoming):
        previous = by_key.get(_item_key(item, index))
        item = dict(item)
        if previous:
            for name in ("link_state", "open_amount"):
                if previous.get(name) is not None:
                    item[name] = previous[name]
        merged.append(item)
    return merged


def _item_key(item: dict[str, Any], index: int) -> str:
    if item.get("id"):
        return f"id:{item['id']}"
    line_index = item.get("line_index")
    return f"line:{line_index if line_index is not None else index}"
