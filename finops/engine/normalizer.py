"""
Event Normalizer - raw export records to ordered NormalizedEvents.

Each raw record is wrapped with tenant/project context, validated against the
BillingEvent contract, stamped with a content hash over a fixed key subset,
and the survivors are stably sorted by (timestamp, event_id). Replay order
for the ledger builder comes from this sort, so ties must break the same way
on every run.

Failure policy:
- non-object records are always rejected, whatever ``skip_validation`` says
- records that fail the contract are reported by input index and dropped,
  unless ``skip_validation`` is set, in which case they are kept with their
  ``validation_errors`` populated
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from finops.engine.canonical import hash_canonical
from finops.models.events import (
    SOURCE_HASH_KEYS,
    BillingEvent,
    IngestError,
    IngestResult,
    IngestStats,
    NormalizedEvent,
)
from finops.models.types import live_timestamp, try_parse_timestamp
from finops.models.validation import validate_record

_MAX_INSTANT = datetime.max.replace(tzinfo=timezone.utc)


def event_sort_key(event: Any) -> tuple[datetime, str, str]:
    """
    Replay order key: parsed timestamp, then event_id, then the raw text.

    Equal instants written differently still order by event_id. Unparseable
    timestamps (possible only for records kept with validation skipped) sort
    last.
    """
    timestamp = getattr(event, "timestamp", None)
    instant = try_parse_timestamp(timestamp) or _MAX_INSTANT
    return instant, str(getattr(event, "event_id", None) or ""), str(timestamp or "")


def sort_events(events: Iterable[Any]) -> list[Any]:
    """Stable sort by (timestamp ascending, event_id ascending)."""
    return sorted(events, key=event_sort_key)


def compute_source_hash(record: dict[str, Any]) -> str:
    """SHA-256 over the billing content keys that are present in ``record``."""
    content = {
        key: record[key] for key in SOURCE_HASH_KEYS if record.get(key) is not None
    }
    return hash_canonical(content)


class EventNormalizer:
    """
    Validates and orders raw billing events for one tenant/project.

    Attributes:
        tenant_id: Tenant attached to every record
        project_id: Project attached to every record
        skip_validation: Keep records that fail the contract
        stable_output: Stamp ``normalized_at`` with the fixed sentinel

    Example:
        >>> normalizer = EventNormalizer("acme", "billing")
        >>> result = normalizer.ingest(raw_records)
        >>> print(result.stats.valid, "valid events")
    """

    def __init__(
        self,
        tenant_id: str,
        project_id: str,
        skip_validation: bool = False,
        stable_output: bool = False,
    ):
        self.tenant_id = tenant_id
        self.project_id = project_id
        self.skip_validation = skip_validation
        self.stable_output = stable_output
        self.logger = structlog.get_logger()

    def ingest(self, raw_events: list[Any], normalized_at: Optional[str] = None) -> IngestResult:
        """
        Normalize a batch of raw records.

        Args:
            raw_events: Untyped records parsed from an export
            normalized_at: Override for the ingestion stamp

        Returns:
            IngestResult with ordered events, per-index errors and counts
        """
        stamp = normalized_at or live_timestamp(self.stable_output)
        events: list[NormalizedEvent] = []
        errors: list[IngestError] = []

        for index, raw in enumerate(raw_events):
            if not isinstance(raw, dict):
                errors.append(IngestError(index=index, raw_event=raw, error="Event must be an object"))
                continue

            record = self._with_context(raw)
            outcome = validate_record(BillingEvent, record)
            if outcome.success:
                events.append(self._normalize(outcome.value, stamp))
                continue

            errors.append(IngestError(index=index, raw_event=raw, error=", ".join(outcome.errors)))
            if self.skip_validation:
                events.append(self._keep_unvalidated(record, stamp, outcome.errors))

        ordered = sort_events(events)
        by_type = Counter(_type_name(event) for event in ordered)
        stats = IngestStats(
            total=len(raw_events),
            valid=len(ordered),
            invalid=len(errors),
            by_type=dict(sorted(by_type.items())),
        )

        self.logger.info(
            "events_ingested",
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            total=stats.total,
            valid=stats.valid,
            invalid=stats.invalid,
        )
        return IngestResult(events=ordered, errors=errors, stats=stats)

    def _with_context(self, raw: dict[str, Any]) -> dict[str, Any]:
        record = dict(raw)
        record["tenant_id"] = self.tenant_id
        record["project_id"] = self.project_id
        record["metadata"] = raw.get("metadata") or {}
        record["raw_payload"] = raw
        return record

    def _normalize(self, event: BillingEvent, stamp: str) -> NormalizedEvent:
        data = event.model_dump(mode="json")
        data["normalized_at"] = stamp
        data["source_hash"] = compute_source_hash(data)
        data["validation_errors"] = []
        return NormalizedEvent.model_validate(data)

    def _keep_unvalidated(
        self, record: dict[str, Any], stamp: str, validation_errors: list[str]
    ) -> NormalizedEvent:
        fields = {}
        for name, info in NormalizedEvent.model_fields.items():
            if name in record:
                fields[name] = record[name]
            elif not info.is_required():
                fields[name] = info.get_default(call_default_factory=True)
            else:
                fields[name] = None
        fields["normalized_at"] = stamp
        fields["source_hash"] = compute_source_hash(record)
        fields["validation_errors"] = list(validation_errors)
        self.logger.debug(
            "unvalidated_event_kept",
            event_id=record.get("event_id"),
            errors=len(validation_errors),
        )
        return NormalizedEvent.model_construct(**fields)


def _type_name(event: NormalizedEvent) -> str:
    event_type = getattr(event, "event_type", None)
    value = getattr(event_type, "value", event_type)
    return str(value) if value is not None else "unknown"
