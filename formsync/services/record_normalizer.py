"""
Record normalizer - reduces Airtable webhook payloads to ChangedRecord values.

Airtable describes changed records in more than one shape depending on API version
and table configuration. Each shape has one handler; every handler yields the same
canonical ChangedRecord, so nothing downstream knows which shape a change arrived in.

list shape   {"changedTables": [{"id": "tbl1", "records": [{"id": "rec1", ...}]}]}
map shape    {"changedTablesById": {"tbl1": {
                  "changedRecordsById": {"rec1": {"current": {...}, "changeType": ...}},
                  "createdRecordsById": {"rec2": {"cellValuesByFieldId": {...}}},
                  "destroyedRecordIds": ["rec3"]}}}
flat shape   {"changedRecords": [{"tableId": "tbl1", "id": "rec1", ...}]}

Deleted when the current snapshot is null/absent-by-wrapper, or when a deleted /
changeType=deleted marker is present. Cell values come from cellValuesByFieldId,
then cellValues, then the display-name keyed fields map.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

logger = logging.getLogger(__name__)

SHAPE_LIST = "list"
SHAPE_MAP = "map"
SHAPE_FLAT = "flat"

# Field-ID keyed values win: display names are not stable identifiers.
CELL_VALUE_KEYS = ("cellValuesByFieldId", "cellValues", "fields")


@dataclass(frozen=True)
class ChangedRecord:
    id: str
    table_id: Optional[str]
    deleted: bool
    fields: dict[str, Any] = field(default_factory=dict)


def _cell_values(snapshot: Any) -> dict[str, Any]:
    if not isinstance(snapshot, dict):
        return {}
    for key in CELL_VALUE_KEYS:
        values = snapshot.get(key)
        if isinstance(values, dict):
            return dict(values)
    return {}


def _has_delete_marker(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    return obj.get("deleted") is True or obj.get("changeType") == "deleted"


def normalize_change(record_id: str, table_id: Optional[str], change: Any) -> ChangedRecord:
    """
    Build a ChangedRecord from one change object.

    *change* is either a snapshot carrying cell values directly or a wrapper whose
    "current" key holds the snapshot. A wrapper with current=None is a deletion.
    """
    if isinstance(change, dict) and "current" in change:
        snapshot = change["current"]
    else:
        snapshot = change

    deleted = (
        snapshot is None
        or _has_delete_marker(change)
        or _has_delete_marker(snapshot)
    )
    return ChangedRecord(
        id=record_id,
        table_id=table_id,
        deleted=deleted,
        fields={} if deleted else _cell_values(snapshot),
    )


def _list_shape(payload: dict) -> Iterator[ChangedRecord]:
    for table in payload.get("changedTables") or []:
        if not isinstance(table, dict):
            continue
        table_id = table.get("id") or None
        for record in table.get("records") or []:
            if not isinstance(record, dict) or not record.get("id"):
                logger.debug("Skipping list-shape record without id in table %s", table_id)
                continue
            yield normalize_change(record["id"], table_id, record)


def _map_shape(payload: dict) -> Iterator[ChangedRecord]:
    tables = payload.get("changedTablesById")
    if not isinstance(tables, dict):
        return
    for table_id, table in tables.items():
        if not isinstance(table, dict):
            continue

        created = table.get("createdRecordsById")
        if isinstance(created, dict):
            for record_id, snapshot in created.items():
                yield normalize_change(record_id, table_id, snapshot)

        changed = table.get("changedRecordsById")
        if isinstance(changed, dict):
            for record_id, change in changed.items():
                yield normalize_change(record_id, table_id, change)

        for record_id in table.get("destroyedRecordIds") or []:
            if record_id:
                yield ChangedRecord(id=record_id, table_id=table_id, deleted=True)


def _flat_shape(payload: dict) -> Iterator[ChangedRecord]:
    for entry in payload.get("changedRecords") or []:
        if not isinstance(entry, dict):
            continue
        record_id = entry.get("id") or entry.get("recordId")
        if not record_id:
            logger.debug("Skipping flat-shape change without record id")
            continue
        yield normalize_change(record_id, entry.get("tableId") or None, entry)


_SHAPES: tuple[tuple[str, str, Callable[[dict], Iterator[ChangedRecord]]], ...] = (
    (SHAPE_LIST, "changedTables", _list_shape),
    (SHAPE_MAP, "changedTablesById", _map_shape),
    (SHAPE_FLAT, "changedRecords", _flat_shape),
)


def detect_shapes(payload: Any) -> list[str]:
    """Shapes present in *payload*. One payload may carry more than one."""
    if not isinstance(payload, dict):
        return []
    return [shape for shape, marker, _ in _SHAPES if payload.get(marker)]


def extract_changed_records(payload: Any) -> list[ChangedRecord]:
    """All changed records in one webhook payload, in listed order."""
    if not isinstance(payload, dict):
        logger.warning("Ignoring non-object webhook payload: %s", type(payload).__name__)
        return []

    records: list[ChangedRecord] = []
    for shape, marker, handler in _SHAPES:
        if payload.get(marker):
            records.extend(handler(payload))

    if not records:
        logger.debug(
            "Payload carried no record changes (transaction %s)",
            payload.get("baseTransactionNumber"),
        )
    return records
