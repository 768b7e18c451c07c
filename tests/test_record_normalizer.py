"""
Tests for formsync/services/record_normalizer.py - payload shapes to ChangedRecord.
"""
import pytest

from formsync.services.record_normalizer import (
    SHAPE_FLAT,
    SHAPE_LIST,
    SHAPE_MAP,
    ChangedRecord,
    detect_shapes,
    extract_changed_records,
    normalize_change,
)


# ---------------------------------------------------------------------------
# Map shape (changedTablesById)
# ---------------------------------------------------------------------------


class TestMapShape:
    def test_changed_record_with_current_snapshot(self):
        payload = {
            "changedTablesById": {
                "tbl1": {
                    "changedRecordsById": {
                        "rec1": {"current": {"cellValuesByFieldId": {"fldA": "x"}}},
                    }
                }
            }
        }
        assert extract_changed_records(payload) == [
            ChangedRecord(id="rec1", table_id="tbl1", deleted=False, fields={"fldA": "x"}),
        ]

    def test_null_current_is_deletion(self):
        payload = {"changedTablesById": {"tbl1": {"changedRecordsById": {"rec1": {"current": None}}}}}
        [record] = extract_changed_records(payload)
        assert record.deleted is True
        assert record.fields == {}

    def test_change_type_deleted(self):
        payload = {
            "changedTablesById": {
                "tbl1": {
                    "changedRecordsById": {
                        "rec1": {"changeType": "deleted", "current": {"cellValuesByFieldId": {"fldA": "x"}}},
                    }
                }
            }
        }
        [record] = extract_changed_records(payload)
        assert record.deleted is True

    def test_deleted_flag(self):
        payload = {"changedTablesById": {"tbl1": {"changedRecordsById": {"rec1": {"deleted": True}}}}}
        [record] = extract_changed_records(payload)
        assert record.deleted is True

    def test_flat_fallback_without_current(self):
        payload = {
            "changedTablesById": {
                "tbl1": {"changedRecordsById": {"rec1": {"cellValuesByFieldId": {"fldA": "y"}}}}
            }
        }
        [record] = extract_changed_records(payload)
        assert record.deleted is False
        assert record.fields == {"fldA": "y"}

    def test_created_and_destroyed_records(self):
        payload = {
            "changedTablesById": {
                "tbl1": {
                    "createdRecordsById": {
                        "rec2": {"createdTime": "2026-10-19T00:00:00.000Z", "cellValuesByFieldId": {"fldA": "new"}},
                    },
                    "destroyedRecordIds": ["rec3"],
                }
            }
        }
        records = extract_changed_records(payload)
        assert records == [
            ChangedRecord(id="rec2", table_id="tbl1", deleted=False, fields={"fldA": "new"}),
            ChangedRecord(id="rec3", table_id="tbl1", deleted=True, fields={}),
        ]

    def test_multiple_tables(self):
        payload = {
            "changedTablesById": {
                "tbl1": {"changedRecordsById": {"rec1": {"current": {"cellValuesByFieldId": {}}}}},
                "tbl2": {"changedRecordsById": {"rec2": {"current": {"cellValuesByFieldId": {}}}}},
            }
        }
        records = extract_changed_records(payload)
        assert [(r.table_id, r.id) for r in records] == [("tbl1", "rec1"), ("tbl2", "rec2")]


# ---------------------------------------------------------------------------
# List shape (changedTables)
# ---------------------------------------------------------------------------


class TestListShape:
    def test_records_in_order(self):
        payload = {
            "changedTables": [
                {
                    "id": "tbl1",
                    "records": [
                        {"id": "rec1", "cellValuesByFieldId": {"fldA": "1"}},
                        {"id": "rec2", "cellValuesByFieldId": {"fldA": "2"}},
                    ],
                }
            ]
        }
        records = extract_changed_records(payload)
        assert [r.id for r in records] == ["rec1", "rec2"]
        assert records[1].fields == {"fldA": "2"}

    def test_deleted_marker(self):
        payload = {"changedTables": [{"id": "tbl1", "records": [{"id": "rec1", "deleted": True}]}]}
        [record] = extract_changed_records(payload)
        assert record.deleted is True

    def test_record_without_id_skipped(self):
        payload = {"changedTables": [{"id": "tbl1", "records": [{"cellValuesByFieldId": {"fldA": "1"}}]}]}
        assert extract_changed_records(payload) == []


# ---------------------------------------------------------------------------
# Flat shape (changedRecords)
# ---------------------------------------------------------------------------


class TestFlatShape:
    def test_inline_values(self):
        payload = {"changedRecords": [{"tableId": "tbl1", "id": "rec1", "cellValuesByFieldId": {"fldA": "x"}}]}
        assert extract_changed_records(payload) == [
            ChangedRecord(id="rec1", table_id="tbl1", deleted=False, fields={"fldA": "x"}),
        ]

    def test_record_id_alias_and_current(self):
        payload = {
            "changedRecords": [
                {"tableId": "tbl1", "recordId": "rec1", "current": {"cellValuesByFieldId": {"fldA": "x"}}},
            ]
        }
        [record] = extract_changed_records(payload)
        assert record.id == "rec1"
        assert record.fields == {"fldA": "x"}

    def test_change_type_deleted(self):
        payload = {"changedRecords": [{"tableId": "tbl1", "id": "rec1", "changeType": "deleted"}]}
        [record] = extract_changed_records(payload)
        assert record.deleted is True


# ---------------------------------------------------------------------------
# Cell values and edge cases
# ---------------------------------------------------------------------------


class TestCellValues:
    def test_field_id_keyed_values_preferred(self):
        record = normalize_change("rec1", "tbl1", {
            "cellValuesByFieldId": {"fldA": "by-id"},
            "fields": {"Name": "by-name"},
        })
        assert record.fields == {"fldA": "by-id"}

    def test_cell_values_before_display_names(self):
        record = normalize_change("rec1", "tbl1", {"cellValues": {"fldA": "cv"}, "fields": {"Name": "n"}})
        assert record.fields == {"fldA": "cv"}

    def test_display_name_fallback(self):
        record = normalize_change("rec1", "tbl1", {"fields": {"Name": "n"}})
        assert record.fields == {"Name": "n"}

    def test_missing_values_normalize_to_empty(self):
        record = normalize_change("rec1", "tbl1", {"current": {"lastModifiedTime": "..."}})
        assert record.deleted is False
        assert record.fields == {}

    def test_non_dict_values_normalize_to_empty(self):
        record = normalize_change("rec1", "tbl1", {"cellValuesByFieldId": ["not", "a", "map"]})
        assert record.fields == {}


class TestEdgeCases:
    @pytest.mark.parametrize("payload", [None, [], "text", 42])
    def test_non_object_payload(self, payload):
        assert extract_changed_records(payload) == []

    def test_payload_without_changes(self):
        assert extract_changed_records({"timestamp": "...", "baseTransactionNumber": 4}) == []

    def test_detect_shapes(self):
        assert detect_shapes({"changedTablesById": {"tbl1": {}}}) == [SHAPE_MAP]
        assert detect_shapes({"changedTables": [{}]}) == [SHAPE_LIST]
        assert detect_shapes({"changedRecords": [{}]}) == [SHAPE_FLAT]
        assert detect_shapes({}) == []

    def test_changed_record_is_frozen(self):
        record = ChangedRecord(id="rec1", table_id="tbl1", deleted=False)
        with pytest.raises(Exception):
            record.deleted = True


# ---------------------------------------------------------------------------
# Equivalence across shapes
# ---------------------------------------------------------------------------


class TestShapeEquivalence:
    @pytest.mark.parametrize("deleted", [False, True])
    def test_list_and_map_shapes_normalize_identically(self, deleted):
        values = {"fldA": "x", "fldB": ["opt1", "opt2"]}

        list_record = {"id": "rec1", "cellValuesByFieldId": values}
        if deleted:
            list_record["deleted"] = True
        list_payload = {"changedTables": [{"id": "tbl1", "records": [list_record]}]}

        if deleted:
            change = {"current": None, "changeType": "deleted"}
        else:
            change = {"current": {"cellValuesByFieldId": values}}
        map_payload = {"changedTablesById": {"tbl1": {"changedRecordsById": {"rec1": change}}}}

        assert extract_changed_records(list_payload) == extract_changed_records(map_payload)

    def test_flat_shape_matches_too(self):
        values = {"fldA": "x"}
        flat = {"changedRecords": [{"tableId": "tbl1", "id": "rec1", "cellValuesByFieldId": values}]}
        mapped = {"changedTablesById": {"tbl1": {"changedRecordsById": {"rec1": {"current": {"cellValuesByFieldId": values}}}}}}
        assert extract_changed_records(flat) == extract_changed_records(mapped)
