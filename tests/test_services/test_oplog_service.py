"""Tests for oplog line encoding and diff translation."""

from __future__ import annotations

import pytest
from bson import Int64, ObjectId, Timestamp

from vault.exceptions import UnsupportedUpdateFormat
from vault.services.oplog_service import (
    OpKind,
    OplogEntry,
    OplogPosition,
    decode_line,
    diff_to_update,
    encode_document,
    split_namespace,
)


class TestLineEncoding:
    def test_bson_types_survive_a_line(self) -> None:
        oid = ObjectId()
        doc = {
            "ts": Timestamp(1709284500, 7),
            "op": "i",
            "ns": "shop.orders",
            "o": {"_id": oid, "total": Int64(2**40)},
        }
        line = encode_document(doc)
        assert "\n" not in line

        entry = decode_line(line)
        assert entry.op is OpKind.INSERT
        assert entry.o["_id"] == oid
        assert entry.o["total"] == 2**40
        assert entry.ts == OplogPosition(1709284500, 7)

    def test_unknown_op_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown oplog operation"):
            OplogEntry.from_document({"op": "c", "ns": "shop.$cmd", "o": {}})

    def test_missing_document_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="no document"):
            OplogEntry.from_document({"op": "d", "ns": "shop.orders"})

    def test_non_object_line_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="not a JSON object"):
            decode_line("[1, 2]")


class TestPositions:
    def test_positions_order_by_time_then_increment(self) -> None:
        assert OplogPosition(10, 5) < OplogPosition(11, 0)
        assert OplogPosition(10, 1) < OplogPosition(10, 2)
        assert OplogPosition(10, 2).to_timestamp() == Timestamp(10, 2)


class TestSplitNamespace:
    def test_plain(self) -> None:
        assert split_namespace("shop.orders") == ("shop", "orders")

    def test_collection_with_dots_is_kept_whole(self) -> None:
        assert split_namespace("shop.orders.archive") == ("shop", "orders.archive")

    @pytest.mark.parametrize("ns", ["shop", "shop.", ".orders", ""])
    def test_incomplete_namespace(self, ns: str) -> None:
        assert split_namespace(ns) is None


class TestDiffToUpdate:
    def test_update_and_delete_sections(self) -> None:
        update = diff_to_update({"$v": 2, "diff": {"u": {"x": 1}, "d": {"y": False}}})
        assert update == {"$set": {"x": 1}, "$unset": {"y": ""}}

    def test_inserted_fields_are_set(self) -> None:
        assert diff_to_update({"$v": 2, "diff": {"i": {"z": "new"}}}) == {"$set": {"z": "new"}}

    def test_nested_subdiff_becomes_dotted_path(self) -> None:
        update = diff_to_update(
            {"$v": 2, "diff": {"saddress": {"u": {"city": "Oslo"}, "d": {"zip": False}}}}
        )
        assert update == {"$set": {"address.city": "Oslo"}, "$unset": {"address.zip": ""}}

    def test_array_diff_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedUpdateFormat, match="Array diff"):
            diff_to_update({"$v": 2, "diff": {"stags": {"a": True, "u0": "x"}}})

    def test_legacy_format_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedUpdateFormat):
            diff_to_update({"$set": {"x": 1}})

    def test_empty_diff_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedUpdateFormat, match="empty"):
            diff_to_update({"$v": 2, "diff": {}})

    @pytest.mark.parametrize(
        "diff",
        [{"u": 1}, {"i": "x"}, {"d": ["y"]}, {"sinner": {"u": None}}],
    )
    def test_non_document_section_is_unsupported(self, diff: dict[str, object]) -> None:
        with pytest.raises(UnsupportedUpdateFormat, match="not a document"):
            diff_to_update({"$v": 2, "diff": diff})
