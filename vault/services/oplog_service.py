"""Oplog entries: positions, operation kinds, line encoding and diff translation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from bson import Timestamp, json_util

from vault.exceptions import UnsupportedUpdateFormat

# Canonical extended JSON keeps BSON types (Timestamp, ObjectId, Int64, Binary).
JSON_OPTIONS = json_util.CANONICAL_JSON_OPTIONS

SYSTEM_NAMESPACE_PATTERN = r"^(admin|local|config)\."


class OpKind(StrEnum):
    """Oplog operation kinds. The set is closed."""

    INSERT = "i"
    UPDATE = "u"
    DELETE = "d"
    NOOP = "n"


@dataclass(frozen=True, order=True)
class OplogPosition:
    """Monotonic oplog position: seconds since epoch and ordinal within that second."""

    t: int
    i: int

    @classmethod
    def from_timestamp(cls, ts: Timestamp) -> OplogPosition:
        return cls(t=ts.time, i=ts.inc)

    def to_timestamp(self) -> Timestamp:
        return Timestamp(self.t, self.i)

    def as_dict(self) -> dict[str, int]:
        return {"t": self.t, "i": self.i}


@dataclass(frozen=True)
class OplogEntry:
    """One captured oplog document."""

    ns: str
    op: OpKind
    o: dict[str, Any]
    o2: dict[str, Any] | None = None
    ts: OplogPosition | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> OplogEntry:
        """Build an entry from a raw oplog document. Raises ValueError on malformed input."""
        try:
            op = OpKind(doc["op"])
        except (KeyError, ValueError):
            raise ValueError(f"Unknown oplog operation: {doc.get('op')!r}") from None
        ns = doc.get("ns")
        if not isinstance(ns, str):
            raise ValueError("Oplog entry has no namespace")
        o = doc.get("o")
        if not isinstance(o, dict):
            raise ValueError("Oplog entry has no document")
        o2 = doc.get("o2")
        ts = doc.get("ts")
        return cls(
            ns=ns,
            op=op,
            o=o,
            o2=o2 if isinstance(o2, dict) else None,
            ts=OplogPosition.from_timestamp(ts) if isinstance(ts, Timestamp) else None,
        )


def encode_document(doc: dict[str, Any]) -> str:
    """Serialize a raw oplog document to one extended-JSON line (no newline)."""
    return json_util.dumps(doc, json_options=JSON_OPTIONS)


def decode_line(line: str) -> OplogEntry:
    """Parse one extended-JSON line into an entry."""
    doc = json_util.loads(line, json_options=JSON_OPTIONS)
    if not isinstance(doc, dict):
        raise ValueError("Oplog line is not a JSON object")
    return OplogEntry.from_document(doc)


def split_namespace(ns: str) -> tuple[str, str] | None:
    """Split ``db.collection`` (collection names may contain dots). None if either part is empty."""
    db_name, sep, coll_name = ns.partition(".")
    if not sep or not db_name or not coll_name:
        return None
    return db_name, coll_name


def _flatten_diff(
    diff: dict[str, Any], prefix: str, set_fields: dict[str, Any], unset_fields: dict[str, str]
) -> None:
    for key, value in diff.items():
        if key in {"u", "i", "d"} and not isinstance(value, dict):
            raise UnsupportedUpdateFormat(f"Diff section {key!r} is not a document")
        if key in {"u", "i"}:
            for name, field_value in value.items():
                set_fields[prefix + name] = field_value
        elif key == "d":
            for name in value:
                unset_fields[prefix + name] = ""
        elif key.startswith("s") and len(key) > 1 and isinstance(value, dict):
            if value.get("a") is True:
                raise UnsupportedUpdateFormat(f"Array diff on {prefix + key[1:]} is not supported")
            _flatten_diff(value, f"{prefix}{key[1:]}.", set_fields, unset_fields)
        else:
            raise UnsupportedUpdateFormat(f"Unknown diff section {key!r}")


def diff_to_update(o: dict[str, Any]) -> dict[str, Any]:
    """Translate a ``$v: 2`` oplog diff into ``$set`` / ``$unset`` update operators.

    Updated and inserted fields become ``$set``; deleted fields become ``$unset``;
    nested object diffs are flattened to dotted paths.
    """
    diff = o.get("diff")
    if o.get("$v") != 2 or not isinstance(diff, dict):
        raise UnsupportedUpdateFormat("Unsupported update format")

    set_fields: dict[str, Any] = {}
    unset_fields: dict[str, str] = {}
    _flatten_diff(diff, "", set_fields, unset_fields)

    update: dict[str, Any] = {}
    if set_fields:
        update["$set"] = set_fields
    if unset_fields:
        update["$unset"] = unset_fields
    if not update:
        raise UnsupportedUpdateFormat("Update diff is empty")
    return update
