from __future__ import annotations

import hashlib
import json
from collections import abc
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


OPS = ("==", "!=", "<", "<=", ">", ">=", "in")

_PARAM_SUFFIX = {"==": "", "!=": "__ne", "<": "__lt", "<=": "__lte", ">": "__gt", ">=": "__gte", "in": "__in"}


@dataclass(frozen=True)
class Where:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPS:
            raise ValueError(f"unsupported filter op {self.op!r}")
        if not str(self.field or "").strip():
            raise ValueError("filter field required")
        if self.op == "in":
            if isinstance(self.value, (str, bytes)) or not isinstance(self.value, abc.Iterable):
                raise ValueError("'in' needs a list of values")
            object.__setattr__(self, "value", tuple(self.value))

    def matches(self, record: Mapping[str, Any]) -> bool:
        if self.field not in record:
            return False
        v = record[self.field]
        try:
            if self.op == "==":
                return v == self.value
            if self.op == "!=":
                return v != self.value
            if self.op == "in":
                return v in self.value
            if self.op == "<":
                return v < self.value
            if self.op == "<=":
                return v <= self.value
            if self.op == ">":
                return v > self.value
            return v >= self.value
        except TypeError:
            return False

    def param(self) -> Tuple[str, str]:
        if self.op == "in":
            rendered = ",".join(str(x) for x in self.value)
        elif isinstance(self.value, bool):
            rendered = "true" if self.value else "false"
        else:
            rendered = str(self.value)
        return f"{self.field}{_PARAM_SUFFIX[self.op]}", rendered


@dataclass(frozen=True)
class Filter:
    """
    Conjunction of `where` clauses, e.g.
    Filter.where("role", "==", "carer").and_where("status", "in", ["pending"]).
    """

    clauses: Tuple[Where, ...] = ()

    @classmethod
    def where(cls, field: str, op: str, value: Any) -> "Filter":
        return cls((Where(field, op, value),))

    def and_where(self, field: str, op: str, value: Any) -> "Filter":
        return Filter(self.clauses + (Where(field, op, value),))

    def matches(self, record: Mapping[str, Any]) -> bool:
        return all(c.matches(record) for c in self.clauses)

    def apply(self, records: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return [dict(r) for r in records if self.matches(r)]

    def key(self) -> Tuple[Tuple[str, str, str], ...]:
        return tuple((c.field, c.op, repr(c.value)) for c in self.clauses)

    def to_params(self) -> Dict[str, str]:
        return dict(c.param() for c in self.clauses)

    def describe(self) -> List[Dict[str, Any]]:
        return [{"field": c.field, "op": c.op, "value": list(c.value) if c.op == "in" else c.value} for c in self.clauses]


def subscription_key(partition: str, flt: Optional[Filter]) -> Tuple[str, Tuple[Tuple[str, str, str], ...]]:
    return str(partition), (flt.key() if flt is not None else ())


def content_id(record: Mapping[str, Any]) -> str:
    blob = json.dumps(record, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha1(blob.encode("utf-8")).hexdigest()[:16]


def tag_records(records: Iterable[Mapping[str, Any]], id_field: str = "id") -> List[Dict[str, Any]]:
    """
    Copy records and attach the stable `id`. Records without one get an id
    derived from their content, so an unchanged record keeps its id.
    """
    out: List[Dict[str, Any]] = []
    for r in records:
        item = dict(r)
        rid = item.get(id_field)
        item["id"] = rid if rid not in (None, "") else content_id(item)
        out.append(item)
    return out
