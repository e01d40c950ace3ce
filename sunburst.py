"""
Hierarchical grouping of flat catalog rows for sunburst charts.

Rows come out of the catalog queries as flat mappings (camera, lens,
aperture, focal_length, exposure, count ...). build_tree() partitions them
by an ordered list of fields into a GroupNode tree whose node sizes are
the summed counts underneath.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

Record = Mapping[str, Any]
Size = Union[int, float]

COUNT_FIELD = "count"

NAN = float("nan")

# parseInt(): optional leading JS whitespace and sign, then ASCII digits
_JS_SPACE = "[ \t\n\v\f\r\u00a0\u1680\u2000-\u200a\u2028\u2029\u202f\u205f\u3000\ufeff]"
_INT_PREFIX = re.compile(_JS_SPACE + r"*([+-]?[0-9]+)", re.ASCII)


class GroupingError(ValueError):
    pass


def parse_count(value: Any) -> Size:
    """Integer-prefix parse of a count value; NaN when nothing parses."""
    if value is None or isinstance(value, bool):
        return NAN
    if isinstance(value, float) and not math.isfinite(value):
        return NAN
    m = _INT_PREFIX.match(str(value))
    if not m:
        return NAN
    return int(m.group(1))


def to_record(row: Mapping[str, Any]) -> Record:
    """Copy a loosely typed row (dict, sqlite3.Row ...) into a read-only Record."""
    return MappingProxyType({k: row[k] for k in row.keys()})


@dataclass(frozen=True)
class GroupNode:
    name: Any
    size: Size
    records: Tuple[Record, ...] = ()
    children: Tuple["GroupNode", ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def depth(self) -> int:
        if not self.children:
            return 0
        return 1 + max(c.depth() for c in self.children)

    def walk(self, path: Tuple[Any, ...] = ()) -> Iterator[Tuple[Tuple[Any, ...], "GroupNode"]]:
        """Pre-order (path, node) pairs; path holds the names from the root down."""
        path = path + (self.name,)
        yield path, self
        for child in self.children:
            yield from child.walk(path)

    def leaves(self) -> List["GroupNode"]:
        return [n for _, n in self.walk() if n.is_leaf]

    def to_dict(self, include_records: bool = False) -> dict:
        size: Optional[Size] = self.size
        if isinstance(size, float) and math.isnan(size):
            size = None
        d = {"name": self.name, "size": size}
        if self.children:
            d["children"] = [c.to_dict(include_records) for c in self.children]
        elif include_records:
            d["records"] = [dict(r) for r in self.records]
        return d


def _check_strict(records: Sequence[Record], groupby: Sequence[str]) -> None:
    for i, r in enumerate(records):
        if isinstance(parse_count(r.get(COUNT_FIELD)), float):
            raise GroupingError(f"record {i}: count {r.get(COUNT_FIELD)!r} is not an integer")
        for field in groupby:
            if field not in r:
                raise GroupingError(f"record {i}: missing grouping field {field!r}")


def _build(label: Any, records: Tuple[Record, ...], groupby: Tuple[str, ...]) -> GroupNode:
    size: Size = sum((parse_count(r.get(COUNT_FIELD)) for r in records), 0)

    if not groupby:
        return GroupNode(name=label, size=size, records=records)

    field, rest = groupby[0], groupby[1:]
    groups: dict = {}
    for r in records:
        groups.setdefault(r.get(field), []).append(r)

    children = tuple(_build(key, tuple(members), rest) for key, members in groups.items())
    return GroupNode(name=label, size=size, children=children)


def build_tree(label: Any,
               records: Sequence[Mapping[str, Any]],
               groupby: Sequence[str],
               strict: bool = False) -> GroupNode:
    """
    Group flat records into a tree, one level per field in `groupby`.

    Children keep the first-occurrence order of their field value. Leaves
    (no grouping fields left) hold the records routed to them. With
    strict=False a malformed count turns every enclosing size into NaN and
    a missing field lands in a None group; strict=True raises GroupingError
    for either instead.
    """
    narrowed = tuple(to_record(r) for r in records)
    groupby = tuple(groupby)
    if strict:
        _check_strict(narrowed, groupby)
    return _build(label, narrowed, groupby)
