import math
import sqlite3
from types import MappingProxyType

import pytest

from sunburst import GroupingError, GroupNode, build_tree, parse_count, to_record


def names(node):
    return [c.name for c in node.children]


def test_camera_lens_tree(sample_records):
    root = build_tree("All", sample_records, ["camera", "lens"])

    assert root.name == "All"
    assert root.size == 6
    assert names(root) == ["A", "B"]
    a, b = root.children
    assert a.size == 5 and b.size == 1
    assert names(a) == ["X", "Y"]
    assert [c.size for c in a.children] == [3, 2]
    assert names(b) == ["X"]
    assert b.children[0].size == 1
    for leaf in root.leaves():
        assert leaf.is_leaf
        assert len(leaf.records) == 1
    assert dict(a.children[1].records[0]) == {"camera": "A", "lens": "Y", "count": "2"}
    assert root.records == ()


def test_empty_groupby_is_leaf(sample_records):
    root = build_tree("All", sample_records, [])

    assert root.is_leaf
    assert root.children == ()
    assert root.size == 6
    assert [dict(r) for r in root.records] == sample_records


def test_empty_records():
    root = build_tree("All", [], ["camera"])
    assert root.size == 0
    assert root.children == ()
    assert root.records == ()


def test_malformed_count_propagates_nan(sample_records):
    records = sample_records + [{"camera": "B", "lens": "Z", "count": "abc"}]
    root = build_tree("All", records, ["camera", "lens"])

    assert math.isnan(root.size)
    a, b = root.children
    assert a.size == 5
    assert math.isnan(b.size)
    assert b.children[0].size == 1
    assert math.isnan(b.children[1].size)


def test_children_keep_first_occurrence_order():
    records = [
        {"lens": "Z", "count": 1},
        {"lens": "A", "count": 1},
        {"lens": "M", "count": 1},
        {"lens": "A", "count": 1},
        {"lens": 50, "count": 1},
    ]
    root = build_tree("All", records, ["lens"])
    assert names(root) == ["Z", "A", "M", 50]
    assert root.children[1].size == 2


def test_missing_field_groups_under_none():
    records = [{"camera": "A", "count": "1"}, {"count": "4"}]
    root = build_tree("All", records, ["camera"])
    assert names(root) == ["A", None]
    assert root.children[1].size == 4


def test_properties_over_a_larger_input():
    cameras = ["A", "B", "C"]
    lenses = ["X", "Y"]
    apertures = ["2.0", "4.0", "8.0"]
    records = [
        {"camera": cameras[i % 3], "lens": lenses[i % 2], "aperture": apertures[i % 5 % 3], "count": str(i + 1)}
        for i in range(30)
    ]
    groupby = ["camera", "lens", "aperture"]
    root = build_tree("All", records, groupby)

    assert root.size == sum(range(1, 31))
    assert root.depth() == len(groupby)
    for path, node in root.walk():
        if node.is_leaf:
            assert len(path) == len(groupby) + 1
        else:
            assert node.size == sum(c.size for c in node.children)
            assert len({c.name for c in node.children}) == len(node.children)

    routed = [r for leaf in root.leaves() for r in leaf.records]
    assert sorted(int(r["count"]) for r in routed) == list(range(1, 31))

    # each leaf holds its records in input order
    for path, node in root.walk():
        if node.is_leaf:
            expected = [r for r in records
                        if (r["camera"], r["lens"], r["aperture"]) == path[1:]]
            assert [dict(r) for r in node.records] == expected


def test_tree_is_immutable(sample_records):
    root = build_tree("All", sample_records, ["camera"])
    with pytest.raises(AttributeError):
        root.size = 1
    with pytest.raises(TypeError):
        root.children[0].records[0]["count"] = "9"


def test_input_rows_are_copied(sample_records):
    root = build_tree("All", sample_records, [])
    sample_records[0]["count"] = "100"
    assert root.records[0]["count"] == "3"


@pytest.mark.parametrize("value,expected", [
    ("3", 3),
    (" 42", 42),
    ("-2", -2),
    ("12px", 12),
    ("3.9", 3),
    (7, 7),
    (7.8, 7),
    ("\u00a0 9", 9),
    ("\ufeff12", 12),
    ("\u30005", 5),
    ("4\u0663", 4),
])
def test_parse_count(value, expected):
    assert parse_count(value) == expected


@pytest.mark.parametrize("value", ["abc", "", None, True, float("inf"), "px12",
                                   "\u0663", "\x1c5", "\u0665\u0660"])
def test_parse_count_nan(value):
    assert math.isnan(parse_count(value))


def test_strict_rejects_bad_count(sample_records):
    records = sample_records + [{"camera": "B", "lens": "Z", "count": "abc"}]
    with pytest.raises(GroupingError, match="count"):
        build_tree("All", records, ["camera"], strict=True)


def test_strict_rejects_missing_field(sample_records):
    records = sample_records + [{"camera": "B", "count": "1"}]
    with pytest.raises(GroupingError, match="lens"):
        build_tree("All", records, ["camera", "lens"], strict=True)
    # only the grouping fields are required
    assert build_tree("All", records, ["camera"], strict=True).size == 7


def test_strict_accepts_good_input(sample_records):
    strict = build_tree("All", sample_records, ["camera", "lens"], strict=True)
    loose = build_tree("All", sample_records, ["camera", "lens"])
    assert strict.to_dict(include_records=True) == loose.to_dict(include_records=True)


def test_to_record_from_sqlite_row():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    row = conn.execute("SELECT 'A' AS camera, 5 AS count").fetchone()
    rec = to_record(row)
    assert dict(rec) == {"camera": "A", "count": 5}
    assert build_tree("All", [row], ["camera"]).size == 5


def test_to_dict(sample_records):
    d = build_tree("All", sample_records, ["camera"]).to_dict()
    assert d["name"] == "All"
    assert d["size"] == 6
    assert [c["name"] for c in d["children"]] == ["A", "B"]
    assert "children" not in d["children"][0]
    assert "records" not in d["children"][0]

    d = build_tree("All", sample_records, ["camera"]).to_dict(include_records=True)
    assert d["children"][1]["records"] == [{"camera": "B", "lens": "X", "count": "1"}]


def test_to_dict_nan_size_is_none():
    d = build_tree("All", [{"camera": "A", "count": "?"}], ["camera"]).to_dict()
    assert d["size"] is None
    assert d["children"][0]["size"] is None


def test_walk_paths(sample_records):
    root = build_tree("All", sample_records, ["camera", "lens"])
    paths = [p for p, _ in root.walk()]
    assert paths == [
        ("All",),
        ("All", "A"),
        ("All", "A", "X"),
        ("All", "A", "Y"),
        ("All", "B"),
        ("All", "B", "X"),
    ]
    assert isinstance(root.children[0], GroupNode)


def test_strict_rejects_non_ascii_digits():
    with pytest.raises(GroupingError, match="count"):
        build_tree("All", [{"camera": "A", "count": "٣"}], ["camera"], strict=True)
    assert math.isnan(build_tree("All", [{"camera": "A", "count": "٣"}], ["camera"]).size)


def test_read_only_input_rows_are_copied():
    backing = {"camera": "A", "count": "3"}
    root = build_tree("All", [MappingProxyType(backing)], [])
    backing["count"] = "100"
    assert root.records[0]["count"] == "3"
    assert root.size == 3
