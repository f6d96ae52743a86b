# tests/test_hierarchy.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from taskhub.utils.hierarchy import (
    build_hierarchy,
    build_section_hierarchy,
    descendant_ids,
    flatten_hierarchy,
    leaf_first,
    would_create_cycle,
)


@dataclass
class Node:
    id: int
    parent_id: Optional[int] = None
    order: int = 0
    children: List["Node"] = field(default_factory=list)


def _shape(roots) -> list:
    return [(n.id, _shape(n.children)) for n in roots]


def _forest():
    return [Node(1), Node(2, 1), Node(3, 1), Node(4, 2), Node(5), Node(6, 5)]


def test_forest_keeps_every_node_once():
    nodes = _forest()
    roots = build_hierarchy(nodes, sort_key=lambda n: n.id)

    seen = [n.id for n, _ in flatten_hierarchy(roots)]
    assert sorted(seen) == [n.id for n in nodes]
    assert [r.id for r in roots] == [1, 5]

    # every non-root appears in exactly one child list
    child_ids = [c.id for n in nodes for c in n.children]
    assert sorted(child_ids) == [2, 3, 4, 6]


def test_dangling_parent_becomes_root(caplog):
    nodes = [Node(1), Node(2, 99), Node(3, 2)]
    with caplog.at_level(logging.WARNING):
        roots = build_hierarchy(nodes, sort_key=lambda n: n.id)

    assert [r.id for r in roots] == [1, 2]
    assert [c.id for c in roots[1].children] == [3]
    assert "not in the loaded set" in caplog.text


def test_self_parent_becomes_root():
    roots = build_hierarchy([Node(7, 7)])
    assert [r.id for r in roots] == [7]
    assert roots[0].children == []


def test_expected_root_is_not_reported(caplog):
    with caplog.at_level(logging.WARNING):
        roots = build_hierarchy([Node(2, 1), Node(3, 2)], expected_roots=[2])
    assert [r.id for r in roots] == [2]
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_rebuilding_is_idempotent():
    nodes = _forest()
    first = _shape(build_hierarchy(nodes, sort_key=lambda n: n.id))
    second = _shape(build_hierarchy(nodes, sort_key=lambda n: n.id))
    assert first == second
    assert len(nodes[0].children) == 2


def test_section_hierarchy_orders_by_order_then_id():
    nodes = [Node(1), Node(2, 1, order=2), Node(3, 1, order=1), Node(4, 1, order=1)]
    roots = build_section_hierarchy(nodes)
    assert [c.id for c in roots[0].children] == [3, 4, 2]


def test_flatten_is_preorder_with_depth():
    roots = build_hierarchy(_forest(), sort_key=lambda n: n.id)
    assert [(n.id, d) for n, d in flatten_hierarchy(roots)] == [
        (1, 0), (2, 1), (4, 2), (3, 1), (5, 0), (6, 1)
    ]


def test_flatten_handles_deep_chains():
    nodes = [Node(1)] + [Node(i, i - 1) for i in range(2, 5001)]
    roots = build_hierarchy(nodes)
    flat = flatten_hierarchy(roots)
    assert len(flat) == 5000
    assert flat[-1][1] == 4999


def test_leaf_first_puts_children_before_parents():
    ordered = [n.id for n in leaf_first(_forest())]
    position = {node_id: i for i, node_id in enumerate(ordered)}
    for node in _forest():
        if node.parent_id is not None:
            assert position[node.id] < position[node.parent_id]


def test_leaf_first_keeps_nodes_stuck_in_a_cycle():
    nodes = [Node(1), Node(2, 3), Node(3, 2)]
    assert sorted(n.id for n in leaf_first(nodes)) == [1, 2, 3]


def test_descendant_ids_and_cycle_detection():
    parent_map = {1: None, 2: 1, 3: 2, 4: None}
    assert descendant_ids(parent_map, 1) == {2, 3}
    assert descendant_ids(parent_map, 4) == set()

    assert would_create_cycle(parent_map, 1, 3)
    assert would_create_cycle(parent_map, 2, 2)
    assert not would_create_cycle(parent_map, 3, 4)
    assert not would_create_cycle(parent_map, 1, None)
