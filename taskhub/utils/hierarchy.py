"""
Hierarchy utility module for turning flat parent-linked rows into trees.

Tasks and template sections are stored with nothing more than a nullable
parent id. Every read rebuilds the ``children`` lists from scratch:

- Children lists are cleared before linking, so repeated builds over the same
  objects never accumulate duplicates
- A node whose parent is not part of the input becomes a root rather than
  being dropped
- Walks are iterative with a visited set, so depth is unbounded and corrupt
  cyclic data cannot loop forever

Nodes are duck-typed: anything exposing ``id``, ``parent_id`` and a writable
``children`` list works.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from taskhub.utils.logging import get_logger

logger = get_logger(__name__)

def build_hierarchy(nodes: Iterable[Any], sort_key: Callable[[Any], Any] = None, reverse: bool = False,
                    expected_roots: Iterable[Any] = ()) -> List[Any]:
    """
    Link a flat collection of nodes into a forest.

    Args:
        nodes: Nodes carrying ``id`` and ``parent_id``
        sort_key: Optional key applied to the roots and to every children list
        reverse: Sort descending when True
        expected_roots: Ids whose parent is known to lie outside ``nodes``
            (the top of a loaded subtree); no warning is logged for them

    Returns:
        The root nodes, each with its ``children`` populated recursively
    """
    nodes = list(nodes)
    expected_roots = set(expected_roots)
    lookup = {}
    for node in nodes:
        node.children = []
        lookup[node.id] = node

    roots = []
    for node in nodes:
        parent_id = node.parent_id
        if parent_id is None:
            roots.append(node)
        elif parent_id == node.id or parent_id not in lookup:
            # Dangling or self-referencing parent: keep the node visible as a root
            if node.id in expected_roots:
                roots.append(node)
                continue
            if parent_id == node.id:
                logger.warning(f"Node {node.id} references itself as parent; treating node as a root")
            else:
                logger.warning(f"Parent {parent_id} of node {node.id} is not in the loaded set; treating node as a root")
            roots.append(node)
        else:
            lookup[parent_id].children.append(node)

    if sort_key is not None:
        roots.sort(key=sort_key, reverse=reverse)
        for node in nodes:
            node.children.sort(key=sort_key, reverse=reverse)

    return roots

def _newest_first_key(node: Any) -> Tuple[Any, int]:
    return (node.created_at, node.id or 0)

def _ordered_key(node: Any) -> Tuple[int, int]:
    return (node.order, node.id or 0)

def build_task_hierarchy(tasks: Iterable[Any], expected_roots: Iterable[Any] = ()) -> List[Any]:
    """Task forest with roots and children ordered newest first (ties by id)."""
    return build_hierarchy(tasks, sort_key=_newest_first_key, reverse=True, expected_roots=expected_roots)

def build_section_hierarchy(sections: Iterable[Any]) -> List[Any]:
    """Template section forest ordered by the explicit ``order`` field ascending."""
    return build_hierarchy(sections, sort_key=_ordered_key)

def flatten_hierarchy(roots: Iterable[Any]) -> List[Tuple[Any, int]]:
    """
    Preorder walk of a forest.

    Args:
        roots: Root nodes with populated ``children``

    Returns:
        ``(node, depth)`` pairs, parents always before their children
    """
    result = []
    visited = set()
    stack = [(root, 0) for root in reversed(list(roots))]

    while stack:
        node, depth = stack.pop()
        if node.id in visited:
            continue
        visited.add(node.id)
        result.append((node, depth))
        for child in reversed(node.children):
            stack.append((child, depth + 1))

    return result

def leaf_first(nodes: Iterable[Any]) -> List[Any]:
    """
    Order flat nodes so that every node comes after all of its descendants.

    Used wherever rows under a restrict-on-delete parent key are removed.
    """
    nodes = list(nodes)
    roots = build_hierarchy(nodes, expected_roots=[node.id for node in nodes])
    ordered = [node for node, _ in reversed(flatten_hierarchy(roots))]

    # Nodes caught in a parent cycle are unreachable from any root
    reached = {node.id for node in ordered}
    ordered.extend(node for node in nodes if node.id not in reached)
    return ordered

def descendant_ids(parent_map: Dict[Any, Optional[Any]], node_id: Any) -> Set[Any]:
    """
    Transitive descendants of ``node_id`` in an ``id -> parent_id`` map.

    Args:
        parent_map: Parent link for every known node
        node_id: Node whose descendants are wanted

    Returns:
        Descendant ids, excluding ``node_id`` itself
    """
    children = {}
    for child_id, parent_id in parent_map.items():
        children.setdefault(parent_id, []).append(child_id)

    found = set()
    frontier = list(children.get(node_id, []))
    while frontier:
        current = frontier.pop()
        if current in found or current == node_id:
            continue
        found.add(current)
        frontier.extend(children.get(current, []))
    return found

def would_create_cycle(parent_map: Dict[Any, Optional[Any]], node_id: Any, new_parent_id: Optional[Any]) -> bool:
    """
    Whether re-parenting ``node_id`` under ``new_parent_id`` would close a loop.

    Walks up from the proposed parent; reaching ``node_id`` means the proposed
    parent is the node itself or one of its descendants.
    """
    seen = set()
    current = new_parent_id
    while current is not None and current not in seen:
        if current == node_id:
            return True
        seen.add(current)
        current = parent_map.get(current)
    return False
