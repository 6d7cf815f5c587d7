# roomsync/store/paths.py
from __future__ import annotations

import copy
from typing import Any, List, Sequence

# Written in place of a value; the store substitutes its own clock on write.
SERVER_TIMESTAMP = {".sv": "timestamp"}


def split(path: str) -> List[str]:
    return [p for p in path.strip("/").split("/") if p]


def join(*parts: str) -> str:
    segs: List[str] = []
    for p in parts:
        segs.extend(split(p))
    return "/".join(segs)


def overlaps(a: Sequence[str], b: Sequence[str]) -> bool:
    """True if one path is an ancestor of (or equal to) the other."""
    n = min(len(a), len(b))
    return list(a[:n]) == list(b[:n])


def get_in(tree: Any, segs: Sequence[str]) -> Any:
    node = tree
    for s in segs:
        if not isinstance(node, dict) or s not in node:
            return None
        node = node[s]
    return copy.deepcopy(node)


def prune(value: Any) -> Any:
    """
    Drop None leaves and empty maps, recursively.
    The tree never stores an empty node: an empty map reads back as absent.
    """
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            pv = prune(v)
            if pv is not None:
                out[str(k)] = pv
        return out or None
    return value


def set_in(tree: dict, segs: Sequence[str], value: Any) -> dict:
    """
    Write value at segs, returning the (possibly new) root.
    Writing None removes the node and any parents left empty.
    """
    value = prune(copy.deepcopy(value))
    if not segs:
        return value if isinstance(value, dict) else {}
    if value is None:
        return delete_in(tree, segs)

    node = tree
    for s in segs[:-1]:
        child = node.get(s)
        if not isinstance(child, dict):
            child = {}
            node[s] = child
        node = child
    node[segs[-1]] = value
    return tree


def delete_in(tree: dict, segs: Sequence[str]) -> dict:
    if not segs:
        return {}
    trail = []
    node = tree
    for s in segs[:-1]:
        child = node.get(s)
        if not isinstance(child, dict):
            return tree
        trail.append((node, s))
        node = child
    node.pop(segs[-1], None)

    # prune empty parents bottom-up
    while trail and not node:
        parent, key = trail.pop()
        parent.pop(key, None)
        node = parent
    return tree


def resolve_server_values(value: Any, ts_ms: int) -> Any:
    if value == SERVER_TIMESTAMP:
        return ts_ms
    if isinstance(value, dict):
        return {k: resolve_server_values(v, ts_ms) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_server_values(v, ts_ms) for v in value]
    return value
