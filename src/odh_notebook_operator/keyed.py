"""Helpers for Kubernetes list fields made of dicts with a ``name``.

Containers and volumes are unique by name: ``NamedList`` replaces an entry in
place when the name is already present and appends otherwise, so the output
order is deterministic. Volume mounts and env vars may repeat a name, so they
are edited in place with :func:`replace_or_append` and :func:`remove_matching`,
which only touch the entries they are asked about.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional


class NamedList:
    def __init__(self, items: Optional[Iterable[Dict[str, Any]]] = None):
        self._items: Dict[str, Dict[str, Any]] = {}
        for item in items or ():
            self._items[item["name"]] = item

    def upsert(self, item: Dict[str, Any]) -> None:
        # Assigning an existing key keeps its original position
        self._items[item["name"]] = item

    def to_list(self) -> List[Dict[str, Any]]:
        return list(self._items.values())


def replace_or_append(items: List[Dict[str, Any]], item: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Replace the first entry named like ``item``, else append it.

    For lists where names may repeat (env, volumeMounts): every other entry is
    kept as is.
    """
    for i, existing in enumerate(items):
        if existing.get("name") == item["name"]:
            items[i] = item
            return items
    items.append(item)
    return items


def remove_matching(items: List[Dict[str, Any]], predicate: Callable[[Dict[str, Any]], bool]) -> bool:
    """Drop the entries matching ``predicate`` in place. True if any were dropped."""
    kept = [item for item in items if not predicate(item)]
    if len(kept) == len(items):
        return False
    items[:] = kept
    return True
