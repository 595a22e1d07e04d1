"""Case-insensitive relation name index shared by the builder and the query objects."""

from typing import Dict, Iterable, List, Optional, Tuple

from .models import Node
from ..utils.identifiers import QualifiedName


class RelationIndex:
    """
    Maps qualified relation keys to nodes.

    Resolution rules:
        * a qualified name matches exactly, then falls back to shorter suffixes
          (``cat.sales.orders`` -> ``sales.orders`` -> ``orders``);
        * a bare name matches a bare definition, then the schema-qualified
          definitions sharing that name, first in sorted order.
    """

    def __init__(self, nodes: Iterable[Node] = ()):
        self._by_key: Dict[str, Node] = {}
        self._keys_by_name: Dict[str, List[str]] = {}
        for node in nodes:
            self.add(node)

    def add(self, node: Node) -> None:
        key = node.qualified_name
        self._by_key[key] = node
        bare = key.rsplit(".", 1)[-1]
        keys = self._keys_by_name.setdefault(bare, [])
        if key not in keys:
            keys.append(key)
            keys.sort()

    def get(self, key: str) -> Optional[Node]:
        return self._by_key.get(key)

    def resolve(self, name: QualifiedName) -> Tuple[Optional[Node], List[str]]:
        """
        Resolve a name.

        Returns:
            (node or None, candidate keys when a bare name matched several definitions)
        """
        parts = [part for part in (name.catalog, name.schema, name.name) if part]
        for start in range(len(parts)):
            node = self._by_key.get(".".join(parts[start:]))
            if node is not None:
                return node, []
        if name.is_qualified:
            return None, []

        candidates = [k for k in self._keys_by_name.get(name.name, ()) if k != name.name]
        if not candidates:
            return None, []
        return self._by_key[candidates[0]], candidates if len(candidates) > 1 else []

    def keys(self) -> List[str]:
        return sorted(self._by_key)

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)
