"""Layered variable scope for workflow execution.

The root scope holds workflow variables and the trigger payload. Each
LOOP iteration runs in a child scope: reads fall through to the parent,
writes stay local and are discarded with the child.
"""

from typing import Any, Iterator, Optional

from core.utils import get_path

_MISSING = object()


class Scope:
    """Variable scope with an optional parent."""

    def __init__(self, values: Optional[dict] = None, parent: Optional["Scope"] = None):
        self._values: dict[str, Any] = dict(values or {})
        self._parent = parent

    @property
    def parent(self) -> Optional["Scope"]:
        return self._parent

    def child(self, values: Optional[dict] = None) -> "Scope":
        """Create a scope layered on top of this one."""
        return Scope(values, parent=self)

    def has(self, name: str) -> bool:
        return self._find(name) is not _MISSING

    def has_local(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str, default: Any = None) -> Any:
        value = self._find(name)
        return default if value is _MISSING else value

    def get_local(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def get_path(self, path: str, default: Any = None) -> Any:
        """Resolve ``name.nested.0.key``; the first segment goes through the chain."""
        if not path:
            return default
        head, _, rest = path.partition(".")
        root = self._find(head)
        if root is _MISSING:
            return default
        if not rest:
            return root
        return get_path(root, rest, default)

    def set(self, name: str, value: Any) -> None:
        """Bind ``name`` in this scope only."""
        self._values[name] = value

    def update(self, values: dict) -> None:
        self._values.update(values)

    def flatten(self) -> dict[str, Any]:
        """Merged view, innermost bindings win."""
        merged = self._parent.flatten() if self._parent is not None else {}
        merged.update(self._values)
        return merged

    def local_items(self) -> Iterator[tuple[str, Any]]:
        return iter(self._values.items())

    def _find(self, name: str) -> Any:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope._values:
                return scope._values[name]
            scope = scope._parent
        return _MISSING

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __repr__(self) -> str:
        depth = 0
        scope = self._parent
        while scope is not None:
            depth += 1
            scope = scope._parent
        return f"<Scope depth={depth} keys={sorted(self._values)}>"
