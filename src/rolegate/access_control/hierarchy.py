"""
Role hierarchy resolution.

The hierarchy of each tenant is held as an immutable ``RoleGraph`` (an arena
of role names with parent and child adjacency). Readers grab the current
graph reference and traverse it without locking. Writers hold the hierarchy
lock while they check the edge against the current graph, persist it, and
swap in a new graph, so a cycle check and the mutation it guards are one
atomic unit.
"""

import threading
from collections import deque
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set

from rolegate.access_control import validation
from rolegate.access_control.errors import ConflictError, ErrorCode, HierarchyError, NotFoundError
from rolegate.access_control.models import Relationship, Role
from rolegate.platform.logging import get_logger
from rolegate.storage.base import PolicyStore

logger = get_logger(__name__)

_EMPTY: FrozenSet[str] = frozenset()


class RoleGraph:
    """Immutable adjacency snapshot of one tenant's role hierarchy."""

    __slots__ = ("_parents", "_children")

    def __init__(self, parents: Mapping[str, FrozenSet[str]]):
        self._parents: Dict[str, FrozenSet[str]] = dict(parents)
        children: Dict[str, Set[str]] = {name: set() for name in self._parents}
        for child, ups in self._parents.items():
            for parent in ups:
                children.setdefault(parent, set()).add(child)
        self._children: Dict[str, FrozenSet[str]] = {k: frozenset(v) for k, v in children.items()}

    @classmethod
    def from_roles(cls, roles: Iterable[Role]) -> "RoleGraph":
        roles = list(roles)
        names = {r.name for r in roles}
        # Edges to roles that no longer exist are ignored
        return cls({r.name: frozenset(p for p in r.parents if p in names) for r in roles})

    def __contains__(self, name: str) -> bool:
        return name in self._parents

    def __len__(self) -> int:
        return len(self._parents)

    @property
    def roles(self) -> FrozenSet[str]:
        return frozenset(self._parents)

    def parents(self, name: str) -> FrozenSet[str]:
        return self._parents.get(name, _EMPTY)

    def children(self, name: str) -> FrozenSet[str]:
        return self._children.get(name, _EMPTY)

    def ascendants(self, name: str) -> Set[str]:
        return self._closure(name, self._parents)

    def descendants(self, name: str) -> Set[str]:
        return self._closure(name, self._children)

    def expand(self, names: Iterable[str]) -> Set[str]:
        """The given roles plus every ascendant of each."""
        expanded: Set[str] = set()
        for name in names:
            if name in expanded:
                continue
            expanded.add(name)
            expanded |= self.ascendants(name)
        return expanded

    def with_edge(self, child: str, parent: str) -> "RoleGraph":
        parents = dict(self._parents)
        parents[child] = parents.get(child, _EMPTY) | {parent}
        return RoleGraph(parents)

    def without_edge(self, child: str, parent: str) -> "RoleGraph":
        parents = dict(self._parents)
        parents[child] = parents.get(child, _EMPTY) - {parent}
        return RoleGraph(parents)

    def with_role(self, name: str, parents: Iterable[str] = ()) -> "RoleGraph":
        updated = dict(self._parents)
        updated[name] = frozenset(p for p in parents if p in updated)
        return RoleGraph(updated)

    def without_role(self, name: str) -> "RoleGraph":
        return RoleGraph({k: v - {name} for k, v in self._parents.items() if k != name})

    @staticmethod
    def _closure(start: str, edges: Mapping[str, FrozenSet[str]]) -> Set[str]:
        # Breadth-first; the visited set also guards against cycles in bad data
        seen: Set[str] = set()
        queue = deque(edges.get(start, _EMPTY))
        while queue:
            current = queue.popleft()
            if current in seen or current == start:
                continue
            seen.add(current)
            queue.extend(edges.get(current, _EMPTY))
        return seen


class RoleHierarchy:
    """
    Ascendant/descendant resolution and edge mutation for one role namespace.

    Use ``admin=True`` for the administrative role hierarchy. Every call takes
    the tenant ``context_id`` explicitly; nothing tenant-specific is held
    between calls apart from the cached graphs.
    """

    def __init__(self, store: PolicyStore, admin: bool = False):
        self.store = store
        self.admin = admin
        self._graphs: Dict[str, RoleGraph] = {}
        self._lock = threading.RLock()

    @property
    def kind(self) -> str:
        return "admin_role" if self.admin else "role"

    # --- Reads ---

    def snapshot(self, context_id: str) -> RoleGraph:
        context_id = validation.validate_context_id(context_id)
        graph = self._graphs.get(context_id)
        if graph is None:
            with self._lock:
                graph = self._graphs.get(context_id)
                if graph is None:
                    graph = self._load(context_id)
        return graph

    def ascendants(self, context_id: str, role: str) -> Set[str]:
        return self.snapshot(context_id).ascendants(role)

    def descendants(self, context_id: str, role: str) -> Set[str]:
        return self.snapshot(context_id).descendants(role)

    def parents(self, context_id: str, role: str) -> Set[str]:
        return set(self.snapshot(context_id).parents(role))

    def children(self, context_id: str, role: str) -> Set[str]:
        return set(self.snapshot(context_id).children(role))

    def expand(self, context_id: str, roles: Iterable[str]) -> Set[str]:
        return self.snapshot(context_id).expand(roles)

    # --- Edge mutation ---

    def add_relationship(self, context_id: str, child: str, parent: str) -> Relationship:
        where = validation.full_method_name(type(self).__name__, "add_relationship")
        context_id = validation.validate_context_id(context_id)
        validation.validate_field(child, f"{where}.child")
        validation.validate_field(parent, f"{where}.parent")

        with self._lock:
            graph = self._current(context_id)
            for name in (child, parent):
                if name not in graph:
                    raise HierarchyError(
                        f"{self.kind} [{name}] does not exist", ErrorCode.HIER_ROLE_NOT_FOUND,
                        child=child, parent=parent,
                    )
            if parent in graph.parents(child):
                raise HierarchyError(
                    f"[{child}] already inherits from [{parent}]", ErrorCode.HIER_REL_EXISTS,
                    child=child, parent=parent,
                )
            if parent == child or parent in graph.descendants(child):
                raise HierarchyError(
                    f"adding [{child}] -> [{parent}] would create a cycle", ErrorCode.HIER_CYCLE,
                    child=child, parent=parent,
                )

            try:
                self.store.add_relationship(context_id, child, parent, admin=self.admin)
            except ConflictError as e:
                raise HierarchyError(str(e.message), ErrorCode.HIER_REL_EXISTS, child=child, parent=parent) from e
            except NotFoundError as e:
                raise HierarchyError(str(e.message), ErrorCode.HIER_ROLE_NOT_FOUND, child=child, parent=parent) from e

            self._graphs[context_id] = graph.with_edge(child, parent)

        logger.info("relationship_added", kind=self.kind, context_id=context_id, child=child, parent=parent)
        return Relationship(child=child, parent=parent)

    def remove_relationship(self, context_id: str, child: str, parent: str) -> Relationship:
        where = validation.full_method_name(type(self).__name__, "remove_relationship")
        context_id = validation.validate_context_id(context_id)
        validation.validate_field(child, f"{where}.child")
        validation.validate_field(parent, f"{where}.parent")

        with self._lock:
            graph = self._current(context_id)
            if parent not in graph.parents(child):
                raise HierarchyError(
                    f"[{child}] does not inherit from [{parent}]", ErrorCode.HIER_REL_NOT_EXIST,
                    child=child, parent=parent,
                )
            try:
                self.store.remove_relationship(context_id, child, parent, admin=self.admin)
            except NotFoundError as e:
                raise HierarchyError(str(e.message), ErrorCode.HIER_REL_NOT_EXIST, child=child, parent=parent) from e

            self._graphs[context_id] = graph.without_edge(child, parent)

        logger.info("relationship_removed", kind=self.kind, context_id=context_id, child=child, parent=parent)
        return Relationship(child=child, parent=parent)

    # --- Arena maintenance ---

    def add_role(self, context_id: str, role: Role) -> None:
        """Register a newly stored role (and any parents it was created with)."""
        context_id = validation.validate_context_id(context_id)
        with self._lock:
            graph = self._graphs.get(context_id)
            if graph is not None:
                self._graphs[context_id] = graph.with_role(role.name, role.parents)

    def remove_role(self, context_id: str, name: str) -> None:
        context_id = validation.validate_context_id(context_id)
        with self._lock:
            graph = self._graphs.get(context_id)
            if graph is not None:
                self._graphs[context_id] = graph.without_role(name)

    def invalidate(self, context_id: Optional[str] = None) -> None:
        """Drop cached graphs so the next read reloads from the store."""
        with self._lock:
            if context_id is None:
                self._graphs.clear()
            else:
                self._graphs.pop(validation.validate_context_id(context_id), None)

    # --- Internal ---

    def _current(self, context_id: str) -> RoleGraph:
        graph = self._graphs.get(context_id)
        return graph if graph is not None else self._load(context_id)

    def _load(self, context_id: str) -> RoleGraph:
        graph = RoleGraph.from_roles(self.store.search_roles(context_id, admin=self.admin))
        self._graphs[context_id] = graph
        logger.debug("hierarchy_loaded", kind=self.kind, context_id=context_id, roles=len(graph))
        return graph
