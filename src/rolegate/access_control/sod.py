"""
Static and dynamic separation of duty.

SSD sets limit which roles a user may hold at once; DSD sets limit which
roles a session may have active at once. Both compare the roles expanded
through the hierarchy, because inheriting a conflicting role is the same as
holding it directly.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rolegate.access_control import validation
from rolegate.access_control.errors import ConstraintViolation, ErrorCode, ValidationError
from rolegate.access_control.hierarchy import RoleHierarchy
from rolegate.access_control.models import SDKind, SDSet
from rolegate.platform.logging import get_logger
from rolegate.storage.base import PolicyStore

logger = get_logger(__name__)


def violates(sd_set: SDSet, roles: Set[str]) -> bool:
    """True when more than ``cardinality - 1`` members of the set are in ``roles``."""
    return len(roles & sd_set.members) > sd_set.cardinality - 1


class SoDChecker:
    """
    Enforces SSD sets at assignment time and DSD sets at activation time.

    Set definitions are cached per tenant as immutable tuples. Checks read
    the current tuple without locking; set administration holds the lock
    while it writes through to the store and swaps the tuple.
    """

    def __init__(self, store: PolicyStore, hierarchy: RoleHierarchy):
        self.store = store
        self.hierarchy = hierarchy
        self._sets: Dict[Tuple[str, SDKind], Tuple[SDSet, ...]] = {}
        self._lock = threading.RLock()

    # --- Set snapshots ---

    def sets(self, context_id: str, kind: SDKind) -> Tuple[SDSet, ...]:
        context_id = validation.validate_context_id(context_id)
        key = (context_id, kind)
        cached = self._sets.get(key)
        if cached is None:
            with self._lock:
                cached = self._sets.get(key)
                if cached is None:
                    cached = self._reload(context_id, kind)
        return cached

    @contextmanager
    def exclusive(self):
        """Hold the set lock, e.g. while an assignment is checked and written."""
        with self._lock:
            yield

    def invalidate(self, context_id: Optional[str] = None) -> None:
        with self._lock:
            if context_id is None:
                self._sets.clear()
            else:
                context_id = validation.validate_context_id(context_id)
                for kind in SDKind:
                    self._sets.pop((context_id, kind), None)

    def _reload(self, context_id: str, kind: SDKind) -> Tuple[SDSet, ...]:
        snapshot = tuple(self.store.list_sd_sets(context_id, kind))
        self._sets[(context_id, kind)] = snapshot
        return snapshot

    # --- Checks ---

    def find_violation(
        self,
        context_id: str,
        kind: SDKind,
        current: Iterable[str],
        candidates: Iterable[str],
        hierarchy: Optional[RoleHierarchy] = None,
    ) -> Optional[SDSet]:
        """
        Return the first set breached by adding ``candidates`` to ``current``.

        Only sets touched by the candidates are considered, so an unrelated
        pre-existing breach never blocks a new role.
        """
        context_id = validation.validate_context_id(context_id)
        graph = (hierarchy or self.hierarchy).snapshot(context_id)
        candidate_roles = graph.expand(candidates)
        if not candidate_roles:
            return None
        combined = graph.expand(current) | candidate_roles
        for sd_set in self.sets(context_id, kind):
            if not (sd_set.members & candidate_roles):
                continue
            if violates(sd_set, combined):
                return sd_set
        return None

    def validate_ssd(self, context_id: str, assigned: Iterable[str], candidates: Iterable[str]) -> None:
        """Raise ``ConstraintViolation`` if assigning ``candidates`` breaches an SSD set."""
        context_id = validation.validate_context_id(context_id)
        candidates = list(candidates)
        breached = self.find_violation(context_id, SDKind.SSD, assigned, candidates)
        if breached is not None:
            logger.info("ssd_violation", context_id=context_id, roles=candidates, set_name=breached.name)
            raise ConstraintViolation(
                f"assigning {candidates} violates SSD set [{breached.name}]",
                ErrorCode.SSD_VIOLATION, set_name=breached.name,
            )

    def find_dsd_violation(
        self,
        context_id: str,
        active: Iterable[str],
        candidates: Iterable[str],
        hierarchy: Optional[RoleHierarchy] = None,
    ) -> Optional[SDSet]:
        return self.find_violation(context_id, SDKind.DSD, active, candidates, hierarchy)

    def validate_dsd(
        self,
        context_id: str,
        active: Iterable[str],
        candidates: Iterable[str],
        hierarchy: Optional[RoleHierarchy] = None,
    ) -> None:
        """Raise ``ConstraintViolation`` if activating ``candidates`` breaches a DSD set."""
        context_id = validation.validate_context_id(context_id)
        candidates = list(candidates)
        breached = self.find_dsd_violation(context_id, active, candidates, hierarchy)
        if breached is not None:
            raise ConstraintViolation(
                f"activating {candidates} violates DSD set [{breached.name}]",
                ErrorCode.DSD_VIOLATION, set_name=breached.name,
            )

    # --- Set administration ---

    def create_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        context_id = validation.validate_context_id(context_id)
        self._validate_set(sd_set)
        with self._lock:
            created = self.store.create_sd_set(context_id, sd_set)
            self._reload(context_id, sd_set.kind)
        logger.info("sd_set_created", context_id=context_id, kind=sd_set.kind.value, set_name=sd_set.name)
        return created

    def update_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        context_id = validation.validate_context_id(context_id)
        self._validate_set(sd_set)
        with self._lock:
            updated = self.store.update_sd_set(context_id, sd_set)
            self._reload(context_id, sd_set.kind)
        return updated

    def delete_set(self, context_id: str, name: str, kind: SDKind) -> None:
        context_id = validation.validate_context_id(context_id)
        with self._lock:
            self.store.delete_sd_set(context_id, name, kind)
            self._reload(context_id, kind)
        logger.info("sd_set_deleted", context_id=context_id, kind=kind.value, set_name=name)

    def add_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        context_id = validation.validate_context_id(context_id)
        validation.validate_field(role_name, "SoDChecker.add_member.role_name")
        with self._lock:
            updated = self.store.add_sd_member(context_id, name, kind, role_name)
            self._reload(context_id, kind)
        return updated

    def remove_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        context_id = validation.validate_context_id(context_id)
        with self._lock:
            updated = self.store.remove_sd_member(context_id, name, kind, role_name)
            self._reload(context_id, kind)
        return updated

    def sets_for_role(self, context_id: str, kind: SDKind, role_name: str) -> List[SDSet]:
        return [s for s in self.sets(context_id, kind) if role_name in s.members]

    @staticmethod
    def _validate_set(sd_set: SDSet) -> None:
        validation.assert_not_empty(sd_set.name, ErrorCode.SD_SET_NAME_NULL, "SoDChecker.sd_set.name")
        validation.validate_field(sd_set.name, "SoDChecker.sd_set.name")
        validation.validate_names(sd_set.members, "SoDChecker.sd_set.members")
        if sd_set.cardinality < 2:
            raise ValidationError(
                f"set [{sd_set.name}] cardinality must be at least 2",
                ErrorCode.SD_CARDINALITY_INVALID, set_name=sd_set.name,
            )
