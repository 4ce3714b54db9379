from typing import Dict, Iterable, List, Optional, Tuple

from rolegate.access_control import validation
from rolegate.access_control.errors import ErrorCode, NotFoundError, SessionClosedError, SessionStateError
from rolegate.access_control.hierarchy import RoleGraph, RoleHierarchy
from rolegate.access_control.models import Permission, Session, SessionStatus
from rolegate.platform.logging import get_logger
from rolegate.storage.base import PolicyStore

logger = get_logger(__name__)


def decide(permission: Permission, user_id: str, active_roles: Iterable[str], graph: RoleGraph) -> bool:
    """
    The access decision itself, free of any I/O.

    Allowed when a role granted the permission is active or inherited by an
    active role, or when the user holds a direct grant.
    """
    if user_id in permission.users:
        return True
    return not permission.roles.isdisjoint(graph.expand(active_roles))


class RBACEngine:
    """
    Policy decision point for sessions.
    Resolves a session's active roles through the hierarchy before matching
    them against permission grants.
    """

    def __init__(self, store: PolicyStore, hierarchy: RoleHierarchy, admin_hierarchy: Optional[RoleHierarchy] = None):
        self.store = store
        self.hierarchy = hierarchy
        self.admin_hierarchy = admin_hierarchy or RoleHierarchy(store, admin=True)

    def check_access(self, session: Session, permission: Permission) -> bool:
        """
        Check if the session may perform ``permission.op_name`` on ``permission.obj_name``.
        Unknown permissions are denied. The session is never modified.
        """
        return self._check(session, permission, admin=False)

    def check_admin_access(self, session: Session, permission: Permission) -> bool:
        """Same decision against admin permissions and the session's admin roles."""
        return self._check(session, permission, admin=True)

    def has_permission(self, session: Session, obj_name: str, op_name: str) -> bool:
        return self.check_access(session, Permission(context_id=session.context_id, obj_name=obj_name, op_name=op_name))

    def has_any_permission(self, session: Session, required: List[Tuple[str, str]]) -> bool:
        """
        Check if the session holds at least one of the (object, operation) pairs.
        """
        return any(self.has_permission(session, obj, op) for obj, op in required)

    def has_all_permissions(self, session: Session, required: List[Tuple[str, str]]) -> bool:
        """
        Check if the session holds every one of the (object, operation) pairs.
        """
        return all(self.has_permission(session, obj, op) for obj, op in required)

    def session_permissions(self, session: Session) -> List[Permission]:
        """
        Collect every permission reachable from the session, using the same
        expansion as ``check_access``.
        """
        return self._collect(session, admin=False)

    def session_admin_permissions(self, session: Session) -> List[Permission]:
        return self._collect(session, admin=True)

    # --- Internal ---

    def _check(self, session: Session, permission: Permission, admin: bool) -> bool:
        where = validation.full_method_name(type(self).__name__, "check_access")
        self._require_active(session)
        validation.assert_not_none(permission, ErrorCode.PERM_OBJECT_NULL, where)
        validation.assert_not_empty(permission.obj_name, ErrorCode.PERM_OBJECT_NULL, where)
        validation.assert_not_empty(permission.op_name, ErrorCode.PERM_OPERATION_NULL, where)

        try:
            stored = self.store.read_permission(session.context_id, permission.obj_name, permission.op_name, admin=admin)
        except NotFoundError:
            logger.debug("permission_unknown", obj=permission.obj_name, op=permission.op_name)
            return False

        if stored.obj_id and permission.obj_id and stored.obj_id != permission.obj_id:
            return False

        hierarchy = self.admin_hierarchy if admin else self.hierarchy
        active = session.admin_role_names() if admin else session.role_names()
        allowed = decide(stored, session.user_id, active, hierarchy.snapshot(session.context_id))
        logger.debug(
            "access_decision",
            context_id=session.context_id, user_id=session.user_id,
            obj=permission.obj_name, op=permission.op_name, admin=admin, allowed=allowed,
        )
        return allowed

    def _collect(self, session: Session, admin: bool) -> List[Permission]:
        self._require_active(session)
        hierarchy = self.admin_hierarchy if admin else self.hierarchy
        active = session.admin_role_names() if admin else session.role_names()
        expanded = hierarchy.expand(session.context_id, active)

        found: Dict[tuple, Permission] = {}
        for role_name in sorted(expanded):
            for perm in self.store.find_role_permissions(session.context_id, role_name, admin=admin):
                found.setdefault(perm.key, perm)
        for perm in self.store.find_user_permissions(session.context_id, session.user_id):
            if perm.admin == admin:
                found.setdefault(perm.key, perm)
        return [found[key] for key in sorted(found)]

    @staticmethod
    def _require_active(session: Optional[Session]) -> None:
        if session is None:
            raise SessionStateError("session is required", ErrorCode.SESSION_NULL)
        if session.status != SessionStatus.ACTIVE:
            raise SessionClosedError(f"session [{session.session_id}] is closed")
