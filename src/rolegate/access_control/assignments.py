"""
Administrative assignment of users and roles.

This is where SSD sets are enforced: a user may never be assigned a role
whose addition would breach one. Role creation, deletion and inheritance
changes go through here too so the cached hierarchy stays in step with the
store, and so deleting a role or user takes its grants with it.
"""

from typing import List, Optional

from rolegate.access_control import validation
from rolegate.access_control.credentials import hash_password
from rolegate.access_control.errors import ConflictError, ErrorCode, HierarchyError, NotFoundError
from rolegate.access_control.hierarchy import RoleHierarchy
from rolegate.access_control.models import AdminRole, Relationship, Role, SDKind, User, UserAdminRole, UserRole
from rolegate.access_control.permissions import PermissionService
from rolegate.access_control.sod import SoDChecker
from rolegate.platform.logging import get_logger
from rolegate.storage.base import PolicyStore

logger = get_logger(__name__)


class AssignmentService:

    def __init__(
        self,
        store: PolicyStore,
        sod: SoDChecker,
        hierarchy: RoleHierarchy,
        admin_hierarchy: RoleHierarchy,
        permissions: Optional[PermissionService] = None,
    ):
        self.store = store
        self.sod = sod
        self.hierarchy = hierarchy
        self.admin_hierarchy = admin_hierarchy
        self.permissions = permissions or PermissionService(store)

    # --- Users ---

    def add_user(self, context_id: str, user: User, password: Optional[str] = None) -> User:
        """Store a new user, hashing ``password`` if given. Initial roles are SSD checked."""
        context_id = validation.validate_context_id(context_id)
        where = validation.full_method_name(type(self).__name__, "add_user")
        validation.assert_not_empty(user.user_id, ErrorCode.USER_ID_NULL, where)
        validation.validate_field(user.user_id, f"{where}.user_id")
        validation.validate_description(user.description)
        if password is not None:
            user = user.model_copy(update={"password_hash": hash_password(password)})

        with self.sod.exclusive():
            self.sod.validate_ssd(context_id, [], user.role_names())
            created = self.store.create_user(context_id, user)
        logger.info("user_added", context_id=context_id, user_id=user.user_id)
        return created

    def delete_user(self, context_id: str, user_id: str) -> None:
        """Delete a user and revoke every permission granted to it directly."""
        context_id = validation.validate_context_id(context_id)
        self.store.read_user(context_id, user_id)
        revoked = self.permissions.remove_user(context_id, user_id)
        self.store.delete_user(context_id, user_id)
        logger.info("user_deleted", context_id=context_id, user_id=user_id, revoked=revoked)

    def assign_user(self, context_id: str, user_role: UserRole) -> User:
        """
        Assign a role to a user.

        Raises:
            NotFoundError: the user or role does not exist
            ConflictError: the role is already assigned
            ConstraintViolation: the assignment would breach an SSD set
        """
        context_id = validation.validate_context_id(context_id)
        self._validate_assignment(user_role, "assign_user")
        self.store.read_role(context_id, user_role.role_name)

        with self.sod.exclusive():
            user = self.store.read_user(context_id, user_role.user_id)
            if user.get_role(user_role.role_name) is not None:
                raise ConflictError(
                    f"[{user_role.role_name}] already assigned to [{user.user_id}]",
                    ErrorCode.ROLE_ALREADY_ASSIGNED, role=user_role.role_name,
                )
            self.sod.validate_ssd(context_id, user.role_names(), [user_role.role_name])
            user.roles.append(user_role.model_copy(update={"context_id": context_id}))
            updated = self.store.update_user(context_id, user)

        logger.info("user_assigned", context_id=context_id, user_id=user.user_id, role=user_role.role_name)
        return updated

    def deassign_user(self, context_id: str, user_id: str, role_name: str) -> User:
        context_id = validation.validate_context_id(context_id)
        with self.sod.exclusive():
            user = self.store.read_user(context_id, user_id)
            if user.get_role(role_name) is None:
                raise NotFoundError(
                    f"[{role_name}] is not assigned to [{user_id}]", ErrorCode.ROLE_NOT_ASSIGNED, role=role_name
                )
            user.roles = [r for r in user.roles if r.role_name != role_name]
            updated = self.store.update_user(context_id, user)
        logger.info("user_deassigned", context_id=context_id, user_id=user_id, role=role_name)
        return updated

    def assign_admin_user(self, context_id: str, user_role: UserAdminRole) -> User:
        context_id = validation.validate_context_id(context_id)
        self._validate_assignment(user_role, "assign_admin_user")
        self.store.read_role(context_id, user_role.role_name, admin=True)

        user = self.store.read_user(context_id, user_role.user_id)
        if user.get_admin_role(user_role.role_name) is not None:
            raise ConflictError(
                f"admin role [{user_role.role_name}] already assigned to [{user.user_id}]",
                ErrorCode.ROLE_ALREADY_ASSIGNED, role=user_role.role_name,
            )
        user.admin_roles.append(UserAdminRole.model_validate(user_role.model_dump() | {"context_id": context_id}))
        return self.store.update_user(context_id, user)

    def deassign_admin_user(self, context_id: str, user_id: str, role_name: str) -> User:
        context_id = validation.validate_context_id(context_id)
        user = self.store.read_user(context_id, user_id)
        if user.get_admin_role(role_name) is None:
            raise NotFoundError(
                f"admin role [{role_name}] is not assigned to [{user_id}]", ErrorCode.ROLE_NOT_ASSIGNED, role=role_name
            )
        user.admin_roles = [r for r in user.admin_roles if r.role_name != role_name]
        return self.store.update_user(context_id, user)

    def assigned_users(self, context_id: str, role_name: str) -> List[str]:
        context_id = validation.validate_context_id(context_id)
        return [u.user_id for u in self.store.search_users(context_id) if role_name in u.role_names()]

    # --- Roles ---

    def add_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        """Create a role; any parents it names must already exist."""
        context_id = validation.validate_context_id(context_id)
        where = validation.full_method_name(type(self).__name__, "add_role")
        validation.assert_not_empty(role.name, ErrorCode.ROLE_NAME_NULL, where)
        validation.validate_field(role.name, f"{where}.name")
        validation.validate_description(role.description)

        hierarchy = self._hierarchy(admin)
        graph = hierarchy.snapshot(context_id)
        missing = sorted(p for p in role.parents if p not in graph)
        if missing:
            raise HierarchyError(
                f"parent roles {missing} do not exist", ErrorCode.HIER_ROLE_NOT_FOUND, role=role.name
            )
        if admin and not isinstance(role, AdminRole):
            role = AdminRole.model_validate(role.model_dump())

        created = self.store.create_role(context_id, role, admin=admin)
        hierarchy.add_role(context_id, created)
        logger.info("role_added", context_id=context_id, role=role.name, admin=admin)
        return created

    def delete_role(self, context_id: str, name: str, admin: bool = False) -> None:
        """
        Delete a role and every reference to it.

        Grants are revoked first. If any revocation fails, ``BulkOperationError``
        is raised with the role still in place, so the call can be repeated.
        After that the role is deassigned from its users, removed from any SD
        sets and dropped from the hierarchy.
        """
        context_id = validation.validate_context_id(context_id)
        self.store.read_role(context_id, name, admin=admin)
        if admin:
            revoked = self.permissions.remove_admin_role(context_id, name)
        else:
            revoked = self.permissions.remove_role(context_id, name)

        with self.sod.exclusive():
            for user in self.store.search_users(context_id):
                if admin and user.get_admin_role(name) is not None:
                    user.admin_roles = [r for r in user.admin_roles if r.role_name != name]
                elif not admin and user.get_role(name) is not None:
                    user.roles = [r for r in user.roles if r.role_name != name]
                else:
                    continue
                self.store.update_user(context_id, user)
            if not admin:
                for kind in SDKind:
                    for sd_set in self.sod.sets_for_role(context_id, kind, name):
                        self.sod.remove_member(context_id, sd_set.name, kind, name)
            self.store.delete_role(context_id, name, admin=admin)

        self._hierarchy(admin).remove_role(context_id, name)
        logger.info("role_deleted", context_id=context_id, role=name, admin=admin, revoked=revoked)

    def add_inheritance(self, context_id: str, parent: str, child: str, admin: bool = False) -> Relationship:
        context_id = validation.validate_context_id(context_id)
        return self._hierarchy(admin).add_relationship(context_id, child, parent)

    def delete_inheritance(self, context_id: str, parent: str, child: str, admin: bool = False) -> Relationship:
        context_id = validation.validate_context_id(context_id)
        return self._hierarchy(admin).remove_relationship(context_id, child, parent)

    # --- Internal ---

    def _hierarchy(self, admin: bool) -> RoleHierarchy:
        return self.admin_hierarchy if admin else self.hierarchy

    def _validate_assignment(self, user_role: UserRole, method: str) -> None:
        where = validation.full_method_name(type(self).__name__, method)
        validation.assert_not_empty(user_role.user_id, ErrorCode.USER_ID_NULL, where)
        validation.assert_not_empty(user_role.role_name, ErrorCode.ROLE_NAME_NULL, where)
