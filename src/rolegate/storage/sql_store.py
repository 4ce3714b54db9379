"""
SQLAlchemy-backed PolicyStore.

Each contract call runs in its own transaction obtained from the adapter.
SQLAlchemy failures are translated at this boundary: integrity errors become
``ConflictError``, anything else becomes ``StoreError`` naming the operation
and principal.
"""

import logging
from contextlib import contextmanager
from typing import Generator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rolegate.access_control.errors import ConflictError, ErrorCode, NotFoundError, RBACError, StoreError
from rolegate.access_control.models import (
    AdminRole, OrgUnit, OrgUnitKind, Permission, PermObj, Role, SDKind, SDSet, User,
)
from rolegate.storage.base import PolicyStore, StorageAdapter
from rolegate.storage.repositories.permission_repository import PermissionRepository, PermObjRepository
from rolegate.storage.repositories.role_repository import OrgUnitRepository, RoleRepository
from rolegate.storage.repositories.sd_set_repository import SDSetRepository
from rolegate.storage.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class SqlPolicyStore(PolicyStore):

    def __init__(self, adapter: StorageAdapter):
        self.adapter = adapter
        self.users = UserRepository()
        self.roles = RoleRepository()
        self.org_units = OrgUnitRepository()
        self.perm_objs = PermObjRepository()
        self.permissions = PermissionRepository()
        self.sd_sets = SDSetRepository()

    @contextmanager
    def _transaction(self, operation: str, principal: Optional[str] = None) -> Generator[Session, None, None]:
        try:
            with self.adapter.get_session() as session:
                yield session
        except RBACError:
            raise
        except IntegrityError as e:
            raise ConflictError(f"{operation} conflicts with an existing entry [{principal}]",
                                operation=operation, principal=principal) from e
        except (SQLAlchemyError, ConnectionError) as e:
            logger.error(f"{operation} failed for [{principal}]", exc_info=e)
            raise StoreError(operation, principal, e) from e

    # --- Users ---
    def create_user(self, context_id: str, user: User) -> User:
        with self._transaction("create_user", user.user_id) as session:
            if self.users.get_row(session, context_id, user_id=user.user_id) is not None:
                raise ConflictError(f"user [{user.user_id}] already exists", user_id=user.user_id)
            return self.users.create(session, context_id, user)

    def read_user(self, context_id: str, user_id: str) -> User:
        with self._transaction("read_user", user_id) as session:
            user = self.users.get(session, context_id, user_id=user_id)
            if user is None:
                raise NotFoundError(f"user [{user_id}] not found", user_id=user_id)
            return user

    def update_user(self, context_id: str, user: User) -> User:
        with self._transaction("update_user", user.user_id) as session:
            updated = self.users.update(session, context_id, user, user_id=user.user_id)
            if updated is None:
                raise NotFoundError(f"user [{user.user_id}] not found", user_id=user.user_id)
            return updated

    def delete_user(self, context_id: str, user_id: str) -> None:
        with self._transaction("delete_user", user_id) as session:
            if not self.users.delete(session, context_id, user_id=user_id):
                raise NotFoundError(f"user [{user_id}] not found", user_id=user_id)

    def search_users(self, context_id: str, prefix: str = "") -> List[User]:
        with self._transaction("search_users", prefix) as session:
            return self.users.list(session, context_id, prefix)

    # --- Roles ---
    def _as_kind(self, role: Role, admin: bool) -> Role:
        cls = AdminRole if admin else Role
        return role if type(role) is cls else cls.model_validate(role.model_dump())

    def create_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        with self._transaction("create_role", role.name) as session:
            if self.roles.get_row(session, context_id, name=role.name, is_admin=admin) is not None:
                raise ConflictError(f"role [{role.name}] already exists", role=role.name)
            return self.roles.create(session, context_id, self._as_kind(role, admin))

    def read_role(self, context_id: str, name: str, admin: bool = False) -> Role:
        with self._transaction("read_role", name) as session:
            role = self.roles.get(session, context_id, name=name, is_admin=admin)
            if role is None:
                raise NotFoundError(f"role [{name}] not found", role=name)
            return role

    def update_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        with self._transaction("update_role", role.name) as session:
            updated = self.roles.update(
                session, context_id, self._as_kind(role, admin), name=role.name, is_admin=admin
            )
            if updated is None:
                raise NotFoundError(f"role [{role.name}] not found", role=role.name)
            return updated

    def delete_role(self, context_id: str, name: str, admin: bool = False) -> None:
        with self._transaction("delete_role", name) as session:
            if not self.roles.delete(session, context_id, name=name, is_admin=admin):
                raise NotFoundError(f"role [{name}] not found", role=name)
            for row in self.roles.rows(session, context_id, is_admin=admin):
                if name in (row.parents or []):
                    row.parents = [p for p in row.parents if p != name]

    def search_roles(self, context_id: str, prefix: str = "", admin: bool = False) -> List[Role]:
        with self._transaction("search_roles", prefix) as session:
            return self.roles.list(session, context_id, prefix, is_admin=admin)

    # --- Hierarchy edges ---
    def add_relationship(self, context_id: str, child: str, parent: str, admin: bool = False) -> None:
        with self._transaction("add_relationship", f"{child}->{parent}") as session:
            child_row = self.roles.get_row(session, context_id, name=child, is_admin=admin)
            parent_row = self.roles.get_row(session, context_id, name=parent, is_admin=admin)
            for name, row in ((child, child_row), (parent, parent_row)):
                if row is None:
                    raise NotFoundError(f"role [{name}] not found", role=name)
            if parent in (child_row.parents or []):
                raise ConflictError(f"[{child}] already inherits from [{parent}]", child=child, parent=parent)
            child_row.parents = sorted(set(child_row.parents or []) | {parent})

    def remove_relationship(self, context_id: str, child: str, parent: str, admin: bool = False) -> None:
        with self._transaction("remove_relationship", f"{child}->{parent}") as session:
            row = self.roles.get_row(session, context_id, name=child, is_admin=admin)
            if row is None or parent not in (row.parents or []):
                raise NotFoundError(f"[{child}] does not inherit from [{parent}]", child=child, parent=parent)
            row.parents = [p for p in row.parents if p != parent]

    # --- Org units ---
    def create_org_unit(self, context_id: str, org_unit: OrgUnit) -> OrgUnit:
        with self._transaction("create_org_unit", org_unit.name) as session:
            if self.org_units.get_row(session, context_id, name=org_unit.name, kind=org_unit.kind.value):
                raise ConflictError(f"org unit [{org_unit.name}] already exists", ou=org_unit.name)
            return self.org_units.create(session, context_id, org_unit)

    def org_unit_exists(self, context_id: str, name: str, kind: OrgUnitKind) -> bool:
        with self._transaction("org_unit_exists", name) as session:
            return self.org_units.get_row(session, context_id, name=name, kind=kind.value) is not None

    # --- Permission objects ---
    def create_perm_obj(self, context_id: str, perm_obj: PermObj) -> PermObj:
        with self._transaction("create_perm_obj", perm_obj.obj_name) as session:
            if self.perm_objs.get_row(session, context_id, obj_name=perm_obj.obj_name, is_admin=perm_obj.admin):
                raise ConflictError(f"object [{perm_obj.obj_name}] already exists", obj=perm_obj.obj_name)
            return self.perm_objs.create(session, context_id, perm_obj)

    def read_perm_obj(self, context_id: str, obj_name: str, admin: bool = False) -> PermObj:
        with self._transaction("read_perm_obj", obj_name) as session:
            obj = self.perm_objs.get(session, context_id, obj_name=obj_name, is_admin=admin)
            if obj is None:
                raise NotFoundError(f"object [{obj_name}] not found", obj=obj_name)
            return obj

    def update_perm_obj(self, context_id: str, perm_obj: PermObj) -> PermObj:
        with self._transaction("update_perm_obj", perm_obj.obj_name) as session:
            updated = self.perm_objs.update(
                session, context_id, perm_obj, obj_name=perm_obj.obj_name, is_admin=perm_obj.admin
            )
            if updated is None:
                raise NotFoundError(f"object [{perm_obj.obj_name}] not found", obj=perm_obj.obj_name)
            return updated

    def delete_perm_obj(self, context_id: str, obj_name: str, admin: bool = False) -> None:
        with self._transaction("delete_perm_obj", obj_name) as session:
            if not self.perm_objs.delete(session, context_id, obj_name=obj_name, is_admin=admin):
                raise NotFoundError(f"object [{obj_name}] not found", obj=obj_name)
            for row in self.permissions.rows(session, context_id, obj_name=obj_name, is_admin=admin):
                session.delete(row)

    def search_perm_objs(self, context_id: str, prefix: str = "", admin: bool = False) -> List[PermObj]:
        with self._transaction("search_perm_objs", prefix) as session:
            return self.perm_objs.list(session, context_id, prefix, is_admin=admin)

    # --- Permissions ---
    def _permission_row(self, session: Session, context_id: str, obj_name: str, op_name: str, admin: bool):
        row = self.permissions.get_row(session, context_id, obj_name=obj_name, op_name=op_name, is_admin=admin)
        if row is None:
            raise NotFoundError(f"permission [{obj_name}.{op_name}] not found", obj=obj_name, op=op_name)
        return row

    def create_permission(self, context_id: str, permission: Permission) -> Permission:
        principal = f"{permission.obj_name}.{permission.op_name}"
        with self._transaction("create_permission", principal) as session:
            if self.perm_objs.get_row(session, context_id, obj_name=permission.obj_name,
                                      is_admin=permission.admin) is None:
                raise NotFoundError(f"object [{permission.obj_name}] not found", obj=permission.obj_name)
            if self.permissions.get_row(session, context_id, obj_name=permission.obj_name,
                                        op_name=permission.op_name, is_admin=permission.admin) is not None:
                raise ConflictError(f"permission [{principal}] already exists",
                                    obj=permission.obj_name, op=permission.op_name)
            return self.permissions.create(session, context_id, permission)

    def read_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool = False) -> Permission:
        with self._transaction("read_permission", f"{obj_name}.{op_name}") as session:
            return self.permissions.to_domain(self._permission_row(session, context_id, obj_name, op_name, admin))

    def update_permission(self, context_id: str, permission: Permission) -> Permission:
        with self._transaction("update_permission", f"{permission.obj_name}.{permission.op_name}") as session:
            self._permission_row(session, context_id, permission.obj_name, permission.op_name, permission.admin)
            return self.permissions.update(
                session, context_id, permission,
                obj_name=permission.obj_name, op_name=permission.op_name, is_admin=permission.admin,
            )

    def delete_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool = False) -> None:
        with self._transaction("delete_permission", f"{obj_name}.{op_name}") as session:
            session.delete(self._permission_row(session, context_id, obj_name, op_name, admin))

    def search_permissions(
        self, context_id: str, obj_prefix: str = "", op_prefix: str = "", admin: bool = False
    ) -> List[Permission]:
        with self._transaction("search_permissions", f"{obj_prefix}.{op_prefix}") as session:
            return self.permissions.search(session, context_id, obj_prefix, op_prefix, admin)

    def find_role_permissions(self, context_id: str, role_name: str, admin: bool = False) -> List[Permission]:
        # Grants live in JSON lists, so membership is filtered here rather than in SQL.
        with self._transaction("find_role_permissions", role_name) as session:
            perms = self.permissions.search(session, context_id, "", "", admin)
            return [p for p in perms if role_name in p.roles]

    def find_user_permissions(self, context_id: str, user_id: str) -> List[Permission]:
        with self._transaction("find_user_permissions", user_id) as session:
            rows = self.permissions.rows(session, context_id)
            perms = sorted((self.permissions.to_domain(r) for r in rows), key=lambda p: p.key)
            return [p for p in perms if user_id in p.users]

    # --- Grants ---
    def _change_grant(self, context_id: str, permission: Permission, column: str, principal: str, add: bool) -> None:
        operation = ("grant_" if add else "revoke_") + ("role" if column == "roles" else "user")
        with self._transaction(operation, principal) as session:
            row = self._permission_row(
                session, context_id, permission.obj_name, permission.op_name, permission.admin
            )
            current = set(getattr(row, column) or [])
            label = f"[{principal}] / [{permission.obj_name}.{permission.op_name}]"
            if add and principal in current:
                raise ConflictError(f"grant {label} already exists", ErrorCode.PERM_GRANT_EXISTS,
                                    principal=principal)
            if not add and principal not in current:
                raise NotFoundError(f"grant {label} does not exist", ErrorCode.PERM_GRANT_NOT_EXIST,
                                    principal=principal)
            current = current | {principal} if add else current - {principal}
            setattr(row, column, sorted(current))

    def grant_role(self, context_id: str, permission: Permission, role_name: str) -> None:
        self._change_grant(context_id, permission, "roles", role_name, add=True)

    def revoke_role(self, context_id: str, permission: Permission, role_name: str) -> None:
        self._change_grant(context_id, permission, "roles", role_name, add=False)

    def grant_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        self._change_grant(context_id, permission, "users", user_id, add=True)

    def revoke_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        self._change_grant(context_id, permission, "users", user_id, add=False)

    # --- Separation of duty sets ---
    def _sd_row(self, session: Session, context_id: str, name: str, kind: SDKind):
        row = self.sd_sets.get_row(session, context_id, name=name, kind=kind.value)
        if row is None:
            raise NotFoundError(f"{kind.value} set [{name}] not found", set_name=name)
        return row

    def create_sd_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        with self._transaction("create_sd_set", sd_set.name) as session:
            if self.sd_sets.get_row(session, context_id, name=sd_set.name, kind=sd_set.kind.value):
                raise ConflictError(f"{sd_set.kind.value} set [{sd_set.name}] already exists", set_name=sd_set.name)
            return self.sd_sets.create(session, context_id, sd_set)

    def read_sd_set(self, context_id: str, name: str, kind: SDKind) -> SDSet:
        with self._transaction("read_sd_set", name) as session:
            return self.sd_sets.to_domain(self._sd_row(session, context_id, name, kind))

    def update_sd_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        with self._transaction("update_sd_set", sd_set.name) as session:
            self._sd_row(session, context_id, sd_set.name, sd_set.kind)
            return self.sd_sets.update(session, context_id, sd_set, name=sd_set.name, kind=sd_set.kind.value)

    def delete_sd_set(self, context_id: str, name: str, kind: SDKind) -> None:
        with self._transaction("delete_sd_set", name) as session:
            session.delete(self._sd_row(session, context_id, name, kind))

    def list_sd_sets(self, context_id: str, kind: SDKind) -> List[SDSet]:
        with self._transaction("list_sd_sets") as session:
            return self.sd_sets.list(session, context_id, kind=kind.value)

    def add_sd_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        with self._transaction("add_sd_member", name) as session:
            row = self._sd_row(session, context_id, name, kind)
            if role_name in (row.members or []):
                raise ConflictError(f"[{role_name}] already in {kind.value} set [{name}]", set_name=name)
            row.members = sorted(set(row.members or []) | {role_name})
            session.flush()
            return self.sd_sets.to_domain(row)

    def remove_sd_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        with self._transaction("remove_sd_member", name) as session:
            row = self._sd_row(session, context_id, name, kind)
            if role_name not in (row.members or []):
                raise NotFoundError(f"[{role_name}] not in {kind.value} set [{name}]", set_name=name)
            row.members = [m for m in row.members if m != role_name]
            session.flush()
            return self.sd_sets.to_domain(row)
