"""
In-memory PolicyStore.

Entities live in per-tenant dictionaries guarded by a single lock. Every read
and write goes through ``model_copy(deep=True)`` so stored state is never
aliased by callers.
"""

import threading
from collections import defaultdict
from typing import Dict, List, Tuple, TypeVar

from pydantic import BaseModel

from rolegate.access_control.errors import ConflictError, ErrorCode, NotFoundError
from rolegate.access_control.models import (
    AdminRole, OrgUnit, OrgUnitKind, Permission, PermObj, Role, SDKind, SDSet, User,
)
from rolegate.storage.base import PolicyStore

M = TypeVar("M", bound=BaseModel)


def _copy(entity: M) -> M:
    return entity.model_copy(deep=True)


class _Tenant:
    """All entities belonging to one context id."""

    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.roles: Dict[bool, Dict[str, Role]] = {False: {}, True: {}}
        self.org_units: Dict[Tuple[str, OrgUnitKind], OrgUnit] = {}
        self.perm_objs: Dict[Tuple[str, bool], PermObj] = {}
        self.permissions: Dict[Tuple[str, str, bool], Permission] = {}
        self.sd_sets: Dict[SDKind, Dict[str, SDSet]] = {SDKind.SSD: {}, SDKind.DSD: {}}


class InMemoryPolicyStore(PolicyStore):

    def __init__(self):
        self._tenants: Dict[str, _Tenant] = defaultdict(_Tenant)
        self._lock = threading.RLock()

    def _tenant(self, context_id: str) -> _Tenant:
        return self._tenants[context_id]

    # --- Users ---
    def create_user(self, context_id: str, user: User) -> User:
        with self._lock:
            users = self._tenant(context_id).users
            if user.user_id in users:
                raise ConflictError(f"user [{user.user_id}] already exists", user_id=user.user_id)
            stored = user.model_copy(update={"context_id": context_id}, deep=True)
            users[user.user_id] = stored
            return _copy(stored)

    def read_user(self, context_id: str, user_id: str) -> User:
        with self._lock:
            user = self._tenant(context_id).users.get(user_id)
            if user is None:
                raise NotFoundError(f"user [{user_id}] not found", user_id=user_id)
            return _copy(user)

    def update_user(self, context_id: str, user: User) -> User:
        with self._lock:
            users = self._tenant(context_id).users
            if user.user_id not in users:
                raise NotFoundError(f"user [{user.user_id}] not found", user_id=user.user_id)
            stored = user.model_copy(update={"context_id": context_id}, deep=True)
            users[user.user_id] = stored
            return _copy(stored)

    def delete_user(self, context_id: str, user_id: str) -> None:
        with self._lock:
            if self._tenant(context_id).users.pop(user_id, None) is None:
                raise NotFoundError(f"user [{user_id}] not found", user_id=user_id)

    def search_users(self, context_id: str, prefix: str = "") -> List[User]:
        with self._lock:
            users = self._tenant(context_id).users
            return [_copy(u) for uid, u in sorted(users.items()) if uid.startswith(prefix)]

    # --- Roles ---
    def create_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        with self._lock:
            roles = self._tenant(context_id).roles[admin]
            if role.name in roles:
                raise ConflictError(f"role [{role.name}] already exists", role=role.name)
            cls = AdminRole if admin else Role
            stored = cls.model_validate(role.model_dump() | {"context_id": context_id})
            roles[role.name] = stored
            return _copy(stored)

    def read_role(self, context_id: str, name: str, admin: bool = False) -> Role:
        with self._lock:
            role = self._tenant(context_id).roles[admin].get(name)
            if role is None:
                raise NotFoundError(f"role [{name}] not found", role=name)
            return _copy(role)

    def update_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        with self._lock:
            roles = self._tenant(context_id).roles[admin]
            if role.name not in roles:
                raise NotFoundError(f"role [{role.name}] not found", role=role.name)
            cls = AdminRole if admin else Role
            stored = cls.model_validate(role.model_dump() | {"context_id": context_id})
            roles[role.name] = stored
            return _copy(stored)

    def delete_role(self, context_id: str, name: str, admin: bool = False) -> None:
        with self._lock:
            roles = self._tenant(context_id).roles[admin]
            if roles.pop(name, None) is None:
                raise NotFoundError(f"role [{name}] not found", role=name)
            for other in roles.values():
                other.parents.discard(name)

    def search_roles(self, context_id: str, prefix: str = "", admin: bool = False) -> List[Role]:
        with self._lock:
            roles = self._tenant(context_id).roles[admin]
            return [_copy(r) for name, r in sorted(roles.items()) if name.startswith(prefix)]

    # --- Hierarchy edges ---
    def add_relationship(self, context_id: str, child: str, parent: str, admin: bool = False) -> None:
        with self._lock:
            roles = self._tenant(context_id).roles[admin]
            for name in (child, parent):
                if name not in roles:
                    raise NotFoundError(f"role [{name}] not found", role=name)
            if parent in roles[child].parents:
                raise ConflictError(f"[{child}] already inherits from [{parent}]", child=child, parent=parent)
            roles[child].parents.add(parent)

    def remove_relationship(self, context_id: str, child: str, parent: str, admin: bool = False) -> None:
        with self._lock:
            role = self._tenant(context_id).roles[admin].get(child)
            if role is None or parent not in role.parents:
                raise NotFoundError(f"[{child}] does not inherit from [{parent}]", child=child, parent=parent)
            role.parents.discard(parent)

    # --- Org units ---
    def create_org_unit(self, context_id: str, org_unit: OrgUnit) -> OrgUnit:
        with self._lock:
            units = self._tenant(context_id).org_units
            key = (org_unit.name, org_unit.kind)
            if key in units:
                raise ConflictError(f"org unit [{org_unit.name}] already exists", ou=org_unit.name)
            stored = org_unit.model_copy(update={"context_id": context_id}, deep=True)
            units[key] = stored
            return _copy(stored)

    def org_unit_exists(self, context_id: str, name: str, kind: OrgUnitKind) -> bool:
        with self._lock:
            return (name, kind) in self._tenant(context_id).org_units

    # --- Permission objects ---
    def create_perm_obj(self, context_id: str, perm_obj: PermObj) -> PermObj:
        with self._lock:
            objs = self._tenant(context_id).perm_objs
            key = (perm_obj.obj_name, perm_obj.admin)
            if key in objs:
                raise ConflictError(f"object [{perm_obj.obj_name}] already exists", obj=perm_obj.obj_name)
            stored = perm_obj.model_copy(update={"context_id": context_id}, deep=True)
            objs[key] = stored
            return _copy(stored)

    def read_perm_obj(self, context_id: str, obj_name: str, admin: bool = False) -> PermObj:
        with self._lock:
            obj = self._tenant(context_id).perm_objs.get((obj_name, admin))
            if obj is None:
                raise NotFoundError(f"object [{obj_name}] not found", obj=obj_name)
            return _copy(obj)

    def update_perm_obj(self, context_id: str, perm_obj: PermObj) -> PermObj:
        with self._lock:
            objs = self._tenant(context_id).perm_objs
            key = (perm_obj.obj_name, perm_obj.admin)
            if key not in objs:
                raise NotFoundError(f"object [{perm_obj.obj_name}] not found", obj=perm_obj.obj_name)
            stored = perm_obj.model_copy(update={"context_id": context_id}, deep=True)
            objs[key] = stored
            return _copy(stored)

    def delete_perm_obj(self, context_id: str, obj_name: str, admin: bool = False) -> None:
        with self._lock:
            tenant = self._tenant(context_id)
            if tenant.perm_objs.pop((obj_name, admin), None) is None:
                raise NotFoundError(f"object [{obj_name}] not found", obj=obj_name)
            for key in [k for k in tenant.permissions if k[0] == obj_name and k[2] == admin]:
                del tenant.permissions[key]

    def search_perm_objs(self, context_id: str, prefix: str = "", admin: bool = False) -> List[PermObj]:
        with self._lock:
            objs = self._tenant(context_id).perm_objs
            return [
                _copy(o) for (name, is_admin), o in sorted(objs.items())
                if is_admin == admin and name.startswith(prefix)
            ]

    # --- Permissions ---
    def _get_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool) -> Permission:
        perm = self._tenant(context_id).permissions.get((obj_name, op_name, admin))
        if perm is None:
            raise NotFoundError(
                f"permission [{obj_name}.{op_name}] not found", obj=obj_name, op=op_name
            )
        return perm

    def create_permission(self, context_id: str, permission: Permission) -> Permission:
        with self._lock:
            tenant = self._tenant(context_id)
            if (permission.obj_name, permission.admin) not in tenant.perm_objs:
                raise NotFoundError(f"object [{permission.obj_name}] not found", obj=permission.obj_name)
            if permission.key in tenant.permissions:
                raise ConflictError(
                    f"permission [{permission.obj_name}.{permission.op_name}] already exists",
                    obj=permission.obj_name, op=permission.op_name,
                )
            stored = permission.model_copy(update={"context_id": context_id}, deep=True)
            tenant.permissions[permission.key] = stored
            return _copy(stored)

    def read_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool = False) -> Permission:
        with self._lock:
            return _copy(self._get_permission(context_id, obj_name, op_name, admin))

    def update_permission(self, context_id: str, permission: Permission) -> Permission:
        with self._lock:
            self._get_permission(context_id, permission.obj_name, permission.op_name, permission.admin)
            stored = permission.model_copy(update={"context_id": context_id}, deep=True)
            self._tenant(context_id).permissions[permission.key] = stored
            return _copy(stored)

    def delete_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool = False) -> None:
        with self._lock:
            self._get_permission(context_id, obj_name, op_name, admin)
            del self._tenant(context_id).permissions[(obj_name, op_name, admin)]

    def search_permissions(
        self, context_id: str, obj_prefix: str = "", op_prefix: str = "", admin: bool = False
    ) -> List[Permission]:
        with self._lock:
            perms = self._tenant(context_id).permissions
            return [
                _copy(p) for key, p in sorted(perms.items())
                if p.admin == admin and p.obj_name.startswith(obj_prefix) and p.op_name.startswith(op_prefix)
            ]

    def find_role_permissions(self, context_id: str, role_name: str, admin: bool = False) -> List[Permission]:
        with self._lock:
            perms = self._tenant(context_id).permissions
            return [
                _copy(p) for key, p in sorted(perms.items())
                if p.admin == admin and role_name in p.roles
            ]

    def find_user_permissions(self, context_id: str, user_id: str) -> List[Permission]:
        with self._lock:
            perms = self._tenant(context_id).permissions
            return [_copy(p) for key, p in sorted(perms.items()) if user_id in p.users]

    # --- Grants ---
    def grant_role(self, context_id: str, permission: Permission, role_name: str) -> None:
        with self._lock:
            perm = self._get_permission(context_id, permission.obj_name, permission.op_name, permission.admin)
            if role_name in perm.roles:
                raise ConflictError(
                    f"role [{role_name}] already granted [{perm.obj_name}.{perm.op_name}]",
                    ErrorCode.PERM_GRANT_EXISTS, role=role_name,
                )
            perm.roles.add(role_name)

    def revoke_role(self, context_id: str, permission: Permission, role_name: str) -> None:
        with self._lock:
            perm = self._get_permission(context_id, permission.obj_name, permission.op_name, permission.admin)
            if role_name not in perm.roles:
                raise NotFoundError(
                    f"role [{role_name}] not granted [{perm.obj_name}.{perm.op_name}]",
                    ErrorCode.PERM_GRANT_NOT_EXIST, role=role_name,
                )
            perm.roles.discard(role_name)

    def grant_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        with self._lock:
            perm = self._get_permission(context_id, permission.obj_name, permission.op_name, permission.admin)
            if user_id in perm.users:
                raise ConflictError(
                    f"user [{user_id}] already granted [{perm.obj_name}.{perm.op_name}]",
                    ErrorCode.PERM_GRANT_EXISTS, user_id=user_id,
                )
            perm.users.add(user_id)

    def revoke_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        with self._lock:
            perm = self._get_permission(context_id, permission.obj_name, permission.op_name, permission.admin)
            if user_id not in perm.users:
                raise NotFoundError(
                    f"user [{user_id}] not granted [{perm.obj_name}.{perm.op_name}]",
                    ErrorCode.PERM_GRANT_NOT_EXIST, user_id=user_id,
                )
            perm.users.discard(user_id)

    # --- Separation of duty sets ---
    def _get_sd_set(self, context_id: str, name: str, kind: SDKind) -> SDSet:
        sd_set = self._tenant(context_id).sd_sets[kind].get(name)
        if sd_set is None:
            raise NotFoundError(f"{kind.value} set [{name}] not found", set_name=name)
        return sd_set

    def create_sd_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        with self._lock:
            sets = self._tenant(context_id).sd_sets[sd_set.kind]
            if sd_set.name in sets:
                raise ConflictError(f"{sd_set.kind.value} set [{sd_set.name}] already exists", set_name=sd_set.name)
            stored = sd_set.model_copy(update={"context_id": context_id}, deep=True)
            sets[sd_set.name] = stored
            return _copy(stored)

    def read_sd_set(self, context_id: str, name: str, kind: SDKind) -> SDSet:
        with self._lock:
            return _copy(self._get_sd_set(context_id, name, kind))

    def update_sd_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        with self._lock:
            self._get_sd_set(context_id, sd_set.name, sd_set.kind)
            stored = sd_set.model_copy(update={"context_id": context_id}, deep=True)
            self._tenant(context_id).sd_sets[sd_set.kind][sd_set.name] = stored
            return _copy(stored)

    def delete_sd_set(self, context_id: str, name: str, kind: SDKind) -> None:
        with self._lock:
            self._get_sd_set(context_id, name, kind)
            del self._tenant(context_id).sd_sets[kind][name]

    def list_sd_sets(self, context_id: str, kind: SDKind) -> List[SDSet]:
        with self._lock:
            sets = self._tenant(context_id).sd_sets[kind]
            return [_copy(s) for name, s in sorted(sets.items())]

    def add_sd_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        with self._lock:
            sd_set = self._get_sd_set(context_id, name, kind)
            if role_name in sd_set.members:
                raise ConflictError(f"[{role_name}] already in {kind.value} set [{name}]", set_name=name)
            sd_set.members.add(role_name)
            return _copy(sd_set)

    def remove_sd_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        with self._lock:
            sd_set = self._get_sd_set(context_id, name, kind)
            if role_name not in sd_set.members:
                raise NotFoundError(f"[{role_name}] not in {kind.value} set [{name}]", set_name=name)
            sd_set.members.discard(role_name)
            return _copy(sd_set)
