"""
Permission administration: objects, operations, grants and bulk revocation.
"""

from typing import Callable, List

from rolegate.access_control import validation
from rolegate.access_control.errors import (
    BulkOperationError,
    ErrorCode,
    RBACError,
    ValidationError,
)
from rolegate.access_control.models import OrgUnitKind, Permission, PermObj
from rolegate.platform.logging import get_logger
from rolegate.storage.base import PolicyStore

logger = get_logger(__name__)


class PermissionService:
    """
    CRUD for permission objects and operations, plus grant bookkeeping.

    Granting a pair that is already granted raises ``ConflictError`` and
    revoking an absent one raises ``NotFoundError``; both are distinct from
    the ``StoreError`` a broken backend produces.
    """

    def __init__(self, store: PolicyStore):
        self.store = store

    # --- Permission objects ---

    def add_object(self, context_id: str, perm_obj: PermObj) -> PermObj:
        context_id = validation.validate_context_id(context_id)
        self.validate_object(context_id, perm_obj, is_update=False)
        created = self.store.create_perm_obj(context_id, perm_obj)
        logger.info("perm_obj_added", context_id=context_id, obj=perm_obj.obj_name)
        return created

    def update_object(self, context_id: str, perm_obj: PermObj) -> PermObj:
        context_id = validation.validate_context_id(context_id)
        self.validate_object(context_id, perm_obj, is_update=True)
        return self.store.update_perm_obj(context_id, perm_obj)

    def delete_object(self, context_id: str, obj_name: str, admin: bool = False) -> None:
        context_id = validation.validate_context_id(context_id)
        self.store.delete_perm_obj(context_id, obj_name, admin=admin)
        logger.info("perm_obj_deleted", context_id=context_id, obj=obj_name)

    def read_object(self, context_id: str, obj_name: str, admin: bool = False) -> PermObj:
        context_id = validation.validate_context_id(context_id)
        return self.store.read_perm_obj(context_id, obj_name, admin=admin)

    def search_objects(self, context_id: str, prefix: str = "", admin: bool = False) -> List[PermObj]:
        context_id = validation.validate_context_id(context_id)
        return self.store.search_perm_objs(context_id, prefix, admin=admin)

    # --- Operations ---

    def add(self, context_id: str, permission: Permission) -> Permission:
        context_id = validation.validate_context_id(context_id)
        self.validate(context_id, permission, is_update=False)
        created = self.store.create_permission(context_id, permission)
        logger.info("permission_added", context_id=context_id, obj=permission.obj_name, op=permission.op_name)
        return created

    def update(self, context_id: str, permission: Permission) -> Permission:
        context_id = validation.validate_context_id(context_id)
        self.validate(context_id, permission, is_update=True)
        return self.store.update_permission(context_id, permission)

    def delete(self, context_id: str, permission: Permission) -> None:
        context_id = validation.validate_context_id(context_id)
        self.store.delete_permission(context_id, permission.obj_name, permission.op_name, admin=permission.admin)
        logger.info("permission_deleted", context_id=context_id, obj=permission.obj_name, op=permission.op_name)

    def read(self, context_id: str, permission: Permission) -> Permission:
        context_id = validation.validate_context_id(context_id)
        return self.store.read_permission(context_id, permission.obj_name, permission.op_name, admin=permission.admin)

    def search(self, context_id: str, obj_prefix: str = "", op_prefix: str = "", admin: bool = False) -> List[Permission]:
        context_id = validation.validate_context_id(context_id)
        return self.store.search_permissions(context_id, obj_prefix, op_prefix, admin=admin)

    def search_by_role(self, context_id: str, role_name: str, admin: bool = False) -> List[Permission]:
        context_id = validation.validate_context_id(context_id)
        return self.store.find_role_permissions(context_id, role_name, admin=admin)

    def search_by_user(self, context_id: str, user_id: str) -> List[Permission]:
        context_id = validation.validate_context_id(context_id)
        return self.store.find_user_permissions(context_id, user_id)

    # --- Grants ---

    def grant(self, context_id: str, permission: Permission, role_name: str) -> None:
        context_id = validation.validate_context_id(context_id)
        self.store.read_role(context_id, role_name, admin=permission.admin)
        self.store.grant_role(context_id, permission, role_name)
        logger.info("permission_granted", context_id=context_id, obj=permission.obj_name,
                    op=permission.op_name, role=role_name)

    def revoke(self, context_id: str, permission: Permission, role_name: str) -> None:
        context_id = validation.validate_context_id(context_id)
        self.store.revoke_role(context_id, permission, role_name)
        logger.info("permission_revoked", context_id=context_id, obj=permission.obj_name,
                    op=permission.op_name, role=role_name)

    def grant_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        context_id = validation.validate_context_id(context_id)
        self.store.read_user(context_id, user_id)
        self.store.grant_user(context_id, permission, user_id)
        logger.info("permission_granted", context_id=context_id, obj=permission.obj_name,
                    op=permission.op_name, user_id=user_id)

    def revoke_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        context_id = validation.validate_context_id(context_id)
        self.store.revoke_user(context_id, permission, user_id)
        logger.info("permission_revoked", context_id=context_id, obj=permission.obj_name,
                    op=permission.op_name, user_id=user_id)

    # --- Bulk revocation ---

    def remove_user(self, context_id: str, user_id: str) -> int:
        """Revoke every direct grant held by ``user_id``. Returns the number revoked."""
        context_id = validation.validate_context_id(context_id)
        perms = self.store.find_user_permissions(context_id, user_id)
        return self._revoke_each(
            perms, lambda p: self.store.revoke_user(context_id, p, user_id),
            ErrorCode.PERM_BULK_USER_REVOKE_FAILED, f"user [{user_id}]",
        )

    def remove_role(self, context_id: str, role_name: str) -> int:
        context_id = validation.validate_context_id(context_id)
        perms = self.store.find_role_permissions(context_id, role_name, admin=False)
        return self._revoke_each(
            perms, lambda p: self.store.revoke_role(context_id, p, role_name),
            ErrorCode.PERM_BULK_ROLE_REVOKE_FAILED, f"role [{role_name}]",
        )

    def remove_admin_role(self, context_id: str, role_name: str) -> int:
        context_id = validation.validate_context_id(context_id)
        perms = self.store.find_role_permissions(context_id, role_name, admin=True)
        return self._revoke_each(
            perms, lambda p: self.store.revoke_role(context_id, p, role_name),
            ErrorCode.PERM_BULK_ADMINROLE_REVOKE_FAILED, f"admin role [{role_name}]",
        )

    def _revoke_each(
        self, perms: List[Permission], revoke: Callable[[Permission], None], code: ErrorCode, principal: str
    ) -> int:
        failures: List[RBACError] = []
        revoked = 0
        for perm in perms:
            try:
                revoke(perm)
                revoked += 1
            except RBACError as e:
                logger.warning("bulk_revoke_item_failed", principal=principal,
                               obj=perm.obj_name, op=perm.op_name, code=int(e.code))
                failures.append(e)
        if failures:
            raise BulkOperationError(
                f"remove {principal}: {len(failures)} of {len(perms)} revocations failed", code, failures
            )
        return revoked

    # --- Validation ---

    def validate_object(self, context_id: str, perm_obj: PermObj, is_update: bool) -> None:
        context_id = validation.validate_context_id(context_id)
        where = validation.full_method_name(type(self).__name__, "validate_object")
        validation.assert_not_empty(perm_obj.obj_name, ErrorCode.PERM_OBJECT_NULL, where)
        validation.validate_field(perm_obj.obj_name, f"{where}.obj_name")
        if not is_update or perm_obj.ou:
            validation.assert_not_empty(perm_obj.ou, ErrorCode.PERM_OU_INVALID, where)
            validation.validate_field(perm_obj.ou, f"{where}.ou")
            if not self.store.org_unit_exists(context_id, perm_obj.ou, OrgUnitKind.PERM):
                raise ValidationError(
                    f"invalid org unit [{perm_obj.ou}] for object [{perm_obj.obj_name}]",
                    ErrorCode.PERM_OU_INVALID, ou=perm_obj.ou,
                )
        validation.validate_description(perm_obj.description)

    def validate(self, context_id: str, permission: Permission, is_update: bool) -> None:
        context_id = validation.validate_context_id(context_id)
        where = validation.full_method_name(type(self).__name__, "validate")
        validation.assert_not_empty(permission.obj_name, ErrorCode.PERM_OBJECT_NULL, where)
        validation.assert_not_empty(permission.op_name, ErrorCode.PERM_OPERATION_NULL, where)
        if not is_update:
            validation.validate_field(permission.op_name, f"{where}.op_name")
        if permission.type:
            validation.validate_field(permission.type, f"{where}.type")
        validation.validate_description(permission.description)
        for role_name in permission.roles:
            self.store.read_role(context_id, role_name, admin=permission.admin)
        for user_id in permission.users:
            self.store.read_user(context_id, user_id)
