from typing import Any, Dict, List

from sqlalchemy.orm import Session

from rolegate.access_control.models import Permission, PermObj
from rolegate.storage.models_access_control import PermissionModel, PermObjModel
from .base import BaseRepository


class PermObjRepository(BaseRepository[PermObj, PermObjModel]):
    model = PermObjModel
    name_column = "obj_name"

    def to_domain(self, row: PermObjModel) -> PermObj:
        return PermObj(
            context_id=row.context_id,
            obj_name=row.obj_name,
            admin=bool(row.is_admin),
            ou=row.ou,
            description=row.description,
            type=row.type,
        )

    def to_row(self, entity: PermObj, context_id: str) -> Dict[str, Any]:
        return {
            "context_id": context_id,
            "obj_name": entity.obj_name,
            "is_admin": entity.admin,
            "ou": entity.ou,
            "description": entity.description,
            "type": entity.type,
        }


class PermissionRepository(BaseRepository[Permission, PermissionModel]):
    model = PermissionModel
    name_column = "obj_name"

    def to_domain(self, row: PermissionModel) -> Permission:
        return Permission(
            context_id=row.context_id,
            obj_name=row.obj_name,
            op_name=row.op_name,
            admin=bool(row.is_admin),
            obj_id=row.obj_id,
            type=row.type,
            description=row.description,
            roles=set(row.roles or []),
            users=set(row.users or []),
        )

    def to_row(self, entity: Permission, context_id: str) -> Dict[str, Any]:
        return {
            "context_id": context_id,
            "obj_name": entity.obj_name,
            "op_name": entity.op_name,
            "is_admin": entity.admin,
            "obj_id": entity.obj_id,
            "type": entity.type,
            "description": entity.description,
            "roles": sorted(entity.roles),
            "users": sorted(entity.users),
        }

    def search(
        self, session: Session, context_id: str, obj_prefix: str, op_prefix: str, admin: bool
    ) -> List[Permission]:
        stmt = self._query(context_id, is_admin=admin).order_by(PermissionModel.obj_name, PermissionModel.op_name)
        if obj_prefix:
            stmt = stmt.where(PermissionModel.obj_name.startswith(obj_prefix))
        if op_prefix:
            stmt = stmt.where(PermissionModel.op_name.startswith(op_prefix))
        return [self.to_domain(row) for row in session.scalars(stmt).all()]
