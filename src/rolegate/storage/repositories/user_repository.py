from typing import Any, Dict

from rolegate.access_control.models import Constraint, User, UserAdminRole, UserRole
from rolegate.storage.models_access_control import UserModel
from .base import BaseRepository


class UserRepository(BaseRepository[User, UserModel]):
    model = UserModel
    name_column = "user_id"

    def to_domain(self, row: UserModel) -> User:
        return User(
            context_id=row.context_id,
            user_id=row.user_id,
            password_hash=row.password_hash,
            ou=row.ou,
            description=row.description,
            locked=bool(row.locked),
            properties=dict(row.properties or {}),
            constraint=Constraint.model_validate(row.constraint) if row.constraint else None,
            roles=[UserRole.model_validate(r) for r in row.roles or []],
            admin_roles=[UserAdminRole.model_validate(r) for r in row.admin_roles or []],
        )

    def to_row(self, entity: User, context_id: str) -> Dict[str, Any]:
        return {
            "context_id": context_id,
            "user_id": entity.user_id,
            "password_hash": entity.password_hash,
            "ou": entity.ou,
            "description": entity.description,
            "locked": entity.locked,
            "properties": dict(entity.properties),
            "constraint": entity.constraint.model_dump(mode="json") if entity.constraint else None,
            "roles": [r.model_dump(mode="json") for r in entity.roles],
            "admin_roles": [r.model_dump(mode="json") for r in entity.admin_roles],
        }
