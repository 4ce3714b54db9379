from typing import Any, Dict

from rolegate.access_control.models import AdminRole, Constraint, OrgUnit, OrgUnitKind, Role
from rolegate.storage.models_access_control import OrgUnitModel, RoleModel
from .base import BaseRepository


class RoleRepository(BaseRepository[Role, RoleModel]):
    """Roles and admin roles; ``is_admin`` tells the two namespaces apart."""

    model = RoleModel
    name_column = "name"

    def to_domain(self, row: RoleModel) -> Role:
        fields = dict(
            context_id=row.context_id,
            name=row.name,
            description=row.description,
            parents=set(row.parents or []),
            constraint=Constraint.model_validate(row.constraint) if row.constraint else None,
        )
        if row.is_admin:
            return AdminRole(os_p=set(row.os_p or []), os_u=set(row.os_u or []), **fields)
        return Role(**fields)

    def to_row(self, entity: Role, context_id: str) -> Dict[str, Any]:
        return {
            "context_id": context_id,
            "name": entity.name,
            "is_admin": isinstance(entity, AdminRole),
            "description": entity.description,
            "parents": sorted(entity.parents),
            "constraint": entity.constraint.model_dump(mode="json") if entity.constraint else None,
            "os_p": sorted(getattr(entity, "os_p", set())),
            "os_u": sorted(getattr(entity, "os_u", set())),
        }


class OrgUnitRepository(BaseRepository[OrgUnit, OrgUnitModel]):
    model = OrgUnitModel
    name_column = "name"

    def to_domain(self, row: OrgUnitModel) -> OrgUnit:
        return OrgUnit(
            context_id=row.context_id,
            name=row.name,
            kind=OrgUnitKind(row.kind),
            description=row.description,
        )

    def to_row(self, entity: OrgUnit, context_id: str) -> Dict[str, Any]:
        return {
            "context_id": context_id,
            "name": entity.name,
            "kind": entity.kind.value,
            "description": entity.description,
        }
