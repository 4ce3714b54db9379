from typing import Any, Dict

from rolegate.access_control.models import SDKind, SDSet
from rolegate.storage.models_access_control import SDSetModel
from .base import BaseRepository


class SDSetRepository(BaseRepository[SDSet, SDSetModel]):
    model = SDSetModel
    name_column = "name"

    def to_domain(self, row: SDSetModel) -> SDSet:
        return SDSet(
            context_id=row.context_id,
            name=row.name,
            kind=SDKind(row.kind),
            members=set(row.members or []),
            cardinality=row.cardinality,
            description=row.description,
        )

    def to_row(self, entity: SDSet, context_id: str) -> Dict[str, Any]:
        return {
            "context_id": context_id,
            "name": entity.name,
            "kind": entity.kind.value,
            "members": sorted(entity.members),
            "cardinality": entity.cardinality,
            "description": entity.description,
        }
