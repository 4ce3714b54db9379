from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from rolegate.storage.models import Base

T = TypeVar("T")
M = TypeVar("M", bound=Base)


class BaseRepository(Generic[T, M], ABC):
    """
    Tenant-scoped CRUD over one ORM table, translating rows to domain models.

    Subclasses name the ORM model, the key columns that identify an entity
    within a context, and the row <-> domain conversions.
    """

    model: Type[M]
    name_column: str

    @abstractmethod
    def to_domain(self, row: M) -> T:
        pass

    @abstractmethod
    def to_row(self, entity: T, context_id: str) -> Dict[str, Any]:
        pass

    def _query(self, context_id: str, **keys: Any):
        stmt = select(self.model).where(self.model.context_id == context_id)
        for column, value in keys.items():
            stmt = stmt.where(getattr(self.model, column) == value)
        return stmt

    def get_row(self, session: Session, context_id: str, **keys: Any) -> Optional[M]:
        return session.scalars(self._query(context_id, **keys)).first()

    def get(self, session: Session, context_id: str, **keys: Any) -> Optional[T]:
        row = self.get_row(session, context_id, **keys)
        return self.to_domain(row) if row is not None else None

    def create(self, session: Session, context_id: str, entity: T) -> T:
        row = self.model(**self.to_row(entity, context_id))
        session.add(row)
        session.flush()
        return self.to_domain(row)

    def update(self, session: Session, context_id: str, entity: T, **keys: Any) -> Optional[T]:
        row = self.get_row(session, context_id, **keys)
        if row is None:
            return None
        for column, value in self.to_row(entity, context_id).items():
            setattr(row, column, value)
        session.flush()
        return self.to_domain(row)

    def delete(self, session: Session, context_id: str, **keys: Any) -> bool:
        row = self.get_row(session, context_id, **keys)
        if row is None:
            return False
        session.delete(row)
        session.flush()
        return True

    def list(self, session: Session, context_id: str, prefix: str = "", **keys: Any) -> List[T]:
        column = getattr(self.model, self.name_column)
        stmt = self._query(context_id, **keys).order_by(column)
        if prefix:
            stmt = stmt.where(column.startswith(prefix))
        return [self.to_domain(row) for row in session.scalars(stmt).all()]

    def rows(self, session: Session, context_id: str, **keys: Any) -> List[M]:
        return list(session.scalars(self._query(context_id, **keys)).all())
