from datetime import datetime
from typing import List, Optional, Dict, Any
from sqlalchemy import Boolean, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from rolegate.storage.models import Base, JSON_TYPE, TIMESTAMP_TYPE

# Set-valued attributes (parents, grants, members) are stored as sorted JSON
# lists; every table is partitioned by context_id.


class UserModel(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String)
    ou: Mapped[Optional[str]] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    locked: Mapped[bool] = mapped_column(Boolean, default=False)
    properties: Mapped[Dict[str, Any]] = mapped_column(JSON_TYPE, default=dict)
    constraint: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON_TYPE, nullable=True)
    roles: Mapped[List[Dict[str, Any]]] = mapped_column(JSON_TYPE, default=list)
    admin_roles: Mapped[List[Dict[str, Any]]] = mapped_column(JSON_TYPE, default=list)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('context_id', 'user_id', name='uq_user_context'),
    )


class RoleModel(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    parents: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    constraint: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON_TYPE, nullable=True)
    os_p: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    os_u: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)

    __table_args__ = (
        UniqueConstraint('context_id', 'is_admin', 'name', name='uq_role_context'),
    )


class OrgUnitModel(Base):
    __tablename__ = "org_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint('context_id', 'kind', 'name', name='uq_org_unit_context'),
    )


class PermObjModel(Base):
    __tablename__ = "perm_objs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    obj_name: Mapped[str] = mapped_column(String, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    ou: Mapped[Optional[str]] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[Optional[str]] = mapped_column(String)

    __table_args__ = (
        UniqueConstraint('context_id', 'is_admin', 'obj_name', name='uq_perm_obj_context'),
    )


class PermissionModel(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    obj_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    op_name: Mapped[str] = mapped_column(String, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    obj_id: Mapped[Optional[str]] = mapped_column(String)
    type: Mapped[Optional[str]] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    roles: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    users: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)

    __table_args__ = (
        UniqueConstraint('context_id', 'is_admin', 'obj_name', 'op_name', name='uq_permission_context'),
    )


class SDSetModel(Base):
    """SSD and DSD sets share one table, told apart by ``kind``."""
    __tablename__ = "sd_sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    members: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    cardinality: Mapped[int] = mapped_column(Integer, default=2)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint('context_id', 'kind', 'name', name='uq_sd_set_context'),
    )
