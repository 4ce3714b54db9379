from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Dict, Any, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rolegate.platform.config import settings


class ScopedModel(BaseModel):
    """Base for every entity: carries the tenant scope it lives in."""
    context_id: str = Field(default_factory=lambda: settings.DEFAULT_CONTEXT_ID)

    model_config = ConfigDict(from_attributes=True)


# --- Temporal constraints ---
class Constraint(BaseModel):
    """
    Validity window attached to a user or a role assignment.

    Times are "HHMM" strings, the day mask holds ISO weekday digits
    (1 = Monday ... 7 = Sunday). Missing fields are unbounded.
    """
    name: Optional[str] = None
    timeout: Optional[int] = Field(None, ge=0, description="Session lifetime in minutes")
    begin_time: Optional[str] = None
    end_time: Optional[str] = None
    day_mask: Optional[str] = None
    begin_date: Optional[date] = None
    end_date: Optional[date] = None
    begin_lock_date: Optional[date] = None
    end_lock_date: Optional[date] = None
    max_activations: Optional[int] = Field(None, ge=1)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("begin_time", "end_time")
    @classmethod
    def _check_hhmm(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if len(value) != 4 or not value.isdigit() or int(value[:2]) > 23 or int(value[2:]) > 59:
            raise ValueError(f"time must be HHMM, got {value!r}")
        return value

    @field_validator("day_mask")
    @classmethod
    def _check_day_mask(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value.lower() == "all":
            return value
        if any(ch not in "1234567" for ch in value):
            raise ValueError(f"day mask may only hold digits 1-7, got {value!r}")
        return value

    def constraint_fields(self) -> "Constraint":
        """Return only the temporal part (useful for subclasses)."""
        return Constraint.model_validate(self.model_dump(include=set(Constraint.model_fields)))


# --- Assignments ---
class UserRole(Constraint):
    """A role assigned to a user, with its own validity window."""
    user_id: str
    role_name: str
    context_id: str = Field(default_factory=lambda: settings.DEFAULT_CONTEXT_ID)


class UserAdminRole(UserRole):
    """An administrative role assigned to a user."""
    pass


# --- Users ---
class User(ScopedModel):
    user_id: str = Field(..., description="Unique user identifier")
    password_hash: Optional[str] = None
    ou: Optional[str] = None
    description: Optional[str] = None
    roles: List[UserRole] = []
    admin_roles: List[UserAdminRole] = []
    properties: Dict[str, Any] = {}
    locked: bool = False
    constraint: Optional[Constraint] = None

    def role_names(self) -> Set[str]:
        return {r.role_name for r in self.roles}

    def admin_role_names(self) -> Set[str]:
        return {r.role_name for r in self.admin_roles}

    def get_role(self, name: str) -> Optional[UserRole]:
        return next((r for r in self.roles if r.role_name == name), None)

    def get_admin_role(self, name: str) -> Optional[UserAdminRole]:
        return next((r for r in self.admin_roles if r.role_name == name), None)


# --- Roles ---
class Role(ScopedModel):
    name: str = Field(..., description="Unique role name")
    description: Optional[str] = None
    parents: Set[str] = set()
    constraint: Optional[Constraint] = None


class AdminRole(Role):
    """Administrative role. Org unit ranges are kept for reference only."""
    os_p: Set[str] = set()
    os_u: Set[str] = set()


class Relationship(BaseModel):
    """An ordered (child, parent) pair: the unit of hierarchy mutation."""
    child: str
    parent: str

    model_config = ConfigDict(frozen=True)


# --- Org units ---
class OrgUnitKind(str, Enum):
    USER = "USER"
    PERM = "PERM"


class OrgUnit(ScopedModel):
    name: str
    kind: OrgUnitKind = OrgUnitKind.PERM
    description: Optional[str] = None


# --- Permissions ---
class PermObj(ScopedModel):
    obj_name: str = Field(..., description="Protected object name")
    ou: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    admin: bool = False


class Permission(ScopedModel):
    obj_name: str = Field(..., description="Protected object name, e.g. 'Invoice'")
    op_name: str = Field(..., description="Operation name, e.g. 'approve'")
    obj_id: Optional[str] = None
    type: Optional[str] = None
    admin: bool = False
    description: Optional[str] = None
    roles: Set[str] = set()
    users: Set[str] = set()

    @property
    def key(self) -> tuple:
        return (self.obj_name, self.op_name, self.admin)


# --- Separation of duty ---
class SDKind(str, Enum):
    SSD = "SSD"
    DSD = "DSD"


class SDSet(ScopedModel):
    name: str
    kind: SDKind = SDKind.SSD
    members: Set[str] = set()
    cardinality: int = Field(2, ge=2)
    description: Optional[str] = None


# --- Sessions ---
class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class SessionWarning(BaseModel):
    code: int
    role_name: str
    message: str
    set_name: Optional[str] = None


class Session(ScopedModel):
    """
    Runtime object for one authenticated actor.

    Owned by a single caller; the engine does no locking on its fields.
    """
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    user: Optional[User] = None
    roles: List[UserRole] = []
    admin_roles: List[UserAdminRole] = []
    status: SessionStatus = SessionStatus.ACTIVE
    is_authenticated: bool = False
    created_at: datetime
    expires_at: Optional[datetime] = None
    warnings: List[SessionWarning] = []
    properties: Dict[str, Any] = {}

    def role_names(self) -> List[str]:
        return [r.role_name for r in self.roles]

    def admin_role_names(self) -> List[str]:
        return [r.role_name for r in self.admin_roles]

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE
