from abc import ABC, abstractmethod
from typing import Generator, List

from sqlalchemy.orm import Session

from rolegate.access_control.models import (
    OrgUnit, OrgUnitKind, Permission, PermObj, Role, SDKind, SDSet, User,
)


class StorageAdapter(ABC):
    """Abstract base class for storage adapters."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the storage backend."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Check if the backend is reachable."""
        pass

    @abstractmethod
    def get_session(self) -> Generator[Session, None, None]:
        """Provide a contextual session."""
        pass


class PolicyStore(ABC):
    """
    Persistence contract consumed by the engine.

    Every call is scoped by ``context_id``; implementations must never
    return an entity from another tenant. Reads return copies so callers
    cannot mutate stored state by accident. Failures surface as
    ``NotFoundError``, ``ConflictError`` or ``StoreError``.
    """

    # --- Users ---
    @abstractmethod
    def create_user(self, context_id: str, user: User) -> User:
        pass

    @abstractmethod
    def read_user(self, context_id: str, user_id: str) -> User:
        pass

    @abstractmethod
    def update_user(self, context_id: str, user: User) -> User:
        pass

    @abstractmethod
    def delete_user(self, context_id: str, user_id: str) -> None:
        pass

    @abstractmethod
    def search_users(self, context_id: str, prefix: str = "") -> List[User]:
        pass

    # --- Roles (admin=True selects the administrative role namespace) ---
    @abstractmethod
    def create_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        pass

    @abstractmethod
    def read_role(self, context_id: str, name: str, admin: bool = False) -> Role:
        pass

    @abstractmethod
    def update_role(self, context_id: str, role: Role, admin: bool = False) -> Role:
        pass

    @abstractmethod
    def delete_role(self, context_id: str, name: str, admin: bool = False) -> None:
        pass

    @abstractmethod
    def search_roles(self, context_id: str, prefix: str = "", admin: bool = False) -> List[Role]:
        pass

    # --- Hierarchy edges ---
    @abstractmethod
    def add_relationship(self, context_id: str, child: str, parent: str, admin: bool = False) -> None:
        pass

    @abstractmethod
    def remove_relationship(self, context_id: str, child: str, parent: str, admin: bool = False) -> None:
        pass

    # --- Org units ---
    @abstractmethod
    def create_org_unit(self, context_id: str, org_unit: OrgUnit) -> OrgUnit:
        pass

    @abstractmethod
    def org_unit_exists(self, context_id: str, name: str, kind: OrgUnitKind) -> bool:
        pass

    # --- Permission objects ---
    @abstractmethod
    def create_perm_obj(self, context_id: str, perm_obj: PermObj) -> PermObj:
        pass

    @abstractmethod
    def read_perm_obj(self, context_id: str, obj_name: str, admin: bool = False) -> PermObj:
        pass

    @abstractmethod
    def update_perm_obj(self, context_id: str, perm_obj: PermObj) -> PermObj:
        pass

    @abstractmethod
    def delete_perm_obj(self, context_id: str, obj_name: str, admin: bool = False) -> None:
        pass

    @abstractmethod
    def search_perm_objs(self, context_id: str, prefix: str = "", admin: bool = False) -> List[PermObj]:
        pass

    # --- Permissions (operations) ---
    @abstractmethod
    def create_permission(self, context_id: str, permission: Permission) -> Permission:
        pass

    @abstractmethod
    def read_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool = False) -> Permission:
        pass

    @abstractmethod
    def update_permission(self, context_id: str, permission: Permission) -> Permission:
        pass

    @abstractmethod
    def delete_permission(self, context_id: str, obj_name: str, op_name: str, admin: bool = False) -> None:
        pass

    @abstractmethod
    def search_permissions(
        self, context_id: str, obj_prefix: str = "", op_prefix: str = "", admin: bool = False
    ) -> List[Permission]:
        pass

    @abstractmethod
    def find_role_permissions(self, context_id: str, role_name: str, admin: bool = False) -> List[Permission]:
        pass

    @abstractmethod
    def find_user_permissions(self, context_id: str, user_id: str) -> List[Permission]:
        pass

    # --- Grants ---
    @abstractmethod
    def grant_role(self, context_id: str, permission: Permission, role_name: str) -> None:
        pass

    @abstractmethod
    def revoke_role(self, context_id: str, permission: Permission, role_name: str) -> None:
        pass

    @abstractmethod
    def grant_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        pass

    @abstractmethod
    def revoke_user(self, context_id: str, permission: Permission, user_id: str) -> None:
        pass

    # --- Separation of duty sets ---
    @abstractmethod
    def create_sd_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        pass

    @abstractmethod
    def read_sd_set(self, context_id: str, name: str, kind: SDKind) -> SDSet:
        pass

    @abstractmethod
    def update_sd_set(self, context_id: str, sd_set: SDSet) -> SDSet:
        pass

    @abstractmethod
    def delete_sd_set(self, context_id: str, name: str, kind: SDKind) -> None:
        pass

    @abstractmethod
    def list_sd_sets(self, context_id: str, kind: SDKind) -> List[SDSet]:
        pass

    @abstractmethod
    def add_sd_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        pass

    @abstractmethod
    def remove_sd_member(self, context_id: str, name: str, kind: SDKind, role_name: str) -> SDSet:
        pass
