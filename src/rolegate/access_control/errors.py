"""
Error kinds raised by the access control engine.

Every error carries a stable ``ErrorCode`` so callers can tell the kinds apart
without matching on messages. Persistence failures never escape raw; stores
wrap them in ``StoreError`` or ``ConflictError``.
"""

from enum import IntEnum
from typing import Any, Dict, List, Optional


class ErrorCode(IntEnum):
    # Validation
    FIELD_NULL = 1000
    FIELD_TOO_LONG = 1001
    FIELD_INVALID_CHARS = 1002
    CONTEXT_ID_INVALID = 1003
    USER_ID_NULL = 1010
    ROLE_NAME_NULL = 1011
    PERM_OBJECT_NULL = 1012
    PERM_OPERATION_NULL = 1013
    PERM_OU_INVALID = 1014
    SD_SET_NAME_NULL = 1015
    SD_CARDINALITY_INVALID = 1016
    CONSTRAINT_INVALID = 1017

    # Authentication
    USER_NOT_FOUND = 2000
    USER_LOCKED = 2001
    PASSWORD_INVALID = 2002
    PASSWORD_NULL = 2003
    USER_CONSTRAINT_FAILED = 2004

    # Role activation (recorded as session warnings or raised by add_active_role)
    ACTV_FAILED_DATE = 2050
    ACTV_FAILED_LOCK = 2051
    ACTV_FAILED_TIME = 2052
    ACTV_FAILED_DAY = 2053
    ACTV_FAILED_MAX = 2054
    ACTV_FAILED_DSD = 2055
    ROLE_NOT_AUTHORIZED = 2056
    ROLE_ALREADY_ACTIVE = 2057

    # Hierarchy
    HIER_CYCLE = 3000
    HIER_ROLE_NOT_FOUND = 3001
    HIER_REL_EXISTS = 3002
    HIER_REL_NOT_EXIST = 3003

    # Separation of duty
    SSD_VIOLATION = 4000
    DSD_VIOLATION = 4001

    # Session state
    SESSION_CLOSED = 5000
    SESSION_NULL = 5001
    ROLE_NOT_ACTIVE = 5002

    # Entities
    NOT_FOUND = 6000
    CONFLICT = 6001
    PERM_GRANT_EXISTS = 6002
    PERM_GRANT_NOT_EXIST = 6003
    ROLE_ALREADY_ASSIGNED = 6004
    ROLE_NOT_ASSIGNED = 6005

    # Bulk operations
    PERM_BULK_USER_REVOKE_FAILED = 7000
    PERM_BULK_ROLE_REVOKE_FAILED = 7001
    PERM_BULK_ADMINROLE_REVOKE_FAILED = 7002

    # Store
    STORE_ERROR = 9000


class RBACError(Exception):
    """Base class for all engine errors."""

    default_code = ErrorCode.STORE_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        self.details: Dict[str, Any] = details

    def __str__(self) -> str:
        return f"[{int(self.code)}] {self.message}"


class ValidationError(RBACError):
    default_code = ErrorCode.FIELD_NULL


class AuthenticationError(RBACError):
    default_code = ErrorCode.PASSWORD_INVALID


class HierarchyError(RBACError):
    default_code = ErrorCode.HIER_CYCLE


class ConstraintViolation(RBACError):
    """A role assignment or activation breached an SSD/DSD set or a temporal constraint."""

    default_code = ErrorCode.DSD_VIOLATION

    def __init__(self, message: str, code: Optional[ErrorCode] = None, set_name: Optional[str] = None, **details: Any):
        super().__init__(message, code, set_name=set_name, **details)
        self.set_name = set_name


class SessionStateError(RBACError):
    default_code = ErrorCode.SESSION_NULL


class SessionClosedError(SessionStateError):
    default_code = ErrorCode.SESSION_CLOSED


class NotActiveError(SessionStateError):
    default_code = ErrorCode.ROLE_NOT_ACTIVE


class NotFoundError(RBACError):
    default_code = ErrorCode.NOT_FOUND


class ConflictError(RBACError):
    default_code = ErrorCode.CONFLICT


class StoreError(RBACError):
    """Wraps a failure at the persistence boundary with the operation and principal."""

    default_code = ErrorCode.STORE_ERROR

    def __init__(self, operation: str, principal: Optional[str] = None, cause: Optional[BaseException] = None):
        message = f"{operation} failed"
        if principal:
            message += f" for [{principal}]"
        if cause is not None:
            message += f": {type(cause).__name__}"
        super().__init__(message, operation=operation, principal=principal)
        self.operation = operation
        self.principal = principal
        self.__cause__ = cause


class BulkOperationError(RBACError):
    """Aggregates per-item failures of a bulk revoke."""

    def __init__(self, message: str, code: ErrorCode, failures: List[RBACError]):
        super().__init__(message, code, failures=len(failures))
        self.failures = failures
