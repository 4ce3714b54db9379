"""
Session creation and role activation.

A session moves ACTIVE -> CLOSED and never reopens. At creation, roles that
fail their temporal constraint or a DSD set are dropped and recorded as
warnings; the session is still created. A later explicit ``add_active_role``
that fails the same checks is rejected outright.

Sessions are owned by one caller at a time. The manager does not lock a
session's fields; it only serializes the activation counters it shares
across sessions. A counted activation lapses when its session is deleted,
drops the role, or passes its expiry, whichever comes first.
"""

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rolegate.access_control import validation
from rolegate.access_control.constraints import ConstraintEvaluator
from rolegate.access_control.credentials import verify_password
from rolegate.access_control.errors import (
    AuthenticationError,
    ConstraintViolation,
    ErrorCode,
    NotActiveError,
    NotFoundError,
    SessionClosedError,
    SessionStateError,
)
from rolegate.access_control.hierarchy import RoleHierarchy
from rolegate.access_control.models import (
    Session,
    SessionStatus,
    SessionWarning,
    User,
    UserAdminRole,
    UserRole,
)
from rolegate.access_control.sod import SoDChecker
from rolegate.platform.config import Settings, settings as default_settings
from rolegate.platform.logging import get_logger
from rolegate.storage.base import PolicyStore

logger = get_logger(__name__)

_ActivationKey = Tuple[str, str, str, bool]


class SessionManager:
    """Creates sessions and manages their active role sets."""

    def __init__(
        self,
        store: PolicyStore,
        hierarchy: RoleHierarchy,
        admin_hierarchy: RoleHierarchy,
        sod: SoDChecker,
        evaluator: Optional[ConstraintEvaluator] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.hierarchy = hierarchy
        self.admin_hierarchy = admin_hierarchy
        self.sod = sod
        self.evaluator = evaluator or ConstraintEvaluator()
        self.settings = settings or default_settings
        # (context, user, role, admin) -> {session_id: expires_at} of the live sessions holding it
        self._activations: Dict[_ActivationKey, Dict[str, Optional[datetime]]] = {}
        self._activation_lock = threading.Lock()

    # --- Session lifecycle ---

    def create_session(
        self,
        context_id: Optional[str],
        user_id: str,
        password: Optional[str] = None,
        *,
        now: datetime,
        roles: Optional[Sequence[str]] = None,
        admin_roles: Optional[Sequence[str]] = None,
        trusted: bool = False,
        properties: Optional[dict] = None,
    ) -> Session:
        """
        Authenticate ``user_id`` and activate roles for a new session.

        Args:
            context_id: Tenant scope (None selects the default tenant)
            user_id: User to authenticate
            password: Credential, required unless ``trusted``
            now: Reference time for every constraint evaluated
            roles: Roles to activate, in order; None or empty means all assigned roles
            admin_roles: Admin roles to activate, same rules
            trusted: Skip the credential check (caller already authenticated)
            properties: Extra properties carried on the session

        Returns:
            The ACTIVE session, with warnings for every dropped role

        Raises:
            ValidationError: user id (or password when not trusted) missing
            AuthenticationError: unknown user, locked user, bad password, or
                the user's own constraint forbids login at ``now``
        """
        where = validation.full_method_name(type(self).__name__, "create_session")
        context_id = validation.validate_context_id(context_id)
        validation.assert_not_empty(user_id, ErrorCode.USER_ID_NULL, where)
        if not trusted:
            validation.assert_not_none(password, ErrorCode.PASSWORD_NULL, where)

        user = self._authenticate(context_id, user_id, password, trusted, now)

        session = Session(
            context_id=context_id,
            user_id=user.user_id,
            user=user.model_copy(update={"password_hash": None}, deep=True),
            is_authenticated=not trusted,
            created_at=now,
            expires_at=self.evaluator.session_expiry(user.constraint, now, self.settings.SESSION_TIMEOUT_MINUTES),
            properties={**user.properties, **(properties or {})},
        )

        for admin in (False, True):
            requested = admin_roles if admin else roles
            assigned = user.admin_roles if admin else user.roles
            candidates = self._dedupe(requested) if requested else [r.role_name for r in assigned]
            for role_name in candidates:
                warning = self._activate(session, user, role_name, admin, now)
                if warning is not None:
                    session.warnings.append(warning)
                    logger.info(
                        "role_activation_dropped",
                        context_id=context_id, user_id=user_id, role=role_name,
                        admin=admin, code=warning.code, set_name=warning.set_name,
                    )

        logger.info(
            "session_created",
            context_id=context_id, user_id=user_id, session_id=session.session_id,
            roles=session.role_names(), admin_roles=session.admin_role_names(),
            warnings=len(session.warnings),
        )
        return session

    def delete_session(self, session: Session) -> None:
        self._require_open(session)
        self._close(session)
        logger.info("session_deleted", context_id=session.context_id, session_id=session.session_id)

    def is_expired(self, session: Session, now: datetime) -> bool:
        return session.expires_at is not None and now >= session.expires_at

    # --- Role activation ---

    def add_active_role(self, session: Session, role_name: str, *, now: datetime) -> UserRole:
        return self._add(session, role_name, admin=False, now=now)

    def drop_active_role(self, session: Session, role_name: str, *, now: Optional[datetime] = None) -> None:
        self._drop(session, role_name, admin=False, now=now)

    def add_admin_role(self, session: Session, role_name: str, *, now: datetime) -> UserAdminRole:
        return self._add(session, role_name, admin=True, now=now)

    def drop_admin_role(self, session: Session, role_name: str, *, now: Optional[datetime] = None) -> None:
        self._drop(session, role_name, admin=True, now=now)

    # --- Queries ---

    def authorized_roles(self, session: Session) -> Set[str]:
        """Active roles plus every role they inherit from."""
        self._require_open(session)
        return self.hierarchy.expand(session.context_id, session.role_names())

    def authorized_admin_roles(self, session: Session) -> Set[str]:
        self._require_open(session)
        return self.admin_hierarchy.expand(session.context_id, session.admin_role_names())

    def session_user(self, session: Session) -> User:
        self._require_open(session)
        if session.user is None:
            raise SessionStateError("session carries no user", ErrorCode.SESSION_NULL)
        return session.user.model_copy(deep=True)

    def active_count(
        self, context_id: str, user_id: str, role_name: str, admin: bool = False, now: Optional[datetime] = None
    ) -> int:
        """Live activations of a role by one user; with ``now``, expired sessions are not counted."""
        context_id = validation.validate_context_id(context_id)
        with self._activation_lock:
            return self._live_count((context_id, user_id, role_name, admin), now)

    # --- Internal ---

    def _authenticate(
        self, context_id: str, user_id: str, password: Optional[str], trusted: bool, now: datetime
    ) -> User:
        try:
            user = self.store.read_user(context_id, user_id)
        except NotFoundError as e:
            raise AuthenticationError(
                f"user [{user_id}] not found", ErrorCode.USER_NOT_FOUND, user_id=user_id
            ) from e

        if user.locked:
            raise AuthenticationError(f"user [{user_id}] is locked", ErrorCode.USER_LOCKED, user_id=user_id)
        if not trusted and not verify_password(password, user.password_hash):
            logger.warning("authentication_failed", context_id=context_id, user_id=user_id)
            raise AuthenticationError(
                f"invalid credential for user [{user_id}]", ErrorCode.PASSWORD_INVALID, user_id=user_id
            )

        failed = self.evaluator.evaluate(user.constraint, now)
        if failed is not None:
            raise AuthenticationError(
                f"user [{user_id}] may not log in now", ErrorCode.USER_CONSTRAINT_FAILED,
                user_id=user_id, constraint=int(failed),
            )
        return user

    def _activate(
        self, session: Session, user: User, role_name: str, admin: bool, now: datetime
    ) -> Optional[SessionWarning]:
        """
        Try to activate one role on the session.

        Returns None on success, or the warning describing why the role was
        refused. The session is only mutated on success.
        """
        active = session.admin_roles if admin else session.roles

        def refuse(code: ErrorCode, message: str, set_name: Optional[str] = None) -> SessionWarning:
            return SessionWarning(code=int(code), role_name=role_name, message=message, set_name=set_name)

        if any(r.role_name == role_name for r in active):
            return refuse(ErrorCode.ROLE_ALREADY_ACTIVE, f"[{role_name}] is already active")

        assignment = user.get_admin_role(role_name) if admin else user.get_role(role_name)
        if assignment is None:
            return refuse(ErrorCode.ROLE_NOT_AUTHORIZED, f"[{role_name}] is not assigned to [{user.user_id}]")

        try:
            role = self.store.read_role(session.context_id, role_name, admin=admin)
        except NotFoundError:
            return refuse(ErrorCode.NOT_FOUND, f"[{role_name}] no longer exists")

        hierarchy = self.admin_hierarchy if admin else self.hierarchy
        key: _ActivationKey = (session.context_id, user.user_id, role_name, admin)

        # The count read, the checks that depend on it and the increment are one step
        with self._activation_lock:
            count = self._live_count(key, now)
            for constraint in (assignment, role.constraint):
                failed = self.evaluator.evaluate(constraint, now, count)
                if failed is not None:
                    return refuse(failed, f"[{role_name}] constraint forbids activation now")

            breached = self.sod.find_dsd_violation(
                session.context_id, [r.role_name for r in active], [role_name], hierarchy
            )
            if breached is not None:
                return refuse(
                    ErrorCode.ACTV_FAILED_DSD, f"[{role_name}] conflicts with DSD set [{breached.name}]", breached.name
                )

            active.append(assignment.model_copy(deep=True))
            self._activations.setdefault(key, {})[session.session_id] = session.expires_at
        return None

    def _add(self, session: Session, role_name: str, admin: bool, now: datetime):
        where = validation.full_method_name(type(self).__name__, "add_active_role")
        self._require_open(session, now)
        validation.assert_not_empty(role_name, ErrorCode.ROLE_NAME_NULL, where)

        # Authorization is checked against the current assignments, not the login snapshot
        try:
            user = self.store.read_user(session.context_id, session.user_id)
        except NotFoundError as e:
            raise SessionStateError(
                f"session user [{session.user_id}] no longer exists", ErrorCode.SESSION_NULL
            ) from e

        warning = self._activate(session, user, role_name, admin, now)
        if warning is not None:
            if warning.code in (ErrorCode.ROLE_ALREADY_ACTIVE, ErrorCode.ROLE_NOT_AUTHORIZED):
                raise SessionStateError(warning.message, ErrorCode(warning.code), role=role_name)
            if warning.code == ErrorCode.NOT_FOUND:
                raise NotFoundError(warning.message, role=role_name)
            raise ConstraintViolation(
                warning.message, ErrorCode(warning.code), set_name=warning.set_name, role=role_name
            )

        logger.info(
            "role_activated",
            context_id=session.context_id, session_id=session.session_id, role=role_name, admin=admin,
        )
        active = session.admin_roles if admin else session.roles
        return active[-1]

    def _drop(self, session: Session, role_name: str, admin: bool, now: Optional[datetime]) -> None:
        where = validation.full_method_name(type(self).__name__, "drop_active_role")
        self._require_open(session, now)
        validation.assert_not_empty(role_name, ErrorCode.ROLE_NAME_NULL, where)

        active = session.admin_roles if admin else session.roles
        index = next((i for i, r in enumerate(active) if r.role_name == role_name), None)
        if index is None:
            raise NotActiveError(f"[{role_name}] is not active in this session", role=role_name)

        del active[index]
        self._release(session, [role_name], admin)
        logger.info(
            "role_deactivated",
            context_id=session.context_id, session_id=session.session_id, role=role_name, admin=admin,
        )

    def _require_open(self, session: Optional[Session], now: Optional[datetime] = None) -> None:
        if session is None:
            raise SessionStateError("session is required", ErrorCode.SESSION_NULL)
        if session.status == SessionStatus.CLOSED:
            raise SessionClosedError(f"session [{session.session_id}] is closed")
        if now is not None and self.is_expired(session, now):
            self._close(session)
            logger.info("session_expired", context_id=session.context_id, session_id=session.session_id)
            raise SessionClosedError(f"session [{session.session_id}] has expired")

    def _close(self, session: Session) -> None:
        session.status = SessionStatus.CLOSED
        self._release(session, session.role_names(), admin=False)
        self._release(session, session.admin_role_names(), admin=True)

    def _release(self, session: Session, role_names: Iterable[str], admin: bool) -> None:
        with self._activation_lock:
            for role_name in role_names:
                key: _ActivationKey = (session.context_id, session.user_id, role_name, admin)
                holders = self._activations.get(key)
                if holders is None:
                    continue
                holders.pop(session.session_id, None)
                if not holders:
                    del self._activations[key]

    def _live_count(self, key: _ActivationKey, now: Optional[datetime]) -> int:
        """Caller holds ``_activation_lock``. Expired holders are pruned when ``now`` is known."""
        holders = self._activations.get(key)
        if not holders:
            return 0
        if now is not None:
            for session_id, expires_at in list(holders.items()):
                if expires_at is not None and now >= expires_at:
                    del holders[session_id]
            if not holders:
                del self._activations[key]
                return 0
        return len(holders)

    @staticmethod
    def _dedupe(names: Sequence[str]) -> List[str]:
        return list(dict.fromkeys(names))
