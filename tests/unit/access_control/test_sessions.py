import threading
from datetime import date, datetime, timedelta

import pytest

from rolegate.access_control.errors import (
    AuthenticationError,
    ConstraintViolation,
    ErrorCode,
    NotActiveError,
    NotFoundError,
    SessionClosedError,
    SessionStateError,
    ValidationError,
)
from rolegate.access_control.models import (
    Constraint,
    Role,
    SDKind,
    SDSet,
    SessionStatus,
    User,
    UserAdminRole,
    UserRole,
)

CTX = "HOME"


@pytest.fixture
def bank(assignments, sod):
    """Tellers and auditors may both be assigned but not active together."""
    for name in ("teller", "auditor", "clerk", "night_ops"):
        assignments.add_role(CTX, Role(name=name))
    assignments.add_role(CTX, Role(name="head_teller", parents={"teller"}))
    assignments.add_role(CTX, Role(name="branch_admin"), admin=True)
    sod.create_set(CTX, SDSet(name="teller_audit", kind=SDKind.DSD, members={"teller", "auditor"}))

    assignments.add_user(CTX, User(user_id="alice"), password="pw-alice")
    for role in ("teller", "auditor", "clerk"):
        assignments.assign_user(CTX, UserRole(user_id="alice", role_name=role))
    assignments.assign_user(
        CTX, UserRole(user_id="alice", role_name="night_ops", begin_time="2200", end_time="0600")
    )
    assignments.assign_admin_user(CTX, UserAdminRole(user_id="alice", role_name="branch_admin"))
    return assignments


def test_create_session_activates_requested_roles(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk", "teller"])

    assert session.status == SessionStatus.ACTIVE
    assert session.is_authenticated
    assert session.role_names() == ["clerk", "teller"]
    assert session.warnings == []
    assert session.user.password_hash is None
    assert session.expires_at == now + timedelta(minutes=60)


def test_dsd_conflict_dropped_in_request_order(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["auditor", "teller", "clerk"])

    assert session.role_names() == ["auditor", "clerk"]
    assert len(session.warnings) == 1
    warning = session.warnings[0]
    assert warning.code == ErrorCode.ACTV_FAILED_DSD
    assert warning.role_name == "teller"
    assert warning.set_name == "teller_audit"


def test_default_activates_all_assigned_roles(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now)

    # teller wins over auditor because it was assigned first; night_ops is outside its window
    assert session.role_names() == ["teller", "clerk"]
    assert {w.role_name: w.code for w in session.warnings} == {
        "auditor": ErrorCode.ACTV_FAILED_DSD,
        "night_ops": ErrorCode.ACTV_FAILED_TIME,
    }
    assert session.admin_role_names() == ["branch_admin"]


def test_unassigned_role_is_dropped(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["head_teller"])

    assert session.role_names() == []
    assert session.warnings[0].code == ErrorCode.ROLE_NOT_AUTHORIZED


def test_time_constraint_allows_night_login(bank, sessions):
    late = datetime(2024, 5, 15, 23, 0)
    session = sessions.create_session(CTX, "alice", "pw-alice", now=late, roles=["night_ops"])
    assert session.role_names() == ["night_ops"]


def test_authentication_failures(bank, sessions, assignments, store, now):
    with pytest.raises(AuthenticationError) as exc:
        sessions.create_session(CTX, "nobody", "pw", now=now)
    assert exc.value.code == ErrorCode.USER_NOT_FOUND

    with pytest.raises(AuthenticationError) as exc:
        sessions.create_session(CTX, "alice", "wrong", now=now)
    assert exc.value.code == ErrorCode.PASSWORD_INVALID

    user = store.read_user(CTX, "alice")
    user.locked = True
    store.update_user(CTX, user)
    with pytest.raises(AuthenticationError) as exc:
        sessions.create_session(CTX, "alice", "pw-alice", now=now)
    assert exc.value.code == ErrorCode.USER_LOCKED


def test_missing_password_is_a_validation_error(bank, sessions, now):
    with pytest.raises(ValidationError) as exc:
        sessions.create_session(CTX, "alice", None, now=now)
    assert exc.value.code == ErrorCode.PASSWORD_NULL


def test_user_constraint_blocks_login(bank, sessions, store, now):
    user = store.read_user(CTX, "alice")
    user.constraint = Constraint(end_date=date(2024, 1, 1))
    store.update_user(CTX, user)

    with pytest.raises(AuthenticationError) as exc:
        sessions.create_session(CTX, "alice", "pw-alice", now=now)
    assert exc.value.code == ErrorCode.USER_CONSTRAINT_FAILED


def test_trusted_session_skips_password(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", now=now, trusted=True, roles=["clerk"])
    assert not session.is_authenticated
    assert session.role_names() == ["clerk"]


def test_user_timeout_sets_expiry(bank, sessions, store, now):
    user = store.read_user(CTX, "alice")
    user.constraint = Constraint(timeout=5)
    store.update_user(CTX, user)

    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    assert session.expires_at == now + timedelta(minutes=5)
    assert not sessions.is_expired(session, now + timedelta(minutes=4))
    assert sessions.is_expired(session, now + timedelta(minutes=5))


def test_add_active_role(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])

    activated = sessions.add_active_role(session, "teller", now=now)
    assert activated.role_name == "teller"
    assert session.role_names() == ["clerk", "teller"]


def test_add_active_role_dsd_conflict_raises(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["teller"])

    with pytest.raises(ConstraintViolation) as exc:
        sessions.add_active_role(session, "auditor", now=now)
    assert exc.value.code == ErrorCode.ACTV_FAILED_DSD
    assert exc.value.set_name == "teller_audit"
    assert session.role_names() == ["teller"]


def test_add_active_role_failures(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])

    with pytest.raises(SessionStateError) as exc:
        sessions.add_active_role(session, "clerk", now=now)
    assert exc.value.code == ErrorCode.ROLE_ALREADY_ACTIVE

    with pytest.raises(ConstraintViolation) as exc:
        sessions.add_active_role(session, "night_ops", now=now)
    assert exc.value.code == ErrorCode.ACTV_FAILED_TIME

    with pytest.raises(SessionStateError) as exc:
        sessions.add_active_role(session, "head_teller", now=now)
    assert not isinstance(exc.value, ConstraintViolation)
    assert exc.value.code == ErrorCode.ROLE_NOT_AUTHORIZED


def test_add_active_role_sees_new_assignments(bank, sessions, assignments, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    assignments.assign_user(CTX, UserRole(user_id="alice", role_name="head_teller"))

    sessions.add_active_role(session, "head_teller", now=now)
    assert "teller" in sessions.authorized_roles(session)


def test_drop_active_role(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk", "teller"])

    sessions.drop_active_role(session, "teller", now=now)
    assert session.role_names() == ["clerk"]

    with pytest.raises(NotActiveError) as exc:
        sessions.drop_active_role(session, "teller", now=now)
    assert exc.value.code == ErrorCode.ROLE_NOT_ACTIVE
    assert session.role_names() == ["clerk"]


def test_drop_then_activate_conflicting_role(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["teller"])
    sessions.drop_active_role(session, "teller")
    sessions.add_active_role(session, "auditor", now=now)
    assert session.role_names() == ["auditor"]


def test_closed_session_rejects_everything(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    sessions.delete_session(session)

    assert session.status == SessionStatus.CLOSED
    with pytest.raises(SessionClosedError):
        sessions.add_active_role(session, "teller", now=now)
    with pytest.raises(SessionClosedError):
        sessions.drop_active_role(session, "clerk")
    with pytest.raises(SessionClosedError):
        sessions.authorized_roles(session)
    with pytest.raises(SessionClosedError):
        sessions.delete_session(session)


def test_expired_session_closes_on_use(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])

    with pytest.raises(SessionClosedError):
        sessions.add_active_role(session, "teller", now=now + timedelta(hours=2))
    assert session.status == SessionStatus.CLOSED


def test_max_activations_across_sessions(bank, sessions, store, now):
    role = store.read_role(CTX, "clerk")
    role.constraint = Constraint(max_activations=1)
    store.update_role(CTX, role)

    first = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    second = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    assert first.role_names() == ["clerk"]
    assert second.role_names() == []
    assert second.warnings[0].code == ErrorCode.ACTV_FAILED_MAX
    assert sessions.active_count(CTX, "alice", "clerk") == 1

    sessions.delete_session(first)
    assert sessions.active_count(CTX, "alice", "clerk") == 0
    sessions.add_active_role(second, "clerk", now=now)
    assert second.role_names() == ["clerk"]


def test_admin_roles(bank, sessions, admin_hierarchy, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"], admin_roles=["branch_admin"])
    assert session.admin_role_names() == ["branch_admin"]
    assert sessions.authorized_admin_roles(session) == {"branch_admin"}

    sessions.drop_admin_role(session, "branch_admin")
    assert session.admin_role_names() == []
    sessions.add_admin_role(session, "branch_admin", now=now)
    assert session.admin_role_names() == ["branch_admin"]


def test_session_user_is_a_copy(bank, sessions, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    user = sessions.session_user(session)
    user.roles.clear()
    assert sessions.session_user(session).role_names() == {"teller", "auditor", "clerk", "night_ops"}


def test_add_active_role_for_deleted_role_raises_not_found(bank, sessions, store, now):
    session = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["teller"])
    # Removed behind the engine's back, so alice still holds the assignment
    store.delete_role(CTX, "clerk")

    with pytest.raises(NotFoundError):
        sessions.add_active_role(session, "clerk", now=now)
    assert session.role_names() == ["teller"]


def test_expired_session_releases_max_activations(bank, sessions, store, now):
    role = store.read_role(CTX, "clerk")
    role.constraint = Constraint(max_activations=1)
    store.update_role(CTX, role)

    abandoned = sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk"])
    assert abandoned.role_names() == ["clerk"]

    tomorrow = now + timedelta(days=1)
    assert sessions.active_count(CTX, "alice", "clerk", now=tomorrow) == 0

    fresh = sessions.create_session(CTX, "alice", "pw-alice", now=tomorrow, roles=["clerk"])
    assert fresh.role_names() == ["clerk"]
    assert fresh.warnings == []
    assert sessions.active_count(CTX, "alice", "clerk", now=tomorrow) == 1

    # The abandoned session can no longer give its slot back twice
    with pytest.raises(SessionClosedError):
        sessions.drop_active_role(abandoned, "clerk", now=tomorrow)
    assert sessions.active_count(CTX, "alice", "clerk", now=tomorrow) == 1


def test_activation_count_checked_under_lock(bank, sessions, monkeypatch, now):
    held = []
    evaluate = sessions.evaluator.evaluate

    def tracking_evaluate(constraint, when, active_count=0):
        held.append(sessions._activation_lock.locked())
        return evaluate(constraint, when, active_count)

    monkeypatch.setattr(sessions.evaluator, "evaluate", tracking_evaluate)
    sessions.create_session(CTX, "alice", "pw-alice", now=now, roles=["clerk", "teller"])

    # The first call is the user's own login constraint; the rest are per-role
    assert held[0] is False
    assert held[1:] and all(held[1:])


def test_concurrent_sessions_respect_max_activations(bank, sessions, store, now):
    role = store.read_role(CTX, "clerk")
    role.constraint = Constraint(max_activations=1)
    store.update_role(CTX, role)

    workers = 8
    barrier = threading.Barrier(workers)
    created = []

    def login():
        barrier.wait()
        created.append(sessions.create_session(CTX, "alice", now=now, roles=["clerk"], trusted=True))

    threads = [threading.Thread(target=login) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(created) == workers
    assert sum(1 for s in created if s.role_names() == ["clerk"]) == 1
    assert sessions.active_count(CTX, "alice", "clerk") == 1
