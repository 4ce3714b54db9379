import pytest
from datetime import date

from rolegate.access_control.errors import ConflictError, ErrorCode, NotFoundError
from rolegate.access_control.models import (
    AdminRole,
    Constraint,
    OrgUnit,
    OrgUnitKind,
    Permission,
    PermObj,
    Role,
    SDKind,
    SDSet,
    User,
    UserRole,
)
from rolegate.storage import DatabaseConfig, InMemoryPolicyStore, SqlAlchemyAdapter, SqlPolicyStore

CTX = "HOME"


@pytest.fixture(params=["memory", "sql"])
def policy_store(request):
    """Every contract test runs against both backends."""
    if request.param == "memory":
        yield InMemoryPolicyStore()
        return
    adapter = SqlAlchemyAdapter(DatabaseConfig(DATABASE_URL="sqlite:///:memory:"))
    adapter.connect()
    adapter.create_schema()
    yield SqlPolicyStore(adapter)
    adapter.close()


def test_user_round_trip(policy_store):
    user = User(
        user_id="alice",
        password_hash="$2b$04$hash",
        description="Accounts payable",
        properties={"team": "ap"},
        constraint=Constraint(timeout=30, day_mask="12345"),
        roles=[UserRole(user_id="alice", role_name="clerk", begin_date=date(2024, 1, 1))],
    )
    policy_store.create_user(CTX, user)

    fetched = policy_store.read_user(CTX, "alice")
    assert fetched.context_id == CTX
    assert fetched.properties == {"team": "ap"}
    assert fetched.constraint.timeout == 30
    assert fetched.roles[0].role_name == "clerk"
    assert fetched.roles[0].begin_date == date(2024, 1, 1)

    fetched.locked = True
    policy_store.update_user(CTX, fetched)
    assert policy_store.read_user(CTX, "alice").locked

    policy_store.delete_user(CTX, "alice")
    with pytest.raises(NotFoundError):
        policy_store.read_user(CTX, "alice")


def test_duplicate_user_conflicts(policy_store):
    policy_store.create_user(CTX, User(user_id="alice"))
    with pytest.raises(ConflictError):
        policy_store.create_user(CTX, User(user_id="alice"))


def test_returned_entities_are_not_aliased(policy_store):
    policy_store.create_user(CTX, User(user_id="alice"))
    user = policy_store.read_user(CTX, "alice")
    user.roles.append(UserRole(user_id="alice", role_name="clerk"))
    assert policy_store.read_user(CTX, "alice").roles == []


def test_contexts_are_isolated(policy_store):
    policy_store.create_user(CTX, User(user_id="alice"))
    policy_store.create_user("ACME", User(user_id="alice", description="other tenant"))

    assert policy_store.read_user("ACME", "alice").description == "other tenant"
    assert [u.user_id for u in policy_store.search_users("EMPTY")] == []


def test_search_users_by_prefix(policy_store):
    for user_id in ("bob", "alice", "albert"):
        policy_store.create_user(CTX, User(user_id=user_id))
    assert [u.user_id for u in policy_store.search_users(CTX, "al")] == ["albert", "alice"]


def test_roles_and_admin_roles_are_separate(policy_store):
    policy_store.create_role(CTX, Role(name="clerk"))
    policy_store.create_role(CTX, AdminRole(name="clerk", os_p={"finance"}), admin=True)

    assert type(policy_store.read_role(CTX, "clerk")) is Role
    admin = policy_store.read_role(CTX, "clerk", admin=True)
    assert isinstance(admin, AdminRole)
    assert admin.os_p == {"finance"}


def test_relationships(policy_store):
    policy_store.create_role(CTX, Role(name="manager"))
    policy_store.create_role(CTX, Role(name="clerk"))

    policy_store.add_relationship(CTX, "clerk", "manager")
    assert policy_store.read_role(CTX, "clerk").parents == {"manager"}

    with pytest.raises(ConflictError):
        policy_store.add_relationship(CTX, "clerk", "manager")
    with pytest.raises(NotFoundError):
        policy_store.add_relationship(CTX, "clerk", "ghost")

    policy_store.remove_relationship(CTX, "clerk", "manager")
    assert policy_store.read_role(CTX, "clerk").parents == set()
    with pytest.raises(NotFoundError):
        policy_store.remove_relationship(CTX, "clerk", "manager")


def test_delete_role_strips_parent_edges(policy_store):
    policy_store.create_role(CTX, Role(name="manager"))
    policy_store.create_role(CTX, Role(name="clerk", parents={"manager"}))

    policy_store.delete_role(CTX, "manager")
    assert policy_store.read_role(CTX, "clerk").parents == set()
    assert [r.name for r in policy_store.search_roles(CTX)] == ["clerk"]


def test_org_units(policy_store):
    policy_store.create_org_unit(CTX, OrgUnit(name="finance", kind=OrgUnitKind.PERM))
    assert policy_store.org_unit_exists(CTX, "finance", OrgUnitKind.PERM)
    assert not policy_store.org_unit_exists(CTX, "finance", OrgUnitKind.USER)


def test_permissions_and_grants(policy_store):
    policy_store.create_perm_obj(CTX, PermObj(obj_name="Invoice", ou="finance"))
    policy_store.create_permission(CTX, Permission(obj_name="Invoice", op_name="approve"))
    policy_store.create_permission(CTX, Permission(obj_name="Invoice", op_name="read"))
    perm = Permission(obj_name="Invoice", op_name="approve")

    policy_store.grant_role(CTX, perm, "manager")
    policy_store.grant_user(CTX, perm, "alice")
    stored = policy_store.read_permission(CTX, "Invoice", "approve")
    assert stored.roles == {"manager"}
    assert stored.users == {"alice"}
    assert [p.op_name for p in policy_store.find_role_permissions(CTX, "manager")] == ["approve"]
    assert [p.op_name for p in policy_store.find_user_permissions(CTX, "alice")] == ["approve"]

    with pytest.raises(ConflictError) as exc:
        policy_store.grant_role(CTX, perm, "manager")
    assert exc.value.code == ErrorCode.PERM_GRANT_EXISTS

    policy_store.revoke_role(CTX, perm, "manager")
    with pytest.raises(NotFoundError) as exc:
        policy_store.revoke_role(CTX, perm, "manager")
    assert exc.value.code == ErrorCode.PERM_GRANT_NOT_EXIST


def test_permission_requires_object(policy_store):
    with pytest.raises(NotFoundError):
        policy_store.create_permission(CTX, Permission(obj_name="Ledger", op_name="close"))


def test_admin_permissions_are_separate(policy_store):
    policy_store.create_perm_obj(CTX, PermObj(obj_name="Invoice"))
    policy_store.create_perm_obj(CTX, PermObj(obj_name="Invoice", admin=True))
    policy_store.create_permission(CTX, Permission(obj_name="Invoice", op_name="approve"))
    policy_store.create_permission(CTX, Permission(obj_name="Invoice", op_name="approve", admin=True))

    assert len(policy_store.search_permissions(CTX, "Inv")) == 1
    assert policy_store.read_permission(CTX, "Invoice", "approve", admin=True).admin


def test_delete_object_removes_operations(policy_store):
    policy_store.create_perm_obj(CTX, PermObj(obj_name="Invoice"))
    policy_store.create_permission(CTX, Permission(obj_name="Invoice", op_name="approve"))

    policy_store.delete_perm_obj(CTX, "Invoice")
    with pytest.raises(NotFoundError):
        policy_store.read_permission(CTX, "Invoice", "approve")


def test_sd_sets(policy_store):
    policy_store.create_sd_set(CTX, SDSet(name="procure", kind=SDKind.SSD, members={"a", "b"}))
    policy_store.create_sd_set(CTX, SDSet(name="procure", kind=SDKind.DSD, members={"c", "d"}, cardinality=2))

    assert policy_store.read_sd_set(CTX, "procure", SDKind.DSD).members == {"c", "d"}
    assert policy_store.add_sd_member(CTX, "procure", SDKind.SSD, "c").members == {"a", "b", "c"}
    assert policy_store.remove_sd_member(CTX, "procure", SDKind.SSD, "a").members == {"b", "c"}
    with pytest.raises(ConflictError):
        policy_store.add_sd_member(CTX, "procure", SDKind.SSD, "b")
    with pytest.raises(NotFoundError):
        policy_store.remove_sd_member(CTX, "procure", SDKind.SSD, "a")

    policy_store.delete_sd_set(CTX, "procure", SDKind.SSD)
    assert [s.kind for s in policy_store.list_sd_sets(CTX, SDKind.DSD)] == [SDKind.DSD]
    assert policy_store.list_sd_sets(CTX, SDKind.SSD) == []
