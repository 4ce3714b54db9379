import pytest

from rolegate.access_control.errors import (
    BulkOperationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    StoreError,
    ValidationError,
)
from rolegate.access_control.models import OrgUnit, OrgUnitKind, Permission, PermObj, Role, User

CTX = "HOME"


@pytest.fixture
def catalog(permissions, store):
    store.create_org_unit(CTX, OrgUnit(name="finance", kind=OrgUnitKind.PERM))
    store.create_role(CTX, Role(name="clerk"))
    store.create_role(CTX, Role(name="clerk"), admin=True)
    store.create_user(CTX, User(user_id="alice"))
    permissions.add_object(CTX, PermObj(obj_name="Invoice", ou="finance"))
    for op in ("read", "approve", "pay"):
        permissions.add(CTX, Permission(obj_name="Invoice", op_name=op))
    return permissions


def test_object_requires_perm_org_unit(permissions, store):
    store.create_org_unit(CTX, OrgUnit(name="people", kind=OrgUnitKind.USER))

    with pytest.raises(ValidationError) as exc:
        permissions.add_object(CTX, PermObj(obj_name="Invoice", ou="people"))
    assert exc.value.code == ErrorCode.PERM_OU_INVALID

    with pytest.raises(ValidationError) as exc:
        permissions.add_object(CTX, PermObj(obj_name="Invoice"))
    assert exc.value.code == ErrorCode.PERM_OU_INVALID


def test_object_crud(catalog):
    catalog.update_object(CTX, PermObj(obj_name="Invoice", description="Supplier invoices"))
    assert catalog.read_object(CTX, "Invoice").description == "Supplier invoices"
    assert [o.obj_name for o in catalog.search_objects(CTX, "Inv")] == ["Invoice"]

    catalog.delete_object(CTX, "Invoice")
    with pytest.raises(NotFoundError):
        catalog.read_object(CTX, "Invoice")
    # Operations go with their object
    assert catalog.search(CTX, "Invoice") == []


def test_operation_crud(catalog):
    assert [p.op_name for p in catalog.search(CTX, "Invoice", "")] == ["approve", "pay", "read"]
    assert [p.op_name for p in catalog.search(CTX, "Invoice", "p")] == ["pay"]

    catalog.update(CTX, Permission(obj_name="Invoice", op_name="pay", description="Release payment"))
    assert catalog.read(CTX, Permission(obj_name="Invoice", op_name="pay")).description == "Release payment"

    catalog.delete(CTX, Permission(obj_name="Invoice", op_name="pay"))
    with pytest.raises(NotFoundError):
        catalog.read(CTX, Permission(obj_name="Invoice", op_name="pay"))


def test_operation_on_missing_object(catalog):
    with pytest.raises(NotFoundError):
        catalog.add(CTX, Permission(obj_name="Ledger", op_name="close"))


def test_operation_with_unknown_grantee(catalog):
    with pytest.raises(NotFoundError):
        catalog.add(CTX, Permission(obj_name="Invoice", op_name="void", roles={"ghost"}))


def test_grant_twice_conflicts(catalog):
    perm = Permission(obj_name="Invoice", op_name="read")
    catalog.grant(CTX, perm, "clerk")

    with pytest.raises(ConflictError) as exc:
        catalog.grant(CTX, perm, "clerk")
    assert exc.value.code == ErrorCode.PERM_GRANT_EXISTS
    assert [p.op_name for p in catalog.search_by_role(CTX, "clerk")] == ["read"]


def test_revoke_missing_grant(catalog):
    with pytest.raises(NotFoundError) as exc:
        catalog.revoke(CTX, Permission(obj_name="Invoice", op_name="read"), "clerk")
    assert exc.value.code == ErrorCode.PERM_GRANT_NOT_EXIST


def test_grant_to_unknown_role_or_user(catalog):
    perm = Permission(obj_name="Invoice", op_name="read")
    with pytest.raises(NotFoundError):
        catalog.grant(CTX, perm, "ghost")
    with pytest.raises(NotFoundError):
        catalog.grant_user(CTX, perm, "nobody")


def test_user_grants(catalog):
    perm = Permission(obj_name="Invoice", op_name="approve")
    catalog.grant_user(CTX, perm, "alice")
    assert [p.op_name for p in catalog.search_by_user(CTX, "alice")] == ["approve"]

    catalog.revoke_user(CTX, perm, "alice")
    assert catalog.search_by_user(CTX, "alice") == []


def test_remove_role_revokes_everything(catalog):
    for op in ("read", "approve"):
        catalog.grant(CTX, Permission(obj_name="Invoice", op_name=op), "clerk")

    assert catalog.remove_role(CTX, "clerk") == 2
    assert catalog.search_by_role(CTX, "clerk") == []


def test_remove_admin_role_leaves_regular_grants(catalog, store):
    store.create_perm_obj(CTX, PermObj(obj_name="Invoice", ou="finance", admin=True))
    admin_perm = Permission(obj_name="Invoice", op_name="assign", admin=True)
    catalog.add(CTX, admin_perm)
    catalog.grant(CTX, admin_perm, "clerk")
    catalog.grant(CTX, Permission(obj_name="Invoice", op_name="read"), "clerk")

    assert catalog.remove_admin_role(CTX, "clerk") == 1
    assert catalog.search_by_role(CTX, "clerk", admin=True) == []
    assert [p.op_name for p in catalog.search_by_role(CTX, "clerk")] == ["read"]


def test_remove_user_continues_past_failures(catalog, store, monkeypatch):
    for op in ("read", "approve", "pay"):
        catalog.grant_user(CTX, Permission(obj_name="Invoice", op_name=op), "alice")

    real_revoke = store.revoke_user

    def flaky_revoke(context_id, permission, user_id):
        if permission.op_name == "approve":
            raise StoreError("revoke_user", user_id)
        return real_revoke(context_id, permission, user_id)

    monkeypatch.setattr(store, "revoke_user", flaky_revoke)

    with pytest.raises(BulkOperationError) as exc:
        catalog.remove_user(CTX, "alice")
    assert exc.value.code == ErrorCode.PERM_BULK_USER_REVOKE_FAILED
    assert len(exc.value.failures) == 1
    assert isinstance(exc.value.failures[0], StoreError)
    # The other two were still revoked
    assert [p.op_name for p in catalog.search_by_user(CTX, "alice")] == ["approve"]


def test_remove_user_with_no_grants(catalog):
    assert catalog.remove_user(CTX, "alice") == 0
