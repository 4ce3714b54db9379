"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from datetime import datetime

import pytest

sys.path.append(os.path.join(os.getcwd(), "src"))

# Settings are read once at import, so these must be in place before rolegate is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from rolegate.access_control.assignments import AssignmentService  # noqa: E402
from rolegate.access_control.hierarchy import RoleHierarchy  # noqa: E402
from rolegate.access_control.permissions import PermissionService  # noqa: E402
from rolegate.access_control.rbac import RBACEngine  # noqa: E402
from rolegate.access_control.sessions import SessionManager  # noqa: E402
from rolegate.access_control.sod import SoDChecker  # noqa: E402
from rolegate.storage.memory import InMemoryPolicyStore  # noqa: E402


@pytest.fixture
def now() -> datetime:
    """A fixed Wednesday morning; nothing in the engine reads the clock."""
    return datetime(2024, 5, 15, 10, 0)


@pytest.fixture
def store():
    return InMemoryPolicyStore()


@pytest.fixture
def hierarchy(store):
    return RoleHierarchy(store)


@pytest.fixture
def admin_hierarchy(store):
    return RoleHierarchy(store, admin=True)


@pytest.fixture
def sod(store, hierarchy):
    return SoDChecker(store, hierarchy)


@pytest.fixture
def assignments(store, sod, hierarchy, admin_hierarchy, permissions):
    return AssignmentService(store, sod, hierarchy, admin_hierarchy, permissions)


@pytest.fixture
def sessions(store, hierarchy, admin_hierarchy, sod):
    return SessionManager(store, hierarchy, admin_hierarchy, sod)


@pytest.fixture
def engine(store, hierarchy, admin_hierarchy):
    return RBACEngine(store, hierarchy, admin_hierarchy)


@pytest.fixture
def permissions(store):
    return PermissionService(store)
