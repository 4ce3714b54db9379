import pytest
from unittest.mock import patch, MagicMock

from rolegate.access_control.errors import ConflictError, StoreError
from rolegate.access_control.models import User
from rolegate.storage.models import Base
from rolegate.storage.sql_adapter import DatabaseConfig, SqlAlchemyAdapter
from rolegate.storage.sql_store import SqlPolicyStore


@pytest.fixture
def mock_engine():
    with patch("rolegate.storage.sql_adapter.create_engine") as mock:
        yield mock


def test_config_from_env():
    """Verify config loads correctly (mocking env vars)."""
    with patch.dict("os.environ", {
        "DATABASE_URL": "postgresql://rbac:pw@db:5432/policy",
        "DATABASE_POOL_SIZE": "10",
    }):
        config = DatabaseConfig()
        assert config.DATABASE_URL == "postgresql://rbac:pw@db:5432/policy"
        assert config.DATABASE_POOL_SIZE == 10
        assert not config.is_sqlite


def test_adapter_connect_pooled(mock_engine):
    """Verify adapter creates a pooled engine for server databases."""
    config = DatabaseConfig(DATABASE_URL="postgresql://rbac:pw@localhost:5432/policy")
    adapter = SqlAlchemyAdapter(config)
    adapter.connect()

    mock_engine.assert_called_once()
    args, kwargs = mock_engine.call_args
    assert args[0] == "postgresql://rbac:pw@localhost:5432/policy"
    assert kwargs["pool_size"] == config.DATABASE_POOL_SIZE


def test_adapter_connect_sqlite(mock_engine):
    adapter = SqlAlchemyAdapter(DatabaseConfig(DATABASE_URL="sqlite:///:memory:"))
    adapter.connect()

    _, kwargs = mock_engine.call_args
    assert "pool_size" not in kwargs
    assert kwargs["connect_args"] == {"check_same_thread": False}


def test_adapter_session_context(mock_engine):
    """Verify session context manager commits on success."""
    adapter = SqlAlchemyAdapter(DatabaseConfig())
    adapter.connect()

    mock_session = MagicMock()
    adapter._session_factory = MagicMock(return_value=mock_session)

    with adapter.get_session() as session:
        session.add(MagicMock())

    mock_session.commit.assert_called_once()
    mock_session.close.assert_called_once()


def test_adapter_session_rollback(mock_engine):
    """Verify session rolls back on error."""
    adapter = SqlAlchemyAdapter(DatabaseConfig())
    adapter.connect()

    mock_session = MagicMock()
    adapter._session_factory = MagicMock(return_value=mock_session)

    with pytest.raises(ValueError):
        with adapter.get_session():
            raise ValueError("Boom")

    mock_session.rollback.assert_called_once()
    mock_session.close.assert_called_once()


def test_health_check():
    adapter = SqlAlchemyAdapter(DatabaseConfig())
    assert not adapter.health_check()

    adapter.connect()
    assert adapter.health_check()
    adapter.close()
    assert not adapter.health_check()


@pytest.fixture
def sql_store():
    adapter = SqlAlchemyAdapter(DatabaseConfig())
    adapter.connect()
    adapter.create_schema()
    yield SqlPolicyStore(adapter)
    adapter.close()


def test_database_failure_becomes_store_error(sql_store):
    Base.metadata.drop_all(sql_store.adapter._engine)

    with pytest.raises(StoreError) as exc:
        sql_store.read_user("HOME", "alice")
    assert exc.value.operation == "read_user"
    assert exc.value.principal == "alice"


def test_disconnected_store_raises_store_error(sql_store):
    sql_store.adapter.close()
    with pytest.raises(StoreError):
        sql_store.search_roles("HOME")


def test_integrity_error_becomes_conflict(sql_store):
    with patch.object(sql_store.users, "get_row", return_value=None):
        sql_store.create_user("HOME", User(user_id="alice"))
        with pytest.raises(ConflictError):
            sql_store.create_user("HOME", User(user_id="alice"))
