from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager
import logging

from pydantic_settings import BaseSettings
from .base import StorageAdapter
from .models import Base
from . import models_access_control  # noqa: F401  (registers the policy tables)

logger = logging.getLogger(__name__)

class DatabaseConfig(BaseSettings):
    """Configuration for the SQL policy store."""
    DATABASE_URL: str = "sqlite:///:memory:"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

class SqlAlchemyAdapter(StorageAdapter):
    """
    SQLAlchemy engine and transactional session scope for the policy tables.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._engine = None
        self._session_factory = None

    def connect(self) -> None:
        if self._engine:
            return

        try:
            logger.info("Connecting policy store database")

            if self.config.is_sqlite:
                # A single shared connection keeps in-memory databases alive across sessions
                self._engine = create_engine(
                    self.config.DATABASE_URL,
                    echo=self.config.DATABASE_ECHO,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                self._engine = create_engine(
                    self.config.DATABASE_URL,
                    echo=self.config.DATABASE_ECHO,
                    pool_size=self.config.DATABASE_POOL_SIZE,
                    max_overflow=self.config.DATABASE_MAX_OVERFLOW,
                    pool_pre_ping=True,
                )

            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
            logger.info("Policy store connection pool established.")

        except Exception as e:
            logger.error(f"Failed to connect policy store database: {e}")
            raise

    def create_schema(self) -> None:
        """Create the policy tables if they are missing."""
        if not self._engine:
            raise ConnectionError("Database is not connected. Call connect() first.")
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Policy store connection pool closed.")

    def health_check(self) -> bool:
        if not self._engine:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("policy store unhealthy")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.
        """
        if not self._session_factory:
            raise ConnectionError("Database is not connected. Call connect() first.")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
