"""SQL-backed versioned document store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StoreAccessError, VersionConflict
from .models import StoredDocument, StoreEntry

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DocumentModel(Base):
    """A stored document and its revision counter."""

    __tablename__ = "documents"

    path = Column(String, primary_key=True)
    content = Column(Text, nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    message = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine."""
    if not connection_string:
        return None

    logger.info("Initializing database connection: %s", connection_string)
    if connection_string.startswith("sqlite") and ":memory:" in connection_string:
        # One shared connection so every thread sees the same in-memory database.
        engine = create_engine(
            connection_string,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(connection_string)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine)


class DatabaseStore:
    """Versioned store over a ``documents`` table; versions are revision numbers."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        public_base_url: Optional[str] = None,
    ) -> None:
        self.session_factory = session_factory
        self.public_base_url = public_base_url

    def get_with_version(self, path: str) -> StoredDocument:
        try:
            with self.session_factory() as session:
                row = session.execute(
                    select(DocumentModel).where(DocumentModel.path == path)
                ).scalar_one_or_none()
                if row is None:
                    return StoredDocument(content=None, version=None)
                return StoredDocument(content=row.content, version=str(row.revision))
        except SQLAlchemyError as exc:
            raise StoreAccessError(f"Failed to read {path}: {exc}") from exc

    def put_if_version(
        self,
        path: str,
        content: str,
        expected_version: Optional[str],
        message: str,
    ) -> str:
        if expected_version is None:
            return self._create(path, content, message)

        try:
            expected = int(expected_version)
        except ValueError as exc:
            raise VersionConflict(path, expected_version) from exc

        with self.session_factory() as session:
            try:
                result = session.execute(
                    update(DocumentModel)
                    .where(DocumentModel.path == path, DocumentModel.revision == expected)
                    .values(
                        content=content,
                        revision=expected + 1,
                        message=message,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise VersionConflict(path, expected_version)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreAccessError(f"Failed to write {path}: {exc}") from exc
        logger.info("Updated %s (revision %d)", path, expected + 1)
        return str(expected + 1)

    def _create(self, path: str, content: str, message: str) -> str:
        with self.session_factory() as session:
            session.add(
                DocumentModel(
                    path=path,
                    content=content,
                    revision=1,
                    message=message,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise VersionConflict(path, None) from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreAccessError(f"Failed to create {path}: {exc}") from exc
        logger.info("Created %s (revision 1)", path)
        return "1"

    def list_directory(self, path: str) -> List[StoreEntry]:
        prefix = path.strip("/") + "/" if path.strip("/") else ""
        try:
            with self.session_factory() as session:
                paths = session.execute(
                    select(DocumentModel.path)
                    .where(DocumentModel.path.startswith(prefix, autoescape=True))
                    .order_by(DocumentModel.path)
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreAccessError(f"Failed to list {path}: {exc}") from exc
        entries = []
        for stored_path in paths:
            name = stored_path[len(prefix) :]
            if name and "/" not in name:
                entries.append(StoreEntry(name=name, path=stored_path))
        return entries

    def public_url(self, path: str) -> Optional[str]:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url.rstrip('/')}/{path.lstrip('/')}"
