"""Document store backed by a relational database, via SQLAlchemy."""

from typing import Any, Dict, Generator, Iterable, Optional, Tuple
from contextlib import contextmanager
from datetime import datetime
import json
import logging

import dateutil.parser
from sqlalchemy import Column, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.orm.session import Session
from sqlalchemy.pool import StaticPool

from ..exceptions import DocumentExists, StoreError
from .documents import DocumentStore

logger = logging.getLogger(__name__)

Base = declarative_base()

_DATETIME = '$datetime'


class DBDocument(Base):  # type: ignore
    """One document; the body is JSON."""

    __tablename__ = 'clinic_documents'

    collection = Column(String(64), primary_key=True)
    doc_id = Column(String(64), primary_key=True)
    body = Column(Text, nullable=False)


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return {_DATETIME: obj.isoformat()}
    raise TypeError(f'Cannot store {type(obj).__name__} in a document')


def _object_hook(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATETIME in obj:
        return dateutil.parser.isoparse(obj[_DATETIME])
    return obj


def _dump(data: dict) -> str:
    return json.dumps(data, default=_default, sort_keys=True)


def _load(body: str) -> dict:
    loaded: dict = json.loads(body, object_hook=_object_hook)
    return loaded


def create_sql_engine(database_uri: str) -> Engine:
    """Create an engine; in-memory SQLite is shared across threads."""
    if database_uri in ('sqlite://', 'sqlite:///:memory:'):
        return create_engine(database_uri,
                             connect_args={'check_same_thread': False},
                             poolclass=StaticPool)
    if database_uri.startswith('sqlite'):
        return create_engine(database_uri,
                             connect_args={'check_same_thread': False})
    return create_engine(database_uri, pool_pre_ping=True)


class SQLDocumentStore(DocumentStore):
    """
    Persists documents in a single table.

    Filtering happens in Python after the collection is loaded, which is
    adequate for clinic-sized collections.
    """

    def __init__(self, engine: Engine) -> None:
        super(SQLDocumentStore, self).__init__()
        self.engine = engine
        self._sessionmaker = sessionmaker(bind=engine)

    @classmethod
    def from_uri(cls, database_uri: str,
                 create: bool = True) -> 'SQLDocumentStore':
        """Connect to ``database_uri``, creating the table if asked."""
        store = cls(create_sql_engine(database_uri))
        if create:
            store.create_all()
        return store

    def create_all(self) -> None:
        """Create the documents table, if it does not exist."""
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        """Drop the documents table."""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Context manager for database transaction."""
        session = self._sessionmaker()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error('Commit failed, rolling back: %s', str(e))
            session.rollback()
            raise StoreError(f'Database error: {e}') from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _read(self, collection: str, doc_id: str) -> Optional[dict]:
        with self.transaction() as session:
            row = session.get(DBDocument, (collection, doc_id))
            return _load(row.body) if row is not None else None

    def _write(self, collection: str, doc_id: str, data: dict) -> None:
        body = _dump(data)
        with self.transaction() as session:
            row = session.get(DBDocument, (collection, doc_id))
            if row is None:
                session.add(DBDocument(collection=collection, doc_id=doc_id,
                                       body=body))
            else:
                row.body = body

    def _insert(self, collection: str, doc_id: str, data: dict) -> None:
        # The primary key refuses a row written by another process meanwhile.
        try:
            with self.transaction() as session:
                session.add(DBDocument(collection=collection, doc_id=doc_id,
                                       body=_dump(data)))
        except StoreError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise DocumentExists(
                    f'Already exists: {collection}/{doc_id}'
                ) from e.__cause__
            raise

    def _scan(self, collection: str) -> Iterable[Tuple[str, dict]]:
        with self.transaction() as session:
            rows = session.query(DBDocument) \
                .filter(DBDocument.collection == collection) \
                .all()
            return [(row.doc_id, _load(row.body)) for row in rows]
