"""
Document store interface, and an in-memory implementation.

Records are kept as plain dicts ("documents") grouped by collection and keyed
by a string ID. The store supports point reads, inserts, upserts, partial
updates, equality/range queries on top-level fields, and change listeners.

Writes may include :data:`SERVER_TIMESTAMP` as a value; the store replaces it
with its own current time (UTC) when the document is written.

:meth:`DocumentStore.create` refuses to overwrite an existing ID, and
:meth:`DocumentStore.atomic` holds the store lock across a check and the write
that depends on it.

Listeners registered with :meth:`DocumentStore.subscribe` receive the
current result set immediately, and a fresh one after every write to the
collection. The returned callable ends the subscription; it is safe to call
more than once, and from inside a listener callback.
"""

from typing import Any, Callable, Dict, Generator, Iterable, List, \
    NamedTuple, Optional, Tuple
from contextlib import contextmanager
from datetime import datetime
import copy
import logging
import operator
import threading
import uuid

from pytz import UTC

from ..exceptions import DocumentExists, NoSuchDocument, StoreError

logger = logging.getLogger(__name__)


class _ServerTimestamp(object):
    """Placeholder for the store's write time."""

    def __repr__(self) -> str:
        return 'SERVER_TIMESTAMP'


SERVER_TIMESTAMP = _ServerTimestamp()

Where = Tuple[str, str, Any]
"""A filter clause: ``(field, op, value)``."""

Unsubscribe = Callable[[], None]


class Document(NamedTuple):
    """A document and its ID, as returned by queries."""

    doc_id: str
    data: Dict[str, Any]


def _in(value: Any, options: Any) -> bool:
    return value in options


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    'in': _in,
}


def matches(data: Dict[str, Any], where: Iterable[Where]) -> bool:
    """
    Evaluate filter clauses against a document.

    A document that lacks a filtered field never matches. Range comparisons
    between incomparable types do not match, rather than fail.
    """
    for field, op, value in where:
        if field not in data:
            return False
        try:
            if not OPERATORS[op](data[field], value):
                return False
        except TypeError:
            return False
    return True


def _validate(where: Iterable[Where]) -> List[Where]:
    clauses = list(where)
    for clause in clauses:
        if len(clause) != 3 or clause[1] not in OPERATORS:
            raise ValueError(f'Invalid filter clause: {clause!r}')
    return clauses


class _Listener(object):
    def __init__(self, collection: str, where: List[Where],
                 on_data: Callable[[List[Document]], None],
                 on_error: Optional[Callable[[Exception], None]]) -> None:
        self.collection = collection
        self.where = where
        self.on_data = on_data
        self.on_error = on_error
        self.active = True


class DocumentStore(object):
    """
    Base class for document stores.

    Subclasses provide raw storage by implementing :meth:`_read`,
    :meth:`_write`, and :meth:`_scan`; this class handles timestamps,
    merging, filtering, and listeners.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._listeners: List[_Listener] = []

    # Storage primitives.

    def _read(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError('Implemented by subclasses')

    def _write(self, collection: str, doc_id: str, data: dict) -> None:
        raise NotImplementedError('Implemented by subclasses')

    def _scan(self, collection: str) -> Iterable[Tuple[str, dict]]:
        raise NotImplementedError('Implemented by subclasses')

    def _insert(self, collection: str, doc_id: str, data: dict) -> None:
        """Write a document that is known not to exist yet."""
        self._write(collection, doc_id, data)

    def now(self) -> datetime:
        """Current time, used to resolve :data:`SERVER_TIMESTAMP`."""
        return datetime.now(tz=UTC)

    # Public API.

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a document by ID, or ``None`` if it does not exist."""
        with self._lock:
            data = self._read(collection, doc_id)
        return copy.deepcopy(data) if data is not None else None

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert a document with a new ID, and return the ID."""
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._write(collection, doc_id, self._resolve(data))
        logger.debug('Added %s/%s', collection, doc_id)
        self._notify(collection)
        return doc_id

    def create(self, collection: str, doc_id: str,
               data: Dict[str, Any]) -> None:
        """
        Write a new document under ``doc_id``.

        Raises
        ------
        :class:`DocumentExists`
            Raised if a document with that ID already exists.

        """
        with self._lock:
            if self._read(collection, doc_id) is not None:
                raise DocumentExists(f'Already exists: {collection}/{doc_id}')
            self._insert(collection, doc_id, self._resolve(data))
        logger.debug('Created %s/%s', collection, doc_id)
        self._notify(collection)

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        """
        Hold the store's lock for a read-then-write sequence.

        Reads and writes made by the same thread inside the block are not
        interleaved with those of other threads using this store.
        """
        with self._lock:
            yield

    def set(self, collection: str, doc_id: str, data: Dict[str, Any],
            merge: bool = False) -> None:
        """
        Create or overwrite a document.

        If ``merge`` is ``True`` and the document exists, only the fields in
        ``data`` are replaced.
        """
        with self._lock:
            resolved = self._resolve(data)
            if merge:
                current = self._read(collection, doc_id) or {}
                current.update(resolved)
                resolved = current
            self._write(collection, doc_id, resolved)
        logger.debug('Set %s/%s (merge=%s)', collection, doc_id, merge)
        self._notify(collection)

    def update(self, collection: str, doc_id: str,
               changes: Dict[str, Any]) -> None:
        """
        Update fields of an existing document.

        Raises
        ------
        :class:`NoSuchDocument`
            Raised if the document does not exist.

        """
        with self._lock:
            current = self._read(collection, doc_id)
            if current is None:
                raise NoSuchDocument(f'No such document: {collection}/{doc_id}')
            current.update(self._resolve(changes))
            self._write(collection, doc_id, current)
        logger.debug('Updated %s/%s', collection, doc_id)
        self._notify(collection)

    def query(self, collection: str, *where: Where) -> List[Document]:
        """
        Get documents matching all of the filter clauses.

        The order of the result is not defined.
        """
        clauses = _validate(where)
        with self._lock:
            return [
                Document(doc_id, copy.deepcopy(data))
                for doc_id, data in self._scan(collection)
                if matches(data, clauses)
            ]

    def subscribe(self, collection: str, where: Iterable[Where],
                  on_data: Callable[[List[Document]], None],
                  on_error: Optional[Callable[[Exception], None]] = None) \
            -> Unsubscribe:
        """
        Listen for changes to the result of a query.

        Parameters
        ----------
        collection : str
        where : iterable
            Filter clauses, as for :meth:`query`.
        on_data : callable
            Called with the full result set, now and after each change.
        on_error : callable
            Called with the exception if the query fails. If not provided,
            failures are logged.

        Returns
        -------
        callable
            Ends the subscription.

        """
        listener = _Listener(collection, _validate(where), on_data, on_error)
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listener.active = False
                if listener in self._listeners:
                    self._listeners.remove(listener)

        self._deliver(listener)
        return unsubscribe

    # Helpers.

    def _resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = self.now()
        return {key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
                for key, value in data.items()}

    def _notify(self, collection: str) -> None:
        with self._lock:
            listeners = [listener for listener in self._listeners
                         if listener.collection == collection]
        for listener in listeners:
            self._deliver(listener)

    def _deliver(self, listener: _Listener) -> None:
        if not listener.active:
            return
        try:
            result = self.query(listener.collection, *listener.where)
        except StoreError as e:
            if listener.on_error is None:
                logger.error('Listener query on %s failed: %s',
                             listener.collection, e)
            else:
                listener.on_error(e)
            return
        if listener.active:
            listener.on_data(result)


class InMemoryDocumentStore(DocumentStore):
    """Keeps documents in a dict. Suitable for tests and development."""

    def __init__(self) -> None:
        super(InMemoryDocumentStore, self).__init__()
        self._collections: Dict[str, Dict[str, dict]] = {}

    def _read(self, collection: str, doc_id: str) -> Optional[dict]:
        data = self._collections.get(collection, {}).get(doc_id)
        return dict(data) if data is not None else None

    def _write(self, collection: str, doc_id: str, data: dict) -> None:
        self._collections.setdefault(collection, {})[doc_id] = dict(data)

    def _scan(self, collection: str) -> Iterable[Tuple[str, dict]]:
        return list(self._collections.get(collection, {}).items())
