from abc import ABC, abstractmethod
import copy
import logging
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Schemaless per-collection document storage keyed by opaque string ids.

    Documents come back as plain dicts with the identifier under ``id``.
    """

    @abstractmethod
    def insert(self, collection: str, data: dict) -> str:
        ...

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def find(self, collection: str, filters: dict = None, order_by: str = None,
             descending: bool = False, limit: int = None) -> List[dict]:
        ...

    def find_one(self, collection: str, filters: dict) -> Optional[dict]:
        found = self.find(collection, filters, limit=1)
        return found[0] if found else None

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: dict) -> bool:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def insert_if_absent(self, collection: str, key: dict, data: dict) -> Tuple[dict, bool]:
        """Atomically insert ``key`` + ``data`` unless a document matching ``key`` exists.

        Returns the stored document and whether this call created it.
        """
        ...

    @abstractmethod
    def find_one_and_set(self, collection: str, key: dict, changes: dict) -> Optional[dict]:
        """Set ``changes`` on the first document matching ``key`` and return it updated."""
        ...


def _object_id(doc_id: str) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    if not doc_id or not ObjectId.is_valid(doc_id):
        return None
    return ObjectId(doc_id)


def _serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class MongoDocumentStore(DocumentStore):
    def __init__(self, db):
        self.db = db

    def insert(self, collection, data):
        try:
            inserted_id = self.db[collection].insert_one(dict(data)).inserted_id
        except PyMongoError as e:
            logger.error("insert into %s failed: %s", collection, e)
            raise UpstreamUnavailable() from e
        return str(inserted_id)

    def get(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return None
        try:
            return _serialize(self.db[collection].find_one({"_id": oid}))
        except PyMongoError as e:
            logger.error("get %s/%s failed: %s", collection, doc_id, e)
            raise UpstreamUnavailable() from e

    def find(self, collection, filters=None, order_by=None, descending=False, limit=None):
        try:
            cursor = self.db[collection].find(filters or {})
            if order_by:
                cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [_serialize(doc) for doc in cursor]
        except PyMongoError as e:
            logger.error("query on %s failed: %s", collection, e)
            raise UpstreamUnavailable() from e

    def update(self, collection, doc_id, changes):
        oid = _object_id(doc_id)
        if oid is None:
            return False
        try:
            result = self.db[collection].update_one({"_id": oid}, {"$set": dict(changes)})
        except PyMongoError as e:
            logger.error("update %s/%s failed: %s", collection, doc_id, e)
            raise UpstreamUnavailable() from e
        return result.matched_count > 0

    def delete(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return False
        try:
            result = self.db[collection].delete_one({"_id": oid})
        except PyMongoError as e:
            logger.error("delete %s/%s failed: %s", collection, doc_id, e)
            raise UpstreamUnavailable() from e
        return result.deleted_count > 0

    def insert_if_absent(self, collection, key, data):
        coll = self.db[collection]
        try:
            try:
                on_insert = {k: v for k, v in data.items() if k not in key}
                result = coll.update_one(key, {"$setOnInsert": on_insert}, upsert=True)
                created = result.upserted_id is not None
            except DuplicateKeyError:
                # A concurrent upsert on the same unique key won the race.
                created = False
            doc = coll.find_one(key)
        except PyMongoError as e:
            logger.error("upsert into %s failed: %s", collection, e)
            raise UpstreamUnavailable() from e
        return _serialize(doc), created

    def find_one_and_set(self, collection, key, changes):
        try:
            doc = self.db[collection].find_one_and_update(
                key, {"$set": dict(changes)}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            logger.error("update on %s failed: %s", collection, e)
            raise UpstreamUnavailable() from e
        return _serialize(doc)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store for tests and local runs; every operation runs under one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._collections: Dict[str, Dict[str, dict]] = {}

    def _coll(self, name):
        return self._collections.setdefault(name, {})

    @staticmethod
    def _out(doc_id, doc):
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    @staticmethod
    def _matches(doc, filters):
        return all(doc.get(k) == v for k, v in (filters or {}).items())

    def insert(self, collection, data):
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._coll(collection)[doc_id] = copy.deepcopy(dict(data))
        return doc_id

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._coll(collection).get(doc_id)
            return self._out(doc_id, doc) if doc is not None else None

    def find(self, collection, filters=None, order_by=None, descending=False, limit=None):
        with self._lock:
            docs = [self._out(doc_id, doc) for doc_id, doc in self._coll(collection).items()
                    if self._matches(doc, filters)]
        if order_by:
            docs.sort(key=lambda d: d.get(order_by), reverse=descending)
        if limit:
            docs = docs[:limit]
        return docs

    def update(self, collection, doc_id, changes):
        with self._lock:
            doc = self._coll(collection).get(doc_id)
            if doc is None:
                return False
            doc.update(copy.deepcopy(dict(changes)))
            return True

    def delete(self, collection, doc_id):
        with self._lock:
            return self._coll(collection).pop(doc_id, None) is not None

    def insert_if_absent(self, collection, key, data):
        with self._lock:
            for doc_id, doc in self._coll(collection).items():
                if self._matches(doc, key):
                    return self._out(doc_id, doc), False
            doc_id = uuid.uuid4().hex
            doc = copy.deepcopy({**dict(data), **dict(key)})
            self._coll(collection)[doc_id] = doc
            return self._out(doc_id, doc), True

    def find_one_and_set(self, collection, key, changes):
        with self._lock:
            for doc_id, doc in self._coll(collection).items():
                if self._matches(doc, key):
                    doc.update(copy.deepcopy(dict(changes)))
                    return self._out(doc_id, doc)
        return None
