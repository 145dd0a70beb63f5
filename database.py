"""
MongoDB access for the caretaker marketplace.

``db`` is the process-wide database handle (``None`` when DATABASE_URL or
DATABASE_NAME is not configured). ``EntityStore`` is the only thing the
booking core talks to: single-document reads and writes, no transactions.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import InvalidInputError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]
    logger.info("MongoDB client configured for database %s", DATABASE_NAME)
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database unavailable")

Document = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise InvalidInputError("Invalid id", {"id": str(id_str)})


def canonical_id(id_str: Union[str, ObjectId]) -> str:
    """The form references are stored in; ObjectId hex accepts either case."""
    return str(to_obj_id(id_str))


def sanitize(doc: Optional[Document]) -> Optional[Document]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    return d


def _as_dict(data: Union[BaseModel, Document]) -> Document:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


class EntityStore:
    """Per-document CRUD over a pymongo database.

    ``save`` replaces the whole stored document, so concurrent read-modify-write
    cycles on the same document are last-writer-wins.
    """

    def __init__(self, database: Database):
        self.db = database

    def find_by_id(self, collection: str, id_: Union[str, ObjectId]) -> Optional[Document]:
        return self.db[collection].find_one({"_id": to_obj_id(id_)})

    def find_one(self, collection: str, filter_dict: Document) -> Optional[Document]:
        return self.db[collection].find_one(filter_dict)

    def find(
        self,
        collection: str,
        filter_dict: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Document]:
        cursor = self.db[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def create(self, collection: str, data: Union[BaseModel, Document]) -> Document:
        doc = _as_dict(data)
        doc["created_at"] = doc["updated_at"] = now()
        res = self.db[collection].insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    def save(self, collection: str, doc: Document) -> Document:
        doc["updated_at"] = now()
        self.db[collection].replace_one({"_id": doc["_id"]}, doc)
        return doc

    def count(self, collection: str, filter_dict: Optional[Document] = None) -> int:
        return self.db[collection].count_documents(filter_dict or {})

    def delete_one(self, collection: str, doc: Document) -> None:
        self.db[collection].delete_one({"_id": doc["_id"]})


def get_store() -> EntityStore:
    """FastAPI dependency returning a store over the configured database."""
    if db is None:
        raise RuntimeError("Database not configured")
    return EntityStore(db)
