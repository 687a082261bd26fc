"""
Document store

Services talk to a small CRUD interface instead of a global collection.
MongoDocumentStore backs it with MongoDB when DATABASE_URL is set;
MemoryDocumentStore keeps everything in process and is what the tests use.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument

import config

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(document: dict, query: dict) -> bool:
    return all(document.get(key) == value for key, value in query.items())


class DocumentStore:
    def insert(self, collection: str, document: dict) -> dict:
        raise NotImplementedError

    def find(self, collection: str, query: Optional[dict] = None) -> List[dict]:
        raise NotImplementedError

    def update(self, collection: str, query: dict, fields: dict) -> Optional[dict]:
        raise NotImplementedError

    def delete(self, collection: str, query: dict) -> int:
        raise NotImplementedError

    def find_one(self, collection: str, query: dict) -> Optional[dict]:
        res = self.find(collection, query)
        return res[0] if res else None

    def count(self, collection: str) -> int:
        return len(self.find(collection))

    def create_document(self, collection: str, model: BaseModel) -> dict:
        """Insert a model, stamping created_at/updated_at."""
        document = model.model_dump()
        now = utcnow()
        document["created_at"] = now
        document["updated_at"] = now
        return self.insert(collection, document)

    def get_documents(self, collection: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
        res = self.find(collection, filter_dict or {})
        return res[:limit] if limit else res

    def update_document(self, collection: str, query: dict, fields: dict) -> Optional[dict]:
        fields = dict(fields, updated_at=utcnow())
        return self.update(collection, query, fields)


class MemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._collections = {}

    def insert(self, collection, document):
        stored = copy.deepcopy(document)
        self._collections.setdefault(collection, []).append(stored)
        return copy.deepcopy(stored)

    def find(self, collection, query=None):
        query = query or {}
        return [
            copy.deepcopy(doc)
            for doc in self._collections.get(collection, [])
            if _matches(doc, query)
        ]

    def update(self, collection, query, fields):
        for doc in self._collections.get(collection, []):
            if _matches(doc, query):
                doc.update(copy.deepcopy(fields))
                return copy.deepcopy(doc)
        return None

    def delete(self, collection, query):
        docs = self._collections.get(collection, [])
        kept = [doc for doc in docs if not _matches(doc, query)]
        self._collections[collection] = kept
        return len(docs) - len(kept)


class MongoDocumentStore(DocumentStore):
    def __init__(self, db):
        self.db = db

    def insert(self, collection, document):
        self.db[collection].insert_one(dict(document))
        return document

    def find(self, collection, query=None):
        return list(self.db[collection].find(query or {}, {"_id": 0}))

    def find_one(self, collection, query):
        return self.db[collection].find_one(query, {"_id": 0})

    def update(self, collection, query, fields):
        return self.db[collection].find_one_and_update(
            query,
            {"$set": fields},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, collection, query):
        return self.db[collection].delete_many(query).deleted_count

    def count(self, collection):
        return self.db[collection].count_documents({})


def create_store() -> DocumentStore:
    if config.DATABASE_URL:
        client = MongoClient(config.DATABASE_URL, tz_aware=True)
        logger.info("Using MongoDB database %s", config.DATABASE_NAME)
        return MongoDocumentStore(client[config.DATABASE_NAME])
    logger.warning("DATABASE_URL not set, using in-memory document store")
    return MemoryDocumentStore()
