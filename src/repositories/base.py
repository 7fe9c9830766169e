"""
Generic Repository Base Class
DRY foundation for async CRUD operations on MongoDB collections.
"""
from typing import Generic, TypeVar, Type, Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from bson import ObjectId
import datetime as dt

from ..models.base import MongoBaseModel
from ..utils.observability import logger

# Generic type for domain models
T = TypeVar("T", bound=MongoBaseModel)


def to_object_id(document_id: str) -> Optional[ObjectId]:
    """Parse a string id, returning None for anything that is not an ObjectId."""
    if isinstance(document_id, ObjectId):
        return document_id
    if not document_id or not ObjectId.is_valid(document_id):
        return None
    return ObjectId(document_id)


class BaseRepository(Generic[T]):
    """
    Generic async repository for MongoDB collections.
    Provides type-safe CRUD operations for domain models.

    Usage:
        class BoardRepository(BaseRepository[Board]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "boards", Board)
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        collection_name: str,
        model_class: Type[T]
    ):
        """
        Initialize repository with database connection and model type.

        Args:
            database: Motor database instance
            collection_name: MongoDB collection name
            model_class: Pydantic model class for type safety
        """
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.model_class = model_class
        self.collection_name = collection_name

    def _to_document(self, document: T) -> Dict[str, Any]:
        return document.model_dump(by_alias=True, exclude={"id"})

    async def create(self, document: T) -> T:
        """
        Insert a new document into the collection.

        Args:
            document: Domain model instance to persist

        Returns:
            The created document with `_id` populated

        Raises:
            pymongo.errors.DuplicateKeyError: If unique constraint violated
        """
        now = dt.datetime.now(dt.UTC)
        document.created_at = now
        document.updated_at = now

        result = await self.collection.insert_one(self._to_document(document))

        logger.bind(document_id=str(result.inserted_id)).debug(
            f"Created document in {self.collection_name}"
        )

        document.id = str(result.inserted_id)
        return document

    async def find_by_id(self, document_id: str) -> Optional[T]:
        """
        Retrieve a document by its MongoDB ObjectId.

        Args:
            document_id: String representation of ObjectId

        Returns:
            Domain model instance or None if not found (or the id is malformed)
        """
        object_id = to_object_id(document_id)
        if object_id is None:
            return None

        doc = await self.collection.find_one({"_id": object_id})
        return self._to_model(doc)

    async def find_one(self, filter_dict: Dict[str, Any]) -> Optional[T]:
        """
        Retrieve the first document matching the filter.

        Args:
            filter_dict: MongoDB query filter

        Returns:
            Domain model instance or None if not found
        """
        doc = await self.collection.find_one(filter_dict)
        return self._to_model(doc)

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        limit: int = 100,
        skip: int = 0,
        sort: Optional[List[tuple]] = None
    ) -> List[T]:
        """
        Retrieve multiple documents matching the filter.

        Args:
            filter_dict: MongoDB query filter
            limit: Maximum number of documents to return
            skip: Number of documents to skip (pagination)
            sort: List of (field, direction) tuples for sorting

        Returns:
            List of domain model instances
        """
        cursor = self.collection.find(filter_dict)

        if sort:
            cursor = cursor.sort(sort)

        cursor = cursor.skip(skip).limit(limit)
        docs = await cursor.to_list(length=limit)

        return [self._to_model(doc) for doc in docs]

    async def update_fields(self, document_id: str, fields: Dict[str, Any]) -> bool:
        """
        Unconditionally $set the given fields.

        Returns:
            True if a document matched
        """
        object_id = to_object_id(document_id)
        if object_id is None:
            return False

        fields = {**fields, "updated_at": dt.datetime.now(dt.UTC)}
        result = await self.collection.update_one({"_id": object_id}, {"$set": fields})
        return result.matched_count > 0

    async def count(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """
        Count documents matching the filter.

        Args:
            filter_dict: MongoDB query filter (None for all documents)

        Returns:
            Number of matching documents
        """
        filter_dict = filter_dict or {}
        return await self.collection.count_documents(filter_dict)

    async def count_by(self, field: str, filter_dict: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        """Group-by count on a single field."""
        pipeline = []
        if filter_dict:
            pipeline.append({"$match": filter_dict})
        pipeline.append({"$group": {"_id": f"${field}", "count": {"$sum": 1}}})

        cursor = self.collection.aggregate(pipeline)
        rows = await cursor.to_list(length=None)
        return {str(row["_id"]): row["count"] for row in rows}

    async def bulk_create(self, documents: List[T]) -> List[T]:
        """
        Insert multiple documents in a single operation.

        Args:
            documents: List of domain model instances

        Returns:
            List of created documents with `_id` populated
        """
        if not documents:
            return []

        now = dt.datetime.now(dt.UTC)

        doc_dicts = []
        for doc in documents:
            doc.created_at = now
            doc.updated_at = now
            doc_dicts.append(self._to_document(doc))

        result = await self.collection.insert_many(doc_dicts)

        for doc, inserted_id in zip(documents, result.inserted_ids):
            doc.id = str(inserted_id)

        logger.bind(count=len(documents)).debug(
            f"Bulk created documents in {self.collection_name}"
        )

        return documents

    def _to_model(self, doc: Optional[Dict[str, Any]]) -> Optional[T]:
        """
        Convert MongoDB document to Pydantic model instance.

        Args:
            doc: Raw MongoDB document dict

        Returns:
            Domain model instance
        """
        if not doc:
            return None
        # Convert ObjectId to string for Pydantic validation
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])

        model_fields = self.model_class.model_fields.keys()

        cleaned_doc = {
            k: v for k, v in doc.items()
            if k in model_fields or k == "_id"
        }

        return self.model_class.model_validate(cleaned_doc)
