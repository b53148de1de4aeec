import logging
import socket
from motor.motor_asyncio import AsyncIOMotorClient
from fastapi import Request
from pymongo import ASCENDING, ReturnDocument

from config.config import MONGODB_URI, MONGODB_USERNAME, MONGODB_PASSWORD, CLUSTER_NAME, APP_NAME, DATABASE_NAME
from helpers.DateTimeSerializer import DateTimeSerializerVisitor

logger = logging.getLogger(__name__)

USERS = "users"
EVENTS = "events"
REGISTRATIONS = "registrations"
PAYMENTS = "payments"
COUNTERS = "counters"
NOTIFICATIONS = "notifications"

# (collection, keys, unique)
INDEXES = [
    (USERS, [("user_id", ASCENDING)], True),
    (USERS, [("email", ASCENDING)], True),
    (USERS, [("phone", ASCENDING)], True),
    (USERS, [("user_code", ASCENDING)], True),
    (EVENTS, [("event_id", ASCENDING)], True),
    (REGISTRATIONS, [("registration_id", ASCENDING)], True),
    (REGISTRATIONS, [("user_id", ASCENDING), ("event_id", ASCENDING)], True),
    (REGISTRATIONS, [("registration_number", ASCENDING)], True),
    (REGISTRATIONS, [("event_id", ASCENDING)], False),
    (PAYMENTS, [("payment_id", ASCENDING)], True),
    (PAYMENTS, [("registration_id", ASCENDING)], True),
    (PAYMENTS, [("status", ASCENDING)], False),
    (NOTIFICATIONS, [("notification_id", ASCENDING)], True),
    (NOTIFICATIONS, [("user_id", ASCENDING)], False),
    (NOTIFICATIONS, [("type", ASCENDING)], False),
    (NOTIFICATIONS, [("status", ASCENDING)], False),
    (NOTIFICATIONS, [("created_at", ASCENDING)], False),
]


def get_db(request: Request):
    """Dependency to get database instance from app state"""
    return request.app.state.db


class Database:
    def __init__(self, client=None):
        if MONGODB_URI:
            self.MONGO_URI = MONGODB_URI
        else:
            self.MONGO_URI = f"mongodb+srv://{MONGODB_USERNAME}:{MONGODB_PASSWORD}@{CLUSTER_NAME}.mongodb.net/?retryWrites=true&w=majority&appName={APP_NAME}"
        self.client = client
        self.db = client[DATABASE_NAME] if client is not None else None

    def connect(self):
        if self.client is None:
            self.client = AsyncIOMotorClient(self.MONGO_URI)
        self.db = self.client[DATABASE_NAME]
        logger.info("Connected to MongoDB database %s on host %s", DATABASE_NAME, socket.gethostname())

    def serializer(self, obj):
        visitor = DateTimeSerializerVisitor()
        return visitor.visit(obj)

    async def ensure_indexes(self):
        """Create the uniqueness constraints the registration engine relies on."""
        for collection_name, keys, unique in INDEXES:
            await self.db[collection_name].create_index(keys, unique=unique)

    def _clean(self, document):
        if document is None:
            return None
        document["_id"] = str(document["_id"])
        return self.serializer(document)

    async def add(self, collection_name, data):
        collection = self.db[collection_name]
        result = await collection.insert_one(data)

        if result.inserted_id:
            data["_id"] = str(result.inserted_id)
            data = self.serializer(data)
            return {
                "status": 200,
                "data": data,
                "message": "Document added successfully"
            }
        else:
            return {
                "status": 500,
                "message": "Failed to add document"
            }

    async def find_many(self, collection_name, query=None, projection=None, sort=None, limit=None):
        """Find multiple documents matching query"""
        collection = self.db[collection_name]
        cursor = collection.find(query or {}, projection)

        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)

        documents = []
        async for doc in cursor:
            documents.append(self._clean(doc))

        return {
            "status": 200,
            "data": documents,
            "message": "Documents retrieved successfully"
        }

    async def find_one(self, collection_name, query):
        """Find a single document (returns document directly or None)"""
        collection = self.db[collection_name]
        document = await collection.find_one(query)
        return self._clean(document)

    async def find_one_and_update(self, collection_name, query, update_string, upsert=False):
        """Atomically update one document and return it as it is after the update (or None)"""
        collection = self.db[collection_name]
        document = await collection.find_one_and_update(
            query,
            update_string,
            upsert=upsert,
            return_document=ReturnDocument.AFTER,
        )
        return self._clean(document)

    async def aggregate(self, collection_name, pipeline):
        """Run an aggregation pipeline and return the resulting documents"""
        collection = self.db[collection_name]
        documents = []
        async for doc in collection.aggregate(pipeline):
            documents.append(self._clean(doc))

        return {
            "status": 200,
            "data": documents,
            "message": "Aggregation completed successfully"
        }

    async def count(self, collection_name, query=None):
        collection = self.db[collection_name]
        return await collection.count_documents(query or {})

    async def update(self, collection_name, query, update_string):
        collection = self.db[collection_name]
        result = await collection.update_one(query, update_string)

        return {
            "status": 200 if result.modified_count > 0 else 404,
            "matched_count": result.matched_count,
            "modified_count": result.modified_count,
            "message": "Document updated successfully" if result.modified_count > 0 else "Document not found or no changes made"
        }

    async def delete(self, collection_name, query):
        collection = self.db[collection_name]
        result = await collection.delete_one(query)

        return {
            "status": 200 if result.deleted_count > 0 else 404,
            "deleted_count": result.deleted_count,
            "message": "Document deleted successfully" if result.deleted_count > 0 else "Document not found"
        }
