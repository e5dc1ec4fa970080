# giftfund/db/mongo_client.py

# This file handles MongoDB connection, disconnection,
# and provides simple async data access functions on top of the synchronous driver.

import asyncio
import traceback
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.errors import ConnectionFailure, PyMongoError
from pymongo.results import DeleteResult, UpdateResult

from ..config.settings import Settings
from ..shared.errors import ServiceUnavailableError


# --- Global DB Client and Database reference ---
mongo_client: MongoClient | None = None
mongo_db = None # Reference to the specific database

# --- Collection names ---
EVENTS = "events"
CONTRIBUTIONS = "contributions"
PRODUCTS = "products"
ORDERS = "orders"
USERS = "users"
NOTIFICATIONS = "notifications"


# --- Connection Function ---
async def connect_to_mongo(settings: Settings):
    """Connects to MongoDB using URI from Settings object and gets database using settings.DB_NAME."""
    global mongo_client, mongo_db
    if mongo_client is not None:
        print("MongoDB client already connected.")
        return

    if not settings.MONGODB_URI:
        print("FATAL ERROR: MONGODB_URI is not set in Pydantic Settings.")
        return
    if not settings.DB_NAME:
        print("FATAL ERROR: DB_NAME is not set in Pydantic Settings.")
        return

    try:
        print("Attempting to connect to MongoDB...")
        client = MongoClient(settings.MONGODB_URI, serverSelectionTimeoutMS=5000)
        await asyncio.to_thread(client.admin.command, 'ping')
        print("MongoDB connection successful.")
    except ConnectionFailure as e:
        print(f"FATAL ERROR: MongoDB connection failed: {e}")
        return

    mongo_client = client
    mongo_db = client.get_database(settings.DB_NAME)
    print(f"Using database '{settings.DB_NAME}'.")


async def close_mongo_connection(client: MongoClient | None = None):
    """Closes the MongoDB client connection."""
    global mongo_client, mongo_db
    client_to_close = client if client is not None else mongo_client

    if client_to_close:
        print("Closing MongoDB connection.")
        await asyncio.to_thread(client_to_close.close)
        mongo_client = None
        mongo_db = None
        print("MongoDB connection closed.")
    else:
        print("No active MongoDB client to close.")


async def ensure_indexes():
    """Creates the indexes the funding and checkout queries rely on."""
    if mongo_db is None:
        print("Warning: Cannot create indexes, database not initialized.")
        return
    index_plan = {
        EVENTS: [[("creator", ASCENDING), ("status", ASCENDING)], [("visibility", ASCENDING), ("status", ASCENDING)], [("event_date", ASCENDING)]],
        CONTRIBUTIONS: [[("event", ASCENDING), ("payment_status", ASCENDING)], [("contributor", ASCENDING), ("payment_status", ASCENDING)], [("mpesa_details.checkout_request_id", ASCENDING)]],
        ORDERS: [[("seller", ASCENDING), ("order_progress", ASCENDING)], [("buyer", ASCENDING)], [("source_event_id", ASCENDING)]],
    }
    for collection_name, indexes in index_plan.items():
        collection = mongo_db.get_collection(collection_name)
        for keys in indexes:
            await asyncio.to_thread(collection.create_index, keys)
    print("MongoDB indexes ensured.")


# --- Getter functions for collections ---
# Return None if DB not connected.
def get_collection(name: str) -> Optional[Collection]:
    if mongo_db is not None:
        return mongo_db.get_collection(name)
    print(f"Error: MongoDB database not initialized. Cannot get '{name}' collection.")
    return None


def get_events_collection() -> Optional[Collection]:
    """Returns the events collection."""
    return get_collection(EVENTS)


def get_contributions_collection() -> Optional[Collection]:
    """Returns the contributions collection."""
    return get_collection(CONTRIBUTIONS)


def get_products_collection() -> Optional[Collection]:
    """Returns the products collection."""
    return get_collection(PRODUCTS)


def get_orders_collection() -> Optional[Collection]:
    """Returns the orders collection."""
    return get_collection(ORDERS)


def get_users_collection() -> Optional[Collection]:
    """Returns the users collection (owned by the auth service, read-only here)."""
    return get_collection(USERS)


def get_notifications_collection() -> Optional[Collection]:
    """Returns the notifications collection."""
    return get_collection(NOTIFICATIONS)


def get_collection_or_raise(collection_getter: Callable[[], Optional[Collection]]) -> Collection:
    """Calls a collection getter function and raises 503 if the collection is None."""
    collection = collection_getter()
    if collection is None:
        print(f"Error: Database collection not accessible via {collection_getter.__name__}.")
        raise ServiceUnavailableError("Database service is not available.")
    return collection


# --- Sessions / Transactions ---
async def start_session() -> ClientSession:
    """Starts a client session for a multi-document transaction."""
    if mongo_client is None:
        raise ServiceUnavailableError("Database service is not available.")
    return await asyncio.to_thread(mongo_client.start_session)


def _session_kwargs(session: Optional[ClientSession]) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


# --- Data Access Functions (CRUD) ---
# Errors are printed for the server log and re-raised so callers can roll back or report them.
async def find_one(collection: Collection, query: Dict[str, Any], projection: Optional[Dict[str, Any]] = None, session: Optional[ClientSession] = None) -> Optional[Dict[str, Any]]:
    """Finds a single document in a collection."""
    try:
        return await asyncio.to_thread(collection.find_one, query, projection, **_session_kwargs(session))
    except PyMongoError as e:
        print(f"MongoDB Error during find_one on '{collection.name}': {e}")
        raise


async def find_many(collection: Collection, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None, session: Optional[ClientSession] = None) -> List[Dict[str, Any]]:
    """Finds multiple documents in a collection."""
    limit = options.get("limit", 0) if options else 0
    sort = options.get("sort", None) if options else None
    projection = options.get("projection", None) if options else None
    skip = options.get("skip", 0) if options else 0

    try:
        cursor = collection.find(query, projection, **_session_kwargs(session))
        if sort:
            cursor = cursor.sort(sort)
        if skip > 0:
            cursor = cursor.skip(skip)
        if limit > 0:
            cursor = cursor.limit(limit)
        return await asyncio.to_thread(list, cursor)
    except PyMongoError as e:
        print(f"MongoDB Error during find_many on '{collection.name}': {e}")
        raise


async def find_by_ids(collection: Collection, ids: List[ObjectId], session: Optional[ClientSession] = None) -> Dict[str, Dict[str, Any]]:
    """Fetches documents by id and returns them keyed by their string id."""
    if not ids:
        return {}
    documents = await find_many(collection, {"_id": {"$in": list(ids)}}, session=session)
    return {str(document["_id"]): document for document in documents}


async def count_documents(collection: Collection, query: Dict[str, Any], session: Optional[ClientSession] = None) -> int:
    try:
        return await asyncio.to_thread(collection.count_documents, query, **_session_kwargs(session))
    except PyMongoError as e:
        print(f"MongoDB Error during count_documents on '{collection.name}': {e}")
        raise


async def insert_one(collection: Collection, document: Dict[str, Any], session: Optional[ClientSession] = None) -> ObjectId:
    """Inserts a single document into a collection and returns its ObjectId."""
    try:
        result = await asyncio.to_thread(collection.insert_one, document, **_session_kwargs(session))
    except PyMongoError as e:
        if getattr(e, "code", None) == 11000:
            print(f"MongoDB Duplicate Key Error during insert_one on '{collection.name}': {e}")
        else:
            print(f"MongoDB Error during insert_one on '{collection.name}': {e}")
        raise
    if not result.acknowledged:
        print(f"Warning: Insert operation not acknowledged for document in collection '{collection.name}'.")
    return result.inserted_id


async def update_one(collection: Collection, query: Dict[str, Any], update: Dict[str, Any], session: Optional[ClientSession] = None) -> UpdateResult:
    """Applies an update document to the first match. Callers inspect matched_count for conditional writes."""
    try:
        return await asyncio.to_thread(collection.update_one, query, update, **_session_kwargs(session))
    except PyMongoError as e:
        print(f"MongoDB Error during update_one on '{collection.name}': {e}")
        raise


async def find_one_and_update(collection: Collection, query: Dict[str, Any], update: Dict[str, Any], session: Optional[ClientSession] = None) -> Optional[Dict[str, Any]]:
    """Atomically updates the first match and returns the document after the update (None if nothing matched)."""
    try:
        return await asyncio.to_thread(
            collection.find_one_and_update,
            query,
            update,
            return_document=ReturnDocument.AFTER,
            **_session_kwargs(session),
        )
    except PyMongoError as e:
        print(f"MongoDB Error during find_one_and_update on '{collection.name}': {e}")
        raise


async def delete_one(collection: Collection, query: Dict[str, Any], session: Optional[ClientSession] = None) -> DeleteResult:
    try:
        return await asyncio.to_thread(collection.delete_one, query, **_session_kwargs(session))
    except PyMongoError as e:
        print(f"MongoDB Error during delete_one on '{collection.name}': {e}")
        raise


async def delete_many(collection: Collection, query: Dict[str, Any], session: Optional[ClientSession] = None) -> DeleteResult:
    try:
        return await asyncio.to_thread(collection.delete_many, query, **_session_kwargs(session))
    except PyMongoError as e:
        print(f"MongoDB Error during delete_many on '{collection.name}': {e}")
        raise


async def aggregate(collection: Collection, pipeline: List[Dict[str, Any]], session: Optional[ClientSession] = None) -> List[Dict[str, Any]]:
    try:
        cursor = collection.aggregate(pipeline, **_session_kwargs(session))
        return await asyncio.to_thread(list, cursor)
    except PyMongoError as e:
        print(f"MongoDB Error during aggregate on '{collection.name}': {e}")
        traceback.print_exc()
        raise
