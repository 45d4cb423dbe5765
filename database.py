##########
# Imports
##########
import logging
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, TEXT, ReturnDocument

from config import MONGODB_URI
from schemas import utcnow


logger = logging.getLogger(__name__)


######################
# Database Connection
######################
def create_client(uri: Optional[str] = None):
    return AsyncIOMotorClient(uri or MONGODB_URI, tz_aware=True)


def get_db(request: Request):
    """Database handle for the current request"""
    return request.app.state.db


async def create_indexes(db):
    """Initialize DB indexes on startup"""
    # Unique identity values (redacted placeholders stay unique too)
    await db.users.create_index("email", unique=True)
    await db.users.create_index("username", unique=True)

    # Full-text search
    await db.users.create_index(
        [("firstName", TEXT), ("lastName", TEXT), ("email", TEXT), ("username", TEXT)],
        name="users_text",
    )
    await db.posts.create_index([("title", TEXT), ("content", TEXT)], name="posts_text")
    await db.topics.create_index([("name", TEXT)], name="topics_text")

    # Sorting & query optimization
    await db.posts.create_index([("createdAt", DESCENDING)])
    await db.posts.create_index([("author", ASCENDING), ("published", ASCENDING)])
    await db.posts.create_index([("topic", ASCENDING), ("published", ASCENDING)])
    await db.comments.create_index([("post", ASCENDING), ("parentComment", ASCENDING)])
    await db.comments.create_index([("parentComment", ASCENDING), ("updatedAt", DESCENDING)])
    logger.info("Indexes ensured on database %s", db.name)


##########
# Identifiers
##########
def to_object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail="Invalid ID")
    return ObjectId(value)


##########
# Versioned edits
##########
async def update_versioned(collection, doc: dict, changes: dict, expected_version: Optional[int] = None):
    """Apply a partial update only if nobody changed the document since it was read.

    Returns the updated document. Raises 409 when the stored version no longer
    matches the one that was read (or the one the client sent in If-Match).
    """
    current = doc.get("version", 0)
    if expected_version is not None and expected_version != current:
        raise HTTPException(status_code=409, detail="Resource was modified by another request")

    version_filter = current if "version" in doc else {"$exists": False}
    updated = await collection.find_one_and_update(
        {"_id": doc["_id"], "version": version_filter},
        {"$set": {**changes, "updatedAt": utcnow()}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Resource was modified by another request")
    return updated


def parse_if_match(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "*":
        return None
    try:
        return int(value.strip().strip('"').removeprefix("W/").strip('"'))
    except ValueError:
        raise HTTPException(status_code=400, detail="If-Match must be a document version")
