"""
Shared fixtures: the app runs against an in-memory mongomock database and
writes that need a transaction run without a session.
"""
import asyncio
import os

os.environ.update({
    "MONGODB_URI": "mongodb://localhost:27017",
    "JWT_SECRET": "test-jwt-secret",
    "SESSION_SECRET": "test-session-secret",
    "COOKIE_SECURE": "false",
    "RATE_LIMIT_ENABLED": "false",
    "BCRYPT_ROUNDS": "4",
})

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from database import get_db
from main import app
from schemas import CommentDocument, PostDocument, Role, TopicDocument, TopLevel, UserDocument
from security import create_access_token, hash_password
from transactions import get_unit_of_work


PASSWORD = "password123"
LONG_CONTENT = "x" * 260


class NullUnitOfWork:
    """Runs each operation in order with no session (mongomock has no transactions)"""

    async def run(self, *operations):
        return [await operation(None) for operation in operations]


def run(coro):
    return asyncio.run(coro)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user['_id'])}"}


@pytest.fixture
def db():
    return AsyncMongoMockClient()["blog_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_unit_of_work] = NullUnitOfWork
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def find(db):
    def finder(collection, _id):
        return run(db[collection].find_one({"_id": ObjectId(str(_id))}))
    return finder


@pytest.fixture
def make_user(db):
    password_hash = hash_password(PASSWORD)

    def factory(username="alice", role=Role.USER, **fields):
        doc = UserDocument(
            firstName=username.capitalize(),
            lastName="Tester",
            email=f"{username}@example.com",
            username=username,
            password=password_hash,
            userType=role,
            **fields,
        ).to_mongo()
        doc["_id"] = ObjectId()
        run(db.users.insert_one(doc))
        return doc

    return factory


@pytest.fixture
def admin(make_user):
    return make_user("admin", role=Role.ADMIN)


@pytest.fixture
def make_topic(db):
    def factory(name="Technology"):
        doc = TopicDocument(name=name).to_mongo()
        doc["_id"] = ObjectId()
        run(db.topics.insert_one(doc))
        return doc
    return factory


@pytest.fixture
def make_post(db):
    def factory(author, topic=None, published=True, title="A sample post", **fields):
        doc = PostDocument(
            title=title,
            content=LONG_CONTENT,
            author=author["_id"],
            published=published,
            topic=topic["_id"] if topic else None,
            **fields,
        ).to_mongo()
        doc["_id"] = ObjectId()
        run(db.posts.insert_one(doc))
        return doc
    return factory


@pytest.fixture
def make_comment(db):
    def factory(author, post, content="Nice post"):
        doc = CommentDocument.new(content, author["_id"], post["_id"], TopLevel()).to_mongo()
        doc["_id"] = ObjectId()
        run(db.comments.insert_one(doc))
        run(db.posts.update_one({"_id": post["_id"]}, {"$push": {"comments": doc["_id"]}}))
        return doc
    return factory
