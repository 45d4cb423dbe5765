"""
Reset the database and fill it with sample data.

    python populate_db.py

Wipes users, posts, comments and topics. Every sample account uses the
password "password".
"""
import asyncio
import logging

from bson import ObjectId

from config import DATABASE_NAME, LOG_LEVEL, missing_settings
from database import create_client, create_indexes
from schemas import CommentDocument, PostDocument, Role, TopicDocument, TopLevel, UserDocument
from security import hash_password


logger = logging.getLogger("populate_db")

SAMPLE_PASSWORD = "password"

SAMPLE_USERS = [
    ("John", "Watters", "john@example.com", "jwatters", Role.ADMIN),
    ("Jane", "Doe", "jane@example.com", "janedoe", Role.USER),
    ("Alice", "Johnson", "alice@example.com", "alicej", Role.USER),
    ("Bob", "Smith", "bob@example.com", "bobsmith", Role.USER),
]

SAMPLE_TOPICS = ["Technology", "Travel", "Food", "Science"]

PARAGRAPH = (
    "This is a sample post written to show how the blog renders longer content. "
    "It talks about nothing in particular, but it is long enough to pass the "
    "minimum length rule that real posts have to satisfy before they can be saved. "
    "Feel free to edit or delete it once you have real posts of your own."
)

SAMPLE_COMMENTS = ["Sample comment 1", "Sample comment 2", "Sample comment 3", "Sample comment 4"]

COLLECTIONS = ("users", "posts", "comments", "topics")


##########
# Builders
##########
def build_users(password_hash: str):
    docs = []
    for first_name, last_name, email, username, role in SAMPLE_USERS:
        doc = UserDocument(
            firstName=first_name,
            lastName=last_name,
            email=email,
            username=username,
            password=password_hash,
            userType=role,
        ).to_mongo()
        doc["_id"] = ObjectId()
        docs.append(doc)
    return docs


def build_topics():
    docs = []
    for name in SAMPLE_TOPICS:
        doc = TopicDocument(name=name).to_mongo()
        doc["_id"] = ObjectId()
        docs.append(doc)
    return docs


def build_posts(users, topics):
    docs = []
    for index in range(len(SAMPLE_COMMENTS)):
        doc = PostDocument(
            title=f"Sample Post {index + 1}",
            content=PARAGRAPH,
            author=users[index % len(users)]["_id"],
            published=True,
            topic=topics[index % len(topics)]["_id"],
        ).to_mongo()
        doc["_id"] = ObjectId()
        docs.append(doc)
    return docs


def build_comments(users, posts):
    """One top-level comment per post, linked from the post's comment list"""
    docs = []
    for index, content in enumerate(SAMPLE_COMMENTS):
        post = posts[index % len(posts)]
        # comment on someone else's post
        author = users[(index + 1) % len(users)]
        doc = CommentDocument.new(content, author["_id"], post["_id"], TopLevel()).to_mongo()
        doc["_id"] = ObjectId()
        post["comments"].append(doc["_id"])
        docs.append(doc)
    return docs


##########
# Seeding
##########
async def populate(db):
    for name in COLLECTIONS:
        await db[name].delete_many({})

    users = build_users(hash_password(SAMPLE_PASSWORD))
    topics = build_topics()
    posts = build_posts(users, topics)
    comments = build_comments(users, posts)

    await db.users.insert_many(users)
    await db.topics.insert_many(topics)
    await db.posts.insert_many(posts)
    await db.comments.insert_many(comments)
    logger.info(
        "Inserted %d users, %d topics, %d posts, %d comments",
        len(users), len(topics), len(posts), len(comments),
    )


async def main():
    missing = missing_settings()
    if "MONGODB_URI" in missing:
        raise SystemExit("MONGODB_URI is not configured")

    client = create_client()
    try:
        db = client[DATABASE_NAME]
        await populate(db)
        await create_indexes(db)
        logger.info("Database populated successfully")
    finally:
        client.close()


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
