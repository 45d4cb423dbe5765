from bson import ObjectId


# Display fields joined onto posts and comments
AUTHOR_FIELDS = {"firstName": 1, "lastName": 1, "username": 1, "avatarUrl": 1, "isDeleted": 1}
TOPIC_FIELDS = {"name": 1}


async def populate(db, docs, field: str, collection: str, projection=None):
    """Replace ObjectId references in ``doc[field]`` with the referenced documents.

    Works for single references and lists of references. Dangling list
    references are dropped; a dangling single reference becomes None.
    """
    ids = set()
    for doc in docs:
        value = doc.get(field)
        if isinstance(value, list):
            ids.update(item for item in value if isinstance(item, ObjectId))
        elif isinstance(value, ObjectId):
            ids.add(value)
    if not ids:
        return docs

    found = await db[collection].find({"_id": {"$in": list(ids)}}, projection).to_list(None)
    by_id = {item["_id"]: item for item in found}

    for doc in docs:
        value = doc.get(field)
        if isinstance(value, list):
            doc[field] = [by_id[item] for item in value if item in by_id]
        elif isinstance(value, ObjectId):
            doc[field] = by_id.get(value)
    return docs


async def populate_post_refs(db, posts):
    await populate(db, posts, "author", "users", AUTHOR_FIELDS)
    await populate(db, posts, "topic", "topics", TOPIC_FIELDS)
    return posts
