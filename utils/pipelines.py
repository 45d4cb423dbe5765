"""
Aggregation pipelines and text-search query builders.

All builders are pure: they take plain values and return the documents that
are handed to Motor. Ranking pipelines end in a ``$facet`` so the page and the
pre-pagination total come from the same match.
"""
from datetime import datetime
from typing import Optional

from schemas import TopicSort
from utils.pagination import NEWEST_FIRST, Page
from utils.populate import AUTHOR_FIELDS, TOPIC_FIELDS


POPULAR_AUTHOR_FIELDS = {
    "firstName": 1,
    "lastName": 1,
    "username": 1,
    "description": 1,
    "avatarUrl": 1,
    "followers": 1,
    "createdAt": 1,
    "isDeleted": 1,
}

USER_OVERVIEW = {
    "firstName": 1,
    "lastName": 1,
    "email": 1,
    "username": 1,
    "userType": 1,
    "isDeleted": 1,
    "deletedData": 1,
    "createdAt": 1,
    "updatedAt": 1,
    "followersCount": {"$size": {"$ifNull": ["$followers", []]}},
    "followingCount": {"$size": {"$ifNull": ["$following", []]}},
}

POST_OVERVIEW = {
    "title": 1,
    "author": 1,
    "published": 1,
    "updatedAt": 1,
    "createdAt": 1,
    "likesCount": {"$size": {"$ifNull": ["$likes", []]}},
    "commentsCount": {"$size": {"$ifNull": ["$comments", []]}},
}


##########
# Building blocks
##########
def windowed_like_count(start: datetime, field: str = "likeCount"):
    """Count the likes dated at or after ``start``"""
    return {
        "$addFields": {
            field: {
                "$size": {
                    "$filter": {
                        "input": {"$ifNull": ["$likes", []]},
                        "as": "like",
                        "cond": {"$gte": ["$$like.date", start]},
                    }
                }
            }
        }
    }


def join(collection: str, local_field: str, projection: dict, as_field: Optional[str] = None):
    """Look up one referenced document and keep only its display fields"""
    as_field = as_field or local_field
    return [
        {
            "$lookup": {
                "from": collection,
                "let": {"ref": "$" + local_field},
                "pipeline": [
                    {"$match": {"$expr": {"$eq": ["$_id", "$$ref"]}}},
                    {"$project": projection},
                ],
                "as": as_field,
            }
        },
        {"$unwind": {"path": "$" + as_field, "preserveNullAndEmptyArrays": True}},
    ]


def page_facet(page: Page, item_stages=()):
    return {
        "$facet": {
            "items": [{"$skip": page.offset}, {"$limit": page.limit}, *item_stages],
            "meta": [{"$count": "total"}],
        }
    }


def unpack_facet(result):
    """(items, total) from the single document a ``page_facet`` stage emits"""
    if not result:
        return [], 0
    facet = result[0]
    meta = facet.get("meta") or []
    return facet.get("items", []), (meta[0]["total"] if meta else 0)


##########
# Popularity rankings
##########
def popular_posts_pipeline(start: datetime, page: Page):
    return [
        {"$match": {"published": True}},
        windowed_like_count(start),
        {"$sort": {"likeCount": -1, "createdAt": -1, "_id": -1}},
        page_facet(page, [
            *join("users", "author", AUTHOR_FIELDS),
            *join("topics", "topic", TOPIC_FIELDS),
        ]),
    ]


def popular_authors_pipeline(start: datetime, page: Page):
    return [
        {"$match": {"published": True}},
        windowed_like_count(start),
        {"$group": {"_id": "$author", "likesCount": {"$sum": "$likeCount"}}},
        *join("users", "_id", POPULAR_AUTHOR_FIELDS, as_field="user"),
        # drops both deleted and vanished authors
        {"$match": {"user.isDeleted": False}},
        {"$sort": {"likesCount": -1, "_id": 1}},
        page_facet(page, [
            {"$replaceRoot": {"newRoot": {"$mergeObjects": ["$user", {"likesCount": "$likesCount"}]}}},
        ]),
    ]


def popular_topics_pipeline(start: datetime, sort_by: TopicSort, page: Page):
    return [
        {"$match": {"published": True, "topic": {"$ne": None}}},
        windowed_like_count(start),
        {
            "$group": {
                "_id": "$topic",
                "totalPosts": {"$sum": 1},
                "totalLikes": {"$sum": "$likeCount"},
            }
        },
        *join("topics", "_id", TOPIC_FIELDS, as_field="topicDetails"),
        {"$match": {"topicDetails": {"$exists": True}}},
        {"$sort": {sort_by.value: -1, "_id": 1}},
        page_facet(page, [
            {"$project": {"name": "$topicDetails.name", "totalPosts": 1, "totalLikes": 1}},
        ]),
    ]


def topic_posts_pipeline(topic_id, start: datetime, page: Page):
    return [
        {"$match": {"topic": topic_id, "published": True}},
        windowed_like_count(start),
        {"$sort": {"likeCount": -1, "createdAt": -1, "_id": -1}},
        page_facet(page, join("users", "author", AUTHOR_FIELDS)),
    ]


def overview_pipeline(match: dict, projection: dict, page: Page, query: Optional[str] = None):
    """Admin listing with computed counters, optionally narrowed by a text query"""
    stages = [{"$match": text_filter(query, match)}]
    if query:
        stages += [
            {"$addFields": {"score": {"$meta": "textScore"}}},
            {"$sort": {"score": -1, "_id": 1}},
        ]
    else:
        stages.append({"$sort": {"createdAt": -1, "_id": -1}})
    stages.append(page_facet(page, [{"$project": projection}]))
    return stages


##########
# Text search
##########
def text_filter(query: Optional[str], extra: Optional[dict] = None):
    match = dict(extra or {})
    if query:
        match["$text"] = {"$search": query}
    return match


def text_sort(query: Optional[str]):
    if query:
        return [("score", {"$meta": "textScore"})]
    return NEWEST_FIRST


def text_projection(query: Optional[str], projection: Optional[dict] = None):
    if not query:
        return projection
    return {**(projection or {}), "score": {"$meta": "textScore"}}
