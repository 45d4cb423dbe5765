from datetime import datetime, timezone

from bson import ObjectId

from schemas import TopicSort
from utils.pagination import Page
from utils.pipelines import (
    popular_authors_pipeline,
    popular_posts_pipeline,
    popular_topics_pipeline,
    text_filter,
    text_projection,
    text_sort,
    topic_posts_pipeline,
    unpack_facet,
    windowed_like_count,
)


START = datetime(2024, 1, 1, tzinfo=timezone.utc)
PAGE = Page(limit=5, offset=10)


def stage(pipeline, name):
    return [item[name] for item in pipeline if name in item]


def test_windowed_like_count_filters_by_date():
    condition = windowed_like_count(START)["$addFields"]["likeCount"]["$size"]["$filter"]
    assert condition["cond"] == {"$gte": ["$$like.date", START]}
    assert condition["input"] == {"$ifNull": ["$likes", []]}


def test_popular_posts_only_ranks_published_posts():
    pipeline = popular_posts_pipeline(START, PAGE)

    assert pipeline[0] == {"$match": {"published": True}}
    assert stage(pipeline, "$sort")[0] == {"likeCount": -1, "createdAt": -1, "_id": -1}
    facet = stage(pipeline, "$facet")[0]
    assert facet["items"][:2] == [{"$skip": 10}, {"$limit": 5}]
    assert facet["meta"] == [{"$count": "total"}]


def test_author_join_never_exposes_credentials():
    facet = stage(popular_posts_pipeline(START, PAGE), "$facet")[0]
    lookups = [item["$lookup"] for item in facet["items"] if "$lookup" in item]
    author = next(lookup for lookup in lookups if lookup["from"] == "users")
    projection = author["pipeline"][1]["$project"]

    assert "password" not in projection
    assert "email" not in projection


def test_popular_authors_excludes_deleted_users():
    pipeline = popular_authors_pipeline(START, PAGE)

    assert {"$match": {"user.isDeleted": False}} in pipeline
    assert stage(pipeline, "$group")[0]["likesCount"] == {"$sum": "$likeCount"}


def test_popular_topics_sorts_by_requested_total():
    pipeline = popular_topics_pipeline(START, TopicSort.TOTAL_LIKES, PAGE)

    assert stage(pipeline, "$sort")[0] == {"totalLikes": -1, "_id": 1}
    group = stage(pipeline, "$group")[0]
    assert group["totalPosts"] == {"$sum": 1}


def test_topic_posts_match_topic_and_published():
    topic_id = ObjectId()
    pipeline = topic_posts_pipeline(topic_id, START, PAGE)
    assert pipeline[0] == {"$match": {"topic": topic_id, "published": True}}


def test_unpack_facet():
    assert unpack_facet([]) == ([], 0)
    assert unpack_facet([{"items": [], "meta": []}]) == ([], 0)
    assert unpack_facet([{"items": [{"a": 1}], "meta": [{"total": 7}]}]) == ([{"a": 1}], 7)


def test_text_search_builders_with_query():
    assert text_filter("python", {"published": True}) == {"published": True, "$text": {"$search": "python"}}
    assert text_sort("python") == [("score", {"$meta": "textScore"})]
    assert text_projection("python", {"password": 0}) == {"password": 0, "score": {"$meta": "textScore"}}


def test_text_search_builders_without_query():
    assert text_filter(None, {"published": True}) == {"published": True}
    assert text_sort(None)[0] == ("createdAt", -1)
    assert text_projection(None) is None
