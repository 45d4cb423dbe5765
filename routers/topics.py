##########
# Imports
##########
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from config import MAX_PAGE_SIZE
from database import get_db, parse_if_match, to_object_id, update_versioned
from policies import Action, authorize
from schemas import TimeRange, TopicDocument, TopicIn, TopicSort
from security import get_current_user_required
from transactions import get_unit_of_work
from utils.pagination import Page, paginate, pagination
from utils.pipelines import popular_topics_pipeline, topic_posts_pipeline, unpack_facet
from utils.serialization import serialize
from utils.time_range import start_of


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/topics", tags=["topics"])


async def find_topic(db, topic_id: str):
    topic = await db.topics.find_one({"_id": to_object_id(topic_id)})
    if not topic:
        raise HTTPException(status_code=404, detail="Topic not found")
    return topic


@router.get("")
async def list_topics(page: Page = Depends(pagination), db=Depends(get_db)):
    topics, total = await paginate(db.topics, {}, page, sort=[("name", 1), ("_id", 1)])
    return {"topics": serialize(topics), "meta": {"total": total}}


@router.get("/popular")
async def popular_topics(
    sortBy: TopicSort = TopicSort.TOTAL_POSTS,
    timeRange: TimeRange = TimeRange.ALL_TIME,
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
):
    """Topics ranked by published post count or likes received in the window"""
    pipeline = popular_topics_pipeline(start_of(timeRange), sortBy, Page(limit=limit, offset=offset))
    topics, total = unpack_facet(await db.posts.aggregate(pipeline).to_list(None))
    return {"topics": serialize(topics), "meta": {"total": total}}


@router.get("/{topic_id}")
async def get_topic(topic_id: str, db=Depends(get_db)):
    return {"topic": serialize(await find_topic(db, topic_id))}


@router.get("/{topic_id}/posts")
async def get_topic_posts(
    topic_id: str,
    timeRange: TimeRange = TimeRange.ALL_TIME,
    page: Page = Depends(pagination),
    db=Depends(get_db),
):
    """Published posts in a topic, most liked in the window first"""
    topic = await find_topic(db, topic_id)
    pipeline = topic_posts_pipeline(topic["_id"], start_of(timeRange), page)
    posts, total = unpack_facet(await db.posts.aggregate(pipeline).to_list(None))
    return {"posts": serialize(posts), "topic": serialize(topic), "meta": {"total": total}}


##############
# Admin
##############
@router.post("", status_code=201)
async def create_topic(body: TopicIn, user=Depends(get_current_user_required), db=Depends(get_db)):
    authorize(user, Action.MANAGE_TOPICS)
    result = await db.topics.insert_one(TopicDocument(name=body.name).to_mongo())
    logger.info("Topic %s created by %s", result.inserted_id, user["_id"])
    return {"topic": serialize(await db.topics.find_one({"_id": result.inserted_id}))}


@router.patch("/{topic_id}")
async def update_topic(
    topic_id: str,
    body: TopicIn,
    if_match: Optional[str] = Header(None),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    authorize(user, Action.MANAGE_TOPICS)
    topic = await find_topic(db, topic_id)
    updated = await update_versioned(db.topics, topic, {"name": body.name}, parse_if_match(if_match))
    return {"topic": serialize(updated)}


@router.delete("/{topic_id}")
async def delete_topic(
    topic_id: str,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    """Delete a topic; its posts become uncategorised"""
    authorize(user, Action.MANAGE_TOPICS)
    topic = await find_topic(db, topic_id)

    async def remove_topic(session):
        await db.topics.delete_one({"_id": topic["_id"]}, session=session)

    async def detach_posts(session):
        await db.posts.update_many({"topic": topic["_id"]}, {"$set": {"topic": None}}, session=session)

    await uow.run(remove_topic, detach_posts)
    return {"message": "Topic deleted"}
