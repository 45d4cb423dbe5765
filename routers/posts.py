##########
# Imports
##########
import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Header, HTTPException
from pymongo import ReturnDocument

from database import get_db, parse_if_match, to_object_id, update_versioned
from policies import Action, authorize
from schemas import PostCreate, PostDocument, PostUpdate, TimeRange, utcnow
from security import get_current_user, get_current_user_required, require
from transactions import get_unit_of_work
from utils.pagination import NEWEST_FIRST, Page, paginate, pagination
from utils.pipelines import POST_OVERVIEW, overview_pipeline, popular_posts_pipeline, unpack_facet
from utils.populate import AUTHOR_FIELDS, populate, populate_post_refs
from utils.serialization import serialize
from utils.time_range import start_of


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["posts"])


async def find_post(db, post_id: str):
    post = await db.posts.find_one({"_id": to_object_id(post_id)})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


async def existing_topic_id(db, topic_id: str) -> ObjectId:
    oid = to_object_id(topic_id)
    if not await db.topics.find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Topic not found")
    return oid


##############
# Listing
##############
@router.get("")
async def list_posts(page: Page = Depends(pagination), db=Depends(get_db)):
    """Published posts, newest first"""
    posts, total = await paginate(db.posts, {"published": True}, page, sort=NEWEST_FIRST)
    await populate_post_refs(db, posts)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.get("/popular")
async def popular_posts(
    timeRange: TimeRange = TimeRange.ALL_TIME,
    page: Page = Depends(pagination),
    db=Depends(get_db),
):
    """Published posts ranked by likes received in the window"""
    result = await db.posts.aggregate(popular_posts_pipeline(start_of(timeRange), page)).to_list(None)
    posts, total = unpack_facet(result)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.get("/preview")
async def preview_posts(page: Page = Depends(pagination), admin=Depends(require(Action.PREVIEW)), db=Depends(get_db)):
    """Admin overview of every post, drafts included"""
    result = await db.posts.aggregate(overview_pipeline({}, POST_OVERVIEW, page)).to_list(None)
    posts, total = unpack_facet(result)
    await populate(db, posts, "author", "users", AUTHOR_FIELDS)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.get("/following")
async def following_feed(
    page: Page = Depends(pagination),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Published posts by the authors the current user follows"""
    match = {"author": {"$in": user.get("following", [])}, "published": True}
    posts, total = await paginate(db.posts, match, page, sort=NEWEST_FIRST)
    await populate_post_refs(db, posts)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.put("/saved-posts/{post_id}")
async def toggle_saved_post(post_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    """Save a post, or unsave it when already saved"""
    post = await find_post(db, post_id)

    updated = await db.users.find_one_and_update(
        {"_id": user["_id"], "savedPosts": {"$ne": post["_id"]}},
        {"$addToSet": {"savedPosts": post["_id"]}},
        return_document=ReturnDocument.AFTER,
    )
    saved = updated is not None
    if not saved:
        updated = await db.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$pull": {"savedPosts": post["_id"]}},
            return_document=ReturnDocument.AFTER,
        )
    return {"saved": saved, "savedPosts": serialize(updated.get("savedPosts", []))}


##############
# Single post
##############
@router.post("", status_code=201)
async def create_post(body: PostCreate, user=Depends(get_current_user_required), db=Depends(get_db)):
    topic_id = await existing_topic_id(db, body.topic)
    post = PostDocument(
        title=body.title,
        content=body.content,
        author=user["_id"],
        published=body.published,
        topic=topic_id,
    )
    result = await db.posts.insert_one(post.to_mongo())
    created = await db.posts.find_one({"_id": result.inserted_id})
    logger.info("User %s created post %s", user["_id"], result.inserted_id)
    return {"message": "Post created", "post": serialize(created)}


@router.get("/{post_id}")
async def get_post(post_id: str, viewer=Depends(get_current_user), db=Depends(get_db)):
    """Post with author, topic and comments"""
    post = await find_post(db, post_id)
    if not post.get("published"):
        authorize(viewer, Action.VIEW_UNPUBLISHED_POST, post["author"])

    await populate_post_refs(db, [post])
    await populate(db, [post], "comments", "comments")
    await populate(db, post["comments"], "author", "users", AUTHOR_FIELDS)
    return {"post": serialize(post)}


@router.api_route("/{post_id}", methods=["PUT", "PATCH"])
async def update_post(
    post_id: str,
    body: PostUpdate,
    if_match: Optional[str] = Header(None),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Partial update by the author or an admin"""
    post = await find_post(db, post_id)
    authorize(user, Action.UPDATE_POST, post["author"])

    changes = body.model_dump(exclude_none=True, exclude={"topic"})
    if body.topic is not None:
        changes["topic"] = await existing_topic_id(db, body.topic)

    updated = await update_versioned(db.posts, post, changes, parse_if_match(if_match))
    return {"message": "Post updated", "post": serialize(updated)}


@router.delete("/{post_id}")
async def delete_post(
    post_id: str,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    """Delete a post together with its comments and every saved reference"""
    post = await find_post(db, post_id)
    authorize(user, Action.DELETE_POST, post["author"])

    async def remove_post(session):
        await db.posts.delete_one({"_id": post["_id"]}, session=session)

    async def remove_comments(session):
        await db.comments.delete_many({"post": post["_id"]}, session=session)

    async def unsave(session):
        await db.users.update_many(
            {"savedPosts": post["_id"]},
            {"$pull": {"savedPosts": post["_id"]}},
            session=session,
        )

    await uow.run(remove_post, remove_comments, unsave)
    logger.info("Post %s deleted by %s", post["_id"], user["_id"])
    return {"message": "Post deleted"}


##############
# Likes
##############
@router.get("/{post_id}/likes")
async def get_likes(post_id: str, db=Depends(get_db)):
    post = await find_post(db, post_id)
    return {"likesCount": len(post.get("likes", []))}


@router.put("/{post_id}/like")
async def like_post(post_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    oid = to_object_id(post_id)
    updated = await db.posts.find_one_and_update(
        {"_id": oid, "likes.userId": {"$ne": user["_id"]}},
        {"$push": {"likes": {"userId": user["_id"], "date": utcnow()}}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        await find_post(db, post_id)
        raise HTTPException(status_code=400, detail="You have already liked this post")
    return {"message": "Post liked", "likesCount": len(updated["likes"])}


@router.put("/{post_id}/unlike")
async def unlike_post(post_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    oid = to_object_id(post_id)
    updated = await db.posts.find_one_and_update(
        {"_id": oid, "likes.userId": user["_id"]},
        {"$pull": {"likes": {"userId": user["_id"]}}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        await find_post(db, post_id)
        raise HTTPException(status_code=400, detail="You have not liked this post")
    return {"message": "Post unliked", "likesCount": len(updated["likes"])}
