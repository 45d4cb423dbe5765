##########
# Imports
##########
import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pymongo import ReturnDocument

from config import MAX_PAGE_SIZE
from database import get_db, parse_if_match, to_object_id, update_versioned
from policies import Action, authorize
from schemas import (
    CommentCreate,
    CommentDocument,
    CommentSort,
    CommentUpdate,
    Reply,
    ReplyCreate,
    TopLevel,
    comment_kind,
)
from security import get_current_user_required
from transactions import get_unit_of_work
from utils.pagination import NEWEST_FIRST, Page, pagination
from utils.populate import AUTHOR_FIELDS, populate
from utils.serialization import serialize


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts/{post_id}/comments", tags=["comments"])

DELETED_CONTENT = "[deleted]"

COUNTED_SORTS = {
    CommentSort.LIKES: "likes",
    CommentSort.DISLIKES: "dislikes",
    CommentSort.REPLIES: "replies",
}


async def find_post_id(db, post_id: str) -> ObjectId:
    oid = to_object_id(post_id)
    if not await db.posts.find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Post not found")
    return oid


async def find_comment(db, post_oid: ObjectId, comment_id: str):
    comment = await db.comments.find_one({"_id": to_object_id(comment_id), "post": post_oid})
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


async def with_authors(db, comments):
    await populate(db, comments, "author", "users", AUTHOR_FIELDS)
    return serialize(comments)


async def insert_comment(db, uow, doc: dict):
    """Insert a comment and link it from its post (and its parent, for replies)"""
    kind = comment_kind(doc)

    async def insert(session):
        await db.comments.insert_one(doc, session=session)

    async def link_to_post(session):
        await db.posts.update_one({"_id": doc["post"]}, {"$push": {"comments": doc["_id"]}}, session=session)

    async def link_to_parent(session):
        await db.comments.update_one(
            {"_id": kind.parent_id},
            {"$push": {"replies": doc["_id"]}},
            session=session,
        )

    operations = [insert, link_to_post]
    if isinstance(kind, Reply):
        operations.append(link_to_parent)
    await uow.run(*operations)
    return await db.comments.find_one({"_id": doc["_id"]})


##############
# Reading
##############
@router.get("")
async def list_comments(
    post_id: str,
    sortBy: CommentSort = CommentSort.NEWEST,
    page: Page = Depends(pagination),
    db=Depends(get_db),
):
    """Top-level comments of a post"""
    post_oid = await find_post_id(db, post_id)
    match = {"post": post_oid, "parentComment": None}

    if sortBy in COUNTED_SORTS:
        field = COUNTED_SORTS[sortBy]
        comments = await db.comments.aggregate([
            {"$match": match},
            {"$addFields": {"sortCount": {"$size": {"$ifNull": ["$" + field, []]}}}},
            {"$sort": {"sortCount": -1, "createdAt": -1, "_id": -1}},
            {"$skip": page.offset},
            {"$limit": page.limit},
            {"$project": {"sortCount": 0}},
        ]).to_list(None)
    else:
        cursor = db.comments.find(match).sort(NEWEST_FIRST)
        comments = await cursor.skip(page.offset).limit(page.limit).to_list(None)

    total = await db.comments.count_documents(match)
    total_comments = await db.comments.count_documents({"post": post_oid})
    return {
        "comments": await with_authors(db, comments),
        "meta": {"total": total, "totalComments": total_comments},
    }


@router.get("/{comment_id}")
async def get_comment(post_id: str, comment_id: str, db=Depends(get_db)):
    comment = await find_comment(db, to_object_id(post_id), comment_id)
    return {"comment": (await with_authors(db, [comment]))[0]}


@router.get("/{comment_id}/replies")
async def get_replies(
    post_id: str,
    comment_id: str,
    limit: int = Query(3, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
):
    """Replies to a comment, most recently updated first"""
    parent = await find_comment(db, to_object_id(post_id), comment_id)
    cursor = db.comments.find({"parentComment": parent["_id"]}).sort([("updatedAt", -1), ("_id", -1)])
    replies = await cursor.skip(offset).limit(limit).to_list(None)
    return {"replies": await with_authors(db, replies)}


##############
# Writing
##############
@router.post("", status_code=201)
async def create_comment(
    post_id: str,
    body: CommentCreate,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    post_oid = await find_post_id(db, post_id)
    doc = CommentDocument.new(body.content, user["_id"], post_oid, TopLevel()).to_mongo()
    doc["_id"] = ObjectId()

    created = await insert_comment(db, uow, doc)
    return {"message": "Comment created", "newComment": serialize(created)}


@router.post("/{comment_id}/reply", status_code=201)
async def reply_to_comment(
    post_id: str,
    comment_id: str,
    body: ReplyCreate,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    """Reply to a top-level comment of this post"""
    post_oid = await find_post_id(db, post_id)
    parent = await find_comment(db, post_oid, comment_id)
    if isinstance(comment_kind(parent), Reply):
        raise HTTPException(status_code=400, detail="Cannot reply to a reply")
    if parent.get("isDeleted"):
        raise HTTPException(status_code=400, detail="Cannot reply to a deleted comment")

    doc = CommentDocument.new(body.content, user["_id"], post_oid, Reply(parent["_id"])).to_mongo()
    doc["_id"] = ObjectId()

    created = await insert_comment(db, uow, doc)
    return {"message": "Reply created", "newComment": serialize(created)}


@router.put("/{comment_id}")
async def edit_comment(
    post_id: str,
    comment_id: str,
    body: CommentUpdate,
    if_match: Optional[str] = Header(None),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    comment = await find_comment(db, to_object_id(post_id), comment_id)
    authorize(user, Action.EDIT_COMMENT, comment["author"])
    if comment.get("isDeleted"):
        raise HTTPException(status_code=400, detail="Deleted comments cannot be edited")

    updated = await update_versioned(db.comments, comment, {"content": body.content}, parse_if_match(if_match))
    return {"message": "Comment updated", "comment": serialize(updated)}


@router.delete("/{comment_id}")
async def delete_comment(
    post_id: str,
    comment_id: str,
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Tombstone a comment so its replies stay attached"""
    comment = await find_comment(db, to_object_id(post_id), comment_id)
    authorize(user, Action.DELETE_COMMENT, comment["author"])
    if comment.get("isDeleted"):
        raise HTTPException(status_code=400, detail="Comment already deleted")

    updated = await update_versioned(db.comments, comment, {"content": DELETED_CONTENT, "isDeleted": True})
    return {"message": "Comment deleted", "comment": serialize(updated)}


##############
# Reactions
##############
async def toggle_reaction(db, post_id: str, comment_id: str, user_id: ObjectId, field: str, opposite: str):
    """Remove the reaction if present, otherwise add it and drop the opposite one"""
    match = {"_id": to_object_id(comment_id), "post": to_object_id(post_id)}

    updated = await db.comments.find_one_and_update(
        {**match, field: user_id},
        {"$pull": {field: user_id}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        updated = await db.comments.find_one_and_update(
            match,
            {"$addToSet": {field: user_id}, "$pull": {opposite: user_id}},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    return updated


@router.post("/{comment_id}/like")
async def like_comment(post_id: str, comment_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    updated = await toggle_reaction(db, post_id, comment_id, user["_id"], "likes", "dislikes")
    return {
        "message": "Comment like toggled",
        "updatedLikes": serialize(updated["likes"]),
        "updatedDislikes": serialize(updated["dislikes"]),
    }


@router.post("/{comment_id}/dislike")
async def dislike_comment(post_id: str, comment_id: str, user=Depends(get_current_user_required), db=Depends(get_db)):
    updated = await toggle_reaction(db, post_id, comment_id, user["_id"], "dislikes", "likes")
    return {
        "message": "Comment dislike toggled",
        "updatedLikes": serialize(updated["likes"]),
        "updatedDislikes": serialize(updated["dislikes"]),
    }
