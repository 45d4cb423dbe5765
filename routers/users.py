##########
# Imports
##########
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Response, UploadFile
from pymongo import ReturnDocument

from database import get_db, parse_if_match, to_object_id, update_versioned
from policies import Action, authorize, can
from routers.auth import ensure_identity_available, insert_user
from schemas import (
    PasswordPair,
    TimeRange,
    UserCreate,
    UserDocument,
    UserUpdate,
    utcnow,
)
from security import clear_auth_cookie, get_current_user, get_current_user_required, hash_password, require
from transactions import get_unit_of_work
from utils.avatars import MAX_AVATAR_BYTES, AvatarStorageError, delete_avatar, upload_avatar
from utils.pagination import NEWEST_FIRST, Page, paginate, pagination
from utils.pipelines import USER_OVERVIEW, overview_pipeline, popular_authors_pipeline, unpack_facet
from utils.populate import AUTHOR_FIELDS, TOPIC_FIELDS, populate, populate_post_refs
from utils.serialization import public_user, serialize
from utils.time_range import start_of


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

FOLLOWING_FIELDS = {"firstName": 1, "lastName": 1, "username": 1, "avatarUrl": 1, "followers": 1}
SAVED_POST_FIELDS = {"title": 1, "author": 1, "topic": 1, "published": 1, "createdAt": 1, "likes": 1}


async def find_user(db, user_id: str):
    user = await db.users.find_one({"_id": to_object_id(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def find_active_user(db, user_id: str):
    user = await find_user(db, user_id)
    if user.get("isDeleted"):
        raise HTTPException(status_code=404, detail="User not found")
    return user


##############
# Listing
##############
@router.get("")
async def list_users(page: Page = Depends(pagination), viewer=Depends(get_current_user), db=Depends(get_db)):
    """Active users, newest first"""
    users, total = await paginate(db.users, {"isDeleted": False}, page, sort=NEWEST_FIRST)
    return {"users": [public_user(user, viewer) for user in users], "meta": {"total": total}}


@router.get("/popular")
async def popular_users(
    timeRange: TimeRange = TimeRange.ALL_TIME,
    page: Page = Depends(pagination),
    db=Depends(get_db),
):
    """Authors ranked by likes their published posts received in the window"""
    result = await db.posts.aggregate(popular_authors_pipeline(start_of(timeRange), page)).to_list(None)
    users, total = unpack_facet(result)
    return {"users": serialize(users), "meta": {"total": total}}


@router.get("/preview")
async def preview_users(page: Page = Depends(pagination), admin=Depends(require(Action.PREVIEW)), db=Depends(get_db)):
    """Admin overview of every account, deleted ones included"""
    result = await db.users.aggregate(overview_pipeline({}, USER_OVERVIEW, page)).to_list(None)
    users, total = unpack_facet(result)
    return {"users": serialize(users), "meta": {"total": total}}


@router.post("", status_code=201)
async def create_user(body: UserCreate, admin=Depends(require(Action.CREATE_USER)), db=Depends(get_db)):
    """Admin creates an account, optionally another admin"""
    email = body.email.lower()
    await ensure_identity_available(db, email=email, username=body.username)
    user = await insert_user(db, UserDocument(
        firstName=body.first_name,
        lastName=body.last_name,
        email=email,
        username=body.username,
        password=hash_password(body.password),
        userType=body.user_type,
    ))
    logger.info("Admin %s created user %s", admin["_id"], user["_id"])
    return {"message": "User created", "user": public_user(user, admin)}


##############
# Profile
##############
@router.get("/{user_id}")
async def get_user(user_id: str, viewer=Depends(get_current_user), db=Depends(get_db)):
    """Profile with published posts and comments"""
    user = await find_user(db, user_id)
    if user.get("isDeleted"):
        return {"user": public_user(user, viewer), "posts": [], "comments": []}

    posts = await db.posts.find({"author": user["_id"], "published": True}).sort(NEWEST_FIRST).to_list(None)
    await populate(db, posts, "topic", "topics", TOPIC_FIELDS)
    comments = await db.comments.find({"author": user["_id"], "isDeleted": False}).sort(NEWEST_FIRST).to_list(None)
    return {"user": public_user(user, viewer), "posts": serialize(posts), "comments": serialize(comments)}


@router.get("/{user_id}/deleted")
async def get_deleted_user(user_id: str, admin=Depends(require(Action.VIEW_DELETED_USER)), db=Depends(get_db)):
    """Full record of a soft-deleted account"""
    user = await find_user(db, user_id)
    if not user.get("isDeleted"):
        raise HTTPException(status_code=404, detail="Deleted user not found")
    if user.get("deletedData"):
        await populate(db, [user["deletedData"]], "deletedBy", "users", AUTHOR_FIELDS)
    return {"user": public_user(user, admin)}


@router.get("/{user_id}/posts")
async def get_user_posts(
    user_id: str,
    page: Page = Depends(pagination),
    viewer=Depends(get_current_user),
    db=Depends(get_db),
):
    user = await find_active_user(db, user_id)
    match = {"author": user["_id"]}
    if not can(viewer, Action.VIEW_UNPUBLISHED_POST, user["_id"]):
        match["published"] = True

    posts, total = await paginate(db.posts, match, page, sort=NEWEST_FIRST)
    await populate(db, posts, "topic", "topics", TOPIC_FIELDS)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.get("/{user_id}/following")
async def get_following(user_id: str, db=Depends(get_db)):
    user = await find_user(db, user_id)
    await populate(db, [user], "following", "users", FOLLOWING_FIELDS)
    return {"following": serialize(user["following"])}


@router.get("/{user_id}/saved-posts")
async def get_saved_posts(user_id: str, viewer=Depends(get_current_user_required), db=Depends(get_db)):
    user = await find_active_user(db, user_id)
    authorize(viewer, Action.VIEW_SAVED_POSTS, user["_id"])

    await populate(db, [user], "savedPosts", "posts", SAVED_POST_FIELDS)
    await populate_post_refs(db, user["savedPosts"])
    return {"savedPosts": serialize(user["savedPosts"]), "savedPostsCount": len(user["savedPosts"])}


##############
# Account changes
##############
@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    body: UserUpdate,
    if_match: Optional[str] = Header(None),
    actor=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Edit profile fields; the role can only be changed by an admin"""
    user = await find_active_user(db, user_id)
    authorize(actor, Action.UPDATE_USER, user["_id"])

    changes = {}
    if body.first_name is not None:
        changes["firstName"] = body.first_name
    if body.last_name is not None:
        changes["lastName"] = body.last_name
    if body.email is not None:
        changes["email"] = body.email.lower()
    if body.username is not None:
        changes["username"] = body.username
    if body.description is not None:
        changes["description"] = body.description
    if body.user_type is not None and body.user_type.value != user.get("userType"):
        authorize(actor, Action.CHANGE_ROLE)
        changes["userType"] = body.user_type.value

    await ensure_identity_available(
        db, email=changes.get("email"), username=changes.get("username"), exclude_id=user["_id"]
    )
    updated = await update_versioned(db.users, user, changes, parse_if_match(if_match))
    return {"updatedUser": public_user(updated, actor), "message": "User updated"}


@router.put("/{user_id}/password")
async def update_password(
    user_id: str,
    body: PasswordPair,
    actor=Depends(get_current_user_required),
    db=Depends(get_db),
):
    user = await find_active_user(db, user_id)
    authorize(actor, Action.CHANGE_PASSWORD, user["_id"])
    await update_versioned(db.users, user, {"password": hash_password(body.password)})
    return {"message": "Password updated"}


@router.put("/{user_id}/avatar")
async def update_avatar(
    user_id: str,
    avatar: UploadFile = File(...),
    actor=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Replace the profile picture"""
    user = await find_active_user(db, user_id)
    authorize(actor, Action.CHANGE_AVATAR, user["_id"])

    if not (avatar.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Avatar must be an image")
    data = await avatar.read()
    if not data:
        raise HTTPException(status_code=400, detail="Avatar file is empty")
    if len(data) > MAX_AVATAR_BYTES:
        raise HTTPException(status_code=400, detail="Avatar must be 5MB or smaller")

    try:
        url, public_id = await upload_avatar(data)
    except AvatarStorageError as exc:
        logger.warning("Avatar upload failed for %s: %s", user["_id"], exc)
        raise HTTPException(status_code=500, detail="Failed to upload avatar")

    updated = await update_versioned(db.users, user, {"avatarUrl": url, "avatarPublicId": public_id})
    await delete_avatar(user.get("avatarPublicId"))
    return {"message": "Avatar updated", "avatarUrl": url, "user": public_user(updated, actor)}


@router.patch("/{user_id}/delete")
async def delete_user(
    user_id: str,
    response: Response,
    actor=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    """Soft delete: redact identity and drop the account from the follow graph"""
    user = await find_user(db, user_id)
    authorize(actor, Action.DELETE_USER, user["_id"])
    if user.get("isDeleted"):
        raise HTTPException(status_code=400, detail="User already deleted")

    is_self = actor["_id"] == user["_id"]
    placeholder = f"redacted-{uuid.uuid4()}"
    now = utcnow()
    deleted_data = {
        "deletedBy": None if is_self else actor["_id"],
        "deletedAt": now,
        "email": user["email"],
        "username": user["username"],
        "followerCount": len(user.get("followers", [])),
    }

    async def redact(session):
        result = await db.users.update_one(
            {"_id": user["_id"], "isDeleted": False},
            {
                "$set": {
                    "isDeleted": True,
                    "email": placeholder,
                    "username": placeholder,
                    "password": "",
                    "deletedData": deleted_data,
                    "updatedAt": now,
                },
                "$inc": {"version": 1},
            },
            session=session,
        )
        if result.matched_count == 0:
            raise HTTPException(status_code=409, detail="Resource was modified by another request")

    async def prune_follow_graph(session):
        await db.users.update_many(
            {"$or": [{"followers": user["_id"]}, {"following": user["_id"]}]},
            {"$pull": {"followers": user["_id"], "following": user["_id"]}},
            session=session,
        )

    await uow.run(redact, prune_follow_graph)
    logger.info("User %s deleted by %s", user["_id"], actor["_id"])

    if is_self:
        clear_auth_cookie(response)
    return {"message": "User deleted"}


##############
# Following
##############
@router.put("/{user_id}/follow", status_code=201)
async def follow_user(
    user_id: str,
    actor=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    target_id = to_object_id(user_id)
    if target_id == actor["_id"]:
        raise HTTPException(status_code=400, detail="You can't follow yourself")
    await find_active_user(db, user_id)

    async def add_follower(session):
        return await db.users.find_one_and_update(
            {"_id": target_id},
            {"$addToSet": {"followers": actor["_id"]}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    async def add_following(session):
        return await db.users.find_one_and_update(
            {"_id": actor["_id"]},
            {"$addToSet": {"following": target_id}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    followed, following = await uow.run(add_follower, add_following)
    return {"userFollowed": public_user(followed, actor), "userFollowing": public_user(following, actor)}


@router.put("/{user_id}/unfollow")
async def unfollow_user(
    user_id: str,
    actor=Depends(get_current_user_required),
    db=Depends(get_db),
    uow=Depends(get_unit_of_work),
):
    target_id = to_object_id(user_id)
    if target_id == actor["_id"]:
        raise HTTPException(status_code=400, detail="You can't unfollow yourself")
    await find_active_user(db, user_id)

    async def remove_follower(session):
        return await db.users.find_one_and_update(
            {"_id": target_id},
            {"$pull": {"followers": actor["_id"]}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    async def remove_following(session):
        return await db.users.find_one_and_update(
            {"_id": actor["_id"]},
            {"$pull": {"following": target_id}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    unfollowed, unfollowing = await uow.run(remove_follower, remove_following)
    return {"userUnfollowed": public_user(unfollowed, actor), "userUnfollowing": public_user(unfollowing, actor)}
