##########
# Imports
##########
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from database import get_db
from policies import Action
from security import get_current_user_required, require
from utils.pagination import Page, paginate, pagination
from utils.pipelines import USER_OVERVIEW, overview_pipeline, text_filter, text_projection, text_sort, unpack_facet
from utils.populate import populate_post_refs
from utils.serialization import public_user, serialize


router = APIRouter(prefix="/search", tags=["search"])

PRIVATE_USER_FIELDS = {"password": 0, "email": 0}


def search_query(q: Optional[str] = Query(None, max_length=50)) -> Optional[str]:
    """Trimmed search text, None when blank"""
    q = (q or "").strip()
    return q or None


async def search(collection, q: Optional[str], page: Page, match: Optional[dict] = None, projection=None):
    return await paginate(
        collection,
        text_filter(q, match),
        page,
        sort=text_sort(q),
        projection=text_projection(q, projection),
    )


@router.get("/all")
async def search_all(q: Optional[str] = Depends(search_query), page: Page = Depends(pagination), db=Depends(get_db)):
    """Posts, users and topics matching the query"""
    if not q:
        raise HTTPException(status_code=400, detail="Search query is required")
    posts, _ = await search(db.posts, q, page, {"published": True})
    users, _ = await search(db.users, q, page, {"isDeleted": False}, PRIVATE_USER_FIELDS)
    topics, _ = await search(db.topics, q, page)
    await populate_post_refs(db, posts)
    return {
        "posts": serialize(posts),
        "users": [public_user(user) for user in users],
        "topics": serialize(topics),
    }


@router.get("/posts")
async def search_posts(q: Optional[str] = Depends(search_query), page: Page = Depends(pagination), db=Depends(get_db)):
    posts, total = await search(db.posts, q, page, {"published": True})
    await populate_post_refs(db, posts)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.get("/users")
async def search_users(q: Optional[str] = Depends(search_query), page: Page = Depends(pagination), db=Depends(get_db)):
    users, total = await search(db.users, q, page, {"isDeleted": False}, PRIVATE_USER_FIELDS)
    return {"users": [public_user(user) for user in users], "meta": {"total": total}}


@router.get("/topics")
async def search_topics(q: Optional[str] = Depends(search_query), page: Page = Depends(pagination), db=Depends(get_db)):
    topics, total = await search(db.topics, q, page)
    return {"topics": serialize(topics), "meta": {"total": total}}


@router.get("/my-posts")
async def search_my_posts(
    q: Optional[str] = Depends(search_query),
    page: Page = Depends(pagination),
    user=Depends(get_current_user_required),
    db=Depends(get_db),
):
    """The current user's posts, drafts included"""
    posts, total = await search(db.posts, q, page, {"author": user["_id"]})
    await populate_post_refs(db, posts)
    return {"posts": serialize(posts), "meta": {"total": total}}


@router.get("/admin/users")
async def search_users_as_admin(
    q: Optional[str] = Depends(search_query),
    page: Page = Depends(pagination),
    admin=Depends(require(Action.ADMIN_SEARCH)),
    db=Depends(get_db),
):
    """Every account, deleted ones included, with redaction records"""
    result = await db.users.aggregate(overview_pipeline({}, USER_OVERVIEW, page, q)).to_list(None)
    users, total = unpack_facet(result)
    return {"users": serialize(users), "meta": {"total": total}}
