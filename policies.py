"""
Who may do what.

Every guarded route asks ``authorize(actor, action, owner_id)`` instead of
comparing ids and roles inline.
"""
from enum import Enum
from typing import Optional

from fastapi import HTTPException

from schemas import Role


class Action(str, Enum):
    UPDATE_POST = "update_post"
    DELETE_POST = "delete_post"
    VIEW_UNPUBLISHED_POST = "view_unpublished_post"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    CHANGE_PASSWORD = "change_password"
    CHANGE_AVATAR = "change_avatar"
    VIEW_SAVED_POSTS = "view_saved_posts"
    VIEW_PRIVATE_PROFILE = "view_private_profile"
    EDIT_COMMENT = "edit_comment"
    DELETE_COMMENT = "delete_comment"
    CREATE_USER = "create_user"
    CHANGE_ROLE = "change_role"
    MANAGE_TOPICS = "manage_topics"
    PREVIEW = "preview"
    VIEW_DELETED_USER = "view_deleted_user"
    ADMIN_SEARCH = "admin_search"


OWNER_OR_ADMIN = "owner_or_admin"
OWNER_ONLY = "owner_only"
ADMIN_ONLY = "admin_only"

RULES = {
    Action.UPDATE_POST: OWNER_OR_ADMIN,
    Action.DELETE_POST: OWNER_OR_ADMIN,
    Action.VIEW_UNPUBLISHED_POST: OWNER_OR_ADMIN,
    Action.UPDATE_USER: OWNER_OR_ADMIN,
    Action.DELETE_USER: OWNER_OR_ADMIN,
    Action.CHANGE_PASSWORD: OWNER_OR_ADMIN,
    Action.CHANGE_AVATAR: OWNER_OR_ADMIN,
    Action.VIEW_SAVED_POSTS: OWNER_OR_ADMIN,
    Action.VIEW_PRIVATE_PROFILE: OWNER_OR_ADMIN,
    Action.EDIT_COMMENT: OWNER_ONLY,
    Action.DELETE_COMMENT: OWNER_ONLY,
    Action.CREATE_USER: ADMIN_ONLY,
    Action.CHANGE_ROLE: ADMIN_ONLY,
    Action.MANAGE_TOPICS: ADMIN_ONLY,
    Action.PREVIEW: ADMIN_ONLY,
    Action.VIEW_DELETED_USER: ADMIN_ONLY,
    Action.ADMIN_SEARCH: ADMIN_ONLY,
}

DENIED_MESSAGES = {
    Action.UPDATE_POST: "Only admin and the original author can update post",
    Action.EDIT_COMMENT: "You must be the original commenter to edit a comment",
    Action.DELETE_USER: "Unauthorized: only admins or the account owner can delete this user",
}


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("userType") == Role.ADMIN.value


def can(actor: Optional[dict], action: Action, owner_id=None) -> bool:
    if not actor:
        return False
    rule = RULES[action]
    admin = is_admin(actor)
    is_owner = owner_id is not None and str(actor["_id"]) == str(owner_id)

    if rule == ADMIN_ONLY:
        return admin
    if rule == OWNER_ONLY:
        return is_owner
    return is_owner or admin


def authorize(actor: Optional[dict], action: Action, owner_id=None):
    """Raise 401/403 unless the actor may perform the action"""
    if not actor:
        raise HTTPException(status_code=401, detail="No user logged in")
    if not can(actor, action, owner_id):
        raise HTTPException(status_code=403, detail=DENIED_MESSAGES.get(action, "Unauthorized"))
