##########
# Imports
##########
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from bson import ObjectId
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import (
    AUTH_COOKIE_NAME,
    BCRYPT_ROUNDS,
    COOKIE_SAMESITE,
    COOKIE_SECURE,
    JWT_ALGORITHM,
    JWT_EXPIRE_SECONDS,
    JWT_SECRET,
)
from database import get_db
from policies import Action, authorize


logger = logging.getLogger(__name__)

# HTTP Bearer token dependency
security = HTTPBearer(auto_error=False)

SESSION_USER_KEY = "user_id"


##########
# JWT Token
##########
def create_access_token(user_id):
    """Create JWT token with expiration"""
    now = datetime.now(timezone.utc)
    payload = {
        "id": str(user_id),
        "iat": now,
        "exp": now + timedelta(seconds=JWT_EXPIRE_SECONDS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str):
    """Verify JWT token, return payload or None if invalid"""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.PyJWTError:
        return None


def set_auth_cookie(response, token: str):
    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=JWT_EXPIRE_SECONDS,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite=COOKIE_SAMESITE,
    )


def clear_auth_cookie(response):
    response.delete_cookie(
        AUTH_COOKIE_NAME,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite=COOKIE_SAMESITE,
    )


##########
# Passwords
##########
def hash_password(password: str):
    """Hash password using bcrypt"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str):
    """Verify password against hashed value"""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


##########
# Current User
##########
def request_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]):
    """Token from the auth cookie, falling back to the Authorization header"""
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if token:
        return token
    if credentials:
        return credentials.credentials
    return None


def session_user_id(request: Request):
    if "session" not in request.scope:
        return None
    return request.session.get(SESSION_USER_KEY)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
):
    """Return current user if token (or session) is valid, else None"""
    user_id = None
    token = request_token(request, credentials)
    if token:
        payload = verify_token(token)
        if payload:
            user_id = payload.get("id")
    else:
        user_id = session_user_id(request)

    if not user_id or not ObjectId.is_valid(user_id):
        return None

    user = await db.users.find_one({"_id": ObjectId(user_id)})
    if not user or user.get("isDeleted"):
        return None
    return user


async def get_current_user_required(user=Depends(get_current_user)):
    """Return current user or raise 401 if not authenticated"""
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require(action: Action):
    """Dependency resolving the current user and checking a rule that needs no owner"""
    async def dependency(user=Depends(get_current_user_required)):
        authorize(user, action)
        return user
    return dependency
