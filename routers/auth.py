##########
# Imports
##########
import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials
from pymongo.errors import DuplicateKeyError

from database import get_db
from schemas import Login, SignUp, UserDocument
from security import (
    SESSION_USER_KEY,
    clear_auth_cookie,
    create_access_token,
    hash_password,
    request_token,
    security,
    session_user_id,
    set_auth_cookie,
    verify_password,
    verify_token,
)
from utils.serialization import public_user


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


async def ensure_identity_available(db, email=None, username=None, exclude_id=None):
    """Raise 400 if another user already holds the email or username"""
    checks = [("email", email, "Email already in use"), ("username", username, "Username already taken")]
    for field, value, message in checks:
        if value is None:
            continue
        query = {field: value}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if await db.users.find_one(query, {"_id": 1}):
            raise HTTPException(status_code=400, detail=message)


async def insert_user(db, user: UserDocument):
    try:
        result = await db.users.insert_one(user.to_mongo())
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email or username already in use")
    return await db.users.find_one({"_id": result.inserted_id})


def start_session(request: Request, response: Response, user: dict):
    token = create_access_token(user["_id"])
    set_auth_cookie(response, token)
    if "session" in request.scope:
        request.session[SESSION_USER_KEY] = str(user["_id"])
    return token


############
# Auth Routes
############
@router.post("/signup")
async def signup(body: SignUp, request: Request, response: Response, db=Depends(get_db)):
    """Register a new account and log it in"""
    email = body.email.lower()
    await ensure_identity_available(db, email=email, username=body.username)

    user = await insert_user(db, UserDocument(
        firstName=body.first_name,
        lastName=body.last_name,
        email=email,
        username=body.username,
        password=hash_password(body.password),
    ))
    token = start_session(request, response, user)
    logger.info("User %s signed up", user["_id"])
    return {"message": "Signup successful", "user": public_user(user, user), "token": token}


@router.post("/login")
async def login(body: Login, request: Request, response: Response, db=Depends(get_db)):
    """Log in with email and password"""
    user = await db.users.find_one({"email": body.username.lower()})
    if not user or user.get("isDeleted") or not verify_password(body.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Incorrect email or password")

    token = start_session(request, response, user)
    logger.info("User %s logged in", user["_id"])
    return {"message": "Login successful", "user": public_user(user, user), "token": token}


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Log out user by deleting cookie and session"""
    clear_auth_cookie(response)
    if "session" in request.scope:
        request.session.clear()
    return {"message": "Logout successful"}


@router.get("/me")
async def me(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
):
    """Who is logged in, if anyone"""
    token = request_token(request, credentials)
    if token:
        payload = verify_token(token)
        if not payload or not ObjectId.is_valid(payload.get("id", "")):
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        user_id = payload["id"]
    else:
        user_id = session_user_id(request)
        if not user_id or not ObjectId.is_valid(user_id):
            return {"isAuthenticated": False, "message": "No token provided"}

    user = await db.users.find_one({"_id": ObjectId(user_id)})
    if not user or user.get("isDeleted"):
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": public_user(user, user), "isAuthenticated": True}
