"""
Database schemas and request bodies for the blog API.

Each ``*Document`` model maps to a MongoDB collection and supplies the
defaults a freshly inserted document carries. Stored field names are
camelCase because they are also the JSON wire format.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Optional, Union

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow():
    return datetime.now(timezone.utc)


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("must be a valid ObjectId")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


##########
# Enums
##########
class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class TimeRange(str, Enum):
    TODAY = "today"
    LAST_WEEK = "lastWeek"
    LAST_MONTH = "lastMonth"
    LAST_YEAR = "lastYear"
    ALL_TIME = "allTime"


class CommentSort(str, Enum):
    NEWEST = "newest"
    LIKES = "likes"
    DISLIKES = "dislikes"
    REPLIES = "replies"


class TopicSort(str, Enum):
    TOTAL_POSTS = "totalPosts"
    TOTAL_LIKES = "totalLikes"


##########
# Comment kinds
##########
@dataclass(frozen=True)
class TopLevel:
    """A comment made directly on a post"""

    @property
    def parent_id(self):
        return None


@dataclass(frozen=True)
class Reply:
    """A reply to a top-level comment"""
    parent_id: ObjectId


CommentKind = Union[TopLevel, Reply]


def comment_kind(doc: dict) -> CommentKind:
    parent = doc.get("parentComment")
    return Reply(parent) if parent is not None else TopLevel()


##################
# Collection schemas
##################
class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)
    version: int = 0

    def to_mongo(self) -> dict:
        return self.model_dump()


class DeletedData(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    deletedBy: Optional[ObjectId] = None
    deletedAt: datetime
    email: str
    username: str
    followerCount: int = 0


class UserDocument(Document):
    """
    Collection: "users"
    """
    firstName: str = Field(..., max_length=25)
    lastName: str = Field(..., max_length=25)
    email: str
    username: str
    password: str
    userType: Role = Role.USER
    followers: List[ObjectId] = Field(default_factory=list)
    following: List[ObjectId] = Field(default_factory=list)
    savedPosts: List[ObjectId] = Field(default_factory=list)
    isDeleted: bool = False
    description: str = ""
    avatarUrl: str = ""
    avatarPublicId: str = ""
    deletedData: Optional[DeletedData] = None

    def to_mongo(self) -> dict:
        doc = self.model_dump()
        doc["userType"] = self.userType.value
        return doc


class Like(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    userId: ObjectId
    date: datetime = Field(default_factory=utcnow)


class PostDocument(Document):
    """
    Collection: "posts"
    """
    title: str = Field(..., max_length=100)
    content: str = Field("", max_length=10000)
    author: ObjectId
    published: bool = False
    topic: Optional[ObjectId] = None
    likes: List[Like] = Field(default_factory=list)
    comments: List[ObjectId] = Field(default_factory=list)


class CommentDocument(Document):
    """
    Collection: "comments"

    ``parentComment`` is None for top-level comments.
    """
    content: str
    author: ObjectId
    post: ObjectId
    likes: List[ObjectId] = Field(default_factory=list)
    dislikes: List[ObjectId] = Field(default_factory=list)
    isDeleted: bool = False
    parentComment: Optional[ObjectId] = None
    replies: List[ObjectId] = Field(default_factory=list)

    @classmethod
    def new(cls, content: str, author: ObjectId, post: ObjectId, kind: CommentKind):
        return cls(content=content, author=author, post=post, parentComment=kind.parent_id)


class TopicDocument(Document):
    """
    Collection: "topics"
    """
    name: str


#################
# Request bodies
#################
class RequestBody(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class PasswordPair(RequestBody):
    password: str = Field(..., min_length=8)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class SignUp(PasswordPair):
    first_name: str = Field(..., min_length=1, max_length=25)
    last_name: str = Field(..., min_length=1, max_length=25)
    email: EmailStr
    username: str = Field(..., min_length=5)


class UserCreate(PasswordPair):
    first_name: str = Field(..., min_length=2, max_length=25)
    last_name: str = Field(..., min_length=2, max_length=25)
    email: EmailStr
    username: str = Field(..., min_length=2)
    user_type: Role = Role.USER


class UserUpdate(RequestBody):
    first_name: Optional[str] = Field(None, min_length=2, max_length=25)
    last_name: Optional[str] = Field(None, min_length=2, max_length=25)
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=2)
    user_type: Optional[Role] = None
    description: Optional[str] = None


class Login(RequestBody):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class PostCreate(RequestBody):
    title: str = Field(..., min_length=5, max_length=100)
    content: str = Field(..., min_length=250, max_length=10000)
    topic: ObjectIdStr
    published: bool


class PostUpdate(RequestBody):
    title: Optional[str] = Field(None, min_length=5, max_length=100)
    content: Optional[str] = Field(None, min_length=250, max_length=10000)
    topic: Optional[ObjectIdStr] = None
    published: Optional[bool] = None


class CommentCreate(RequestBody):
    content: str = Field(..., min_length=1)


class ReplyCreate(RequestBody):
    content: str = Field(..., min_length=1, max_length=500)


class CommentUpdate(RequestBody):
    content: str = Field(..., min_length=1)


class TopicIn(RequestBody):
    name: str = Field(..., min_length=1)
