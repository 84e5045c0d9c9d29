"""
Database Schemas for the Connetwork forum (MongoDB)

Each Pydantic model corresponds to a collection. The collection name is the
lowercased class name (e.g., User -> "user").

We store references via ObjectId strings.
"""

from datetime import datetime
from typing import Annotated, ClassVar, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "moderator", "admin"]
AnimeStatus = Literal["airing", "completed", "upcoming"]
CharacterRole = Literal["main", "supporting", "minor"]
WatchStatus = Literal["watching", "completed", "on-hold", "dropped", "plan-to-watch"]
ReportReason = Literal[
    "spam",
    "harassment",
    "inappropriate-content",
    "copyright-violation",
    "fake-information",
    "other",
]
ReportStatus = Literal["pending", "reviewing", "resolved", "dismissed"]
ReportAction = Literal["none", "warning", "content-removed", "user-banned", "other"]


# Accounts
class User(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    password_hash: str = Field(..., description="BCrypt hash")
    first_name: str
    last_name: str
    is_verified: bool = False
    role: Role = "user"
    avatar: Optional[str] = None
    bio: Optional[str] = None


# Movie catalog
class Tag(BaseModel):
    name: str
    created_by: Optional[str] = None


class Movie(BaseModel):
    title: str
    slug: str
    description: str = ""
    release_year: Optional[int] = None
    genre: List[str] = Field(default_factory=list)
    rating: Optional[float] = Field(None, ge=0, le=10)
    tag_ids: List[str] = Field(default_factory=list)


# Anime catalog
class Studio(BaseModel):
    name: str
    logo: Optional[str] = None
    founded: Optional[int] = None
    description: Optional[str] = None


class Character(BaseModel):
    name: str
    image: str
    role: CharacterRole = "supporting"
    description: Optional[str] = Field(None, max_length=1000)


class Anime(BaseModel):
    title: str
    synopsis: str = Field(..., max_length=2000)
    cover_image: str
    banner_image: Optional[str] = None
    episodes: int = Field(..., ge=1)
    status: AnimeStatus
    genres: List[str]
    year: int = Field(..., ge=1900)
    studio: Studio
    characters: List[Character] = Field(default_factory=list)
    rating: float = Field(0, ge=0, le=10)
    total_ratings: int = 0
    rating_sum: int = 0
    view_count: int = 0
    added_by: str


class Review(BaseModel):
    anime_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=10)
    title: Optional[str] = None
    body: Optional[str] = None


# News
class NewsComment(BaseModel):
    id: str
    user_id: str
    content: str
    created_at: datetime


class News(BaseModel):
    title: str
    content: str
    author_id: str
    image: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_published: bool = True
    published_at: Optional[datetime] = None
    views: int = 0
    likes: List[str] = Field(default_factory=list)
    comments: List[NewsComment] = Field(default_factory=list)


# Watchlists
class WatchlistItem(BaseModel):
    anime_id: str
    added_at: datetime
    status: WatchStatus = "plan-to-watch"
    user_rating: Optional[int] = Field(None, ge=1, le=10)
    progress: int = Field(0, ge=0)


class Watchlist(BaseModel):
    user_id: str
    name: str = Field(..., max_length=100)
    description: str = Field("", max_length=500)
    is_public: bool = True
    anime: List[WatchlistItem] = Field(default_factory=list)
    followers: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


# Moderation
class UserTarget(BaseModel):
    type: Literal["user"] = "user"
    id: str

    collection: ClassVar[str] = "user"
    public_fields: ClassVar[Tuple[str, ...]] = ("username", "avatar", "bio")


class NewsTarget(BaseModel):
    type: Literal["news"] = "news"
    id: str

    collection: ClassVar[str] = "news"
    public_fields: ClassVar[Tuple[str, ...]] = ("title", "content")


class ReviewTarget(BaseModel):
    type: Literal["review"] = "review"
    id: str

    collection: ClassVar[str] = "review"
    public_fields: ClassVar[Tuple[str, ...]] = ("title", "body", "rating", "anime_id")


ReportTarget = Annotated[Union[UserTarget, NewsTarget, ReviewTarget], Field(discriminator="type")]

TARGET_TYPES = {
    "user": UserTarget,
    "news": NewsTarget,
    "review": ReviewTarget,
}


class Report(BaseModel):
    reporter_id: str
    target_type: Literal["user", "news", "review"]
    target_id: str
    reason: ReportReason
    description: str = Field("", max_length=1000)
    status: ReportStatus = "pending"
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    resolution: Optional[str] = Field(None, max_length=1000)
    action_taken: Optional[ReportAction] = None
