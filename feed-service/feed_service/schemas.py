"""
Pydantic schemas for Feed Service
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class Visibility(str, Enum):
    """Post visibility"""
    PUBLIC = "public"
    FRIENDS = "friends"
    PRIVATE = "private"
    UNLISTED = "unlisted"


class RainbowColor(str, Enum):
    """Colors a like can carry"""
    RED = "red"
    ORANGE = "orange"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    PURPLE = "purple"


class ChangeType(str, Enum):
    """Realtime change event types"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# User schema (from session token)
class User(BaseModel):
    """Authenticated user decoded from the session token"""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None


class Profile(BaseModel):
    """Denormalized author fields"""
    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


# Post schemas
class Post(BaseModel):
    """Post as held in the feed window"""
    id: str
    user_id: str
    content: str = ""
    visibility: Visibility = Visibility.PUBLIC
    created_at: datetime
    media_urls: Optional[List[str]] = None
    hashtags: Optional[List[str]] = None
    community_id: Optional[str] = None
    likes_count: int = 0
    comments_count: int = 0

    @field_validator("likes_count", "comments_count", mode="before")
    @classmethod
    def null_count_is_zero(cls, v):
        """Counters come back null before the first like or comment"""
        return 0 if v is None else v


class Cursor(BaseModel):
    """Tail of the loaded window"""
    created_at: datetime
    id: str


class Like(BaseModel):
    """A user's like on a post"""
    post_id: str
    user_id: str
    rainbow_color: Optional[RainbowColor] = None


class Comment(BaseModel):
    """Comment with one level of replies"""
    id: str
    post_id: str
    user_id: str
    content: str
    created_at: datetime
    parent_id: Optional[str] = None
    likes_count: int = 0
    author: Optional[Profile] = None
    replies: List["Comment"] = Field(default_factory=list)

    @field_validator("likes_count", mode="before")
    @classmethod
    def null_count_is_zero(cls, v):
        return 0 if v is None else v

    @property
    def replies_count(self) -> int:
        return len(self.replies)


class ChatMessage(BaseModel):
    """Community chat message"""
    id: str
    community_id: Optional[str] = None
    user_id: str
    content: str
    created_at: datetime
    profile: Optional[Profile] = None


class ChangeEvent(BaseModel):
    """Change event delivered by the realtime stream"""
    type: ChangeType
    table: str
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


# Derived results
class Suggestions(BaseModel):
    """Tags and authors suggested from recent likes"""
    tags: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)


class TrendingTag(BaseModel):
    """Hashtag usage over the trending window"""
    tag: str
    uses: int


class HashtagCount(BaseModel):
    """Hashtag usage within a set of posts"""
    tag: str
    count: int


class FeedAnalytics(BaseModel):
    """Engagement statistics over a user's posts"""
    total_posts: int = 0
    total_likes: int = 0
    total_comments: int = 0
    top_hashtags: List[HashtagCount] = Field(default_factory=list)
    posts_today: int = 0
    engagement_rate: float = 0.0
    most_active_hour: int = 0


# API request / response schemas
class FeedPageResponse(BaseModel):
    """Feed page with keyset pagination"""
    items: List[Post]
    has_more: bool
    next_cursor: Optional[str] = None
    sort: str


class LikeRequest(BaseModel):
    """Like request"""
    color: Optional[RainbowColor] = None


class LikeResponse(BaseModel):
    """Like state after the action"""
    post_id: str
    liked: bool
    likes_count: int
    color: Optional[RainbowColor] = None


class CommentCreate(BaseModel):
    """Comment creation request"""
    content: str = Field(..., min_length=1, max_length=2000)
    parent_id: Optional[str] = None


Comment.model_rebuild()
