"""
Database Schemas for the Lost & Found Registry

Each Pydantic model represents a collection in MongoDB. The collection name is the
lowercased class name (handled by the Flames platform conventions).
"""
import os
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ADMIN_USER_ID = os.getenv("ADMIN_USER_ID", "admin_primary")
ADMIN_NAME = "AAU Property Office"
ADMIN_EMAIL = "admin@aauekpoma.edu.ng"

# Shown in the admin inbox when a thread has no student-authored message yet
UNNAMED_STUDENT = "Student Registry User"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class PostStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    CLEARED = "CLEARED"


class PostType(str, Enum):
    LOST = "LOST"
    FOUND = "FOUND"


class User(BaseModel):
    """
    Registry users (students and the property office)
    Collection: "user"
    """
    id: str = Field(..., description="User ID")
    name: str = Field(..., min_length=1, description="Display name")
    email: str = Field(..., description="Lowercased email address")
    role: UserRole = Field(UserRole.USER, description="USER or ADMIN")
    avatar: Optional[str] = Field(None, description="Avatar image URL")


class Post(BaseModel):
    """
    A lost or found property report
    Collection: "post"
    """
    id: str = Field(..., description="Post ID")
    user_id: str = Field(..., description="Reporting user ID")
    user_name: str = Field(..., description="Reporter name at submission time")
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    category: str
    location: str
    date: str = Field(..., description="Date the item was lost or found")
    type: PostType
    status: PostStatus = Field(PostStatus.PENDING)
    image: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    """
    A single direct message about a post. Never updated once stored.
    Collection: "message"
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Message ID")
    post_id: str = Field(..., description="Post the thread is about")
    sender_id: str = Field(..., description="Sender user ID")
    recipient_id: str = Field(..., description="Recipient user ID")
    sender_name: str = Field(..., description="Sender name captured at send time")
    content: str = Field(..., min_length=1, max_length=4000, description="Message text")
    is_admin: bool = Field(False, description="Sender held the ADMIN role when sending")
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # MongoDB hands back naive datetimes
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ConversationUser(BaseModel):
    id: str
    name: str


class AdminConversation(BaseModel):
    """One thread per (post, student) in the property office inbox."""
    post: Post
    last_message: Message
    user: ConversationUser


class UserConversation(BaseModel):
    """One thread per post in a student's inbox; the other side is always the office."""
    post: Post
    last_message: Message


DEFAULT_ADMIN = User(
    id=ADMIN_USER_ID,
    name=ADMIN_NAME,
    email=ADMIN_EMAIL,
    role=UserRole.ADMIN,
    avatar="https://api.dicebear.com/7.x/avataaars/svg?seed=admin&backgroundColor=4f46e5",
)
