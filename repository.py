"""Registry storage: the message log, the post catalog and the user directory.

Each collection sits behind a narrow interface so the thread builder and the
composer never see a storage shape. Reads fail soft: an unreachable store or a
corrupt record costs that collection (or that record), never the whole request.
"""

import copy
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

import database
from schemas import DEFAULT_ADMIN, Message, Post, PostStatus, User, UserRole

logger = logging.getLogger(__name__)

Model = TypeVar("Model", bound=BaseModel)

MESSAGE_COLLECTION = "message"
POST_COLLECTION = "post"
USER_COLLECTION = "user"


class RegistryError(Exception):
    """Base exception for registry storage errors."""
    pass


class StoreUnavailableError(RegistryError):
    """Raised when a write cannot reach the backing store."""
    pass


class PostNotFoundError(RegistryError):
    """Raised when a post id does not resolve."""
    pass


def _parse_all(model: Type[Model], docs: List[Dict[str, Any]], collection: str) -> List[Model]:
    """Validate stored records, skipping any that no longer fit the model."""
    items = []
    for doc in docs:
        try:
            items.append(model.model_validate(database.to_str_id(doc)))
        except ValidationError as e:
            logger.warning("Skipping corrupt %s record %s: %s", collection, doc.get("_id"), e)
    return items


class MessageLog(ABC):
    """Append-only message log."""

    @abstractmethod
    def append(self, message: Message) -> Message:
        """Store a new message and return it. Never overwrites an existing record."""
        pass

    @abstractmethod
    def query_by_post(self, post_id: str) -> List[Message]:
        """All messages on a post in log order."""
        pass

    @abstractmethod
    def query_by_user(self, user_id: str) -> List[Message]:
        """All messages the user sent or received, in log order."""
        pass

    @abstractmethod
    def all(self) -> List[Message]:
        pass


class PostCatalog(ABC):
    """Lookup of post id to post record, plus the writes used by the moderation flow."""

    @abstractmethod
    def resolve(self, post_id: str) -> Optional[Post]:
        pass

    @abstractmethod
    def all(self) -> List[Post]:
        pass

    @abstractmethod
    def add(self, post: Post) -> Post:
        pass

    @abstractmethod
    def update_status(self, post_id: str, status: PostStatus) -> Post:
        """Raises PostNotFoundError for an unknown id."""
        pass

    @abstractmethod
    def delete(self, post_id: str) -> None:
        """Remove a post. Its messages stay in the log as orphans.

        Raises PostNotFoundError for an unknown id.
        """
        pass

    def visible_to(self, role: UserRole, user_id: Optional[str] = None) -> List[Post]:
        posts = self.all()
        if role == UserRole.ADMIN:
            return posts
        if user_id:
            return [p for p in posts if p.user_id == user_id]
        return [p for p in posts if p.status == PostStatus.APPROVED]


class UserDirectory(ABC):

    @abstractmethod
    def get(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def all(self) -> List[User]:
        pass

    @abstractmethod
    def add(self, user: User) -> User:
        pass

    def find_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        for user in self.all():
            if user.email.lower() == email:
                return user
        return None

    def ensure_admin(self) -> User:
        """Register the property office account if no administrator exists yet."""
        for user in self.all():
            if user.role == UserRole.ADMIN:
                return user
        logger.info("Registering administrator %s", DEFAULT_ADMIN.id)
        return self.add(DEFAULT_ADMIN)

    def login(self, email: str) -> User:
        """Find a user by email, registering a new one on first sight."""
        user = self.find_by_email(email)
        if user is not None:
            return user

        email = email.lower()
        local_part = email.split("@")[0]
        user = User(
            id="u_" + uuid.uuid4().hex[:9],
            name=local_part[:1].upper() + local_part[1:],
            email=email,
            role=UserRole.ADMIN if "admin" in email else UserRole.USER,
            avatar=f"https://api.dicebear.com/7.x/avataaars/svg?seed={email}",
        )
        logger.info("Registered new %s user %s", user.role.value, user.id)
        return self.add(user)


# In-memory backends


class InMemoryMessageLog(MessageLog):
    """In-memory message log for testing and local development."""

    def __init__(self):
        self._messages: List[Message] = []

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        logger.debug("InMemoryMessageLog: appended %s on post %s", message.id, message.post_id)
        return message

    def query_by_post(self, post_id: str) -> List[Message]:
        return [m for m in self._messages if m.post_id == post_id]

    def query_by_user(self, user_id: str) -> List[Message]:
        return [m for m in self._messages if user_id in (m.sender_id, m.recipient_id)]

    def all(self) -> List[Message]:
        return list(self._messages)


class InMemoryPostCatalog(PostCatalog):

    def __init__(self):
        self._posts: Dict[str, Post] = {}

    def resolve(self, post_id: str) -> Optional[Post]:
        post = self._posts.get(post_id)
        return copy.deepcopy(post) if post else None

    def all(self) -> List[Post]:
        # Newest submissions first, as the registry lists them
        return [copy.deepcopy(p) for p in reversed(list(self._posts.values()))]

    def add(self, post: Post) -> Post:
        self._posts[post.id] = copy.deepcopy(post)
        return post

    def update_status(self, post_id: str, status: PostStatus) -> Post:
        if post_id not in self._posts:
            raise PostNotFoundError(f"Post {post_id} not found")
        updated = self._posts[post_id].model_copy(update={"status": status})
        self._posts[post_id] = updated
        return copy.deepcopy(updated)

    def delete(self, post_id: str) -> None:
        if post_id not in self._posts:
            raise PostNotFoundError(f"Post {post_id} not found")
        del self._posts[post_id]


class InMemoryUserDirectory(UserDirectory):

    def __init__(self):
        self._users: Dict[str, User] = {}

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def all(self) -> List[User]:
        return list(self._users.values())

    def add(self, user: User) -> User:
        self._users[user.id] = user
        return user


# MongoDB backends


class _MongoCollection:
    """Shared read/write plumbing over one MongoDB collection."""

    collection = ""
    model: Type[BaseModel] = BaseModel

    def __init__(self, db):
        self.db = db

    def _load(self, filter_dict: Optional[Dict[str, Any]] = None, sort=None) -> list:
        try:
            docs = database.get_documents(self.collection, filter_dict, sort=sort, database=self.db)
        except PyMongoError as e:
            logger.error("Read from %s failed, treating as empty: %s", self.collection, e, exc_info=True)
            return []
        return _parse_all(self.model, docs, self.collection)

    def _insert(self, item: BaseModel) -> None:
        data = {k: (v.value if isinstance(v, Enum) else v) for k, v in item.model_dump().items()}
        data["_id"] = data.pop("id")
        try:
            database.create_document(self.collection, data, database=self.db)
        except PyMongoError as e:
            raise StoreUnavailableError(f"Write to {self.collection} failed: {e}") from e


class MongoMessageLog(_MongoCollection, MessageLog):
    collection = MESSAGE_COLLECTION
    model = Message

    # Insert order breaks timestamp ties
    _order = [("timestamp", ASCENDING), ("created_at", ASCENDING)]

    def append(self, message: Message) -> Message:
        # insert_one is atomic per document, so concurrent senders never drop each other
        self._insert(message)
        logger.debug("MongoMessageLog: appended %s on post %s", message.id, message.post_id)
        return message

    def query_by_post(self, post_id: str) -> List[Message]:
        return self._load({"post_id": post_id}, sort=self._order)

    def query_by_user(self, user_id: str) -> List[Message]:
        return self._load(
            {"$or": [{"sender_id": user_id}, {"recipient_id": user_id}]},
            sort=self._order,
        )

    def all(self) -> List[Message]:
        return self._load(sort=self._order)


class MongoPostCatalog(_MongoCollection, PostCatalog):
    collection = POST_COLLECTION
    model = Post

    def resolve(self, post_id: str) -> Optional[Post]:
        found = self._load({"_id": post_id})
        return found[0] if found else None

    def all(self) -> List[Post]:
        return self._load(sort=[("created_at", -1)])

    def add(self, post: Post) -> Post:
        self._insert(post)
        return post

    def update_status(self, post_id: str, status: PostStatus) -> Post:
        try:
            result = self.db[self.collection].update_one(
                {"_id": post_id},
                {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc)}},
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"Write to {self.collection} failed: {e}") from e
        if result.matched_count == 0:
            raise PostNotFoundError(f"Post {post_id} not found")
        post = self.resolve(post_id)
        if post is None:
            raise PostNotFoundError(f"Post {post_id} not found")
        return post

    def delete(self, post_id: str) -> None:
        try:
            result = self.db[self.collection].delete_one({"_id": post_id})
        except PyMongoError as e:
            raise StoreUnavailableError(f"Write to {self.collection} failed: {e}") from e
        if result.deleted_count == 0:
            raise PostNotFoundError(f"Post {post_id} not found")


class MongoUserDirectory(_MongoCollection, UserDirectory):
    collection = USER_COLLECTION
    model = User

    def get(self, user_id: str) -> Optional[User]:
        found = self._load({"_id": user_id})
        return found[0] if found else None

    def all(self) -> List[User]:
        return self._load()

    def add(self, user: User) -> User:
        self._insert(user)
        return user


@dataclass
class RegistryStore:
    store_type: str
    messages: MessageLog
    posts: PostCatalog
    users: UserDirectory


def create_store(store_type: Optional[str] = None, db=None) -> RegistryStore:
    """Build the registry store.

    Args:
        store_type: "mongodb" or "inmemory". If None, reads REGISTRY_STORE, falling
            back to "mongodb" when a database is configured and "inmemory" otherwise.
        db: pymongo Database to use instead of database.db

    Raises:
        ValueError: If store_type is not recognized, or mongodb has no database
    """
    if store_type is None:
        store_type = os.getenv("REGISTRY_STORE") or ("mongodb" if database.db is not None else "inmemory")

    if store_type == "mongodb":
        db = database.db if db is None else db
        if db is None:
            raise ValueError("mongodb store requested but DATABASE_URL/DATABASE_NAME are not set")
        return RegistryStore(
            store_type=store_type,
            messages=MongoMessageLog(db),
            posts=MongoPostCatalog(db),
            users=MongoUserDirectory(db),
        )
    elif store_type == "inmemory":
        return RegistryStore(
            store_type=store_type,
            messages=InMemoryMessageLog(),
            posts=InMemoryPostCatalog(),
            users=InMemoryUserDirectory(),
        )
    else:
        raise ValueError(f"Unknown store_type: {store_type}")
