"""Conversation threads derived from the message log.

Threads are never stored. Every inbox fetch regroups the whole log, so a thread
always reflects what is in the log and the post catalog right now.
"""

import logging
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, TypeVar

from repository import MessageLog, RegistryStore
from schemas import (
    UNNAMED_STUDENT,
    AdminConversation,
    ConversationUser,
    Message,
    Post,
    UserConversation,
)

logger = logging.getLogger(__name__)

Thread = TypeVar("Thread", AdminConversation, UserConversation)

KeyFn = Callable[[Message], Optional[Hashable]]
SummarizeFn = Callable[[Hashable, Post, List[Message]], Thread]


def latest(messages: Iterable[Message]) -> Message:
    """The message with the greatest timestamp; on a tie the later one in log order."""
    current = None
    for m in messages:
        if current is None or m.timestamp >= current.timestamp:
            current = m
    if current is None:
        raise ValueError("latest() of an empty thread")
    return current


def group_threads(
    messages: Iterable[Message],
    posts: Iterable[Post],
    key_fn: KeyFn,
    summarize: SummarizeFn,
) -> List[Thread]:
    """Group messages into threads, newest thread first.

    Args:
        messages: The message log in log order
        posts: The post catalog
        key_fn: Thread key for a message, or None to leave the message out
        summarize: Builds the thread summary from its key, post and messages

    Messages whose post no longer exists are dropped before grouping.
    """
    catalog: Dict[str, Post] = {p.id: p for p in posts}
    groups: Dict[Hashable, List[Message]] = {}
    orphans = 0

    for m in messages:
        if m.post_id not in catalog:
            orphans += 1
            continue
        key = key_fn(m)
        if key is None:
            continue
        groups.setdefault(key, []).append(m)

    if orphans:
        logger.debug("Dropped %d messages for posts that no longer exist", orphans)

    threads = [summarize(key, catalog[msgs[0].post_id], msgs) for key, msgs in groups.items()]
    # list.sort is stable with reverse=True, so ties keep first-seen order
    threads.sort(key=lambda t: t.last_message.timestamp, reverse=True)
    return threads


def student_id(message: Message) -> str:
    """The non-admin side of a message, whichever way it travelled."""
    return message.recipient_id if message.is_admin else message.sender_id


def _admin_key(message: Message):
    return (message.post_id, student_id(message))


def _admin_summary(key, post: Post, messages: List[Message]) -> AdminConversation:
    _, sid = key
    # Name the student from their own words, even when the office spoke last
    student_messages = [m for m in messages if not m.is_admin]
    name = latest(student_messages).sender_name if student_messages else UNNAMED_STUDENT
    return AdminConversation(
        post=post,
        last_message=latest(messages),
        user=ConversationUser(id=sid, name=name),
    )


def build_admin_inbox(messages: Iterable[Message], posts: Iterable[Post]) -> List[AdminConversation]:
    """One thread per (post, student) across the whole log."""
    return group_threads(messages, posts, _admin_key, _admin_summary)


def build_user_inbox(user_id: str, messages: Iterable[Message], posts: Iterable[Post]) -> List[UserConversation]:
    """One thread per post the user has sent or received a message about."""

    def key_fn(message: Message):
        if user_id in (message.sender_id, message.recipient_id):
            return message.post_id
        return None

    def summarize(key, post: Post, messages: List[Message]) -> UserConversation:
        return UserConversation(post=post, last_message=latest(messages))

    return group_threads(messages, posts, key_fn, summarize)


def query_messages(log: MessageLog, post_id: str, participant_id: Optional[str] = None) -> List[Message]:
    """Messages on one post, oldest first.

    With participant_id only that participant's exchange is returned. An
    administrator reading one student's thread must pass the student's id;
    without it every student's messages on the post come back.
    """
    messages: Sequence[Message] = log.query_by_post(post_id)
    if participant_id:
        messages = [m for m in messages if participant_id in (m.sender_id, m.recipient_id)]
    return sorted(messages, key=lambda m: m.timestamp)


def admin_inbox(store: RegistryStore) -> List[AdminConversation]:
    return build_admin_inbox(store.messages.all(), store.posts.all())


def user_inbox(store: RegistryStore, user_id: str) -> List[UserConversation]:
    return build_user_inbox(user_id, store.messages.query_by_user(user_id), store.posts.all())
