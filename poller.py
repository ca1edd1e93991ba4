"""Polling loops that keep an inbox and an open thread fresh.

There is no push channel: the only way to see the other side's new messages is to
refetch. Each tick replaces the local state wholesale.
"""

import asyncio
import inspect
import logging
import os
from typing import Any, Awaitable, Callable, List, Optional, Union

from repository import RegistryStore
from schemas import AdminConversation, Message, User, UserConversation, UserRole
from threads import admin_inbox, query_messages, user_inbox

logger = logging.getLogger(__name__)

INBOX_POLL_SECONDS = float(os.getenv("INBOX_POLL_SECONDS", "5"))
THREAD_POLL_SECONDS = float(os.getenv("THREAD_POLL_SECONDS", "3"))

Conversation = Union[AdminConversation, UserConversation]


class IntervalPoller:
    """Runs fetch() now and then every `interval` seconds, handing results to on_result.

    stop() cancels the loop and invalidates any fetch still in flight, so a result
    that lands after a restart is dropped instead of overwriting newer state.
    """

    def __init__(
        self,
        fetch: Callable[[], Union[Any, Awaitable[Any]]],
        on_result: Callable[[Any], None],
        interval: float,
        name: str = "poller",
    ):
        self.fetch = fetch
        self.on_result = on_result
        self.interval = interval
        self.name = name
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation))
        logger.debug("%s: started (interval %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("%s: stopped", self.name)

    async def tick(self) -> None:
        """Fetch once outside the schedule, e.g. right after sending a message."""
        await self._tick(self._generation)

    async def _tick(self, generation: int) -> None:
        try:
            result = self.fetch()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s: fetch failed, retrying next tick: %s", self.name, e)
            return
        if generation != self._generation:
            logger.debug("%s: dropping result from a superseded loop", self.name)
            return
        try:
            self.on_result(result)
        except Exception as e:
            # Keep polling when the consumer fails
            logger.warning("%s: result handler failed: %s", self.name, e, exc_info=True)

    async def _run(self, generation: int) -> None:
        while True:
            await self._tick(generation)
            await asyncio.sleep(self.interval)


class ConversationPoller:
    """Inbox and open-thread state for one signed-in user.

    The inbox loop follows the current user and the thread loop follows the
    selected thread; changing either stops the old loop before the new one starts.
    """

    def __init__(
        self,
        store: RegistryStore,
        on_change: Optional[Callable[["ConversationPoller"], None]] = None,
        inbox_interval: float = INBOX_POLL_SECONDS,
        thread_interval: float = THREAD_POLL_SECONDS,
    ):
        self.store = store
        self.on_change = on_change
        self.user: Optional[User] = None
        self.selected: Optional[Conversation] = None
        self.conversations: List[Conversation] = []
        self.messages: List[Message] = []
        self._inbox = IntervalPoller(self._fetch_inbox, self._set_conversations, inbox_interval, "inbox")
        self._thread = IntervalPoller(self._fetch_thread, self._set_messages, thread_interval, "thread")

    @property
    def polling_inbox(self) -> bool:
        return self._inbox.running

    @property
    def polling_thread(self) -> bool:
        return self._thread.running

    def participant_id(self) -> Optional[str]:
        """Whose exchange the open thread shows: the student's, never the office's."""
        if self.user is None or self.selected is None:
            return None
        if self.user.role == UserRole.ADMIN:
            return self.selected.user.id
        return self.user.id

    async def set_user(self, user: Optional[User]) -> None:
        await self._thread.stop()
        await self._inbox.stop()
        self.user = user
        self.selected = None
        self.conversations = []
        self.messages = []
        if user is not None:
            self._inbox.start()

    async def select_thread(self, thread: Optional[Conversation]) -> None:
        await self._thread.stop()
        self.selected = thread
        self.messages = []
        if thread is not None and self.user is not None:
            self._thread.start()

    async def refresh(self) -> None:
        if self.user is None:
            return
        await self._inbox.tick()
        if self.selected is not None:
            await self._thread.tick()

    async def close(self) -> None:
        await self.set_user(None)

    async def _fetch_inbox(self) -> List[Conversation]:
        user = self.user
        if user.role == UserRole.ADMIN:
            return await asyncio.to_thread(admin_inbox, self.store)
        return await asyncio.to_thread(user_inbox, self.store, user.id)

    async def _fetch_thread(self) -> List[Message]:
        return await asyncio.to_thread(
            query_messages, self.store.messages, self.selected.post.id, self.participant_id()
        )

    def _set_conversations(self, conversations: List[Conversation]) -> None:
        self.conversations = conversations
        if self.on_change:
            self.on_change(self)

    def _set_messages(self, messages: List[Message]) -> None:
        self.messages = messages
        if self.on_change:
            self.on_change(self)
