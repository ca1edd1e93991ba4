"""Shared fixtures for registry tests."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from repository import create_store
from schemas import ADMIN_USER_ID, Message, Post, PostType

EPOCH = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_post():
    """Build a post owned by the given user."""

    def _make(post_id, owner="u_owner", **overrides):
        fields = {
            "id": post_id,
            "user_id": owner,
            "user_name": owner.title(),
            "title": f"Lost item {post_id}",
            "description": "Black backpack with a laptop inside",
            "category": "Bags",
            "location": "Main library",
            "date": "2025-02-28",
            "type": PostType.LOST,
        }
        fields.update(overrides)
        return Post(**fields)

    return _make


@pytest.fixture
def make_message():
    """Build a message at EPOCH + t seconds. Admin messages default to the admin sender."""

    def _make(msg_id, post_id, sender, recipient, t, is_admin=None, name=None, content="hello"):
        if is_admin is None:
            is_admin = sender == ADMIN_USER_ID
        return Message(
            id=msg_id,
            post_id=post_id,
            sender_id=sender,
            recipient_id=recipient,
            sender_name=name or ("AAU Property Office" if is_admin else sender.title()),
            content=content,
            is_admin=is_admin,
            timestamp=EPOCH + timedelta(seconds=t),
        )

    return _make


@pytest.fixture
def store():
    """An in-memory registry with the administrator registered."""
    registry = create_store("inmemory")
    registry.users.ensure_admin()
    return registry


@pytest.fixture
def client(store, monkeypatch):
    """TestClient wired to the in-memory store."""
    import main

    monkeypatch.setattr(main, "store", store)
    return TestClient(main.app)
