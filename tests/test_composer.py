"""Tests for sending messages."""

import pytest

from composer import (
    EmptyMessageError,
    RecipientResolutionError,
    compose_message,
    resolve_recipient,
)
from repository import InMemoryMessageLog
from schemas import ADMIN_USER_ID


def send(log, content="Is this my wallet?", **overrides):
    fields = {
        "post_id": "P1",
        "sender_id": "U1",
        "sender_name": "Ada",
        "content": content,
        "is_admin": False,
        "recipient_id": ADMIN_USER_ID,
    }
    fields.update(overrides)
    return compose_message(log, **fields)


class TestResolveRecipient:
    """Tests for resolve_recipient."""

    def test_student_always_writes_to_office(self):
        """Test a student's message goes to the office whatever else is given."""
        assert resolve_recipient("U1", False) == ADMIN_USER_ID
        assert resolve_recipient("U9", False, counterparty_id="U5") == ADMIN_USER_ID

    def test_admin_replies_to_open_thread(self):
        """Test the open thread's student wins over the post owner."""
        assert resolve_recipient("U1", True, counterparty_id="U2") == "U2"

    def test_admin_falls_back_to_post_owner(self):
        """Test replying from the post itself goes to the reporter."""
        assert resolve_recipient("U1", True) == "U1"

    def test_admin_with_nobody_to_reply_to(self):
        """Test an admin reply with no counterparty or owner is rejected."""
        with pytest.raises(RecipientResolutionError):
            resolve_recipient(None, True)

    def test_admin_reply_to_office_rejected(self):
        """Test the office cannot reply to itself via the thread or the post owner."""
        with pytest.raises(RecipientResolutionError):
            resolve_recipient("U1", True, counterparty_id=ADMIN_USER_ID)
        with pytest.raises(RecipientResolutionError):
            resolve_recipient(ADMIN_USER_ID, True)

    def test_custom_admin_id(self):
        """Test the administrator id can be overridden."""
        assert resolve_recipient("U1", False, admin_id="office") == "office"


class TestComposeMessage:
    """Tests for compose_message."""

    def test_appends_and_returns_stored_message(self):
        """Test a valid message gets an id and timestamp and lands in the log."""
        log = InMemoryMessageLog()

        msg = send(log)

        assert msg.id.startswith("m_")
        assert msg.timestamp is not None
        assert msg.recipient_id == ADMIN_USER_ID
        assert log.all() == [msg]

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_empty_content_rejected(self, content):
        """Test blank content raises and leaves the log untouched."""
        log = InMemoryMessageLog()
        send(log)

        with pytest.raises(EmptyMessageError):
            send(log, content=content)

        assert len(log.all()) == 1

    def test_identical_payloads_get_distinct_ids(self):
        """Test the same payload twice makes two separate messages."""
        log = InMemoryMessageLog()

        first = send(log)
        second = send(log)

        assert first.id != second.id
        assert [m.id for m in log.all()] == [first.id, second.id]
        assert first.content == second.content

    def test_stored_messages_are_immutable(self):
        """Test a stored message cannot be edited."""
        log = InMemoryMessageLog()
        msg = send(log)

        with pytest.raises(Exception):
            msg.content = "edited"

        assert log.all()[0].content == "Is this my wallet?"

    def test_admin_message_keeps_flags(self):
        """Test an office reply is stored as admin-authored to the student."""
        log = InMemoryMessageLog()

        msg = send(log, sender_id=ADMIN_USER_ID, sender_name="AAU Property Office", is_admin=True, recipient_id="U1")

        assert msg.is_admin is True
        assert msg.recipient_id == "U1"
