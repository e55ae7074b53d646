"""
Tests for the conversation session: history loading, send results and failures.
"""

import json

import allure
import pytest

from tutor_cli.chat.models import MessageRole
from tutor_cli.chat.session import ChatSession
from tutor_cli.constants import FAILED_TO_RESPOND_MESSAGE, LATEST_ANSWER_FALLBACK_TEXT
from tutor_cli.errors import TransportError


RECOVERABLE_BODY = (
    "Error code: 400 - {'error': {'failed_generation': "
    + repr(json.dumps({"title": "Rescued", "body": "Saved \\frac{1}{2}"}))
    + "}}"
)


def answer(title: str, body: str) -> str:
    return json.dumps({"title": title, "body": body})


@pytest.fixture
def session() -> ChatSession:
    chat = ChatSession(chat_id="c1")
    chat.load_history([
        {"id": "1", "role": "user", "content": "What is a fraction?"},
        {"id": "2", "role": "assistant", "content": answer("Fractions", "A part of a whole.")},
    ])
    return chat


@allure.feature("Chat Session")
@allure.story("History")
@allure.severity(allure.severity_level.NORMAL)
def test_load_history_decodes_entries(session):
    """History entries are decoded in order with nothing animated."""
    assert [m.role for m in session.messages] == [MessageRole.HUMAN, MessageRole.AI]
    assert session.pending_reveal() is None
    assert len(session) == 2


@allure.feature("Chat Session")
@allure.story("Send response")
@allure.severity(allure.severity_level.CRITICAL)
def test_duplicate_latest_answer_is_not_appended(session):
    """A latest_answer already present in the working list is skipped."""
    session.apply_send_response({
        "working": {"messages": [
            {"id": "1", "role": "user", "content": "What is a fraction?"},
            {"id": "2", "role": "assistant", "content": answer("Fractions", "A part of a whole.")},
            {"id": "3", "role": "user", "content": "Example?"},
            {"id": "4", "role": "assistant", "content": answer("Example", "One half.")},
        ]},
        "latest_answer": {"title": "Example", "body": "  One half.  "},
    })

    assert [m.id for m in session.messages] == ["1", "2", "3", "4"]
    assert session.pending_reveal().id == "4"


@allure.feature("Chat Session")
@allure.story("Send response")
@allure.severity(allure.severity_level.CRITICAL)
def test_new_latest_answer_is_appended_and_animated(session):
    """A fresh latest_answer is appended and is the only animated message."""
    messages = session.apply_send_response({
        "latest_answer": {"title": "More", "body": "Another*/*answer"},
    })

    assert len(messages) == 3
    newest = messages[-1]
    assert newest.id.startswith("ai_response_")
    assert newest.display_text == "Another*/*answer"
    assert newest.body == "Another*/*answer"
    assert newest.structured.title == "More"
    assert [m.animate for m in messages] == [False, False, True]


@allure.feature("Chat Session")
@allure.story("Send response")
@allure.severity(allure.severity_level.NORMAL)
def test_latest_answer_without_text_uses_fallback(session):
    """A latest_answer with no body text shows a generic notice."""
    messages = session.apply_send_response({"latest_answer": {"title": "Empty"}})

    assert messages[-1].display_text == LATEST_ANSWER_FALLBACK_TEXT


@allure.feature("Chat Session")
@allure.story("Send failure")
@allure.severity(allure.severity_level.CRITICAL)
def test_recoverable_failure_appends_rescued_message(session):
    """A failed generation is recovered and queued for reveal."""
    message = session.apply_send_failure(400, RECOVERABLE_BODY)

    assert message.id.startswith("rescue_")
    assert message.structured.title == "Rescued"
    assert message.body == "Saved \\frac{1}{2}"
    assert session.messages[-1] is message
    assert session.pending_reveal() is message


@allure.feature("Chat Session")
@allure.story("Send failure")
@allure.severity(allure.severity_level.CRITICAL)
def test_unrecoverable_generation_appends_generic_message(session):
    """Garbage after the marker becomes one generic failure message."""
    message = session.apply_send_failure(500, "{'failed_generation': 'garbage'}")

    assert message.display_text == FAILED_TO_RESPOND_MESSAGE
    assert message.role is MessageRole.AI
    assert not message.animate
    assert len(session) == 3


@allure.feature("Chat Session")
@allure.story("Send failure")
@allure.severity(allure.severity_level.CRITICAL)
def test_transport_failure_raises(session):
    """Failures without a generation are passed up to the caller."""
    with pytest.raises(TransportError) as exc_info:
        session.apply_send_failure(502, "Bad gateway")

    assert exc_info.value.status_code == 502
    assert len(session) == 2


def test_add_user_message_and_mark_revealed(session):
    """Local input is appended and reveal flags can be cleared."""
    session.add_user_message("Thanks!")
    assert session.messages[-1].role is MessageRole.HUMAN
    assert session.messages[-1].display_text == "Thanks!"

    rescued = session.apply_send_failure(500, RECOVERABLE_BODY)
    session.mark_revealed(rescued.id)
    assert session.pending_reveal() is None

    session.clear()
    assert session.messages == ()
