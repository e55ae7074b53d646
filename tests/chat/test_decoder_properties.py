"""
Property-based tests for the conversation entry decoder.

Tests role inference, envelope unwrapping and totality using hypothesis.
"""

import json
import logging

import allure
import pytest
from hypothesis import given, settings, strategies as st

from tutor_cli.chat.decoder import decode_entry, decode_messages, normalize_role, unwrap_payload
from tutor_cli.chat.models import DecodedMessage, MessageRole


# Strategies for generating test data

@st.composite
def structured_payload_strategy(draw):
    """Generate structured answer payloads."""
    title = draw(st.text(min_size=1, max_size=30))
    paragraphs = draw(st.lists(st.text(min_size=0, max_size=30), min_size=1, max_size=4))
    payload = {"title": title, "body": "*/*".join(paragraphs)}
    if draw(st.booleans()):
        payload["links"] = draw(st.lists(st.text(max_size=20), max_size=3))
    if draw(st.booleans()):
        payload["next_questions"] = draw(st.lists(st.text(max_size=20), max_size=3))
    return payload


json_scalar = st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=20))


@st.composite
def raw_entry_strategy(draw):
    """Generate arbitrary, possibly malformed, raw entries."""
    content = draw(st.one_of(
        st.text(max_size=40),
        st.just("{not json"),
        st.just("[1, 2]"),
        st.builds(json.dumps, structured_payload_strategy()),
        st.lists(json_scalar, max_size=3),
        st.dictionaries(st.text(max_size=5), json_scalar, max_size=3),
        json_scalar,
    ))
    entry = {"content": content}
    role = draw(st.one_of(
        st.none(),
        st.sampled_from(["user", "human", "assistant", "ai", "system", "tool", "AI"]),
        st.integers(),
    ))
    if role is not None:
        entry[draw(st.sampled_from(["role", "type"]))] = role
    if draw(st.booleans()):
        entry["id"] = draw(st.one_of(st.text(max_size=10), st.integers()))
    return draw(st.one_of(st.just(entry), json_scalar))


def wrap(payload: dict, style: str) -> dict:
    """Wrap a payload the ways the backend has been seen to."""
    if style == "bare":
        return payload
    if style == "envelope":
        return {"name": "json", "arguments": payload}
    if style == "string_arguments":
        return {"name": "json", "arguments": json.dumps(payload)}
    if style == "structured_output":
        return {"structured_output": payload}
    if style == "envelope_structured_output":
        return {"name": "json", "arguments": {"structured_output": payload}}
    return {"name": "outer", "arguments": {"name": "inner", "arguments": payload}}


@allure.feature("Message Decoder")
@allure.story("Envelope unwrap")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=100)
@given(
    payload=structured_payload_strategy(),
    style=st.sampled_from([
        "envelope",
        "string_arguments",
        "structured_output",
        "envelope_structured_output",
        "nested_envelope",
    ]),
)
def test_envelopes_decode_like_bare_payload(payload, style):
    """
    Property 11: Envelope unwrap

    For any structured payload, decoding it inside any supported wrapper
    SHALL yield the same title, body and display text as decoding it bare.
    """
    bare = decode_entry({"id": "a", "content": json.dumps(payload)})
    wrapped = decode_entry({"id": "a", "content": json.dumps(wrap(payload, style))})

    assert wrapped.role is MessageRole.AI
    assert wrapped.body == bare.body == payload["body"]
    assert wrapped.display_text == bare.display_text
    assert wrapped.structured == bare.structured
    assert wrapped.structured.title == payload["title"]


@allure.feature("Message Decoder")
@allure.story("Totality")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=100)
@given(entries=st.lists(raw_entry_strategy(), max_size=8))
def test_decode_never_raises_and_drops_system(entries):
    """
    Property 12: Decoder totality

    For any list of entries, decoding SHALL not raise, SHALL return at most
    one message per entry, and no message SHALL have the system role.
    """
    messages = decode_messages(entries)

    assert len(messages) <= len(entries)
    for message in messages:
        assert isinstance(message, DecodedMessage)
        assert message.role in (MessageRole.HUMAN, MessageRole.AI)
        assert message.id


@allure.feature("Message Decoder")
@allure.story("Role inference")
@allure.severity(allure.severity_level.CRITICAL)
def test_json_content_without_role_is_ai():
    """JSON-shaped content is model output whatever the declared role."""
    message = decode_entry({"content": '{"title":"t","body":"b"}'})

    assert message.role is MessageRole.AI
    assert message.structured.title == "t"
    assert message.body == "b"

    user_claimed = decode_entry({"role": "user", "content": '{"title":"t","body":"b"}'})
    assert user_claimed.role is MessageRole.AI


@allure.feature("Message Decoder")
@allure.story("Role inference")
@allure.severity(allure.severity_level.NORMAL)
@pytest.mark.parametrize("entry,expected", [
    ({"role": "human", "content": "hello"}, MessageRole.HUMAN),
    ({"role": "user", "content": "hello"}, MessageRole.HUMAN),
    ({"type": "assistant", "content": "hello"}, MessageRole.AI),
    ({"type": "AI", "content": "hello"}, MessageRole.AI),
    ({"role": "moderator", "content": "hello"}, MessageRole.HUMAN),
    ({"content": "hello"}, MessageRole.HUMAN),
    ({"role": "System", "content": "x"}, MessageRole.SYSTEM),
])
def test_normalize_role(entry, expected):
    """Role synonyms collapse to human, ai or system."""
    assert normalize_role(entry) is expected


@allure.feature("Message Decoder")
@allure.story("System entries")
@allure.severity(allure.severity_level.NORMAL)
def test_system_entries_are_dropped():
    """System entries never reach the conversation, JSON or not."""
    messages = decode_messages([
        {"role": "system", "content": "You are a tutor"},
        {"role": "system", "content": '{"title": "x"}'},
        {"role": "human", "content": "hi"},
    ])

    assert [m.display_text for m in messages] == ["hi"]


@allure.feature("Message Decoder")
@allure.story("Decode failure fallback")
@allure.severity(allure.severity_level.NORMAL)
def test_invalid_json_is_shown_raw_and_rest_decodes():
    """A broken payload degrades to raw text without stopping the batch."""
    messages = decode_messages([
        {"type": "ai", "content": '{"title": "T", "body": '},
        {"type": "ai", "content": "[1, 2]"},
        {"type": "ai", "content": '{"title": "ok", "body": "fine"}'},
    ])

    assert messages[0].display_text == '{"title": "T", "body": '
    assert messages[0].structured is None
    assert messages[1].display_text == "[1, 2]"
    assert messages[1].structured is None
    assert messages[2].structured.title == "ok"


@allure.feature("Message Decoder")
@allure.story("Structured fields")
@allure.severity(allure.severity_level.NORMAL)
def test_structured_fields_and_extras():
    """Auxiliary fields are carried verbatim and unknown keys kept as extras."""
    payload = {
        "title": "T",
        "body": "one*/*two",
        "links": ["https://a"],
        "Need_of_manim": "true",
        "manim_video_path": "/v.mp4",
        "next_related_topic": ["R"],
        "next_questions": ["Q?"],
        "difficulty": 2,
    }
    message = decode_entry({"id": 7, "type": "ai", "content": payload})

    assert message.id == "7"
    assert message.display_text == "one\n\ntwo"
    assert message.body == "one*/*two"
    assert message.structured.links == ["https://a"]
    assert message.structured.related_topics == ["R"]
    assert message.structured.follow_up_questions == ["Q?"]
    assert message.structured.media.manim_video_path == "/v.mp4"
    assert message.structured.extras == {"difficulty": 2}


@allure.feature("Message Decoder")
@allure.story("Structured fields")
@allure.severity(allure.severity_level.NORMAL)
@pytest.mark.parametrize("value,expected", [
    (5, None),
    ({"url": "https://a"}, None),
    ("https://x.io", ["https://x.io"]),
    (["https://a", 3, None, "https://b"], ["https://a", "https://b"]),
])
def test_list_fields_are_coerced_to_strings(value, expected):
    """Link and suggestion fields always come out as lists of strings."""
    payload = {
        "title": "t",
        "body": "b",
        "links": value,
        "next_related_topic": value,
        "next_questions": value,
    }
    message = decode_entry({"role": "ai", "content": json.dumps(payload)})

    assert message.structured.links == expected
    assert message.structured.related_topics == expected
    assert message.structured.follow_up_questions == expected


@allure.feature("Message Decoder")
@allure.story("Identifiers")
@allure.severity(allure.severity_level.MINOR)
def test_missing_id_is_generated():
    """Entries without an id get a time-and-index id."""
    message = decode_entry({"role": "user", "content": "hi"}, index=2, now_ms=5)

    assert message.id == "msg_5_2"


@allure.feature("Message Decoder")
@allure.story("Envelope unwrap")
@allure.severity(allure.severity_level.MINOR)
def test_unwrap_stops_at_depth_limit():
    """Envelope peeling stops after the configured depth."""
    inner = {"title": "T", "body": "B"}
    nested = {"name": "a", "arguments": {"name": "b", "arguments": inner}}

    assert unwrap_payload(nested) == inner
    assert unwrap_payload(nested, max_depth=1) == {"name": "b", "arguments": inner}
    assert unwrap_payload({"name": "a", "arguments": "not json"}) == {
        "name": "a",
        "arguments": "not json",
    }


@allure.feature("Message Decoder")
@allure.story("Decode failures")
@allure.severity(allure.severity_level.MINOR)
def test_decode_failure_is_logged_and_shown_raw(caplog):
    """A broken JSON entry is logged as a decode failure and kept as text."""
    with caplog.at_level(logging.DEBUG, logger="tutor_cli.chat.decoder"):
        message = decode_entry({"role": "ai", "content": '{"title": "t", "body"'})

    assert message.body == '{"title": "t", "body"'
    assert message.structured is None
    assert "decode_failure" in caplog.text
