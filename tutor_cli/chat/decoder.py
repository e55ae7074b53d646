"""Decoder for raw conversation entries returned by the chat endpoints.

Each raw entry is ``{id?, role|type, content}``. Decoding:
- Normalises the role (``user`` and ``assistant`` are synonyms)
- Treats JSON-shaped content as AI output unless explicitly ``system``
- Unwraps ``{name, arguments}`` tool-call envelopes and ``structured_output``
- Splits the structured payload into a display body plus auxiliary fields
- Drops ``system`` entries, which carry orchestration-only content

The decoder never raises. A payload that fails to parse is shown as plain
AI text and the remaining entries are still decoded.
"""

import json
import logging
import time
from typing import Any, Callable, Iterable, Optional

from tutor_cli.chat.models import DecodedMessage, MediaRefs, MessageRole, StructuredOutput
from tutor_cli.constants import (
    ENVELOPE_ARGUMENTS_KEY,
    ENVELOPE_NAME_KEY,
    MAX_ENVELOPE_DEPTH,
    PARAGRAPH_SENTINEL,
    STRUCTURED_FIELDS,
    STRUCTURED_OUTPUT_KEY,
)
from tutor_cli.errors import decode_failure


logger = logging.getLogger(__name__)


_ROLE_SYNONYMS: dict[str, MessageRole] = {
    "human": MessageRole.HUMAN,
    "user": MessageRole.HUMAN,
    "ai": MessageRole.AI,
    "assistant": MessageRole.AI,
    "system": MessageRole.SYSTEM,
}

_JSON_OPENERS = ("{", "[")


def normalize_role(entry: dict) -> MessageRole:
    """Read the role from ``type`` or ``role``; unknown values mean human."""
    raw = entry.get("type") or entry.get("role") or ""
    return _ROLE_SYNONYMS.get(str(raw).strip().lower(), MessageRole.HUMAN)


def content_as_text(content: Any) -> str:
    """Coerce an entry's content field to a string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, (dict, list)):
        return json.dumps(content, ensure_ascii=False)
    return str(content)


def looks_structured(text: str) -> bool:
    """Whether text is shaped like a JSON object or array."""
    return text.strip().startswith(_JSON_OPENERS)


def is_envelope(value: Any) -> bool:
    """Whether ``value`` is a ``{name, arguments}`` tool-call envelope."""
    return (
        isinstance(value, dict)
        and bool(value.get(ENVELOPE_NAME_KEY))
        and isinstance(value.get(ENVELOPE_ARGUMENTS_KEY), (dict, str))
    )


def unwrap_payload(
    value: Any,
    loads: Callable[[str], Any] = json.loads,
    max_depth: int = MAX_ENVELOPE_DEPTH,
) -> Any:
    """Peel tool-call envelopes, then a ``structured_output`` wrapper.

    Args:
        value: Parsed JSON value
        loads: Parser for string-encoded ``arguments``
        max_depth: Most envelopes peeled before giving up

    Returns:
        The innermost payload. An envelope whose string arguments fail to
        parse is returned as-is.
    """
    for _ in range(max_depth):
        if not is_envelope(value):
            break
        arguments = value[ENVELOPE_ARGUMENTS_KEY]
        if isinstance(arguments, str):
            try:
                arguments = loads(arguments)
            except (ValueError, TypeError, RecursionError) as e:
                logger.debug("Envelope arguments are not JSON: %s", e)
                break
        value = arguments

    if isinstance(value, dict) and isinstance(value.get(STRUCTURED_OUTPUT_KEY), dict):
        value = value[STRUCTURED_OUTPUT_KEY]

    return value


def payload_body(payload: dict) -> str:
    """The payload's ``body``, or empty string when absent or not a string."""
    body = payload.get("body")
    return body if isinstance(body, str) else ""


def strip_sentinels(body: str) -> str:
    """Plain-text rendition of a body with paragraph sentinels as blank lines."""
    return body.replace(PARAGRAPH_SENTINEL, "\n\n")


def string_list(value: Any) -> Optional[list[str]]:
    """Coerce a list-of-strings field; a lone string becomes a one-item list.

    Other values and non-string items are dropped.
    """
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        if value is not None:
            logger.debug("Dropping non-list field value of type %s", type(value).__name__)
        return None
    return [item for item in value if isinstance(item, str)]


def build_structured(payload: dict) -> StructuredOutput:
    """Collect auxiliary fields from a structured payload."""
    return StructuredOutput(
        title=payload.get("title"),
        links=string_list(payload.get("links")),
        related_topics=string_list(payload.get("next_related_topic")),
        follow_up_questions=string_list(payload.get("next_questions")),
        media=MediaRefs(
            need_of_manim=payload.get("Need_of_manim"),
            manim_video_path=payload.get("manim_video_path"),
        ),
        extras={k: v for k, v in payload.items() if k not in STRUCTURED_FIELDS},
    )


def message_from_payload(
    payload: dict,
    message_id: str,
    display_text: Optional[str] = None,
    animate: bool = False,
) -> DecodedMessage:
    """Build an AI DecodedMessage from an unwrapped structured payload."""
    body = payload_body(payload)
    return DecodedMessage(
        id=message_id,
        role=MessageRole.AI,
        display_text=strip_sentinels(body) if display_text is None else display_text,
        body=body,
        structured=build_structured(payload),
        animate=animate,
    )


def decode_entry(entry: Any, index: int = 0, now_ms: Optional[int] = None) -> Optional[DecodedMessage]:
    """Decode one raw entry.

    Args:
        entry: Raw ``{id?, role|type, content}`` mapping
        index: Position in the history, used for generated ids
        now_ms: Epoch milliseconds used for generated ids

    Returns:
        The decoded message, or None for ``system`` entries
    """
    if not isinstance(entry, dict):
        entry = {"content": entry}

    role = normalize_role(entry)
    raw = content_as_text(entry.get("content"))
    trimmed = raw.strip()

    # Only the model emits structured JSON; local input never does
    if trimmed.startswith(_JSON_OPENERS) and role is not MessageRole.SYSTEM:
        role = MessageRole.AI

    if role is MessageRole.SYSTEM:
        return None

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    message_id = str(entry.get("id") or f"msg_{now_ms}_{index}")

    if role is MessageRole.AI and trimmed.startswith(_JSON_OPENERS):
        payload = _parse_structured(trimmed)
        if payload is not None:
            return message_from_payload(payload, message_id)

    return DecodedMessage(id=message_id, role=role, display_text=raw, body=raw)


def decode_messages(entries: Optional[Iterable[Any]]) -> list[DecodedMessage]:
    """Decode a history of raw entries, dropping system entries.

    Args:
        entries: Raw entries in conversation order

    Returns:
        Decoded messages in the same order
    """
    if not entries:
        return []

    now_ms = int(time.time() * 1000)
    messages: list[DecodedMessage] = []

    for index, entry in enumerate(entries):
        message = decode_entry(entry, index, now_ms)
        if message is not None:
            messages.append(message)

    return messages


def _parse_structured(text: str) -> Optional[dict]:
    """Parse and unwrap a JSON-shaped AI entry; None means show it raw."""
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as e:
        failure = decode_failure(f"AI entry is not valid JSON, showing raw text: {e}", text)
        logger.debug("%s: %s", failure.error_type.value, failure.message)
        return None

    payload = unwrap_payload(parsed)
    if not isinstance(payload, dict):
        failure = decode_failure(
            f"Structured AI entry is {type(payload).__name__}, not an object; showing raw text",
            text,
        )
        logger.debug("%s: %s", failure.error_type.value, failure.message)
        return None
    return payload
