"""
Conversation session for tutor_cli.

A ChatSession owns the decoded message list of the one conversation that is
currently active. The list is never edited in place: every update builds a
new tuple and swaps it in, so a renderer holding the previous tuple keeps a
consistent snapshot.
"""
import logging
import time
from dataclasses import replace
from typing import Any, Iterable, Optional

from .decoder import decode_messages, message_from_payload
from .models import DecodedMessage, MessageRole
from .recovery import recover
from ..config import RecoveryConfig
from ..constants import FAILED_TO_RESPOND_MESSAGE, LATEST_ANSWER_FALLBACK_TEXT
from ..errors import TransportError, is_generation_failure


logger = logging.getLogger(__name__)

# How many trailing messages are checked before merging latest_answer
DUPLICATE_WINDOW = 3


def _now_ms() -> int:
    return int(time.time() * 1000)


def _comparable_text(message: DecodedMessage) -> str:
    return (message.body or message.display_text or "").strip()


class ChatSession:
    """
    Holds one conversation's messages and applies endpoint results to them.

    Attributes:
        chat_id: Backend conversation id, if known
    """

    def __init__(self, chat_id: str = "", recovery: Optional[RecoveryConfig] = None) -> None:
        self.chat_id = chat_id
        self._recovery = recovery or RecoveryConfig()
        self._messages: tuple[DecodedMessage, ...] = ()

    @property
    def messages(self) -> tuple[DecodedMessage, ...]:
        """Current message snapshot."""
        return self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def _replace(self, messages: Iterable[DecodedMessage]) -> None:
        self._messages = tuple(messages)

    def clear(self) -> None:
        """Drop all messages, e.g. when switching conversations."""
        self._replace(())

    def load_history(self, entries: Optional[Iterable[Any]]) -> tuple[DecodedMessage, ...]:
        """
        Replace the conversation with a decoded history.

        Args:
            entries: Raw entries from the chat-history endpoint

        Returns:
            The new message snapshot
        """
        self._replace(decode_messages(entries))
        return self._messages

    def add_user_message(self, text: str) -> DecodedMessage:
        """Append a human turn typed locally."""
        message = DecodedMessage(
            id=f"user_{_now_ms()}",
            role=MessageRole.HUMAN,
            display_text=text,
            body=text,
        )
        self._replace(self._messages + (message,))
        return message

    def apply_send_response(self, data: Any) -> tuple[DecodedMessage, ...]:
        """
        Apply a successful chat-send payload.

        The payload carries the whole working conversation under
        ``working.messages`` and may repeat the newest answer under
        ``latest_answer``. The newest AI message is flagged for a live reveal.

        Args:
            data: Parsed response body

        Returns:
            The new message snapshot
        """
        data = data if isinstance(data, dict) else {}
        working = data.get("working")
        raw_messages = working.get("messages") if isinstance(working, dict) else None

        if raw_messages:
            messages = decode_messages(raw_messages)
        else:
            messages = [replace(m, animate=False) for m in self._messages]

        latest = data.get("latest_answer")
        if isinstance(latest, dict):
            self._merge_latest_answer(messages, latest)

        for index in range(len(messages) - 1, -1, -1):
            if messages[index].role is MessageRole.AI:
                messages[index] = replace(messages[index], animate=True)
                break

        self._replace(messages)
        return self._messages

    def _merge_latest_answer(self, messages: list[DecodedMessage], latest: dict) -> None:
        display = next(
            (latest[key] for key in ("body", "answer", "content")
             if isinstance(latest.get(key), str) and latest.get(key)),
            LATEST_ANSWER_FALLBACK_TEXT,
        )
        candidate = message_from_payload(latest, f"ai_response_{_now_ms()}", display_text=display)

        new_text = _comparable_text(candidate)
        for existing in messages[-DUPLICATE_WINDOW:]:
            if existing.role is MessageRole.AI and new_text and _comparable_text(existing) == new_text:
                logger.debug("Duplicate latest_answer detected, skipping append")
                return

        messages.append(candidate)

    def apply_send_failure(self, status_code: int, body: str) -> DecodedMessage:
        """
        Apply a failed chat-send response.

        Args:
            status_code: HTTP status of the failure
            body: Raw response body

        Returns:
            The appended message: the recovered answer, or a generic
            failure notice if nothing could be recovered

        Raises:
            TransportError: If the failure carries no generated content
        """
        if not is_generation_failure(status_code, body, self._recovery.recoverable_statuses):
            raise TransportError(status_code, body)

        message = recover(body, self._recovery)
        if message is None:
            logger.warning("Failed generation could not be recovered (status %d)", status_code)
            message = DecodedMessage(
                id=f"error_{_now_ms()}",
                role=MessageRole.AI,
                display_text=FAILED_TO_RESPOND_MESSAGE,
                body=FAILED_TO_RESPOND_MESSAGE,
            )
        else:
            message = replace(message, animate=True)

        cleared = tuple(replace(m, animate=False) for m in self._messages)
        self._replace(cleared + (message,))
        return message

    def pending_reveal(self) -> Optional[DecodedMessage]:
        """The message flagged for a typing reveal, if any."""
        for message in reversed(self._messages):
            if message.animate:
                return message
        return None

    def mark_revealed(self, message_id: str) -> None:
        """Clear the reveal flag once a message's reveal has finished."""
        self._replace(
            replace(m, animate=False) if m.id == message_id else m
            for m in self._messages
        )
