"""Decoded conversation message models.

This module defines the role enum and the immutable message shapes produced
by the decoder and the recovery path. Both paths build the same
DecodedMessage, so renderers never need to know which one produced it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MessageRole(str, Enum):
    """Conversation participant."""
    HUMAN = "human"
    AI = "ai"
    SYSTEM = "system"


@dataclass(frozen=True)
class MediaRefs:
    """Media attached to an AI answer.

    Attributes:
        need_of_manim: Backend flag saying an animation was requested
        manim_video_path: Location of the rendered animation, if any
    """
    need_of_manim: Optional[Any] = None
    manim_video_path: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.need_of_manim is None and self.manim_video_path is None


@dataclass(frozen=True)
class StructuredOutput:
    """Auxiliary fields carried by a structured AI payload.

    Attributes:
        title: Answer heading
        links: Reference URLs
        related_topics: ``next_related_topic`` suggestions
        follow_up_questions: ``next_questions`` suggestions
        media: Animation references
        extras: Any other payload keys, kept verbatim
    """
    title: Optional[str] = None
    links: Optional[list[str]] = None
    related_topics: Optional[list[str]] = None
    follow_up_questions: Optional[list[str]] = None
    media: MediaRefs = field(default_factory=MediaRefs)
    extras: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DecodedMessage:
    """A conversation entry ready for rendering.

    Attributes:
        id: Backend id, or a generated one
        role: Normalised role; never left ambiguous
        display_text: Plain-text rendition with paragraph sentinels removed
        body: Authoritative body with sentinels intact, fed to the body parser
        structured: Auxiliary fields when the entry was a structured payload
        animate: Set on the freshest AI answer to request a typing reveal
    """
    id: str
    role: MessageRole
    display_text: str
    body: str = ""
    structured: Optional[StructuredOutput] = None
    animate: bool = False

    @property
    def is_structured(self) -> bool:
        return self.structured is not None

    @property
    def render_source(self) -> str:
        """Text the segment parsers should run over."""
        return self.body or self.display_text
