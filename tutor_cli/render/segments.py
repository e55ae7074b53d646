"""Segment models shared by the body and streaming parsers.

A message body is rendered as an ordered list of paragraphs, each an ordered
list of segments. Segments are the unit the rendering layer dispatches on:
text goes to a markdown view, code to a syntax view, formula to a math view.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from tutor_cli.constants import SEGMENT_MARKERS, SEGMENT_UNESCAPES


class SegmentKind(str, Enum):
    """The three segment kinds the backend's wire convention defines."""
    TEXT = "text"
    CODE = "code"
    FORMULA = "formula"


@dataclass(frozen=True)
class Segment:
    """One classified unit of a paragraph.

    Attributes:
        kind: Which view renders this segment
        content: Segment text with region escapes already resolved
    """
    kind: SegmentKind
    content: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "content": self.content}


@dataclass(frozen=True)
class Paragraph:
    """An ordered run of segments between two paragraph sentinels.

    An empty paragraph keeps its place in the list with no segments.
    """
    segments: tuple[Segment, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.segments

    def to_dict(self) -> dict:
        return {"segments": [s.to_dict() for s in self.segments]}


REGION_KINDS: tuple[SegmentKind, ...] = tuple(SegmentKind(k) for k in SEGMENT_MARKERS)


def open_marker(kind: SegmentKind) -> str:
    """Get the literal opener for a region kind."""
    return SEGMENT_MARKERS[kind.value]["open"]


def close_markers(kind: SegmentKind) -> tuple[str, ...]:
    """Get every accepted closer spelling for a region kind."""
    return tuple(SEGMENT_MARKERS[kind.value]["close"])


def unescape_region(kind: SegmentKind, content: str) -> str:
    """Resolve the generator's over-escaping inside a code or formula region.

    Code regions carry literal backslash-n for newlines; formula regions carry
    doubled backslashes in front of LaTeX commands.
    """
    for escaped, replacement in SEGMENT_UNESCAPES.get(kind.value, ()):
        content = content.replace(escaped, replacement)
    return content


def flatten(paragraphs: Iterable[Paragraph]) -> list[Segment]:
    """Concatenate paragraph segments into one flat ordered list."""
    return [segment for paragraph in paragraphs for segment in paragraph.segments]
