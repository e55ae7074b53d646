"""Body parser for splitting a complete message body into segments.

The backend emits bodies in a loose, model-generated format:
- Paragraphs separated by the ``*/*`` sentinel
- Code regions between ``[[CODE]]`` and ``[[/CODE]]`` (or ``[[\\CODE]]``)
- Formula regions between ``[[FORMULA]]`` and ``[[/FORMULA]]`` (or ``[[\\FORMULA]]``)

Everything else is plain text. The parser is total: a malformed or
unterminated marker degrades to a text segment and no content is dropped.
"""

import logging
from typing import Optional

from tutor_cli.constants import PARAGRAPH_SENTINEL
from tutor_cli.errors import benign_malformation
from tutor_cli.render.segments import (
    REGION_KINDS,
    Paragraph,
    Segment,
    SegmentKind,
    close_markers,
    open_marker,
    unescape_region,
)


logger = logging.getLogger(__name__)


def parse_body(body: str) -> list[Paragraph]:
    """Split a complete body into paragraphs of text/code/formula segments.

    Args:
        body: The full message body, paragraph sentinels intact

    Returns:
        One Paragraph per sentinel-separated slice, in order. Slices with
        no visible content are kept as empty paragraphs so that list
        positions stay stable.

    Examples:
        >>> [p.segments for p in parse_body("Hi */* [[CODE]]x[[/CODE]]")]
        [(Segment(kind=<SegmentKind.TEXT: 'text'>, content='Hi'),), (Segment(kind=<SegmentKind.CODE: 'code'>, content='x'),)]
    """
    if not body:
        return []

    return [parse_paragraph(raw) for raw in body.split(PARAGRAPH_SENTINEL)]


def parse_paragraph(raw: str) -> Paragraph:
    """Scan one paragraph left to right into ordered segments.

    Args:
        raw: A single paragraph slice (surrounding whitespace is trimmed)

    Returns:
        Paragraph holding the segments found
    """
    paragraph = raw.strip()
    if not paragraph:
        return Paragraph()

    segments: list[Segment] = []
    index = 0

    while index < len(paragraph):
        kind, pos = _next_opener(paragraph, index)

        if kind is None:
            _append_text(segments, paragraph[index:])
            break

        if pos > index:
            _append_text(segments, paragraph[index:pos])

        start = pos + len(open_marker(kind))
        end, closer = _nearest_closer(paragraph, kind, start)

        if closer is None:
            # Unterminated region: keep the remainder verbatim as text
            failure = benign_malformation(
                f"Unterminated {kind.value} marker at offset {pos}, keeping remainder as text",
                paragraph[pos:],
            )
            logger.debug("%s: %s", failure.error_type.value, failure.message)
            segments.append(Segment(SegmentKind.TEXT, paragraph[pos:]))
            break

        segments.append(Segment(kind, unescape_region(kind, paragraph[start:end])))
        index = end + len(closer)

    return Paragraph(tuple(segments))


def _next_opener(paragraph: str, start: int) -> tuple[Optional[SegmentKind], int]:
    """Find the nearest region opener at or after ``start``."""
    best_kind: Optional[SegmentKind] = None
    best_pos = -1

    for kind in REGION_KINDS:
        pos = paragraph.find(open_marker(kind), start)
        if pos != -1 and (best_pos == -1 or pos < best_pos):
            best_kind = kind
            best_pos = pos

    return best_kind, best_pos


def _nearest_closer(
    paragraph: str,
    kind: SegmentKind,
    start: int,
) -> tuple[int, Optional[str]]:
    """Find the nearest accepted closer spelling for ``kind``.

    Returns:
        (position, closer) or (-1, None) when no closer follows
    """
    best_pos = -1
    best_closer: Optional[str] = None

    for closer in close_markers(kind):
        pos = paragraph.find(closer, start)
        if pos != -1 and (best_pos == -1 or pos < best_pos):
            best_pos = pos
            best_closer = closer

    return best_pos, best_closer


def _append_text(segments: list[Segment], text: str) -> None:
    # Whitespace between regions carries nothing renderable
    if text.strip():
        segments.append(Segment(SegmentKind.TEXT, text))
