"""Streaming parser for rendering a growing prefix of a message body.

Runs every reveal tick against the whole prefix revealed so far. Only fully
closed code/formula regions are recognised; a region whose closer has not
arrived yet stays literal text until it completes, so a half-typed formula
never renders wrongly and then snaps into place.

Text outside regions has markdown trigger characters escaped so the text
view cannot mistake a partial marker for inline code or math.
"""

import re

from tutor_cli.constants import MARKDOWN_TRIGGER_CHARS, PARAGRAPH_SENTINEL
from tutor_cli.render.segments import (
    REGION_KINDS,
    Segment,
    SegmentKind,
    close_markers,
    open_marker,
    unescape_region,
)


def _build_region_pattern() -> re.Pattern:
    """Compile one alternation matching any closed region of any kind.

    Each kind gets a named group holding its content. Content may not cross
    a paragraph sentinel, matching what the full body parser accepts.
    """
    sentinel = re.escape(PARAGRAPH_SENTINEL)
    alternatives = []
    for kind in REGION_KINDS:
        opener = re.escape(open_marker(kind))
        closers = "|".join(re.escape(c) for c in close_markers(kind))
        alternatives.append(
            rf"{opener}(?P<{kind.value}>(?:(?!{sentinel}).)*?)(?:{closers})"
        )
    return re.compile("|".join(alternatives), re.DOTALL)


_REGION_PATTERN = _build_region_pattern()

_TRIGGER_PATTERN = re.compile(rf"(\\*)([{re.escape(MARKDOWN_TRIGGER_CHARS)}])")


def escape_markdown_triggers(text: str) -> str:
    """Backslash-escape characters that trigger markdown code or math.

    Backslashes directly before a trigger are doubled first, so every
    trigger ends up behind an odd run of backslashes. Bold, italic and
    line breaks are left alone.

    Examples:
        >>> escape_markdown_triggers("costs $5 `now`")
        'costs \\\\$5 \\\\`now\\\\`'
        >>> escape_markdown_triggers("C:\\\\`x`")
        'C:\\\\\\\\\\\\`x\\\\`'
    """
    if not text:
        return ""
    return _TRIGGER_PATTERN.sub(lambda m: m.group(1) * 2 + "\\" + m.group(2), text)


def parse_streaming(prefix: str) -> list[Segment]:
    """Parse an arbitrary prefix of a body into a flat segment list.

    Args:
        prefix: Body text revealed so far, possibly cut mid-marker

    Returns:
        Ordered segments. Text segments are trigger-escaped and have
        paragraph sentinels shown as blank lines.
    """
    if not prefix:
        return []

    segments: list[Segment] = []
    current = 0

    for match in _REGION_PATTERN.finditer(prefix):
        if match.start() > current:
            segments.append(_text_segment(prefix[current:match.start()]))

        kind = SegmentKind(match.lastgroup)
        segments.append(Segment(kind, unescape_region(kind, match.group(match.lastgroup))))
        current = match.end()

    if current < len(prefix):
        segments.append(_text_segment(prefix[current:]))

    return segments


def _text_segment(text: str) -> Segment:
    text = escape_markdown_triggers(text).replace(PARAGRAPH_SENTINEL, "\n\n")
    return Segment(SegmentKind.TEXT, text)
