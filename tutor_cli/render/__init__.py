"""Segment parsing, typing reveal and terminal rendering for tutor_cli."""
from .segments import Segment, SegmentKind, Paragraph, flatten
from .body_parser import parse_body, parse_paragraph
from .stream_parser import parse_streaming, escape_markdown_triggers
from .reveal import RevealController, RevealFrame, RevealState, next_chunk_end
from .message_renderer import MessageRenderer, build_console, THEMES

__all__ = [
    'Segment', 'SegmentKind', 'Paragraph', 'flatten',
    'parse_body', 'parse_paragraph',
    'parse_streaming', 'escape_markdown_triggers',
    # Reveal
    'RevealController', 'RevealFrame', 'RevealState', 'next_chunk_end',
    # Rendering
    'MessageRenderer', 'build_console', 'THEMES',
]
