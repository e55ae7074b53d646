"""
Constants and configuration defaults for tutor_cli.

Wire-format markers are kept as tables so a new spelling from the backend is
a one-line change here rather than a hunt through the parsers.
"""
from pathlib import Path
from typing import Final

APP_NAME: Final[str] = "tutor_cli"
APP_VERSION: Final[str] = "1.0.0"
APP_DESCRIPTION: Final[str] = "Terminal front end for structured tutoring conversations"

CONFIG_DIR: Final[Path] = Path.home() / ".tutor_cli"
CONFIG_FILE: Final[Path] = CONFIG_DIR / "config.json"

# Wire format
PARAGRAPH_SENTINEL: Final[str] = "*/*"

# kind -> opener and every closer spelling the generator has been seen to emit
SEGMENT_MARKERS: Final[dict] = {
    "code": {
        "open": "[[CODE]]",
        "close": ("[[/CODE]]", "[[\\CODE]]"),
    },
    "formula": {
        "open": "[[FORMULA]]",
        "close": ("[[/FORMULA]]", "[[\\FORMULA]]"),
    },
}

# kind -> (escaped, replacement) pairs applied to region content, in order
SEGMENT_UNESCAPES: Final[dict] = {
    "code": (("\\n", "\n"),),
    "formula": (("\\\\", "\\"),),
}

# Characters the downstream markdown renderer would treat as inline code/math
MARKDOWN_TRIGGER_CHARS: Final[str] = "`$"

# Tool-call envelope and structured payload keys
ENVELOPE_NAME_KEY: Final[str] = "name"
ENVELOPE_ARGUMENTS_KEY: Final[str] = "arguments"
STRUCTURED_OUTPUT_KEY: Final[str] = "structured_output"

STRUCTURED_FIELDS: Final[tuple] = (
    "title",
    "body",
    "links",
    "Need_of_manim",
    "manim_video_path",
    "next_related_topic",
    "next_questions",
)

# Reveal defaults
DEFAULT_MIN_CHUNK: Final[int] = 3
DEFAULT_MAX_CHUNK: Final[int] = 6
DEFAULT_TICK_INTERVAL_MS: Final[int] = 8
DEFAULT_FRAME_INTERVAL_MS: Final[int] = 16
REVEAL_BOUNDARY_CHARS: Final[frozenset] = frozenset({" ", "\n", ",", "."})

# Recovery
FAILED_GENERATION_MARKER: Final[str] = "failed_generation"
RECOVERABLE_STATUSES: Final[tuple] = (400, 500)
MAX_UNESCAPE_LAYERS: Final[int] = 3
MAX_ENVELOPE_DEPTH: Final[int] = 3
RECOVERED_ID_PREFIX: Final[str] = "rescue_"
RECOVERED_FALLBACK_TEXT: Final[str] = "Content recovered."
LATEST_ANSWER_FALLBACK_TEXT: Final[str] = "Response received."
FAILED_TO_RESPOND_MESSAGE: Final[str] = (
    "Sorry, the tutor failed to respond. Please try asking again."
)

DEFAULT_THEME: Final[str] = "default"
DEFAULT_CODE_THEME: Final[str] = "monokai"
