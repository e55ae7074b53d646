"""Recovery of structured answers from failed-generation error responses.

When the backend's model produces an answer but a later tool-call step
rejects it, the chat-send endpoint fails with an error body that still
embeds the generated payload under a ``failed_generation`` key. That body
is a serialized-language object rather than strict JSON, and the payload
inside it is usually escaped one or more times and full of LaTeX
backslashes that are not legal JSON escapes.

Recovery stages, tried in order until one yields an object:
1. Locate the quoted ``failed_generation`` value and capture it with an
   escape-aware scan
2. Unescape one layer, then parse
3. Repair stray backslashes and parse again
4. Peel further escape layers while the payload still carries ``\\"``
5. Isolate the balanced ``"arguments": {...}`` object and parse that

If every stage fails the caller gets None and shows a generic error.
"""

import json
import logging
import re
import uuid
from typing import Any, Optional

from tutor_cli.chat.decoder import message_from_payload, payload_body, unwrap_payload
from tutor_cli.chat.models import DecodedMessage
from tutor_cli.config import RecoveryConfig
from tutor_cli.constants import (
    FAILED_GENERATION_MARKER,
    RECOVERED_FALLBACK_TEXT,
    RECOVERED_ID_PREFIX,
)


logger = logging.getLogger(__name__)


# Marker key (possibly quoted or escaped-quoted) followed by the quote opening its value
_MARKER_VALUE_PATTERN = re.compile(
    re.escape(FAILED_GENERATION_MARKER) + r"""['"\\]*\s*:\s*\\?(['"])"""
)

_ESCAPE_PATTERN = re.compile(r"\\(.)", re.DOTALL)

_CONTROL_ESCAPES = {"n": "\n", "r": "\r", "t": "\t"}

_JSON_ESCAPE_CHARS = frozenset('"\\/bfnrtu')

# \b, \f, \r directly followed by a letter are LaTeX commands (\beta, \frac,
# \right), not JSON escapes. Only an odd run of backslashes escapes.
_LATEX_AMBIGUOUS_PATTERN = re.compile(r"(?<!\\)(?:\\\\)*\\[bfr](?=[A-Za-z])")

_HEX4_PATTERN = re.compile(r"[0-9a-fA-F]{4}")

_STRAY_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")

_ARGUMENTS_OPEN_PATTERN = re.compile(r'"arguments"\s*:\s*\{')

_SENTINEL_VARIANTS_PATTERN = re.compile(r"\*/\\{0,4}\*")
_OVER_ESCAPED_LATEX_PATTERN = re.compile(r"\\{3,}(?=[A-Za-z{])")
_EXCESS_BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


def unwrap_error_detail(body: str) -> str:
    """Pick the part of an error body that carries the failed generation.

    Tries the body as JSON and prefers ``detail`` (re-serialized when not a
    string), then ``error.message``. A candidate is used only if it still
    contains the marker; otherwise the raw body is returned.
    """
    try:
        parsed = json.loads(body)
    except (ValueError, RecursionError):
        return body
    if not isinstance(parsed, dict):
        return body

    candidates: list[str] = []
    detail = parsed.get("detail")
    if detail:
        candidates.append(detail if isinstance(detail, str) else json.dumps(detail))
    error = parsed.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        candidates.append(error["message"])

    for candidate in candidates:
        if FAILED_GENERATION_MARKER in candidate:
            return candidate
    return body


def extract_failed_generation(content: str) -> Optional[tuple[str, str]]:
    """Capture the quoted string value of the ``failed_generation`` key.

    Scans forward from the opening quote; a backslash always consumes the
    next character, so escaped quotes never end the value.

    Returns:
        (raw span, quote character), or None when the key has no quoted
        value or the value is never closed
    """
    match = _MARKER_VALUE_PATTERN.search(content)
    if match is None:
        return None

    quote = match.group(1)
    start = match.end()
    i = start
    while i < len(content):
        ch = content[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return content[start:i], quote
        i += 1

    logger.debug("failed_generation value has no closing %s quote", quote)
    return None


def unescape_layer(text: str, quote: str) -> str:
    """Undo one layer of string escaping.

    ``\\n``, ``\\r`` and ``\\t`` become control characters, an escaped
    ``quote`` becomes the quote, and a doubled backslash becomes one.
    Every other escape is left as written. Done in a single pass so an
    escaped backslash followed by ``n`` is never read as a newline.
    """
    def _replace(match: re.Match) -> str:
        ch = match.group(1)
        if ch in _CONTROL_ESCAPES:
            return _CONTROL_ESCAPES[ch]
        if ch == quote or ch == "\\":
            return ch
        return match.group(0)

    return _ESCAPE_PATTERN.sub(_replace, text)


def repair_backslashes(text: str) -> str:
    """Re-escape every backslash that does not start a legal JSON escape.

    LaTeX commands such as ``\\frac`` and ``\\sqrt`` come through with a
    single backslash; this doubles them so the JSON decoder keeps them.
    Stray control characters other than tab and newlines are dropped.

    Examples:
        >>> repair_backslashes('{"f": "\\\\frac{1}{2} \\\\n"}')
        '{"f": "\\\\\\\\frac{1}{2} \\\\n"}'
    """
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if _is_json_escape(text, i + 1):
            out.append(text[i:i + 2])
            i += 2
        else:
            out.append("\\\\")
            i += 1
    return _STRAY_CONTROL_PATTERN.sub("", "".join(out))


def _is_json_escape(text: str, pos: int) -> bool:
    if pos >= len(text):
        return False
    ch = text[pos]
    if ch == "u":
        return bool(_HEX4_PATTERN.fullmatch(text[pos + 1:pos + 5]))
    if ch in "bfr" and pos + 1 < len(text) and text[pos + 1].isalpha():
        return False
    return ch in _JSON_ESCAPE_CHARS


def extract_balanced_object(text: str, start: int) -> Optional[str]:
    """Return the ``{...}`` object beginning at ``start``.

    Tracks nesting depth and double-quoted strings; backslash escapes are
    skipped. One pass, bounded by the input length.

    Returns:
        The object text, or None if ``start`` is not a ``{`` or the object
        never closes
    """
    if start < 0 or start >= len(text) or text[start] != "{":
        return None

    depth = 0
    in_string = False
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        i += 1
    return None


def sanitize_display_body(body: str) -> str:
    """Plain-text display form of a recovered body.

    Paragraph sentinel variants (``*/*``, ``*/\\*``, ...) become blank lines,
    over-escaped LaTeX collapses to a single backslash, runs of blank lines
    shrink to one.
    """
    if not body:
        return ""
    clean = _SENTINEL_VARIANTS_PATTERN.sub("\n\n", body)
    clean = _OVER_ESCAPED_LATEX_PATTERN.sub(r"\\", clean)
    clean = _EXCESS_BLANK_LINES_PATTERN.sub("\n\n", clean)
    return clean.strip()


def recover(
    error_body: str,
    config: Optional[RecoveryConfig] = None,
) -> Optional[DecodedMessage]:
    """Salvage a structured answer from a failed-generation error body.

    Args:
        error_body: Raw text of the failed HTTP response
        config: Layer and envelope bounds (defaults if omitted)

    Returns:
        A synthetic AI message indistinguishable from a decoded one apart
        from its ``rescue_`` id, or None when nothing usable was found
    """
    if not error_body or FAILED_GENERATION_MARKER not in error_body:
        return None

    config = config or RecoveryConfig()
    content = unwrap_error_detail(error_body)

    payload = _extract_payload(content, config.max_unescape_layers)
    if payload is None:
        logger.warning("Could not recover a payload from failed_generation error")
        return None

    payload = unwrap_payload(payload, loads=_loads_repaired, max_depth=config.max_envelope_depth)
    if not isinstance(payload, dict):
        logger.warning("Recovered failed_generation payload is not an object")
        return None

    message = message_from_payload(
        payload,
        f"{RECOVERED_ID_PREFIX}{uuid.uuid4().hex}",
        display_text=sanitize_display_body(payload_body(payload)) or RECOVERED_FALLBACK_TEXT,
    )
    logger.info("Recovered failed generation (title=%r)", message.structured.title)
    return message


def recover_from_response(
    status_code: int,
    body: str,
    config: Optional[RecoveryConfig] = None,
) -> Optional[DecodedMessage]:
    """Run :func:`recover` only for the statuses the backend fails with."""
    config = config or RecoveryConfig()
    if status_code not in config.recoverable_statuses:
        return None
    return recover(body, config)


def _loads(text: str) -> Any:
    # strict=False admits the raw control characters unescaping produces
    return json.loads(text, strict=False)


def _loads_repaired(text: str) -> Any:
    return _loads(repair_backslashes(text))


def _parse_candidate(candidate: str) -> Optional[dict]:
    """Parse as-is, then with backslash repair; only objects count."""
    attempts = []
    if not _LATEX_AMBIGUOUS_PATTERN.search(candidate):
        attempts.append(_loads)
    attempts.append(_loads_repaired)

    for attempt in attempts:
        try:
            parsed = attempt(candidate)
        except (ValueError, RecursionError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _extract_payload(content: str, max_layers: int) -> Optional[dict]:
    located = extract_failed_generation(content)
    if located is not None:
        span, quote = located
        candidate = unescape_layer(span, quote)
    else:
        marker_at = content.find(FAILED_GENERATION_MARKER)
        candidate = extract_balanced_object(content, content.find("{", marker_at))
        if candidate is None:
            return None

    tried: list[str] = []
    for _ in range(1 + max(0, max_layers)):
        tried.append(candidate)
        payload = _parse_candidate(candidate)
        if payload is not None:
            return payload
        if '\\"' not in candidate:
            break
        candidate = unescape_layer(candidate, '"')

    for candidate in tried:
        payload = _parse_arguments_object(candidate)
        if payload is not None:
            logger.debug("Recovered payload from isolated arguments object")
            return payload
    return None


def _parse_arguments_object(candidate: str) -> Optional[dict]:
    match = _ARGUMENTS_OPEN_PATTERN.search(candidate)
    if match is None:
        return None
    isolated = extract_balanced_object(candidate, match.end() - 1)
    if isolated is None:
        return None
    try:
        parsed = _loads_repaired(isolated)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None
