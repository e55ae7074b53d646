"""Incremental reveal of an already-known message body.

This module provides the RevealController that simulates live generation by
exposing a message body a few characters at a time. Each advance re-runs the
streaming parser over the revealed prefix; completion re-runs the full body
parser so the settled render is exactly the non-streaming result.

Scheduling is a cooperative asyncio task, one per message bubble. Every
scheduled run captures a liveness token; a tick whose token has been
cancelled or replaced is a no-op.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from tutor_cli.config import RevealConfig
from tutor_cli.constants import REVEAL_BOUNDARY_CHARS
from tutor_cli.render.body_parser import parse_body
from tutor_cli.render.segments import Paragraph, Segment, flatten
from tutor_cli.render.stream_parser import parse_streaming


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevealState:
    """Reveal progress for one message bubble.

    Attributes:
        cursor: Number of characters of source_text exposed so far
        source_text: The complete body being revealed
        is_complete: Whether the cursor has reached the end
    """
    cursor: int
    source_text: str
    is_complete: bool = False


@dataclass(frozen=True)
class RevealFrame:
    """What the renderer should show after one advance.

    While streaming, ``segments`` is the streaming parse of the prefix and
    ``paragraphs`` is empty. On the completing frame ``paragraphs`` is the
    full body parse and ``segments`` is its flattened form.
    """
    cursor: int
    segments: tuple[Segment, ...] = ()
    is_complete: bool = False
    paragraphs: tuple[Paragraph, ...] = ()


class _LivenessToken:
    """Captured by a scheduled run; flipped off on cancel or reset."""
    __slots__ = ("alive",)

    def __init__(self) -> None:
        self.alive = True


def next_chunk_end(
    text: str,
    cursor: int,
    min_chunk: int = 3,
    max_chunk: int = 6,
) -> int:
    """Pick where the next reveal step should stop.

    Looks at the next ``max_chunk`` characters. If a boundary character
    (space, newline, comma, period) sits at offset ``min_chunk`` or later,
    the step ends just past it; otherwise the step is ``max_chunk`` long.

    Args:
        text: The full source text
        cursor: Current exposed-character count
        min_chunk: Smallest offset at which a boundary is honoured
        max_chunk: Window width and the fallback step size

    Returns:
        The new cursor, always greater than ``cursor`` unless the text is
        already fully exposed

    Examples:
        >>> next_chunk_end("the quick brown", 0)
        4
        >>> next_chunk_end("abcdefghij", 0)
        6
    """
    length = len(text)
    if cursor >= length:
        return length

    end = min(cursor + max_chunk, length)
    for i in range(cursor + min_chunk, end):
        if text[i] in REVEAL_BOUNDARY_CHARS:
            return i + 1
    return end


class RevealController:
    """Owns the typing-reveal loop for a single message bubble.

    Usage:
        controller = RevealController(body, on_frame=render)
        task = controller.start()     # inside a running event loop
        ...
        controller.cancel()           # bubble discarded or replaced

    ``step()`` and ``run_to_completion()`` advance without timing and are
    what non-animated callers and tests use.
    """

    def __init__(
        self,
        source_text: str,
        config: Optional[RevealConfig] = None,
        on_frame: Optional[Callable[[RevealFrame], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the controller.

        Args:
            source_text: Complete body to reveal
            config: Chunking and timing settings (defaults if omitted)
            on_frame: Called with every frame produced by an advance
            clock: Monotonic seconds source used for the tick gate
        """
        config = config or RevealConfig()
        self._min_chunk = max(1, config.min_chunk)
        self._max_chunk = max(self._min_chunk, config.max_chunk)
        self._tick_interval = max(0, config.tick_interval_ms) / 1000.0
        self._frame_interval = max(0, config.frame_interval_ms) / 1000.0
        self._on_frame = on_frame
        self._clock = clock

        self._token = _LivenessToken()
        self._task: Optional[asyncio.Task] = None
        self._reset_state(source_text or "")

    def _reset_state(self, source_text: str) -> None:
        self._last_advance: Optional[float] = None
        if source_text:
            self._state = RevealState(cursor=0, source_text=source_text)
            self._frame = RevealFrame(cursor=0)
        else:
            self._state = RevealState(cursor=0, source_text="", is_complete=True)
            self._frame = RevealFrame(cursor=0, is_complete=True)

    @property
    def state(self) -> RevealState:
        return self._state

    @property
    def frame(self) -> RevealFrame:
        """The most recent frame."""
        return self._frame

    @property
    def on_frame(self) -> Optional[Callable[[RevealFrame], None]]:
        return self._on_frame

    @on_frame.setter
    def on_frame(self, callback: Optional[Callable[[RevealFrame], None]]) -> None:
        self._on_frame = callback

    @property
    def is_complete(self) -> bool:
        return self._state.is_complete

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def step(self) -> RevealFrame:
        """Advance one chunk immediately, ignoring the tick gate."""
        frame = self._apply_tick(self._token)
        return frame if frame is not None else self._frame

    def run_to_completion(self) -> RevealFrame:
        """Advance until the whole body is exposed and return the final frame."""
        while not self._state.is_complete and self._token.alive:
            self.step()
        return self._frame

    async def run(self) -> RevealFrame:
        """Cooperative reveal loop: one tick per frame until complete or cancelled."""
        token = self._token
        while token.alive and not self._state.is_complete:
            await asyncio.sleep(self._frame_interval)
            self._apply_tick(token, self._clock())
        return self._frame

    def start(self) -> asyncio.Task:
        """Schedule the reveal loop on the running event loop.

        Returns the existing task if the loop is already running.
        """
        if self.is_running:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def cancel(self) -> None:
        """Stop the loop. Any tick still in flight becomes a no-op."""
        self._token.alive = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def reset(self, source_text: str) -> None:
        """Tear down the current loop and start over with a new body."""
        self.cancel()
        self._token = _LivenessToken()
        self._reset_state(source_text or "")

    def _apply_tick(
        self,
        token: _LivenessToken,
        now: Optional[float] = None,
    ) -> Optional[RevealFrame]:
        """Advance the cursor once on behalf of ``token``.

        Returns:
            The new frame, or None when the token is stale or the tick gate
            has not elapsed
        """
        if not token.alive or token is not self._token:
            logger.debug("Dropping stale reveal tick")
            return None
        if self._state.is_complete:
            return self._frame
        if (
            now is not None
            and self._last_advance is not None
            and now - self._last_advance < self._tick_interval
        ):
            return None
        self._last_advance = now

        source = self._state.source_text
        cursor = next_chunk_end(source, self._state.cursor, self._min_chunk, self._max_chunk)

        if cursor >= len(source):
            paragraphs = tuple(parse_body(source))
            frame = RevealFrame(
                cursor=len(source),
                segments=tuple(flatten(paragraphs)),
                is_complete=True,
                paragraphs=paragraphs,
            )
        else:
            frame = RevealFrame(
                cursor=cursor,
                segments=tuple(parse_streaming(source[:cursor])),
            )

        self._state = RevealState(cursor=frame.cursor, source_text=source, is_complete=frame.is_complete)
        self._frame = frame
        if self._on_frame is not None:
            self._on_frame(frame)
        return frame
