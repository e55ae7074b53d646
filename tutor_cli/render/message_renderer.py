"""Terminal rendering of decoded messages and live reveals.

This module provides the MessageRenderer that turns DecodedMessages and
reveal frames into Rich renderables. Segment kinds map straight to views:
- text: Markdown, with trigger characters escaped
- code: Syntax with a guessed lexer
- formula: a bordered panel (the terminal has no math typesetting)

Empty paragraphs render as blank lines so paragraph positions stay stable.
"""

import asyncio
import logging
from typing import Iterable, Optional

from pygments.lexers import guess_lexer
from pygments.util import ClassNotFound
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.text import Text
from rich.theme import Theme as RichTheme

from tutor_cli.chat.models import DecodedMessage, MessageRole
from tutor_cli.config import RevealConfig, UIConfig
from tutor_cli.constants import DEFAULT_THEME
from tutor_cli.render.body_parser import parse_body
from tutor_cli.render.reveal import RevealController, RevealFrame
from tutor_cli.render.segments import Paragraph, Segment, SegmentKind
from tutor_cli.render.stream_parser import escape_markdown_triggers


logger = logging.getLogger(__name__)


THEMES: dict[str, dict[str, str]] = {
    "default": {
        "tutor.human": "bold #00ff00",
        "tutor.ai": "bold #00d7d7",
        "tutor.title": "bold #00d7d7",
        "tutor.formula": "italic #ffff00",
        "tutor.formula.border": "#ffff00",
        "tutor.link": "underline blue",
        "tutor.muted": "#666666",
        "tutor.cursor": "#0d9488",
    },
    "mono": {
        "tutor.human": "bold",
        "tutor.ai": "bold",
        "tutor.title": "bold underline",
        "tutor.formula": "italic",
        "tutor.formula.border": "dim",
        "tutor.link": "underline",
        "tutor.muted": "dim",
        "tutor.cursor": "reverse",
    },
}


def guess_language(code: str) -> str:
    """Best-effort lexer alias for a code snippet; "text" when unsure."""
    try:
        lexer = guess_lexer(code)
    except ClassNotFound:
        return "text"
    return lexer.aliases[0] if lexer.aliases else "text"


def build_console(theme_name: str = DEFAULT_THEME, **kwargs) -> Console:
    """Create a Console carrying the tutor styles for ``theme_name``."""
    styles = THEMES.get(theme_name)
    if styles is None:
        logger.warning("Unknown theme %r, using %r", theme_name, DEFAULT_THEME)
        styles = THEMES[DEFAULT_THEME]
    return Console(theme=RichTheme(styles), **kwargs)


class MessageRenderer:
    """Renders conversations and drives live reveals on a Rich console.

    Attributes:
        _console: Rich Console for output
        _ui: Display toggles and code theme
    """

    def __init__(self, console: Console, ui: Optional[UIConfig] = None) -> None:
        self._console = console
        self._ui = ui or UIConfig()

    @property
    def console(self) -> Console:
        return self._console

    def render_segment(self, segment: Segment, escaped: bool = False) -> RenderableType:
        """Dispatch one segment to its view.

        Args:
            segment: Segment to render
            escaped: Whether text content is already trigger-escaped
                (streaming parser output is)
        """
        if segment.kind is SegmentKind.CODE:
            return Syntax(
                segment.content,
                guess_language(segment.content),
                theme=self._ui.code_theme,
                word_wrap=True,
            )

        if segment.kind is SegmentKind.FORMULA:
            return Panel(
                Text(segment.content, style="tutor.formula"),
                border_style="tutor.formula.border",
                title="formula",
                title_align="left",
                expand=False,
            )

        content = segment.content if escaped else escape_markdown_triggers(segment.content)
        return Markdown(content)

    def render_segments(self, segments: Iterable[Segment], escaped: bool = False) -> Group:
        return Group(*(self.render_segment(s, escaped=escaped) for s in segments))

    def render_paragraphs(self, paragraphs: Iterable[Paragraph]) -> Group:
        rendered: list[RenderableType] = []
        for paragraph in paragraphs:
            if paragraph.is_empty:
                rendered.append(Text(""))
            else:
                rendered.append(self.render_segments(paragraph.segments))
        return Group(*rendered)

    def render_message(
        self,
        message: DecodedMessage,
        paragraphs: Optional[list[Paragraph]] = None,
    ) -> RenderableType:
        """Build the full renderable for a settled message."""
        if message.role is MessageRole.HUMAN:
            return Group(Text("You", style="tutor.human"), Text(message.display_text))

        if paragraphs is None:
            paragraphs = parse_body(message.render_source)

        return Group(
            *self._header(message),
            self.render_paragraphs(paragraphs),
            *self._footer(message),
        )

    def render_frame(self, message: DecodedMessage, frame: RevealFrame) -> RenderableType:
        """Build the renderable for one reveal frame of ``message``."""
        if frame.is_complete:
            return self.render_message(message, list(frame.paragraphs))

        return Group(
            *self._header(message),
            self.render_segments(frame.segments, escaped=True),
            Text("▌", style="tutor.cursor"),
        )

    def print_message(self, message: DecodedMessage) -> None:
        self._console.print(self.render_message(message))
        self._console.print()

    def print_conversation(self, messages: Iterable[DecodedMessage]) -> None:
        for message in messages:
            self.print_message(message)

    async def render_reveal(
        self,
        controller: RevealController,
        message: DecodedMessage,
    ) -> RevealFrame:
        """Drive ``controller`` inside a live display of ``message``.

        The controller is cancelled on every exit path, so no tick outlives
        the live display. The display always settles on the full,
        non-streaming render of the message.

        Args:
            controller: Controller whose source text is the message body
            message: Message supplying header and footer

        Returns:
            The controller's last frame
        """
        with Live(
            self.render_frame(message, controller.frame),
            console=self._console,
            refresh_per_second=30,
        ) as live:
            controller.on_frame = lambda frame: live.update(self.render_frame(message, frame))
            try:
                final = await controller.run()
            finally:
                controller.cancel()
                controller.on_frame = None
            live.update(self.render_message(message))
        self._console.print()
        return final

    def reveal(self, message: DecodedMessage, config: Optional[RevealConfig] = None) -> RevealFrame:
        """Blocking reveal of one message with a fresh controller."""
        controller = RevealController(message.render_source, config)
        return asyncio.run(self.render_reveal(controller, message))

    def _header(self, message: DecodedMessage) -> list[RenderableType]:
        header: list[RenderableType] = [Text("Tutor", style="tutor.ai")]
        structured = message.structured
        if structured is not None and structured.title:
            header.append(Rule(Text(str(structured.title), style="tutor.title"), align="left"))
        return header

    def _footer(self, message: DecodedMessage) -> list[RenderableType]:
        structured = message.structured
        if structured is None:
            return []

        footer: list[RenderableType] = []

        if self._ui.show_links and structured.links:
            footer.append(Text("Links", style="tutor.muted"))
            for link in structured.links:
                footer.append(Text(f"  • {link}", style="tutor.link"))

        if self._ui.show_follow_ups and structured.related_topics:
            topics = ", ".join(str(t) for t in structured.related_topics)
            footer.append(Text(f"Related: {topics}", style="tutor.muted"))

        if self._ui.show_follow_ups and structured.follow_up_questions:
            footer.append(Text("Try asking", style="tutor.muted"))
            for number, question in enumerate(structured.follow_up_questions, 1):
                footer.append(Text(f"  {number}. {question}"))

        media = structured.media
        if media.manim_video_path:
            footer.append(Text(f"Animation: {media.manim_video_path}", style="tutor.muted"))
        elif media.need_of_manim and str(media.need_of_manim).lower() not in ("false", "no", "0"):
            footer.append(Text("Animation requested", style="tutor.muted"))

        return footer
