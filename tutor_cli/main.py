"""
Main entry point for tutor_cli.
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from .constants import APP_NAME, APP_VERSION, APP_DESCRIPTION

if TYPE_CHECKING:
    from .config import ConfigManager


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - %(message)s"


def setup_logging(debug: bool = False) -> None:
    """Configure the root logger for a CLI run."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description=APP_DESCRIPTION
    )

    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"{APP_NAME} {APP_VERSION}"
    )

    parser.add_argument(
        "-t", "--theme",
        type=str,
        help="UI theme (default, mono)"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to config file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log parser and recovery decisions"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    show = subparsers.add_parser("show", help="Render a saved conversation")
    show.add_argument("file", help="History JSON file, or - for stdin")
    reveal_group = show.add_mutually_exclusive_group()
    reveal_group.add_argument(
        "--reveal",
        dest="reveal",
        action="store_true",
        default=None,
        help="Type out the last tutor answer"
    )
    reveal_group.add_argument(
        "--no-animate",
        dest="reveal",
        action="store_false",
        help="Print everything at once"
    )

    parse = subparsers.add_parser("parse", help="Print the segment structure of a message body")
    parse.add_argument("file", help="Body text file, or - for stdin")
    parse.add_argument(
        "--streaming",
        action="store_true",
        help="Use the streaming parser (flat segment list)"
    )

    recover = subparsers.add_parser("recover", help="Recover an answer from a saved error body")
    recover.add_argument("file", help="Error body file, or - for stdin")
    recover.add_argument(
        "--status",
        type=int,
        default=500,
        help="HTTP status the error body was returned with"
    )

    return parser.parse_args(argv)


def read_input(path: str) -> str:
    """Read a file argument; ``-`` means stdin."""
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def history_entries(data: Any) -> list:
    """
    Pull the raw entry list out of a saved history document.

    Accepts a bare list, ``{"messages": [...]}`` or a chat-send payload
    ``{"working": {"messages": [...]}}``.
    """
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("messages"), list):
            return data["messages"]
        working = data.get("working")
        if isinstance(working, dict) and isinstance(working.get("messages"), list):
            return working["messages"]
    return []


def cmd_show(args: argparse.Namespace, config: 'ConfigManager') -> int:
    """Decode a history file and render it, revealing the last answer."""
    from .chat import ChatSession, MessageRole
    from .render import MessageRenderer, build_console

    data = json.loads(read_input(args.file))
    session = ChatSession(recovery=config.recovery)
    messages = session.load_history(history_entries(data))

    renderer = MessageRenderer(build_console(config.ui.theme), config.ui)
    reveal = config.ui.animate if args.reveal is None else args.reveal

    target = None
    if reveal:
        target = next((m for m in reversed(messages) if m.role is MessageRole.AI), None)

    for message in messages:
        if message is target:
            renderer.reveal(message, config.reveal)
        else:
            renderer.print_message(message)
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    """Print parser output as JSON."""
    from .render import parse_body, parse_streaming

    body = read_input(args.file).rstrip("\n")
    if args.streaming:
        result = [segment.to_dict() for segment in parse_streaming(body)]
    else:
        result = [paragraph.to_dict() for paragraph in parse_body(body)]
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


def cmd_recover(args: argparse.Namespace, config: 'ConfigManager') -> int:
    """Run the failed-generation path over a saved error body."""
    from .chat import recover_from_response
    from .errors import classify_response_failure
    from .render import MessageRenderer, build_console

    body = read_input(args.file)
    renderer = MessageRenderer(build_console(config.ui.theme), config.ui)

    message = recover_from_response(args.status, body, config.recovery)
    if message is None:
        failure = classify_response_failure(args.status, body, config.recovery.recoverable_statuses)
        logger.debug("Recovery failed: %s", failure.error_type.value)
        print(failure.message, file=sys.stderr)
        return 1

    renderer.print_message(message)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.debug)

    from .config import get_config
    config = get_config(Path(args.config) if args.config else None)

    if args.theme:
        config.update_ui(theme=args.theme)

    try:
        if args.command == "show":
            return cmd_show(args, config)
        if args.command == "parse":
            return cmd_parse(args)
        if args.command == "recover":
            return cmd_recover(args, config)
    except KeyboardInterrupt:
        return 0
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {args.file} is not valid JSON: {e}", file=sys.stderr)
        return 1

    return 1


if __name__ == "__main__":
    sys.exit(main())
