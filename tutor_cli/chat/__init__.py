"""Conversation decoding, failed-generation recovery and session state for tutor_cli."""
from .models import MessageRole, MediaRefs, StructuredOutput, DecodedMessage
from .decoder import decode_entry, decode_messages, normalize_role, unwrap_payload
from .recovery import recover, recover_from_response, sanitize_display_body
from .session import ChatSession

__all__ = [
    'MessageRole', 'MediaRefs', 'StructuredOutput', 'DecodedMessage',
    'decode_entry', 'decode_messages', 'normalize_role', 'unwrap_payload',
    'recover', 'recover_from_response', 'sanitize_display_body',
    'ChatSession',
]
