"""
GPS Tracker Protocol Handlers
"""
from .base import BaseProtocolHandler, ProtocolViolationError, ViolationKind
from .mictrack import (
    FRAME_TERMINATOR,
    LINE_ENDING,
    TERMINATOR,
    MictrackProtocolHandler,
    decode_message,
)

__all__ = [
    'BaseProtocolHandler',
    'ProtocolViolationError',
    'ViolationKind',
    'MictrackProtocolHandler',
    'decode_message',
    'FRAME_TERMINATOR',
    'LINE_ENDING',
    'TERMINATOR',
]
