"""
Receiver for Mictrack GPS trackers (MP90/MT600 TCP protocol)
"""
from .connection_buffer import BufferOverflowError, ConnectionBuffer
from .listener import ListenerStateError, MictrackReceiver
from .models import (
    Beacon,
    BeaconReceivedEvent,
    BeaconRecord,
    BeaconStatus,
    ConnectionErrorEvent,
    DecodeErrorEvent,
    FixStatus,
    LatitudeHemisphere,
    LongitudeHemisphere,
)
from .protocols import ProtocolViolationError, ViolationKind, decode_message

__all__ = [
    'Beacon',
    'BeaconRecord',
    'BeaconStatus',
    'FixStatus',
    'LatitudeHemisphere',
    'LongitudeHemisphere',
    'BeaconReceivedEvent',
    'DecodeErrorEvent',
    'ConnectionErrorEvent',
    'ConnectionBuffer',
    'BufferOverflowError',
    'MictrackReceiver',
    'ListenerStateError',
    'ProtocolViolationError',
    'ViolationKind',
    'decode_message',
]
