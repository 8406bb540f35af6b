"""
Base protocol handler for GPS trackers
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional
import logging

from ..models import Beacon

logger = logging.getLogger(__name__)


class ViolationKind(str, Enum):
    """Distinguishable ways in which a message can break the wire protocol"""
    INVALID_ENCODING = "invalid_encoding"
    TOO_FEW_LINES = "too_few_lines"
    MISSING_TERMINATOR = "missing_terminator"
    TRAILING_LINE_NOT_BLANK = "trailing_line_not_blank"
    TOO_FEW_HEADER_TOKENS = "too_few_header_tokens"
    EMPTY_FIELD = "empty_field"
    UNKNOWN_STATUS = "unknown_status"
    RECORD_COUNT_MISMATCH = "record_count_mismatch"
    TOO_FEW_RECORD_TOKENS = "too_few_record_tokens"
    INVALID_NUMBER = "invalid_number"
    UNKNOWN_FIX_STATUS = "unknown_fix_status"
    UNKNOWN_HEMISPHERE = "unknown_hemisphere"
    INVALID_TIMESTAMP = "invalid_timestamp"


class ProtocolViolationError(ValueError):
    """Raised when a message does not comply with the protocol and cannot be parsed"""

    def __init__(self, kind: ViolationKind, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.field = field
        self.message = message


class BaseProtocolHandler(ABC):
    """Base class for GPS tracker protocol handlers"""

    def __init__(self, device_id: str = None):
        self.device_id = device_id
        self.message_count = 0

    @abstractmethod
    def parse_message(self, data: str) -> Beacon:
        """Parse a raw message from the device, raising ProtocolViolationError on failure"""
        pass

    @abstractmethod
    def get_protocol_name(self) -> str:
        """Get the name of this protocol"""
        pass

    @abstractmethod
    def can_handle(self, data: str) -> bool:
        """Check if this handler can process the given message"""
        pass

    def parse_bytes(self, data: bytes, encoding: str = "ascii") -> Beacon:
        """Decode raw frame bytes to text and parse them"""
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as e:
            raise ProtocolViolationError(
                ViolationKind.INVALID_ENCODING,
                f"Message is not valid {encoding} text ({e.reason} at byte {e.start}).",
            ) from e

        beacon = self.parse_message(text)
        self.message_count += 1
        if not self.device_id:
            self.device_id = beacon.imei
        elif self.device_id != beacon.imei:
            logger.warning(f"Device ID mismatch: {self.device_id} != {beacon.imei}")
        return beacon
