"""
Mictrack Protocol Handler
MP90/MT600 text protocol (RMC based records wrapped in a '#' header)

Inbound messages take the following form:

    #<IMEI>#<GPRSUsername>#<GPRSPassword>#<Status>#<RecordCount>\r\n
    <BaseID><MessageID>,<UTC time>,<A/V>,<Lat>,<N/S>,<Lon>,<E/W>,<Speed>,<Course>,<Date>,,,<Checksum>,\r\n
    ##\r\n
    \r\n

For example:

    #861108034747229#MT600#0000#AUTOLOW#1
    #00018b5fc03$GPRMC,093808.00,A,2741.6724,S,15309.1364,E,0.05,,121218,,,A*52
    ##
"""
from datetime import datetime, timezone
from typing import List, Optional
import math
import re
import logging

from ..models import (
    Beacon,
    BeaconRecord,
    BeaconStatus,
    FixStatus,
    LatitudeHemisphere,
    LongitudeHemisphere,
)
from .base import BaseProtocolHandler, ProtocolViolationError, ViolationKind

logger = logging.getLogger(__name__)

LINE_ENDING = "\r\n"
TERMINATOR = "##"
# Marks the end of a frame on the wire
FRAME_TERMINATOR = (TERMINATOR + LINE_ENDING).encode("ascii")

HEADER_SEPARATOR = "#"
# Yes, records use a different separator to the header
RECORD_SEPARATOR = ","

MIN_LINES = 3
MIN_HEADER_TOKENS = 6
MIN_RECORD_TOKENS = 13

HEADER_STATUSES = {
    "AUTO": BeaconStatus.NORMAL,
    "AUTOLOW": BeaconStatus.POWER_SAVE_STATIONARY,
    "TOWED": BeaconStatus.POWER_SAVE_MOVING,
    "CALL": BeaconStatus.CALL,
    "DEF": BeaconStatus.DISCONNECT,
    "HT": BeaconStatus.HIGH_TEMPERATURE,
    "BLP": BeaconStatus.INTERNAL_BATTERY_LOW,
    "CLP": BeaconStatus.EXTERNAL_BATTERY_LOW,
    "OS": BeaconStatus.GEO_FENCE_EXIT,
    "RS": BeaconStatus.GEO_FENCE_ENTER,
    "OVERSPEED": BeaconStatus.SPEED_OVER,
    "SAFESPEED": BeaconStatus.SPEED_UNDER,
}

FIX_STATUSES = {
    "A": FixStatus.VALID,
    "V": FixStatus.INVALID,
}

LATITUDE_HEMISPHERES = {
    "N": LatitudeHemisphere.NORTH,
    "S": LatitudeHemisphere.SOUTH,
}

LONGITUDE_HEMISPHERES = {
    "E": LongitudeHemisphere.EAST,
    "W": LongitudeHemisphere.WEST,
}

# Tried in order, differing only in the precision of the fractional seconds
AT_FORMATS = ("%d%m%y %H%M%S", "%d%m%y %H%M%S.%f")
AT_PATTERN = re.compile(r"\d{6} \d{6}(\.\d{1,3})?", re.ASCII)

# Bounded so int() stays clear of the interpreter's digit limit
INTEGER_PATTERN = re.compile(r"\d{1,9}", re.ASCII)
DECIMAL_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)", re.ASCII)


def _lookup(table: dict, value: str, kind: ViolationKind, field: str):
    # Case-insensitive, but surrounding whitespace is not forgiven.
    # str.upper() maps some non-ASCII letters onto ASCII ones (e.g. long s)
    member = table.get(value.upper()) if value.isascii() else None
    if member is None:
        raise ProtocolViolationError(kind, f"Unable to parse {field} from '{value}'.", field)
    return member


def parse_header_status(value: str) -> BeaconStatus:
    return _lookup(HEADER_STATUSES, value, ViolationKind.UNKNOWN_STATUS, "Status")


def parse_fix_status(value: str) -> FixStatus:
    return _lookup(FIX_STATUSES, value, ViolationKind.UNKNOWN_FIX_STATUS, "FixStatus")


def parse_latitude_hemisphere(value: str) -> LatitudeHemisphere:
    return _lookup(LATITUDE_HEMISPHERES, value, ViolationKind.UNKNOWN_HEMISPHERE, "LatitudeHemisphere")


def parse_longitude_hemisphere(value: str) -> LongitudeHemisphere:
    return _lookup(LONGITUDE_HEMISPHERES, value, ViolationKind.UNKNOWN_HEMISPHERE, "LongitudeHemisphere")


def parse_required_string(value: str, field: str) -> str:
    if value == "":
        raise ProtocolViolationError(
            ViolationKind.EMPTY_FIELD, f"{field} is blank when it must contain a value.", field
        )
    return value


def parse_record_count(value: str) -> int:
    if not INTEGER_PATTERN.fullmatch(value):
        raise ProtocolViolationError(
            ViolationKind.INVALID_NUMBER, f"Unable to parse RecordCount from '{value}'.", "RecordCount"
        )
    return int(value)


def parse_number(value: str, field: str, default: Optional[float] = None, required: bool = True) -> Optional[float]:
    """
    Parse a decimal field.

    Devices send an empty string rather than a zero for some fields (a
    stationary tracker's ground speed, for instance). When ``required`` is
    false an empty value yields ``default`` instead of failing.
    """
    if value == "":
        if required:
            raise ProtocolViolationError(
                ViolationKind.INVALID_NUMBER, f"{field} is blank when it must contain a value.", field
            )
        return default

    if not DECIMAL_PATTERN.fullmatch(value):
        raise ProtocolViolationError(
            ViolationKind.INVALID_NUMBER, f"Unable to parse {field} from '{value}'.", field
        )
    number = float(value)
    if math.isinf(number):
        raise ProtocolViolationError(
            ViolationKind.INVALID_NUMBER, f"{field} of {len(value)} characters is out of range.", field
        )
    return number


def parse_at(date_value: str, time_value: str) -> datetime:
    """Combine a DDMMYY date and an HHMMSS[.fff] time into a UTC instant"""
    text = f"{date_value} {time_value}"
    if AT_PATTERN.fullmatch(text):
        for fmt in AT_FORMATS:
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

    raise ProtocolViolationError(ViolationKind.INVALID_TIMESTAMP, f"Unable to parse At from '{text}'.", "At")


def parse_record(line: str) -> BeaconRecord:
    tokens = line.split(RECORD_SEPARATOR)
    if len(tokens) < MIN_RECORD_TOKENS:
        raise ProtocolViolationError(
            ViolationKind.TOO_FEW_RECORD_TOKENS,
            f"Line contains {len(tokens)} tokens, rather than the minimum expected {MIN_RECORD_TOKENS}.",
        )

    ground_speed = parse_number(tokens[7], "GroundSpeed", default=0.0, required=False)
    if ground_speed < 0:
        raise ProtocolViolationError(
            ViolationKind.INVALID_NUMBER, f"GroundSpeed of '{tokens[7]}' is negative.", "GroundSpeed"
        )

    return BeaconRecord(
        base_identifier=parse_required_string(tokens[0], "BaseIdentifier"),
        fix_status=parse_fix_status(tokens[2]),
        latitude=parse_number(tokens[3], "Latitude"),
        latitude_hemisphere=parse_latitude_hemisphere(tokens[4]),
        longitude=parse_number(tokens[5], "Longitude"),
        longitude_hemisphere=parse_longitude_hemisphere(tokens[6]),
        ground_speed=ground_speed,
        bearing=parse_number(tokens[8], "Bearing", required=False),
        at=parse_at(tokens[9], tokens[1]),
        checksum=tokens[12],
    )


def decode_message(message: str) -> Beacon:
    """
    Parse one complete frame into a Beacon.

    The frame may be given with or without the blank line that follows the
    terminator on the wire. Raises ProtocolViolationError describing the
    first rule the message breaks.
    """
    if message.endswith(TERMINATOR + LINE_ENDING + LINE_ENDING):
        message = message[:-len(LINE_ENDING)]

    lines = message.split(LINE_ENDING)

    # Check basic sanity
    if len(lines) < MIN_LINES:
        raise ProtocolViolationError(
            ViolationKind.TOO_FEW_LINES, f"Message does not contain at least {MIN_LINES} lines."
        )
    if lines[-2] != TERMINATOR:
        raise ProtocolViolationError(
            ViolationKind.MISSING_TERMINATOR, f"Second last line of message is not '{TERMINATOR}'."
        )
    if lines[-1] != "":
        raise ProtocolViolationError(
            ViolationKind.TRAILING_LINE_NOT_BLANK, "Last line of message is not blank."
        )

    tokens = lines[0].split(HEADER_SEPARATOR)
    if len(tokens) < MIN_HEADER_TOKENS:
        raise ProtocolViolationError(
            ViolationKind.TOO_FEW_HEADER_TOKENS,
            f"Header line contains {len(tokens)} tokens, rather than the minimum {MIN_HEADER_TOKENS} expected.",
        )

    imei = parse_required_string(tokens[1], "IMEI")
    gprs_username = parse_required_string(tokens[2], "GPRSUsername")
    gprs_password = parse_required_string(tokens[3], "GPRSPassword")
    status = parse_header_status(tokens[4])

    record_count = parse_record_count(tokens[5])
    record_lines = lines[1:-2]
    if len(record_lines) != record_count:
        raise ProtocolViolationError(
            ViolationKind.RECORD_COUNT_MISMATCH,
            f"Message contains {len(record_lines)} record lines, which does not match the RecordCount of '{record_count}'.",
            "RecordCount",
        )

    records: List[BeaconRecord] = []
    for number, line in enumerate(record_lines, start=1):
        try:
            records.append(parse_record(line))
        except ProtocolViolationError as e:
            raise ProtocolViolationError(e.kind, f"Record {number}: {e.message}", e.field) from e

    return Beacon(
        imei=imei,
        gprs_username=gprs_username,
        gprs_password=gprs_password,
        status=status,
        records=records,
    )


class MictrackProtocolHandler(BaseProtocolHandler):
    """Handler for the Mictrack MP90 protocol ('#' header, '##' terminator)"""

    HEADER_PATTERN = re.compile(r"^#[^#\r\n]*#")

    def get_protocol_name(self) -> str:
        return "Mictrack"

    def can_handle(self, data: str) -> bool:
        """Cheap check that this looks like a Mictrack frame, without validating it"""
        return bool(self.HEADER_PATTERN.match(data)) and (LINE_ENDING + TERMINATOR + LINE_ENDING) in data

    def parse_message(self, data: str) -> Beacon:
        beacon = decode_message(data)
        logger.debug(f"Parsed {self.get_protocol_name()} beacon from {beacon.imei} with {len(beacon.records)} records")
        return beacon
