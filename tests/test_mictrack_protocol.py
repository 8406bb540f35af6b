"""Tests for the Mictrack frame decoder."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mictrack_server.device_simulator import build_message, format_record
from mictrack_server.models import (
    BeaconStatus,
    FixStatus,
    LatitudeHemisphere,
    LongitudeHemisphere,
)
from mictrack_server.protocols import (
    MictrackProtocolHandler,
    ProtocolViolationError,
    ViolationKind,
    decode_message,
)
from tests.frames import SCENARIO_A, SCENARIO_B, SCENARIO_C, make_frame, make_record


def assert_violation(message: str, kind: ViolationKind) -> ProtocolViolationError:
    with pytest.raises(ProtocolViolationError) as exc_info:
        decode_message(message)
    assert exc_info.value.kind == kind
    return exc_info.value


# ---------------------------------------------------------------------------
# Sample messages
# ---------------------------------------------------------------------------

def test_real_device_sample():
    beacon = decode_message(SCENARIO_A)

    assert beacon.imei == "861108034747229"
    assert beacon.gprs_username == "MT600"
    assert beacon.gprs_password == "0000"
    assert beacon.status == BeaconStatus.POWER_SAVE_STATIONARY
    assert len(beacon.records) == 1

    record = beacon.records[0]
    assert record.base_identifier == "#00018b5fc03$GPRMC"
    assert record.fix_status == FixStatus.VALID
    assert record.latitude == 2741.6724
    assert record.latitude_hemisphere == LatitudeHemisphere.SOUTH
    assert record.longitude == 15309.1364
    assert record.longitude_hemisphere == LongitudeHemisphere.EAST
    assert record.ground_speed == 0.05
    assert record.bearing is None
    assert record.at == datetime(2018, 12, 12, 9, 38, 8, tzinfo=timezone.utc)
    assert record.checksum == "A*52"


def test_manual_sample():
    beacon = decode_message(SCENARIO_B)

    assert beacon.imei == "863835023427631"
    assert beacon.status == BeaconStatus.NORMAL
    record = beacon.records[0]
    assert record.latitude_hemisphere == LatitudeHemisphere.NORTH
    assert record.bearing == 309.62
    assert record.at == datetime(2016, 1, 3, 9, 46, 32, tzinfo=timezone.utc)


def test_invalid_fix_still_decodes():
    """Fix validity and structural validity are independent."""
    beacon = decode_message(SCENARIO_C)

    record = beacon.records[0]
    assert record.fix_status == FixStatus.INVALID
    assert record.latitude == 0
    assert record.longitude == 0
    assert record.longitude_hemisphere == LongitudeHemisphere.WEST
    assert record.ground_speed == 0
    assert record.bearing is None
    assert record.checksum == ""
    assert record.at == datetime(2020, 12, 30, 13, 46, 32, tzinfo=timezone.utc)


def test_timestamp_is_utc():
    record = decode_message(SCENARIO_A).records[0]
    assert record.at.tzinfo is timezone.utc
    assert record.at.isoformat() == "2018-12-12T09:38:08+00:00"


def test_decode_is_deterministic():
    assert decode_message(SCENARIO_A) == decode_message(SCENARIO_A)


def test_trailing_blank_line_is_optional():
    without_blank_line = SCENARIO_A[:-2]
    assert without_blank_line.endswith("##\r\n")
    assert decode_message(without_blank_line) == decode_message(SCENARIO_A)


def test_zero_records():
    beacon = decode_message(make_frame(records=[]))
    assert beacon.records == []


def test_multiple_records_keep_order():
    records = [
        make_record(time="093808.00", speed="1.5"),
        make_record(time="093818.00", speed="2.5"),
        make_record(time="093828.00", speed="3.5"),
    ]
    beacon = decode_message(make_frame(records=records))

    assert [r.ground_speed for r in beacon.records] == [1.5, 2.5, 3.5]
    assert [r.at.second for r in beacon.records] == [8, 18, 28]


def test_simulator_messages_decode():
    at = datetime(2024, 3, 20, 14, 23, 45, tzinfo=timezone.utc)
    records = [
        format_record("00018b5fc03", at, -27.6945, 153.1523, 12.5, 87.0),
        format_record("00018b5fc03", at, 47.3769, -8.5417, 0.0, None, valid=False),
    ]
    beacon = decode_message(build_message("861108034747229", "TOWED", records))

    assert beacon.status == BeaconStatus.POWER_SAVE_MOVING
    moving, stationary = beacon.records
    assert moving.latitude_hemisphere == LatitudeHemisphere.SOUTH
    assert moving.bearing == 87.0
    assert moving.at == at
    assert stationary.fix_status == FixStatus.INVALID
    assert stationary.longitude_hemisphere == LongitudeHemisphere.WEST
    assert stationary.ground_speed == 0
    assert stationary.bearing is None


# ---------------------------------------------------------------------------
# Frame structure
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("message", ["", "##\r\n", "#1#u#p#AUTO#0"])
def test_too_few_lines(message):
    assert_violation(message, ViolationKind.TOO_FEW_LINES)


def test_missing_terminator():
    assert_violation("#1#u#p#AUTO#0\r\n#\r\n", ViolationKind.MISSING_TERMINATOR)


def test_terminator_must_be_exact():
    assert_violation("#1#u#p#AUTO#0\r\n## \r\n", ViolationKind.MISSING_TERMINATOR)


def test_trailing_line_not_blank():
    assert_violation("#1#u#p#AUTO#0\r\n##\r\nX", ViolationKind.TRAILING_LINE_NOT_BLANK)


def test_too_few_header_tokens():
    assert_violation("#1#u#p#AUTO\r\n##\r\n", ViolationKind.TOO_FEW_HEADER_TOKENS)


@pytest.mark.parametrize("field,kwargs", [
    ("IMEI", {"imei": ""}),
    ("GPRSUsername", {"username": ""}),
    ("GPRSPassword", {"password": ""}),
])
def test_empty_header_field(field, kwargs):
    error = assert_violation(make_frame(**kwargs), ViolationKind.EMPTY_FIELD)
    assert error.field == field
    assert field in str(error)


def test_record_count_mismatch():
    error = assert_violation(make_frame(count=2), ViolationKind.RECORD_COUNT_MISMATCH)
    assert "'2'" in str(error)


def test_record_count_mismatch_too_many_lines():
    assert_violation(make_frame(records=[make_record(), make_record()], count=1),
                     ViolationKind.RECORD_COUNT_MISMATCH)


@pytest.mark.parametrize("count", ["", "x", "-1", "1.0", " 1", "+1"])
def test_record_count_must_be_non_negative_integer(count):
    message = f"#1#u#p#AUTO#{count}\r\n##\r\n"
    error = assert_violation(message, ViolationKind.INVALID_NUMBER)
    assert error.field == "RecordCount"


def test_record_count_too_long():
    # Far beyond anything a frame could hold, and past int()'s default digit limit
    for count in ("1234567890", "9" * 5000):
        error = assert_violation(make_frame(count=count), ViolationKind.INVALID_NUMBER)
        assert error.field == "RecordCount"


def test_too_few_record_tokens():
    error = assert_violation(make_frame(records=["#00018b5fc03$GPRMC,093808.00,A"]),
                             ViolationKind.TOO_FEW_RECORD_TOKENS)
    assert str(error).startswith("Record 1:")


def test_error_names_offending_record():
    records = [make_record(), make_record(fix="Q")]
    error = assert_violation(make_frame(records=records), ViolationKind.UNKNOWN_FIX_STATUS)
    assert str(error).startswith("Record 2:")


def test_empty_base_identifier():
    error = assert_violation(make_frame(records=[make_record(base="")]), ViolationKind.EMPTY_FIELD)
    assert error.field == "BaseIdentifier"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("code,status", [
    ("AUTO", BeaconStatus.NORMAL),
    ("AUTOLOW", BeaconStatus.POWER_SAVE_STATIONARY),
    ("TOWED", BeaconStatus.POWER_SAVE_MOVING),
    ("CALL", BeaconStatus.CALL),
    ("DEF", BeaconStatus.DISCONNECT),
    ("HT", BeaconStatus.HIGH_TEMPERATURE),
    ("BLP", BeaconStatus.INTERNAL_BATTERY_LOW),
    ("CLP", BeaconStatus.EXTERNAL_BATTERY_LOW),
    ("OS", BeaconStatus.GEO_FENCE_EXIT),
    ("RS", BeaconStatus.GEO_FENCE_ENTER),
    ("OVERSPEED", BeaconStatus.SPEED_OVER),
    ("SAFESPEED", BeaconStatus.SPEED_UNDER),
])
def test_status_codes(code, status):
    assert decode_message(make_frame(status=code)).status == status
    assert decode_message(make_frame(status=code.lower())).status == status
    assert decode_message(make_frame(status=code.capitalize())).status == status


@pytest.mark.parametrize("code", ["", "NORMAL", "AUTO ", " AUTO", "AUTO\t", "AUT0"])
def test_unknown_status(code):
    assert_violation(make_frame(status=code), ViolationKind.UNKNOWN_STATUS)


@pytest.mark.parametrize("code,expected", [
    ("A", FixStatus.VALID),
    ("a", FixStatus.VALID),
    ("V", FixStatus.INVALID),
    ("v", FixStatus.INVALID),
])
def test_fix_status_codes(code, expected):
    record = decode_message(make_frame(records=[make_record(fix=code)])).records[0]
    assert record.fix_status == expected


@pytest.mark.parametrize("code", ["", "X", " A", "A ", "AV"])
def test_unknown_fix_status(code):
    assert_violation(make_frame(records=[make_record(fix=code)]), ViolationKind.UNKNOWN_FIX_STATUS)


@pytest.mark.parametrize("ns,ew,lat_expected,lon_expected", [
    ("N", "E", LatitudeHemisphere.NORTH, LongitudeHemisphere.EAST),
    ("n", "e", LatitudeHemisphere.NORTH, LongitudeHemisphere.EAST),
    ("S", "W", LatitudeHemisphere.SOUTH, LongitudeHemisphere.WEST),
    ("s", "w", LatitudeHemisphere.SOUTH, LongitudeHemisphere.WEST),
])
def test_hemispheres(ns, ew, lat_expected, lon_expected):
    record = decode_message(make_frame(records=[make_record(ns=ns, ew=ew)])).records[0]
    assert record.latitude_hemisphere == lat_expected
    assert record.longitude_hemisphere == lon_expected


@pytest.mark.parametrize("overrides", [
    {"ns": "E"},
    {"ns": " N"},
    {"ns": ""},
    {"ew": "N"},
    {"ew": "W "},
    {"ew": ""},
])
def test_unknown_hemisphere(overrides):
    assert_violation(make_frame(records=[make_record(**overrides)]), ViolationKind.UNKNOWN_HEMISPHERE)


def test_lookups_reject_non_ascii_case_folding():
    # "\u017f" (long s) upper-cases to "S"
    assert_violation(make_frame(status="o\u017f"), ViolationKind.UNKNOWN_STATUS)
    assert_violation(make_frame(records=[make_record(ns="\u017f")]), ViolationKind.UNKNOWN_HEMISPHERE)
    assert_violation(make_frame(records=[make_record(ew="\u017f")]), ViolationKind.UNKNOWN_HEMISPHERE)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def test_empty_ground_speed_is_zero():
    record = decode_message(make_frame(records=[make_record(speed="")])).records[0]
    assert record.ground_speed == 0


def test_empty_bearing_is_absent():
    record = decode_message(make_frame(records=[make_record(bearing="")])).records[0]
    assert record.bearing is None


def test_zero_bearing_is_not_absent():
    record = decode_message(make_frame(records=[make_record(bearing="0")])).records[0]
    assert record.bearing == 0


@pytest.mark.parametrize("field", ["lat", "lon"])
def test_coordinates_are_required(field):
    error = assert_violation(make_frame(records=[make_record(**{field: ""})]), ViolationKind.INVALID_NUMBER)
    assert error.field in ("Latitude", "Longitude")


@pytest.mark.parametrize("value", ["abc", "nan", "inf", "1e3", " 1.0", "1.0 ", "--1", "."])
@pytest.mark.parametrize("field", ["lat", "lon", "speed", "bearing"])
def test_malformed_numbers(field, value):
    assert_violation(make_frame(records=[make_record(**{field: value})]), ViolationKind.INVALID_NUMBER)


@pytest.mark.parametrize("value,expected", [("12", 12.0), ("12.", 12.0), (".5", 0.5), ("0012.50", 12.5)])
def test_decimal_forms(value, expected):
    record = decode_message(make_frame(records=[make_record(lat=value)])).records[0]
    assert record.latitude == expected


def test_negative_ground_speed_rejected():
    error = assert_violation(make_frame(records=[make_record(speed="-1.5")]), ViolationKind.INVALID_NUMBER)
    assert error.field == "GroundSpeed"


@pytest.mark.parametrize("field", ["lat", "lon", "speed", "bearing"])
def test_numbers_too_large_for_float(field):
    assert_violation(make_frame(records=[make_record(**{field: "9" * 400})]), ViolationKind.INVALID_NUMBER)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("time,microsecond", [
    ("093808", 0),
    ("093808.5", 500000),
    ("093808.05", 50000),
    ("093808.123", 123000),
])
def test_fractional_seconds(time, microsecond):
    record = decode_message(make_frame(records=[make_record(time=time)])).records[0]
    assert record.at == datetime(2018, 12, 12, 9, 38, 8, microsecond, tzinfo=timezone.utc)


@pytest.mark.parametrize("date,time", [
    ("000000", "093808.00"),   # Lexically fine, but no day 0 / month 0
    ("000000", "000000"),
    ("310218", "093808.00"),   # 31 February
    ("121318", "093808.00"),   # Month 13
    ("121218", "253808.00"),   # Hour 25
    ("121218", "093808.1234"),
    ("121218", "093808."),
    ("121218", ""),
    ("", "093808.00"),
    ("12121", "093808.00"),
    ("1212180", "093808.00"),
    ("121218", "9:38:08"),
])
def test_invalid_timestamps(date, time):
    error = assert_violation(make_frame(records=[make_record(date=date, time=time)]),
                             ViolationKind.INVALID_TIMESTAMP)
    assert error.field == "At"


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

def test_handler_parse_bytes():
    handler = MictrackProtocolHandler()
    beacon = handler.parse_bytes(SCENARIO_A.encode("ascii"))

    assert beacon.imei == "861108034747229"
    assert handler.device_id == "861108034747229"
    assert handler.message_count == 1


def test_handler_rejects_non_ascii():
    handler = MictrackProtocolHandler()
    data = SCENARIO_A.replace("MT600", "MT6é00").encode("utf-8")

    with pytest.raises(ProtocolViolationError) as exc_info:
        handler.parse_bytes(data)
    assert exc_info.value.kind == ViolationKind.INVALID_ENCODING
    assert handler.message_count == 0


def test_handler_can_handle():
    handler = MictrackProtocolHandler()
    assert handler.get_protocol_name() == "Mictrack"
    assert handler.can_handle(SCENARIO_A)
    assert handler.can_handle(SCENARIO_C)
    assert not handler.can_handle("[3G*8825100456*0008*LK,0,0,95]")
    assert not handler.can_handle("#861108034747229#MT600#0000#AUTOLOW#1\r\n")
