"""
Beacon data model and listener events
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class BeaconStatus(str, Enum):
    """Device mode reported in the header line"""
    NORMAL = "Normal"
    POWER_SAVE_STATIONARY = "PowerSaveStationary"
    POWER_SAVE_MOVING = "PowerSaveMoving"
    CALL = "Call"  # MP90 only
    DISCONNECT = "Disconnect"  # Unplug alert
    HIGH_TEMPERATURE = "HighTemperature"
    INTERNAL_BATTERY_LOW = "InternalBatteryLow"
    EXTERNAL_BATTERY_LOW = "ExternalBatteryLow"
    GEO_FENCE_ENTER = "GeoFenceEnter"
    GEO_FENCE_EXIT = "GeoFenceExit"
    SPEED_OVER = "SpeedOver"
    SPEED_UNDER = "SpeedUnder"


class FixStatus(str, Enum):
    VALID = "Valid"
    INVALID = "Invalid"


class LatitudeHemisphere(str, Enum):
    NORTH = "North"
    SOUTH = "South"


class LongitudeHemisphere(str, Enum):
    EAST = "East"
    WEST = "West"


class BeaconRecord(BaseModel):
    """One position/heading observation within a beacon"""
    model_config = ConfigDict(frozen=True)

    # LAC+CI in hex, e.g. 262c0f48 (2G SIM) or a52d15e5803 (3G SIM)
    base_identifier: str = Field(min_length=1)
    at: datetime  # Always UTC
    fix_status: FixStatus
    latitude: float  # ddmm.mmmm, as sent by the device
    latitude_hemisphere: LatitudeHemisphere
    longitude: float  # dddmm.mmmm, as sent by the device
    longitude_hemisphere: LongitudeHemisphere
    ground_speed: float = Field(default=0.0, ge=0)  # Knots
    # Degrees. None when the device sends nothing, which it does while stationary
    bearing: Optional[float] = None
    # Captured verbatim, never verified
    checksum: str = ""


class Beacon(BaseModel):
    """Header information of one inbound message plus its position records"""
    model_config = ConfigDict(frozen=True)

    imei: str = Field(min_length=1)
    gprs_username: str = Field(min_length=1)
    gprs_password: str = Field(min_length=1)
    status: BeaconStatus
    records: List[BeaconRecord] = Field(default_factory=list)


class BeaconReceivedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    remote_address: str
    beacon: Beacon


class DecodeErrorEvent(BaseModel):
    """A frame from remote_address could not be decoded; the connection stays open"""
    model_config = ConfigDict(frozen=True)

    remote_address: str
    message: str
    kind: Optional[str] = None


class ConnectionErrorEvent(BaseModel):
    """Transport failure, oversized message or accept failure"""
    model_config = ConfigDict(frozen=True)

    remote_address: str
    message: str


ErrorEvent = Union[DecodeErrorEvent, ConnectionErrorEvent]
