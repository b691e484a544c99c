"""Wire formats: sensor reading payloads, websocket control messages and the
events the relay broadcasts.

Sensor posts are decoded at the boundary into exactly one of
``MoistureReading``, ``ClimateReading`` or ``NutrientReading``. Anything else
raises before business logic runs.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from Errors import InvalidFormat, InvalidPayloadForKind, MalformedMessage, UnknownKind

# storage row: (sensor_type, sensor_id, value_1, value_2, value_3)
Row = Tuple[str, Optional[str], Optional[float], Optional[float], Optional[float]]


class _Reading(BaseModel):
    # strict: "42" and true are not numbers; only the wire names decode
    model_config = ConfigDict(strict=True, frozen=True, allow_inf_nan=False)

    timestamp: datetime

    def to_payload(self) -> Dict[str, Any]:
        """Normalized broadcast shape: the wire fields plus the server timestamp."""
        return self.model_dump(by_alias=True, mode="json")


class MoistureReading(_Reading):
    type: Literal["moisture"] = "moisture"
    sensor_id: Literal["A", "B"] = Field(alias="id")
    value: float

    def to_row(self) -> Row:
        return (self.type, self.sensor_id, self.value, None, None)


class ClimateReading(_Reading):
    type: Literal["dht11"] = "dht11"
    temperature: float = Field(alias="temp")
    humidity: float

    def to_row(self) -> Row:
        return (self.type, None, self.temperature, self.humidity, None)


class NutrientReading(_Reading):
    type: Literal["npk"] = "npk"
    nitrogen: float = Field(alias="n")
    phosphorus: float = Field(alias="p")
    potassium: float = Field(alias="k")

    def to_row(self) -> Row:
        return (self.type, None, self.nitrogen, self.phosphorus, self.potassium)


SensorReading = Union[MoistureReading, ClimateReading, NutrientReading]

READING_KINDS: Dict[str, Type[_Reading]] = {
    "moisture": MoistureReading,
    "dht11": ClimateReading,
    "npk": NutrientReading,
}


def decode_reading(payload: Any, timestamp: datetime) -> SensorReading:
    """Decode an untyped sensor post into a typed reading stamped with `timestamp`.

    Raises InvalidFormat when the discriminator is missing, UnknownKind for a
    well-formed but unrecognized kind and InvalidPayloadForKind when the
    fields do not match the kind.
    """
    if not isinstance(payload, dict):
        raise InvalidFormat()

    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise InvalidFormat()

    model = READING_KINDS.get(kind)
    if model is None:
        raise UnknownKind(kind)

    data = {k: v for k, v in payload.items() if k != "timestamp"}
    data["timestamp"] = timestamp
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadForKind(kind, str(e)) from e


def validate_payload(payload: Dict[str, Any]) -> SensorReading:
    """Check a device payload before it is sent (used by the mock device)."""
    return decode_reading(payload, datetime.now(timezone.utc))


# ----------------------------
# CLIENT -> SERVER
# ----------------------------
class IrrigationPayload(BaseModel):
    model_config = ConfigDict(strict=True)

    status: bool


class ControlMessage(BaseModel):
    type: Literal["control"]
    action: Literal["toggle_irrigation"]
    payload: IrrigationPayload


def parse_client_message(raw: str) -> Optional[ControlMessage]:
    """Parse websocket text sent by a viewer.

    Returns None for well-formed messages that are not control commands.
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage("Invalid message format") from e

    if not isinstance(message, dict):
        raise MalformedMessage("Invalid message format")

    if message.get("type") != "control":
        return None

    try:
        return ControlMessage.model_validate(message)
    except ValidationError as e:
        raise MalformedMessage("Invalid control message") from e


# ----------------------------
# SERVER -> CLIENT
# ----------------------------
def sensor_update_event(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "sensor_update", "payload": payload}


def irrigation_state_event(status: bool) -> Dict[str, Any]:
    return {"type": "irrigation_state", "status": status}


def info_event(message: str) -> Dict[str, Any]:
    return {"type": "info", "message": message}


def error_event(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}
