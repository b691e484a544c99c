"""Client-side garden state.

One immutable ``GardenState`` per client, replaced only through
``garden_reducer``. ``GardenStore`` owns the current state, applies actions in
arrival order and runs the nutrient advice policy after NPK updates.

Actions are plain dicts: ``{"type": ..., "payload": ...}``.
"""
import logging
import time
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

import Config
from Thresholds import DEFAULT_THRESHOLDS, merge_thresholds

logger = logging.getLogger("garden.store")

TOGGLE_IRRIGATION = "TOGGLE_IRRIGATION"
SET_IRRIGATION_STATE = "SET_IRRIGATION_STATE"
UPDATE_SENSOR_DATA = "UPDATE_SENSOR_DATA"
SET_LAST_SYNC = "SET_LAST_SYNC"
SHOW_ADVICE_POPUP = "SHOW_ADVICE_POPUP"
HIDE_ADVICE_POPUP = "HIDE_ADVICE_POPUP"
SET_THRESHOLDS = "SET_THRESHOLDS"

NUTRIENTS = ("nitrogen", "phosphorus", "potassium")

ADVICE_TEXT = {
    "nitrogen": "Low Nitrogen: Consider adding coffee grounds or grass clippings to your compost.",
    "phosphorus": "Low Phosphorus: Bone meal or banana peels can help increase phosphorus levels.",
    "potassium": "Low Potassium: Wood ash (use sparingly) or citrus rinds are good sources of potassium.",
}

Action = Dict[str, Any]


class NPK(BaseModel):
    model_config = ConfigDict(frozen=True)

    nitrogen: float = 0
    phosphorus: float = 0
    potassium: float = 0


class SensorData(BaseModel):
    model_config = ConfigDict(frozen=True)

    moisture_a: float = 0
    moisture_b: float = 0
    temperature: float = 0
    humidity: float = 0
    npk: NPK = NPK()


class GardenState(BaseModel):
    model_config = ConfigDict(frozen=True)

    irrigation: bool = False
    sensor_data: SensorData = SensorData()
    last_sync: Optional[int] = None  # epoch ms of the last sensor update
    advice_popup: Optional[str] = None
    # nutrients whose popup already opened during the current low spell
    advice_fired: FrozenSet[str] = frozenset()
    thresholds: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))


# ----------------------------
# ACTIONS
# ----------------------------
def toggle_irrigation() -> Action:
    return {"type": TOGGLE_IRRIGATION}


def set_irrigation_state(status: bool) -> Action:
    return {"type": SET_IRRIGATION_STATE, "payload": status}


def update_sensor_data(payload: Dict[str, Any]) -> Action:
    return {"type": UPDATE_SENSOR_DATA, "payload": payload}


def set_last_sync(ms: int) -> Action:
    return {"type": SET_LAST_SYNC, "payload": ms}


def show_advice_popup(nutrient: str) -> Action:
    return {"type": SHOW_ADVICE_POPUP, "payload": nutrient}


def hide_advice_popup() -> Action:
    return {"type": HIDE_ADVICE_POPUP}


def set_thresholds(thresholds: Dict[str, Any]) -> Action:
    return {"type": SET_THRESHOLDS, "payload": thresholds}


# ----------------------------
# REDUCER
# ----------------------------
def _numbers(payload: Dict[str, Any], *keys: str) -> Optional[List[float]]:
    values = [payload.get(k) for k in keys]
    if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return values
    return None


def _advice_threshold(state: GardenState, nutrient: str) -> float:
    return state.thresholds.get(f"{nutrient}AdviceLow", DEFAULT_THRESHOLDS[f"{nutrient}AdviceLow"])


def _merge_sensor_data(state: GardenState, payload: Any) -> GardenState:
    if not isinstance(payload, dict):
        return state
    kind = payload.get("type")
    data = state.sensor_data

    if kind == "moisture":
        values = _numbers(payload, "value")
        sensor_id = payload.get("id")
        if values is None or sensor_id not in ("A", "B"):
            logger.warning("Ignoring malformed moisture update: %s", payload)
            return state
        field = "moisture_a" if sensor_id == "A" else "moisture_b"
        return state.model_copy(update={"sensor_data": data.model_copy(update={field: values[0]})})

    if kind == "dht11":
        values = _numbers(payload, "temp", "humidity")
        if values is None:
            logger.warning("Ignoring malformed dht11 update: %s", payload)
            return state
        temperature, humidity = values
        return state.model_copy(
            update={"sensor_data": data.model_copy(update={"temperature": temperature, "humidity": humidity})}
        )

    if kind == "npk":
        values = _numbers(payload, "n", "p", "k")
        if values is None:
            logger.warning("Ignoring malformed npk update: %s", payload)
            return state
        npk = NPK(nitrogen=values[0], phosphorus=values[1], potassium=values[2])
        # recovered nutrients may fire again on their next drop
        still_low = frozenset(
            n for n in state.advice_fired if getattr(npk, n) < _advice_threshold(state, n)
        )
        return state.model_copy(
            update={"sensor_data": data.model_copy(update={"npk": npk}), "advice_fired": still_low}
        )

    logger.warning("Reducer received unknown sensor data type: %s", payload)
    return state


def _show_advice(state: GardenState, nutrient: Any) -> GardenState:
    if state.advice_popup is not None or nutrient not in NUTRIENTS:
        return state
    return state.model_copy(update={"advice_popup": nutrient, "advice_fired": state.advice_fired | {nutrient}})


def _hide_advice(state: GardenState, _payload: Any) -> GardenState:
    if state.advice_popup is None:
        return state
    return state.model_copy(update={"advice_popup": None})


_HANDLERS: Dict[str, Callable[[GardenState, Any], GardenState]] = {
    TOGGLE_IRRIGATION: lambda s, _: s.model_copy(update={"irrigation": not s.irrigation}),
    SET_IRRIGATION_STATE: lambda s, p: s.model_copy(update={"irrigation": bool(p)}),
    UPDATE_SENSOR_DATA: _merge_sensor_data,
    SET_LAST_SYNC: lambda s, p: s.model_copy(update={"last_sync": p}),
    SHOW_ADVICE_POPUP: _show_advice,
    HIDE_ADVICE_POPUP: _hide_advice,
    SET_THRESHOLDS: lambda s, p: s.model_copy(update={"thresholds": merge_thresholds(p or {})}),
}


def garden_reducer(state: GardenState, action: Action) -> GardenState:
    """Apply one action. Unknown actions return `state` itself."""
    action_type = action.get("type")
    if not isinstance(action_type, str) or action_type not in _HANDLERS:
        return state
    return _HANDLERS[action_type](state, action.get("payload"))


def _is_npk_update(action: Action) -> bool:
    payload = action.get("payload")
    return action.get("type") == UPDATE_SENSOR_DATA and isinstance(payload, dict) and payload.get("type") == "npk"


def advice_action(state: GardenState) -> Optional[Action]:
    """Popup to open for the current readings, if any.

    Edge-triggered: a nutrient fires once per low spell and only while no
    other popup is showing.
    """
    if state.advice_popup is not None:
        return None
    npk = state.sensor_data.npk
    for nutrient in NUTRIENTS:
        if nutrient in state.advice_fired:
            continue
        if getattr(npk, nutrient) < _advice_threshold(state, nutrient):
            return show_advice_popup(nutrient)
    return None


# ----------------------------
# STORE
# ----------------------------
Listener = Callable[[Action, GardenState], None]


class GardenStore:
    def __init__(self, state: Optional[GardenState] = None) -> None:
        self._state = state or GardenState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> GardenState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> GardenState:
        previous = self._state
        self._state = garden_reducer(previous, action)
        for listener in list(self._listeners):
            listener(action, self._state)

        # nutrient advice only reacts to fresh NPK readings
        if _is_npk_update(action) and self._state is not previous:
            follow_up = advice_action(self._state)
            if follow_up is not None:
                self.dispatch(follow_up)
        return self._state


# ----------------------------
# DERIVED VALUES
# ----------------------------
def now_ms() -> int:
    return int(time.time() * 1000)


def freshness(state: GardenState, now: Optional[int] = None, live_window_s: float = Config.LIVE_WINDOW_S) -> str:
    if state.last_sync is None:
        return "waiting"
    now = now_ms() if now is None else now
    return "live" if now - state.last_sync < live_window_s * 1000 else "stale"


def format_last_sync(last_sync: Optional[int], now: Optional[int] = None) -> str:
    if not last_sync:
        return "Never"
    now = now_ms() if now is None else now
    minutes = (now - last_sync) // 60000
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def value_status(value: float, low: float, high: float) -> str:
    if value < low:
        return "low"
    if value > high:
        return "high"
    return "ok"


_STATUS_KEYS = {
    "moisture_a": "moisture",
    "moisture_b": "moisture",
    "temperature": "temp",
    "humidity": "humidity",
    "nitrogen": "nitrogen",
    "phosphorus": "phosphorus",
    "potassium": "potassium",
}


def sensor_status(state: GardenState, sensor: str) -> str:
    """low/ok/high for one gauge, against the configured thresholds."""
    prefix = _STATUS_KEYS[sensor]
    if sensor in NUTRIENTS:
        value = getattr(state.sensor_data.npk, sensor)
    else:
        value = getattr(state.sensor_data, sensor)
    return value_status(value, state.thresholds[f"{prefix}Low"], state.thresholds[f"{prefix}High"])
