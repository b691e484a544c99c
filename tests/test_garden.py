from Garden import (
    HIDE_ADVICE_POPUP,
    SHOW_ADVICE_POPUP,
    GardenState,
    GardenStore,
    format_last_sync,
    freshness,
    garden_reducer,
    hide_advice_popup,
    sensor_status,
    set_irrigation_state,
    set_last_sync,
    set_thresholds,
    toggle_irrigation,
    update_sensor_data,
)


def test_moisture_update_touches_only_its_sensor():
    state = GardenState()
    state = garden_reducer(state, update_sensor_data({"type": "moisture", "id": "B", "value": 55}))
    state = garden_reducer(state, update_sensor_data({"type": "moisture", "id": "A", "value": 42}))
    assert state.sensor_data.moisture_a == 42
    assert state.sensor_data.moisture_b == 55


def test_climate_and_npk_updates():
    state = garden_reducer(GardenState(), update_sensor_data({"type": "dht11", "temp": 24.5, "humidity": 61}))
    state = garden_reducer(state, update_sensor_data({"type": "npk", "n": 50, "p": 45, "k": 55}))
    assert (state.sensor_data.temperature, state.sensor_data.humidity) == (24.5, 61)
    assert (state.sensor_data.npk.nitrogen, state.sensor_data.npk.phosphorus, state.sensor_data.npk.potassium) == (
        50,
        45,
        55,
    )


def test_unknown_or_malformed_updates_leave_state_alone():
    state = GardenState()
    assert garden_reducer(state, {"type": "NOT_AN_ACTION"}) is state
    assert garden_reducer(state, update_sensor_data({"type": "ph", "value": 7})) is state
    assert garden_reducer(state, update_sensor_data({"type": "moisture", "id": "C", "value": 7})) is state
    assert garden_reducer(state, update_sensor_data(None)) is state


def test_irrigation_actions():
    state = garden_reducer(GardenState(), toggle_irrigation())
    assert state.irrigation is True
    state = garden_reducer(state, set_irrigation_state(False))
    assert state.irrigation is False


def test_state_is_replaced_not_mutated():
    before = GardenState()
    after = garden_reducer(before, set_last_sync(1000))
    assert before.last_sync is None
    assert after.last_sync == 1000


def test_advice_popup_fires_once_per_low_spell():
    store = GardenStore()
    shown = []
    store.subscribe(lambda action, state: shown.append(action["payload"]) if action["type"] == SHOW_ADVICE_POPUP else None)

    store.dispatch(set_thresholds({"nitrogenAdviceLow": 15}))
    store.dispatch(update_sensor_data({"type": "npk", "n": 20, "p": 40, "k": 50}))
    assert shown == []
    assert store.state.advice_popup is None

    store.dispatch(update_sensor_data({"type": "npk", "n": 10, "p": 40, "k": 50}))
    assert shown == ["nitrogen"]
    assert store.state.advice_popup == "nitrogen"

    store.dispatch(update_sensor_data({"type": "npk", "n": 8, "p": 40, "k": 50}))
    assert shown == ["nitrogen"]

    store.dispatch(hide_advice_popup())
    assert store.state.advice_popup is None

    store.dispatch(update_sensor_data({"type": "npk", "n": 8, "p": 10, "k": 50}))
    assert shown == ["nitrogen", "phosphorus"]
    assert store.state.advice_popup == "phosphorus"


def test_advice_rearms_after_recovery():
    store = GardenStore()
    store.dispatch(update_sensor_data({"type": "npk", "n": 10, "p": 40, "k": 50}))
    assert store.state.advice_popup == "nitrogen"
    store.dispatch({"type": HIDE_ADVICE_POPUP})
    store.dispatch(update_sensor_data({"type": "npk", "n": 45, "p": 40, "k": 50}))
    assert "nitrogen" not in store.state.advice_fired
    store.dispatch(update_sensor_data({"type": "npk", "n": 10, "p": 40, "k": 50}))
    assert store.state.advice_popup == "nitrogen"


def test_unsubscribe_stops_notifications():
    store = GardenStore()
    seen = []
    unsubscribe = store.subscribe(lambda action, state: seen.append(action["type"]))
    store.dispatch(toggle_irrigation())
    unsubscribe()
    store.dispatch(toggle_irrigation())
    assert len(seen) == 1


def test_freshness():
    assert freshness(GardenState(), now=10_000) == "waiting"
    state = GardenState(last_sync=10_000)
    assert freshness(state, now=12_000) == "live"
    assert freshness(state, now=20_000) == "stale"


def test_format_last_sync():
    now = 10 * 86_400_000
    assert format_last_sync(None, now) == "Never"
    assert format_last_sync(now - 30_000, now) == "Just now"
    assert format_last_sync(now - 5 * 60_000, now) == "5m ago"
    assert format_last_sync(now - 3 * 3_600_000, now) == "3h ago"
    assert format_last_sync(now - 2 * 86_400_000, now) == "2d ago"


def test_sensor_status_uses_thresholds():
    state = garden_reducer(GardenState(), update_sensor_data({"type": "dht11", "temp": 30, "humidity": 60}))
    assert sensor_status(state, "temperature") == "high"
    assert sensor_status(state, "humidity") == "ok"
    assert sensor_status(state, "moisture_a") == "low"


def test_non_npk_updates_never_open_advice():
    store = GardenStore()
    store.dispatch(update_sensor_data({"type": "moisture", "id": "A", "value": 55}))
    store.dispatch(update_sensor_data({"type": "dht11", "temp": 22, "humidity": 50}))
    assert store.state.advice_popup is None
    assert store.state.advice_fired == frozenset()


def test_unhashable_action_type_is_ignored():
    state = GardenState()
    assert garden_reducer(state, {"type": ["UPDATE_SENSOR_DATA"]}) is state
    assert garden_reducer(state, {}) is state
