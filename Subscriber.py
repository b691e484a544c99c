# Subscriber.py
#
# Client side of the relay: keeps one websocket open to /ws, reconnects after
# a fixed delay when it drops, and feeds every event into a GardenStore.
#
#   DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
#
# Only stop() ends the cycle. There is no replay: readings broadcast while
# disconnected are only available from /api/sensor-history.
import argparse
import asyncio
import enum
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

import Config
from Errors import MalformedMessage, TransportClosed, TransportError
from Garden import (
    ADVICE_TEXT,
    SET_LAST_SYNC,
    SHOW_ADVICE_POPUP,
    GardenStore,
    freshness,
    now_ms,
    set_irrigation_state,
    set_last_sync,
    set_thresholds,
    update_sensor_data,
)
from Thresholds import ThresholdStore

logger = logging.getLogger("garden.subscriber")

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def decode_server_message(raw: Any) -> Dict[str, Any]:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"Unparseable message: {e}") from e
    if not isinstance(message, dict):
        raise MalformedMessage("Message is not an object")
    return message


class RelaySubscriber:
    def __init__(
        self,
        url: str = Config.RELAY_URL,
        store: Optional[GardenStore] = None,
        reconnect_delay: float = Config.RECONNECT_DELAY_S,
        connector: Optional[Connector] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.url = url
        self.store = store or GardenStore()
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websockets.connect
        self._clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[TransportClosed] = None
        self.connected_at: Optional[int] = None
        self.reconnects_scheduled = 0

        self._ws: Any = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._stopped = True
        self._state_listeners: List[Callable[[ConnectionState], None]] = []

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug("Connection %s -> %s", self.state.value, state.value)
        self.state = state
        for listener in list(self._state_listeners):
            listener(state)

    # ----------------------------
    # LIFECYCLE
    # ----------------------------
    def start(self) -> None:
        """Begin connecting. Must be called from a running event loop."""
        if not self._stopped:
            return
        self._stopped = False
        self._open()

    def _open(self) -> None:
        self._reconnect_handle = None
        if self._stopped:
            return
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Attempting to connect WebSocket to %s...", self.url)
        self._task = asyncio.get_running_loop().create_task(self._run_connection())

    async def _run_connection(self) -> None:
        try:
            ws = await self._connector(self.url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._on_close(TransportError(f"Connect failed: {e}"))
            return

        if self._stopped:
            await ws.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._ws = ws
        self.connected_at = self._clock()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("WebSocket Connected")

        reason: TransportClosed
        try:
            async for raw in ws:
                try:
                    self.handle_message(raw)
                except Exception:
                    # a failing store listener must not take the connection down
                    logger.exception("Error handling WebSocket message")
        except ConnectionClosed as e:
            reason = TransportClosed(f"Connection closed: {e}")
        except (OSError, WebSocketException) as e:
            reason = TransportError(f"Socket error: {e}")
        else:
            reason = TransportClosed("Connection closed")
        self._on_close(reason)

    def _on_close(self, reason: TransportClosed) -> None:
        self._ws = None
        self.last_error = reason
        self._set_state(ConnectionState.DISCONNECTED)

        if self._stopped:
            logger.info("WebSocket Disconnected")
            return

        logger.warning("WebSocket Disconnected (%s); reconnecting in %.1fs", reason, self.reconnect_delay)
        self.reconnects_scheduled += 1
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._open)

    async def stop(self) -> None:
        """Close the transport and cancel any pending reconnect."""
        self._stopped = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        ws = self._ws
        if ws is not None:
            logger.info("Closing WebSocket connection.")
            await ws.close(code=1000, reason="Client shutting down")

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)

    # ----------------------------
    # INBOUND
    # ----------------------------
    def handle_message(self, raw: Any) -> None:
        try:
            message = decode_server_message(raw)
        except MalformedMessage as e:
            logger.error("Error parsing WebSocket message: %s", e)
            return

        kind = message.get("type")
        if kind == "sensor_update":
            self.store.dispatch(update_sensor_data(message.get("payload")))
            self.store.dispatch(set_last_sync(self._clock()))
        elif kind == "irrigation_state":
            status = message.get("status")
            if isinstance(status, bool):
                self.store.dispatch(set_irrigation_state(status))
            else:
                logger.warning("Ignoring irrigation_state without boolean status: %s", message)
        elif kind == "info":
            logger.info("Info from server: %s", message.get("message"))
        elif kind == "error":
            logger.error("Error from server: %s", message.get("message"))
        else:
            logger.warning("Unknown WebSocket message type: %s", kind)

    # ----------------------------
    # OUTBOUND
    # ----------------------------
    async def send_command(self, command: Dict[str, Any]) -> bool:
        """Send now or not at all. Returns whether the command went out."""
        ws = self._ws
        if not self.is_connected or ws is None:
            logger.warning("WebSocket not open. Cannot send command: %s", command)
            return False
        try:
            await ws.send(json.dumps(command))
        except (ConnectionClosed, OSError) as e:
            logger.warning("Sending command failed: %s", e)
            return False
        return True

    async def send_irrigation_command(self, status: bool) -> bool:
        return await self.send_command(
            {"type": "control", "action": "toggle_irrigation", "payload": {"status": status}}
        )


# ----------------------------
# CLI
# ----------------------------
async def _watch(url: str, reconnect_delay: float, thresholds_path: str) -> None:
    store = GardenStore()
    store.dispatch(set_thresholds(ThresholdStore(thresholds_path).load()))

    def log_action(action: Dict[str, Any], state: Any) -> None:
        if action["type"] == SHOW_ADVICE_POPUP:
            logger.warning(ADVICE_TEXT[action["payload"]])
        elif action["type"] != SET_LAST_SYNC:
            logger.info("%s -> %s", action["type"], state.sensor_data.model_dump())

    store.subscribe(log_action)
    subscriber = RelaySubscriber(url, store, reconnect_delay)
    subscriber.on_state_change(lambda s: logger.info("Relay %s (data %s)", s.value, freshness(store.state)))
    subscriber.start()
    try:
        await asyncio.Event().wait()
    finally:
        await subscriber.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Follow live garden readings from the relay")
    parser.add_argument("--url", default=Config.RELAY_URL)
    parser.add_argument("--reconnect-delay", type=float, default=Config.RECONNECT_DELAY_S)
    parser.add_argument("--thresholds", default=Config.THRESHOLDS_PATH)
    args = parser.parse_args()

    Config.setup_logging()
    try:
        asyncio.run(_watch(args.url, args.reconnect_delay, args.thresholds))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
