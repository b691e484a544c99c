# Relay.py
#
# Broadcast relay: the set of live viewer connections and the fan-out of
# events to them. Runs on a single event loop, so the subscriber set is never
# touched concurrently and needs no lock.
#
# Each subscriber owns a FIFO queue drained by its own writer task. A
# broadcast only enqueues, so a slow or dead viewer never holds up the rest.
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from Errors import MalformedMessage
from MSG import error_event, irrigation_state_event, parse_client_message

logger = logging.getLogger("garden.relay")

SendText = Callable[[str], Awaitable[None]]


class Subscriber:
    """Relay-side handle for one connected viewer."""

    def __init__(self, send: SendText, on_close: Callable[["Subscriber"], None]) -> None:
        self._send = send
        self._on_close = on_close
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._task: Optional["asyncio.Task[None]"] = None
        self.closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._pump())

    def deliver(self, message: str) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(message)
        return True

    async def _pump(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._send(message)
            except Exception as e:
                logger.warning("Send failed, dropping subscriber: %s", e)
                self.close()
                return

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._on_close(self)


class BroadcastRelay:
    def __init__(self) -> None:
        self._subscribers: Set[Subscriber] = set()
        self.irrigation = False

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, send: SendText) -> Subscriber:
        handle = Subscriber(send, self._discard)
        self._subscribers.add(handle)
        handle.start()
        logger.info("Client connected (%d open)", len(self._subscribers))
        return handle

    def unsubscribe(self, handle: Subscriber) -> None:
        handle.close()

    def _discard(self, handle: Subscriber) -> None:
        if handle in self._subscribers:
            self._subscribers.discard(handle)
            logger.info("Client disconnected (%d open)", len(self._subscribers))

    def broadcast(self, event: Dict[str, Any]) -> int:
        """Queue `event` for every open subscriber. Returns how many got it."""
        msg = json.dumps(event, ensure_ascii=False)
        logger.debug("Broadcasting: %s", msg)

        delivered = 0
        for handle in list(self._subscribers):
            if handle.closed:
                self._subscribers.discard(handle)
                continue
            if handle.deliver(msg):
                delivered += 1
        return delivered

    def send_to(self, handle: Subscriber, event: Dict[str, Any]) -> bool:
        return handle.deliver(json.dumps(event, ensure_ascii=False))

    def set_irrigation(self, status: bool) -> int:
        self.irrigation = status
        logger.info("Irrigation set to %s", "on" if status else "off")
        return self.broadcast(irrigation_state_event(status))

    def handle_client_message(self, handle: Subscriber, raw: str) -> None:
        """Apply a message received from one viewer.

        Control commands change state and are re-broadcast to everyone.
        Malformed input is answered with an error to the sender only.
        """
        try:
            command = parse_client_message(raw)
        except MalformedMessage as e:
            logger.warning("Malformed client message %r: %s", raw[:200], e)
            self.send_to(handle, error_event(str(e)))
            return

        if command is None:
            logger.debug("Ignoring non-control message: %s", raw[:200])
            return

        self.set_irrigation(command.payload.status)

    def close(self) -> None:
        for handle in list(self._subscribers):
            handle.close()
        self._subscribers.clear()
