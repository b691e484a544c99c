# Errors.py
#
# Failure taxonomy shared by the relay (ingest, storage, websocket) and the
# client-side connection manager.


class GardenError(Exception):
    """Base class for every relay/client failure."""


class InvalidFormat(GardenError):
    """Payload has no usable `type` discriminator."""

    def __init__(self, message: str = "Invalid sensor data format") -> None:
        super().__init__(message)


class InvalidPayloadForKind(GardenError):
    """Recognized sensor kind whose fields do not match its shape."""

    def __init__(self, kind: str, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"Invalid data provided for sensor type {kind}")


class UnknownKind(GardenError):
    # Not reported to the device as an error: the reading is accepted and dropped.
    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Unknown sensor type: {kind}")


class PersistenceFailure(GardenError):
    """The storage engine rejected a write or a query."""


class TransportClosed(GardenError):
    """The websocket went away. Expected and recoverable."""


class TransportError(TransportClosed):
    """Unexpected socket fault; recovered the same way as a close."""


class MalformedMessage(GardenError):
    """Inbound websocket text that cannot be understood."""
