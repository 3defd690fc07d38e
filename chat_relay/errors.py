from typing import Any, Optional


class RelayError(Exception):
    """Base class for failures raised while relaying a chat completion."""


class MethodNotAllowed(RelayError):
    def __init__(self, method: str) -> None:
        super().__init__(f"Method {method} not allowed; use POST")
        self.method = method


class TransportError(RelayError):
    """Upstream could not be reached, timed out, failed, or dropped mid-stream."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecordParseError(RelayError):
    """A single SSE data record was not JSON or lacked the expected delta shape.

    Always recovered locally; kept around only for diagnostics.
    """

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class ClientDisconnected(RelayError):
    pass
