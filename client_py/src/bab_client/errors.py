"""
Local client errors.

Server-side rejections arrive as `error` messages and are handled there;
ClientError covers what fails on this side of the wire.
"""

from typing import NoReturn, Optional


class ClientError(Exception):
    """A local failure tagged with one of the codes below."""

    def __init__(self, code: str, message: str, event: Optional[str] = None):
        self.code = code
        self.message = message
        self.event = event
        prefix = f"[{code}] {event}: " if event else f"[{code}] "
        super().__init__(prefix + message)


# Inbound frame is not a JSON {"event", "data"} envelope
INVALID_EVENT = "INVALID_EVENT"
# Outbound message failed validation and was not sent
INVALID_PAYLOAD = "INVALID_PAYLOAD"
# Transport closed, or never connected in time
NOT_CONNECTED = "NOT_CONNECTED"
# Outbound message could not be encoded
TRANSPORT_ERROR = "TRANSPORT_ERROR"


def raise_error(code: str, message: str, event: Optional[str] = None,
                cause: Optional[BaseException] = None) -> NoReturn:
    raise ClientError(code, message, event) from cause
