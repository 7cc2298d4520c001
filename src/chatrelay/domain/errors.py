"""Relay error taxonomy.

Every terminal relay failure is surfaced to the end user as the assistant
message's own content, so each error knows the diagnostic text it finalizes
with and the outcome label recorded in metrics.
"""

from __future__ import annotations


UNKNOWN_ERROR = "Unknown error occurred"


class RelayError(Exception):
    outcome = "error"

    def diagnostic(self) -> str:
        return f"Error: {str(self) or UNKNOWN_ERROR}"


class ConfigError(RelayError):
    """Gateway credential is not configured. Terminal, never retried."""

    outcome = "config_error"

    def __init__(self, api_key_env: str) -> None:
        super().__init__(f"{api_key_env} not configured.")
        self.api_key_env = api_key_env


class TransportError(RelayError):
    """Gateway answered with a non-success HTTP status."""

    outcome = "transport_error"

    def __init__(self, status_code: int, body: str, gateway_name: str = "gateway") -> None:
        super().__init__(f"{gateway_name} returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.gateway_name = gateway_name

    def diagnostic(self) -> str:
        return f"Error from {self.gateway_name} ({self.status_code}): {self.body}"


class StreamError(RelayError):
    """Failure while opening or reading the gateway stream."""

    outcome = "stream_error"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "StreamError":
        err = cls(str(exc))
        err.__cause__ = exc
        return err


class DecodeError(RelayError):
    """A single data line could not be decoded. Non-fatal: the line is skipped."""

    outcome = "decode_error"


class RelayCancelled(RelayError):
    outcome = "cancelled"

    def __init__(self, message: str = "Generation cancelled.") -> None:
        super().__init__(message)


class MessageFinalizedError(RuntimeError):
    """Raised by a store when a write targets a message whose streaming latch is closed."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message {message_id} is already finalized")
        self.message_id = message_id
