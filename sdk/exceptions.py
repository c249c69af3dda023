"""Exception hierarchy for the Courier Telegram SDK."""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from sdk.models import Error


class TransportError(Exception):
    """Network or HTTP-level failure while calling the Telegram Bot API."""


class APIException(TransportError):
    """Non-2xx (or ``ok: false``) response from the Telegram Bot API.

    Attributes:
        status_code: HTTP status code returned by the API.
        response_body: Raw response body as a dict, when available.
        error: The body parsed as an :class:`~sdk.models.Error`, when it is one.
        description: Human-readable reason reported by Telegram.
    """

    def __init__(
        self,
        status_code: int,
        response_body: Optional[Dict[str, Any]] = None,
        error: Optional["Error"] = None,
    ) -> None:
        """Initialise with the HTTP status code, optional body and parsed error."""
        self.status_code = status_code
        self.response_body = response_body or {}
        self.error = error
        self.description = error.description if error is not None else self.response_body.get("description", "Unknown error")
        super().__init__(f"API error {status_code}: {self.description}")

    @property
    def retry_after(self) -> Optional[int]:
        """Seconds to wait before retrying, when Telegram reports flood control."""
        if self.error is None or self.error.parameters is None:
            return None
        return self.error.parameters.retry_after


class DecodeError(ValueError):
    """An inbound payload could not be decoded into an update."""


class InvalidToken(ValueError):
    """The bot token is malformed."""
