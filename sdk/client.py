"""BotClient -- the transport collaborator of the dispatch engine.

Wraps the Telegram Bot API over ``requests``.  The dispatcher only depends on
two operations, :meth:`BotClient.invoke` and :meth:`BotClient.fetch_updates`;
the remaining methods are thin conveniences used by the lifecycle (``getMe``,
``setWebhook``, ``deleteWebhook`` …) and by bot authors.

All calls are blocking.  Async code offloads them via :func:`asyncio.to_thread`
(see :mod:`dispatch.dispatcher` and :mod:`dispatch.polling`).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

import requests
from pydantic import ValidationError

from core.logger import CourierLogger
from sdk.exceptions import APIException, DecodeError, InvalidToken, TransportError
from sdk.models import Error, Message, Update, User, WebhookInfo, decode_update
from sdk.server import PRODUCTION_SERVER, TelegramAPIServer

logger = CourierLogger.get_logger("sdk")


def _parse_error(body: Dict[str, Any]) -> Optional[Error]:
    try:
        return Error.model_validate(body)
    except ValidationError:
        return None


def check_token(token: str) -> None:
    """Reject obviously malformed tokens (empty or containing whitespace).

    Raises:
        InvalidToken: If *token* cannot be a bot token.
    """
    if not token or any(ch.isspace() for ch in token):
        raise InvalidToken("bot token must be a non-empty string without whitespace")


class BotClient:
    """Client-side service layer for the Telegram Bot API.

    Every request goes through :meth:`_post`, which raises
    :class:`TransportError` on network failures and :class:`APIException`
    when Telegram answers with a non-2xx status or ``ok: false``.
    """

    _DEFAULT_TIMEOUT: int = 10

    def __init__(
        self,
        token: str,
        server: TelegramAPIServer = PRODUCTION_SERVER,
        timeout: int = _DEFAULT_TIMEOUT,
        validate_token: bool = True,
    ) -> None:
        """Create a new client.

        Args:
            token: Bot token issued by @BotFather.
            server: Bot API server to talk to.
            timeout: Default request timeout in seconds.  Long-poll requests
                add the poll timeout on top of it.
            validate_token: Run :func:`check_token` on *token*.
        """
        if validate_token:
            check_token(token)
        self._token = token
        self._server = server
        self._timeout = timeout
        self._session = requests.Session()
        self.me: User | None = None

    # ------------------------------------------------------------------
    #  Internal helpers
    # ------------------------------------------------------------------

    def _post(self, method: str, payload: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """POST *payload* to *method* and return the ``result`` field.

        Raises:
            APIException: If Telegram rejects the call.
            TransportError: On transport-level failures.
        """
        url = self._server.api_url(self._token, method)
        try:
            response = self._session.post(url, json=payload or {}, timeout=timeout or self._timeout)
        except requests.RequestException as exc:
            logger.error("Request failed", extra={"api_endpoint": method, "error": str(exc)})
            raise TransportError(f"{method}: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if not response.ok or not body.get("ok", False):
            logger.warning("Telegram returned an error", extra={"api_endpoint": method, "status_code": response.status_code, "api_response": body})
            raise APIException(response.status_code, body, _parse_error(body))
        return body.get("result")

    # ------------------------------------------------------------------
    #  Transport operations used by the dispatcher
    # ------------------------------------------------------------------

    def invoke(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Call an arbitrary Bot API *method* and return its raw result."""
        logger.debug("Invoking method", extra={"api_endpoint": method})
        return self._post(method, params)

    def get_updates(
        self,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        timeout: Optional[int] = None,
        allowed_updates: Optional[List[str]] = None,
    ) -> List[Any]:
        """Call ``getUpdates`` and return the undecoded result list."""
        payload: Dict[str, Any] = {}
        if offset is not None:
            payload["offset"] = offset
        if limit:
            payload["limit"] = limit
        if timeout:
            payload["timeout"] = timeout
        if allowed_updates is not None:
            payload["allowed_updates"] = allowed_updates
        result = self._post("getUpdates", payload, timeout=self._timeout + (timeout or 0))
        if not isinstance(result, list):
            raise DecodeError(f"getUpdates returned {type(result).__name__}, expected a list")
        return result

    def fetch_updates(
        self,
        offset: int,
        limit: int = 0,
        timeout: int = 0,
        allowed_updates: Optional[List[str]] = None,
    ) -> List[Update]:
        """Long-poll for updates and decode them, preserving server order.

        A malformed item is logged and dropped; a malformed batch raises
        :class:`DecodeError`.
        """
        raw_updates = self.get_updates(offset, limit, timeout, allowed_updates)
        updates: List[Update] = []
        for raw in raw_updates:
            try:
                updates.append(decode_update(raw))
            except DecodeError as exc:
                update_id = raw.get("update_id") if isinstance(raw, dict) else None
                logger.warning("Dropping undecodable update", extra={"update_id": update_id, "error": str(exc)})
        return updates

    # ------------------------------------------------------------------
    #  Convenience methods
    # ------------------------------------------------------------------

    def get_me(self) -> User:
        """Return (and cache) the bot's own :class:`User`."""
        if self.me is None:
            self.me = User.model_validate(self._post("getMe"))
        return self.me

    def get_webhook_info(self) -> WebhookInfo:
        """Return the current webhook status."""
        return WebhookInfo.model_validate(self._post("getWebhookInfo"))

    def set_webhook(
        self,
        url: str,
        ip_address: Optional[str] = None,
        max_connections: Optional[int] = None,
        allowed_updates: Optional[List[str]] = None,
        drop_pending_updates: Optional[bool] = None,
        secret_token: Optional[str] = None,
    ) -> bool:
        """Subscribe *url* to receive updates via an outgoing webhook."""
        payload: Dict[str, Any] = {"url": url}
        if ip_address is not None:
            payload["ip_address"] = ip_address
        if max_connections is not None:
            payload["max_connections"] = max_connections
        if allowed_updates is not None:
            payload["allowed_updates"] = allowed_updates
        if drop_pending_updates is not None:
            payload["drop_pending_updates"] = drop_pending_updates
        if secret_token is not None:
            payload["secret_token"] = secret_token
        return bool(self._post("setWebhook", payload))

    def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> bool:
        """Remove the webhook integration so ``getUpdates`` works again."""
        payload: Dict[str, Any] = {}
        if drop_pending_updates is not None:
            payload["drop_pending_updates"] = drop_pending_updates
        return bool(self._post("deleteWebhook", payload))

    def send_message(
        self,
        chat_id: Union[int, str],
        text: str,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """Send a text message and return the sent :class:`Message`."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode is not None:
            payload["parse_mode"] = parse_mode
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return Message.model_validate(self._post("sendMessage", payload))

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None, show_alert: bool = False) -> bool:
        """Acknowledge a callback query so the spinner disappears for the user."""
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            payload["text"] = text
        if show_alert:
            payload["show_alert"] = True
        return bool(self._post("answerCallbackQuery", payload))

    def log_out(self) -> bool:
        """Log out from the cloud Bot API server."""
        return bool(self._post("logOut"))

    def close(self) -> bool:
        """Close the bot instance on the Bot API server."""
        return bool(self._post("close"))
