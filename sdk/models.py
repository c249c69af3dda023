"""Pydantic data models for the Telegram Bot API objects Courier routes.

Only the update envelope and the payloads the dispatcher narrows to are
modelled here; unknown keys are ignored so newer Bot API fields do not break
decoding.  ``from`` is a Python keyword and is exposed as ``from_field``.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from sdk.exceptions import DecodeError


class ResponseParameters(BaseModel):
    """Describes why a request was unsuccessful."""

    migrate_to_chat_id: Optional[int] = None
    retry_after: Optional[int] = None

    model_config = {"populate_by_name": True}


class Error(BaseModel):
    """Error envelope returned by the Telegram Bot API."""

    ok: bool = False
    error_code: int
    description: str
    parameters: Optional["ResponseParameters"] = None

    model_config = {"populate_by_name": True}


class WebhookInfo(BaseModel):
    """Contains information about the current status of a webhook."""

    url: str
    has_custom_certificate: bool = False
    pending_update_count: int = 0
    ip_address: Optional[str] = None
    last_error_date: Optional[int] = None
    last_error_message: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    model_config = {"populate_by_name": True}


class User(BaseModel):
    """This object represents a Telegram user or bot."""

    id: int
    is_bot: bool
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None

    model_config = {"populate_by_name": True}


class Chat(BaseModel):
    """This object represents a chat."""

    id: int
    type: str
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class Location(BaseModel):
    """A point on the map."""

    longitude: float
    latitude: float
    horizontal_accuracy: Optional[float] = None

    model_config = {"populate_by_name": True}


class Message(BaseModel):
    """This object represents a message."""

    message_id: int
    date: int
    chat: "Chat"
    from_field: Optional["User"] = Field(None, alias="from")
    sender_chat: Optional["Chat"] = None
    forward_from: Optional["User"] = None
    forward_date: Optional[int] = None
    reply_to_message: Optional["Message"] = None
    edit_date: Optional[int] = None
    text: Optional[str] = None
    caption: Optional[str] = None
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True}


class InlineQuery(BaseModel):
    """An incoming inline query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    query: str
    offset: str
    chat_type: Optional[str] = None
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True}


class ChosenInlineResult(BaseModel):
    """A result of an inline query that was chosen by the user."""

    result_id: str
    from_field: "User" = Field(..., alias="from")
    query: str
    location: Optional["Location"] = None
    inline_message_id: Optional[str] = None

    model_config = {"populate_by_name": True}


class CallbackQuery(BaseModel):
    """An incoming callback query from an inline keyboard button."""

    id: str
    from_field: "User" = Field(..., alias="from")
    chat_instance: str
    message: Optional["Message"] = None
    inline_message_id: Optional[str] = None
    data: Optional[str] = None
    game_short_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class ShippingAddress(BaseModel):
    """A shipping address."""

    country_code: str
    state: str
    city: str
    street_line1: str
    street_line2: str
    post_code: str

    model_config = {"populate_by_name": True}


class ShippingQuery(BaseModel):
    """An incoming shipping query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    invoice_payload: str
    shipping_address: "ShippingAddress"

    model_config = {"populate_by_name": True}


class PollOption(BaseModel):
    """Information about one answer option in a poll."""

    text: str
    voter_count: int

    model_config = {"populate_by_name": True}


class Poll(BaseModel):
    """Information about a poll."""

    id: str
    question: str
    options: List["PollOption"]
    total_voter_count: int
    is_closed: bool
    is_anonymous: bool
    type: str
    allows_multiple_answers: bool
    correct_option_id: Optional[int] = None
    explanation: Optional[str] = None

    model_config = {"populate_by_name": True}


class PollAnswer(BaseModel):
    """An answer of a user in a non-anonymous poll."""

    poll_id: str
    user: "User"
    option_ids: List[int]

    model_config = {"populate_by_name": True}


class ChatMember(BaseModel):
    """Information about one member of a chat."""

    user: "User"
    status: str
    custom_title: Optional[str] = None
    is_anonymous: Optional[bool] = None
    until_date: Optional[int] = None

    model_config = {"populate_by_name": True}


class ChatInviteLink(BaseModel):
    """An invite link for a chat."""

    invite_link: str
    creator: "User"
    is_primary: bool
    is_revoked: bool
    expire_date: Optional[int] = None
    member_limit: Optional[int] = None

    model_config = {"populate_by_name": True}


class ChatMemberUpdated(BaseModel):
    """Changes in the status of a chat member."""

    chat: "Chat"
    from_field: "User" = Field(..., alias="from")
    date: int
    old_chat_member: "ChatMember"
    new_chat_member: "ChatMember"
    invite_link: Optional["ChatInviteLink"] = None

    model_config = {"populate_by_name": True}


class ChatJoinRequest(BaseModel):
    """A join request sent to a chat."""

    chat: "Chat"
    from_field: "User" = Field(..., alias="from")
    date: int
    bio: Optional[str] = None
    invite_link: Optional["ChatInviteLink"] = None

    model_config = {"populate_by_name": True}


class Update(BaseModel):
    """An incoming update.  Exactly **one** of the optional payloads is set.

    ``date`` is not part of the wire format for most updates; when absent it
    is derived from the payload (see :attr:`event_date`).
    """

    update_id: int
    message: Optional["Message"] = None
    edited_message: Optional["Message"] = None
    channel_post: Optional["Message"] = None
    edited_channel_post: Optional["Message"] = None
    inline_query: Optional["InlineQuery"] = None
    chosen_inline_result: Optional["ChosenInlineResult"] = None
    callback_query: Optional["CallbackQuery"] = None
    shipping_query: Optional["ShippingQuery"] = None
    poll: Optional["Poll"] = None
    poll_answer: Optional["PollAnswer"] = None
    my_chat_member: Optional["ChatMemberUpdated"] = None
    chat_member: Optional["ChatMemberUpdated"] = None
    chat_join_request: Optional["ChatJoinRequest"] = None
    date: Optional[int] = None

    model_config = {"populate_by_name": True}

    @property
    def event_date(self) -> int | None:
        """Timestamp of the event: ``date`` or the payload's own date."""
        if self.date is not None:
            return self.date
        for payload in (
            self.message,
            self.edited_message,
            self.channel_post,
            self.edited_channel_post,
            self.my_chat_member,
            self.chat_member,
            self.chat_join_request,
        ):
            if payload is not None:
                return payload.date
        return None


def decode_update(raw: Any) -> Update:
    """Validate one raw update (dict, JSON ``str`` or ``bytes``).

    Raises:
        DecodeError: If *raw* is not a valid update object.
    """
    try:
        if isinstance(raw, (str, bytes, bytearray)):
            return Update.model_validate_json(raw)
        return Update.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError(f"invalid update payload: {exc.error_count()} validation error(s)") from exc
