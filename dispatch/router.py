"""Update classification.

An :class:`~sdk.models.Update` is routed by the first populated payload in
:data:`ROUTING_ORDER`.  Exactly one payload is set on well-formed updates, so
the order only decides malformed ones.
"""

from __future__ import annotations

import enum
from typing import Any

from sdk.models import Update

from dispatch.errors import UnsupportedUpdateKind


class UpdateKind(str, enum.Enum):
    """Update payload kinds.  Values double as ``allowed_updates`` names."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CHANNEL_POST = "channel_post"
    EDITED_CHANNEL_POST = "edited_channel_post"
    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"
    SHIPPING_QUERY = "shipping_query"
    POLL = "poll"
    POLL_ANSWER = "poll_answer"
    MY_CHAT_MEMBER = "my_chat_member"
    CHAT_MEMBER = "chat_member"
    CHAT_JOIN_REQUEST = "chat_join_request"

    def __str__(self) -> str:
        return self.value


ROUTING_ORDER: tuple[UpdateKind, ...] = (
    UpdateKind.MESSAGE,
    UpdateKind.CALLBACK_QUERY,
    UpdateKind.CHANNEL_POST,
    UpdateKind.POLL,
    UpdateKind.POLL_ANSWER,
    UpdateKind.CHAT_MEMBER,
    UpdateKind.MY_CHAT_MEMBER,
    UpdateKind.EDITED_MESSAGE,
    UpdateKind.EDITED_CHANNEL_POST,
    UpdateKind.INLINE_QUERY,
    UpdateKind.CHOSEN_INLINE_RESULT,
    UpdateKind.SHIPPING_QUERY,
    UpdateKind.CHAT_JOIN_REQUEST,
)


def classify(update: Update) -> UpdateKind:
    """Return the kind of *update*.

    Raises:
        UnsupportedUpdateKind: If no known payload is populated.
    """
    for kind in ROUTING_ORDER:
        if getattr(update, kind.value) is not None:
            return kind
    raise UnsupportedUpdateKind(update.update_id)


def payload_of(update: Update, kind: UpdateKind) -> Any:
    """Return the narrowed payload of *update* for *kind*."""
    return getattr(update, kind.value)
