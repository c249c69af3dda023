"""Conversation correlation — which chat and which user an update belongs to.

The pair is the key of the conversation state store.  It is derived once per
update by the dispatcher and handed to every handler through its context, so
no handler ever reads it from shared dispatcher state.
"""

from __future__ import annotations

from sdk.models import Update


def get_chat_and_user(update: Update) -> tuple[int | None, int | None]:
    """Return ``(chat_id, user_id)`` for *update*.

    Anonymous admins and channels post as a chat; their ``sender_chat.id``
    (a negative number) stands in for the user.  Either element may be
    ``None`` when the payload carries no such information (polls, for
    instance, have neither).
    """
    message = (
        update.message
        or update.edited_message
        or update.channel_post
        or update.edited_channel_post
    )
    if message is not None:
        user_id: int | None = None
        if message.sender_chat is not None:
            user_id = message.sender_chat.id
        elif message.from_field is not None:
            user_id = message.from_field.id
        return message.chat.id, user_id

    callback_query = update.callback_query
    if callback_query is not None:
        chat_id = callback_query.message.chat.id if callback_query.message else None
        return chat_id, callback_query.from_field.id

    member_update = update.my_chat_member or update.chat_member
    if member_update is not None:
        return member_update.chat.id, member_update.from_field.id

    if update.chat_join_request is not None:
        return update.chat_join_request.chat.id, update.chat_join_request.from_field.id

    if update.poll_answer is not None:
        return None, update.poll_answer.user.id

    for query in (update.inline_query, update.chosen_inline_result, update.shipping_query):
        if query is not None:
            return None, query.from_field.id

    return None, None


def state_key(chat_id: int | None, user_id: int | None) -> str:
    """Compose the storage key for a conversation.

    A missing chat falls back to the user (private conversations) and vice
    versa, mirroring how Telegram scopes private chats.
    """
    if chat_id is None:
        chat_id = user_id
    if user_id is None:
        user_id = chat_id
    return f"{chat_id}:{user_id}"
