"""Live channel envelope models."""
from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.exceptions import ProtocolError
from chat_sync.domain.value_objects.enums import MessageKind


class Envelope(BaseModel):
    """Both directions.

    Client → server: ping | subscribe | unsubscribe | message | typing | read
    Server → client: connected | new_message | typing | message_sent |
                     subscribed | unsubscribed | error | pong
    """

    type: str
    chat_id: str | None = None
    message_id: str | None = None
    payload: dict[str, Any] | None = None

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=lambda name: {"chat_id": "chatId", "message_id": "messageId"}.get(name, name),
        extra="ignore",
    )

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def payload_value(self, key: str) -> Any:
        return (self.payload or {}).get(key)


def decode_envelope(raw: str | bytes) -> Envelope:
    try:
        return Envelope.model_validate_json(raw)
    except (PydanticValidationError, UnicodeDecodeError) as exc:
        raise ProtocolError(str(exc)) from exc


def ping() -> Envelope:
    return Envelope(type="ping", payload={"timestamp": int(time.time() * 1000)})


def subscribe(chat_id: str) -> Envelope:
    return Envelope(type="subscribe", payload={"chatId": chat_id})


def unsubscribe(chat_id: str) -> Envelope:
    return Envelope(type="unsubscribe", payload={"chatId": chat_id})


def chat_message(
    chat_id: str,
    content: str,
    kind: MessageKind = MessageKind.TEXT,
    media_url: str | None = None,
) -> Envelope:
    payload: dict[str, Any] = {"chatId": chat_id, "content": content, "type": kind.value}
    if media_url:
        payload["mediaUrl"] = media_url
    return Envelope(type="message", payload=payload)


def typing(chat_id: str) -> Envelope:
    return Envelope(type="typing", payload={"chatId": chat_id})


def read(message_id: str) -> Envelope:
    return Envelope(type="read", payload={"messageId": message_id})
