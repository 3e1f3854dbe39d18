from __future__ import annotations

import jwt

from chat_sync.application.dto.principal import Principal
from chat_sync.domain.value_objects.ids import UserId


def principal_from_token(token: str) -> Principal:
    """Read the local user from a bearer token.

    The signature is not checked here: the server verifies it on every
    request, the client only needs to know who it is.
    """
    payload = jwt.decode(token, options={"verify_signature": False})
    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("token carries no user id")
    return Principal(user_id=UserId(str(user_id)))
