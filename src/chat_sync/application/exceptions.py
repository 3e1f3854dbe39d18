from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ApiError(AppError):
    """The REST collaborator reported a failure."""


class SendMessageError(AppError):
    """Neither the live channel nor the REST fallback accepted a message."""


class ProtocolError(AppError):
    """An inbound frame could not be parsed into an envelope."""


class TransportClosed(AppError):
    def __init__(self, code: int | None = None, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"transport closed (code={code}, reason={reason!r})")
