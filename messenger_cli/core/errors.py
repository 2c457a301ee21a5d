from __future__ import annotations


class ClientError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        details: object | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


class TransportError(ClientError):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int | None = None,
        details: object | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(code=code, message=message, details=details)


class NotFoundError(ClientError):
    pass


class RenderError(ClientError):
    pass


class ValidationError(ClientError):
    pass


def thread_not_found(thread_id: str) -> NotFoundError:
    return NotFoundError(
        code="thread_not_found",
        message="Thread not found",
        details={"thread_id": thread_id},
    )

