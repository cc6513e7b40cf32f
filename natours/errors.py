"""Error taxonomy shared by every pipeline stage and collaborator."""

from __future__ import annotations


class AppError(Exception):
    """An expected, named failure with a client-visible status and message.

    Raised by stages and collaborators; rendered by the terminal error stage.
    4xx errors carry status "fail", everything else "error".
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if 400 <= status_code < 500 else "error"
        self.is_operational = True
        self.headers = dict(headers or {})

    def __repr__(self) -> str:
        return f"AppError({self.message!r}, {self.status_code})"
