class TodoError(Exception):
    """base of all errors raised by the todo client"""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class BackendError(TodoError):
    """a request, mutation or subscription against the remote backend failed"""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status  # http status, None for transport failures


class ValidationError(TodoError):
    """input rejected before any request was issued"""


class StorageReadError(TodoError):
    """local persistence missing or corrupt, never surfaced to the user"""
