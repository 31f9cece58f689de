from abc import ABCMeta, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from todostore.todostore import Todo, TodoPatch

from .errors import BackendError


@dataclass
class ChangeEvent:
    """
    one insert/update/delete of a todo record, as appended to the backend's change log.
    consumers must not rely on the payload, any event only means "something changed"
    """

    seq: int
    event_type: str  # INSERT | UPDATE | DELETE | READY
    record_id: int | None
    user_id: str


# sent once the subscription knows its position in the change log, and again
# after a failed poll recovers. changes made before that may have been missed.
READY = "READY"


@dataclass
class ChangeFeed:
    events: list[ChangeEvent] = field(default_factory=list)
    cursor: int = -1  # highest seq delivered so far


@dataclass
class ChangesQuery:
    user_id: str
    since: int = -1  # -1: only position the cursor, deliver nothing


OnChange = Callable[[Any], None]
OnError = Callable[[BackendError], None]
Release = Callable[[], None]


class TodoGateway(metaclass=ABCMeta):
    """
    typed access to the backend's todo records plus a change subscription
    scoped to a single owner. all operations raise BackendError on failure.
    """

    @abstractmethod
    async def fetch_all(self, owner_id: str) -> list[Todo]: ...

    @abstractmethod
    async def create(self, text: str, owner_id: str) -> Todo: ...

    @abstractmethod
    async def update(self, todo_id: int, patch: TodoPatch) -> Todo: ...

    @abstractmethod
    async def delete(self, todo_id: int) -> bool: ...

    @abstractmethod
    def subscribe(
        self, owner_id: str, on_change: OnChange, on_error: OnError | None = None
    ) -> Release: ...
