import time
from abc import ABCMeta, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Callable

import structlog
from marshmallow import ValidationError as SchemaValidationError
from sqlalchemy import Engine
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    MappedAsDataclass,
    Session,
    mapped_column,
)

from todosync.errors import StorageReadError

from .todostore import Todo, ViewFilter, count_active, filter_todos, local_todos_schema

log = structlog.get_logger()


class KeyValueSlot(metaclass=ABCMeta):
    """string-keyed on-device storage, synchronously readable and writable"""

    @abstractmethod
    def read(self, key: str) -> str | None: ...

    @abstractmethod
    def write(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...


@dataclass
class InMemorySlot(KeyValueSlot):
    values: dict[str, str] = field(default_factory=dict)

    def read(self, key: str) -> str | None:
        return self.values.get(key)

    def write(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class LocalStorageBase(DeclarativeBase, MappedAsDataclass):
    pass


class PSlot(LocalStorageBase):
    __tablename__ = "local_storage"

    key: Mapped[str] = mapped_column(primary_key=True)
    value: Mapped[str]


@dataclass
class SqlKeyValueSlot(KeyValueSlot):
    # local storage kept in a sqlite file

    engine: Engine

    def __post_init__(self):
        LocalStorageBase.metadata.create_all(self.engine)

    def read(self, key: str) -> str | None:
        with Session(self.engine) as session:
            p_slot = session.get(PSlot, key)
            return p_slot.value if p_slot else None

    def write(self, key: str, value: str) -> None:
        with Session(self.engine) as session, session.begin():
            session.merge(PSlot(key=key, value=value))

    def remove(self, key: str) -> None:
        with Session(self.engine) as session, session.begin():
            p_slot = session.get(PSlot, key)
            if p_slot is not None:
                session.delete(p_slot)


@dataclass
class LocalTodoStore:
    slot: KeyValueSlot
    key: str = "todos"

    def load(self) -> list[Todo]:
        try:
            return self._read()
        except StorageReadError as e:
            log.debug("local_todos_unreadable", key=self.key, reason=str(e))
            return []

    def _read(self) -> list[Todo]:
        raw = self.slot.read(self.key)
        if raw is None:
            raise StorageReadError(f"nothing stored under {self.key!r}")
        try:
            return local_todos_schema.loads(raw)  # type: ignore
        except (ValueError, SchemaValidationError) as e:
            raise StorageReadError(f"corrupt todo list under {self.key!r}") from e

    def save(self, todos: list[Todo]) -> None:
        # always the full list, compact and in field order so that
        # save(load()) leaves the stored bytes untouched
        self.slot.write(
            self.key, local_todos_schema.dumps(todos, separators=(",", ":"))
        )


@dataclass
class LocalTodoList:
    """
    standalone todo list, every mutation is written through to the local store
    """

    store: LocalTodoStore
    view_filter: ViewFilter = ViewFilter.ALL
    clock: Callable[[], float] = time.time
    todos: list[Todo] = field(init=False)

    def __post_init__(self) -> None:
        self.todos = self.store.load()

    @property
    def visible_todos(self) -> list[Todo]:
        return filter_todos(self.todos, self.view_filter)

    @property
    def items_left(self) -> int:
        return count_active(self.todos)

    def add(self, text: str) -> Todo | None:
        text = text.strip()
        if not text:
            return None
        todo = Todo(id=self._next_id(), text=text)
        self.todos = [todo, *self.todos]
        self._save()
        return todo

    def toggle(self, todo_id: int) -> None:
        self.todos = [
            replace(t, completed=not t.completed) if t.id == todo_id else t
            for t in self.todos
        ]
        self._save()

    def delete(self, todo_id: int) -> None:
        self.todos = [t for t in self.todos if t.id != todo_id]
        self._save()

    def clear_completed(self) -> None:
        self.todos = [t for t in self.todos if not t.completed]
        self._save()

    def _next_id(self) -> int:
        todo_id = int(self.clock() * 1000)
        taken = {t.id for t in self.todos}
        while todo_id in taken:
            todo_id += 1
        return todo_id

    def _save(self) -> None:
        self.store.save(self.todos)
