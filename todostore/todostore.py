from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from marshmallow import EXCLUDE, Schema, post_dump, validate
from marshmallow_dataclass import class_schema


class TodoSchemaBase(Schema):
    class Meta:
        # backends may return columns this client does not know about
        unknown = EXCLUDE
        ordered = True


class CompactSchemaBase(TodoSchemaBase):
    @post_dump
    def remove_empty(self, data: dict[str, Any], **kwargs) -> dict[str, Any]:
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class Todo:
    id: int
    text: str
    completed: bool = False
    owner_id: str | None = field(default=None, metadata={"data_key": "user_id"})
    created_at: datetime | None = None


@dataclass
class TodoPatch:
    """partial update of a todo, fields left as None are not touched"""

    text: str | None = field(default=None, metadata={"validate": validate.Regexp(r"\s*\S")})
    completed: bool | None = None

    def to_fields(self) -> dict[str, Any]:
        return dict(todo_patch_schema.dump(self))


class ViewFilter(Enum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"

    def matches(self, todo: Todo) -> bool:
        if self is ViewFilter.ACTIVE:
            return not todo.completed
        if self is ViewFilter.COMPLETED:
            return todo.completed
        return True


def filter_todos(todos: Iterable[Todo], view_filter: ViewFilter) -> list[Todo]:
    return [t for t in todos if view_filter.matches(t)]


def count_active(todos: Iterable[Todo]) -> int:
    return sum(1 for t in todos if not t.completed)


# wire format, as exchanged with the backend
todo_schema: Schema = class_schema(Todo, base_schema=TodoSchemaBase)()
todos_schema: Schema = class_schema(Todo, base_schema=TodoSchemaBase)(many=True)
todo_patch_schema: Schema = class_schema(TodoPatch, base_schema=CompactSchemaBase)()

# on-device format, fields without a value are left out
local_todos_schema: Schema = class_schema(Todo, base_schema=CompactSchemaBase)(
    many=True
)
