import asyncio
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from todostore.todostore import Todo, TodoPatch, todo_schema, todos_schema
from todosync.errors import BackendError
from todosync.gateway import (
    READY,
    ChangeEvent,
    ChangeFeed,
    ChangesQuery,
    OnChange,
    OnError,
    Release,
    TodoGateway,
)
from todosync.network.http_client import HttpBackendClient
from todosync.network.schemas import (
    NewTodo,
    OwnerQuery,
    change_feed_schema,
    changes_query_schema,
    new_todo_schema,
    owner_query_schema,
)
from todosync.session import require_text

log = structlog.get_logger()


@dataclass
class HttpTodoGateway(HttpBackendClient, TodoGateway):
    # todo records via the backend's http api, changes are delivered by polling its change log

    poll_interval: float = 1.0

    async def fetch_all(self, owner_id: str) -> list[Todo]:
        r = await self._call(
            "GET", "/todos", params=owner_query_schema.dump(OwnerQuery(owner_id))
        )
        todos: list[Todo] = self._load(todos_schema, r)
        log.debug("todos_fetched", owner_id=owner_id, count=len(todos))
        return todos

    async def create(self, text: str, owner_id: str) -> Todo:
        new_todo = NewTodo(require_text(text, "todo text"), owner_id)
        r = await self._call("POST", "/todos", json=new_todo_schema.dump(new_todo))
        return self._load(todo_schema, r)

    async def update(self, todo_id: int, patch: TodoPatch) -> Todo:
        r = await self._call("PATCH", f"/todos/{todo_id}", json=patch.to_fields())
        return self._load(todo_schema, r)

    async def delete(self, todo_id: int) -> bool:
        await self._call("DELETE", f"/todos/{todo_id}")
        return True

    def subscribe(
        self, owner_id: str, on_change: OnChange, on_error: OnError | None = None
    ) -> Release:
        task = asyncio.get_running_loop().create_task(
            self._poll_changes(owner_id, on_change, on_error)
        )
        log.info("todo_subscription_opened", owner_id=owner_id)

        def release() -> None:
            if not task.done():
                task.cancel()
                log.info("todo_subscription_closed", owner_id=owner_id)

        return release

    async def _poll_changes(
        self, owner_id: str, on_change: OnChange, on_error: OnError | None
    ) -> None:
        cursor = -1
        ready = False
        while True:
            try:
                r = await self._call(
                    "GET",
                    "/todos/changes",
                    params=changes_query_schema.dump(ChangesQuery(owner_id, cursor)),
                )
                feed: ChangeFeed = self._load(change_feed_schema, r)
            except BackendError as e:
                # the channel stays open, the next poll tries again
                log.warning("todo_changes_poll_failed", owner_id=owner_id, reason=str(e))
                ready = False
                if on_error is not None:
                    deliver(on_error, e, owner_id)
            else:
                events = feed.events
                if not ready:
                    ready = True
                    events = [ChangeEvent(feed.cursor, READY, None, owner_id), *events]
                for event in events:
                    deliver(on_change, event, owner_id)
                cursor = feed.cursor
            await asyncio.sleep(self.poll_interval)


def deliver(callback: Callable[[Any], None], value: Any, owner_id: str) -> None:
    try:
        callback(value)
    except Exception:
        log.exception("todo_subscriber_failed", owner_id=owner_id)
