import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from todostore.todostore import Todo, TodoPatch, ViewFilter, count_active, filter_todos

from .errors import BackendError, ValidationError
from .gateway import Release, TodoGateway
from .session import Identity, SessionManager

log = structlog.get_logger()


class ListState(Enum):
    SIGNED_OUT = "signed_out"
    LOADING = "loading"
    SYNCED = "synced"


NOT_SIGNED_IN = "Sign in to change your todos."


@dataclass
class TodoListReconciler:
    """
    keeps the visible todo list consistent with the backend for the signed-in owner.

    the list is never edited locally: user actions go to the gateway and every
    change notification triggers a full re-fetch that replaces the list.
    overlapping fetches are not sequenced, whichever resolves last wins.

    every identity change starts a new generation; fetch results and change
    callbacks belonging to an older generation are dropped.
    """

    gateway: TodoGateway
    session: SessionManager
    on_update: Callable[["TodoListReconciler"], None] | None = None

    todos: list[Todo] = field(default_factory=list, init=False)
    state: ListState = field(default=ListState.SIGNED_OUT, init=False)
    error: str | None = field(default=None, init=False)
    owner_id: str | None = field(default=None, init=False)

    _view_filter: ViewFilter = field(default=ViewFilter.ALL, init=False)
    _generation: int = field(default=0, init=False)
    _has_snapshot: bool = field(default=False, init=False)
    _fetch_failed: bool = field(default=False, init=False)
    _release_subscription: Release | None = field(default=None, init=False)
    _release_session: Callable[[], None] | None = field(default=None, init=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False)

    async def start(self) -> None:
        self._release_session = self.session.on_session_change(
            self._on_session_change
        )
        self._on_session_change(await self.session.get_current_session())

    def close(self) -> None:
        self._generation += 1
        self._release()
        if self._release_session is not None:
            self._release_session()
            self._release_session = None
        for task in list(self._tasks):
            task.cancel()

    async def wait_idle(self) -> None:
        """wait until no fetch or action started by this reconciler is pending"""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # view state

    @property
    def view_filter(self) -> ViewFilter:
        return self._view_filter

    @view_filter.setter
    def view_filter(self, view_filter: ViewFilter) -> None:
        self._view_filter = view_filter
        self._notify()

    @property
    def visible_todos(self) -> list[Todo]:
        return filter_todos(self.todos, self._view_filter)

    @property
    def items_left(self) -> int:
        return count_active(self.todos)

    # identity and subscription

    def _on_session_change(self, identity: Identity | None) -> None:
        if identity is None:
            if self.owner_id is None and self.state is ListState.SIGNED_OUT:
                return
            self._reset(None)
            self.state = ListState.SIGNED_OUT
            log.info("todo_list_signed_out")
            self._notify()
            return

        if identity.id == self.owner_id:
            return
        self._reset(identity.id)
        self.state = ListState.LOADING
        generation = self._generation
        log.info("todo_list_owner_changed", owner_id=identity.id)
        self._notify()
        self._spawn(self._fetch(generation, identity.id))
        # subscribed right away so that nothing changing during the first
        # fetch gets lost, such events just trigger one more fetch
        self._release_subscription = self.gateway.subscribe(
            identity.id,
            lambda event: self._on_change(generation, event),
            lambda e: self._on_subscription_error(generation, e),
        )

    def _reset(self, owner_id: str | None) -> None:
        self._release()
        self._generation += 1
        self.owner_id = owner_id
        self.todos = []
        self.error = None
        self._has_snapshot = False
        self._fetch_failed = False

    def _release(self) -> None:
        if self._release_subscription is not None:
            release, self._release_subscription = self._release_subscription, None
            release()

    def _on_change(self, generation: int, event: Any) -> None:
        if generation != self._generation:
            log.debug("stale_change_event_dropped", change=event)
            return
        log.debug("todo_change_received", owner_id=self.owner_id, change=event)
        self.state = ListState.LOADING
        self._notify()
        self._spawn(self._fetch(generation, self.owner_id))

    def _on_subscription_error(self, generation: int, error: BackendError) -> None:
        if generation != self._generation:
            return
        # cleared again by the fetch that follows the channel's recovery
        self._fetch_failed = True
        if self.error != str(error):
            self.error = str(error)
            self._notify()

    async def _fetch(self, generation: int, owner_id: str) -> None:
        try:
            todos = await self.gateway.fetch_all(owner_id)
        except BackendError as e:
            if generation != self._generation:
                return
            log.warning("todo_fetch_failed", owner_id=owner_id, reason=str(e))
            self.error = str(e)
            self._fetch_failed = True
            self.state = ListState.SYNCED if self._has_snapshot else ListState.LOADING
            self._notify()
            return
        if generation != self._generation:
            log.debug("stale_fetch_dropped", owner_id=owner_id)
            return
        self.todos = todos
        if self._fetch_failed:
            self.error = None
            self._fetch_failed = False
        self.state = ListState.SYNCED
        self._has_snapshot = True
        self._notify()

    # user actions

    async def add(self, text: str) -> None:
        if not text.strip():
            return
        await self._act(lambda owner_id: self.gateway.create(text.strip(), owner_id))

    async def toggle(self, todo_id: int) -> None:
        todo = next((t for t in self.todos if t.id == todo_id), None)
        if todo is None:
            return
        patch = TodoPatch(completed=not todo.completed)
        await self._act(lambda _: self.gateway.update(todo_id, patch))

    async def delete(self, todo_id: int) -> None:
        await self._act(lambda _: self.gateway.delete(todo_id))

    async def clear_completed(self) -> None:
        if self.owner_id is None:
            self._fail(self._generation, NOT_SIGNED_IN)
            return
        generation = self._generation
        self.error = None
        self._fetch_failed = False
        deletes = [
            asyncio.ensure_future(self.gateway.delete(t.id))
            for t in self.todos
            if t.completed
        ]
        for done in asyncio.as_completed(deletes):
            try:
                await done
            except BackendError as e:
                # only the last failure is reported
                self._fail(generation, str(e))

    async def _act(self, call: Callable[[str], Awaitable[Any]]) -> None:
        owner_id = self.owner_id
        if owner_id is None:
            self._fail(self._generation, NOT_SIGNED_IN)
            return
        generation = self._generation
        self.error = None
        self._fetch_failed = False
        try:
            await call(owner_id)
        except (BackendError, ValidationError) as e:
            self._fail(generation, str(e))

    def _fail(self, generation: int, message: str) -> None:
        if generation != self._generation:
            log.debug("stale_action_failure_dropped", reason=message)
            return
        log.info("todo_action_failed", owner_id=self.owner_id, reason=message)
        self.error = message
        self._notify()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)
