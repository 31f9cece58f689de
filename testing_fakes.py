import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from todostore.todostore import Todo, TodoPatch
from todosync.errors import BackendError
from todosync.gateway import OnChange, OnError, Release, TodoGateway
from todosync.session import AuthClient, Identity, Session

# in-memory doubles of the backend, used by the tests


async def settle(rounds: int = 10) -> None:
    # let every ready task run a few steps
    for _ in range(rounds):
        await asyncio.sleep(0)


@dataclass
class FakeGateway(TodoGateway):
    """
    authoritative rows per owner, kept in memory. with hold_fetches set,
    every fetch_all waits until the test resolves its future in pending_fetches.
    change notifications are only sent when the test calls push().
    """

    rows: dict[str, list[Todo]] = field(default_factory=dict)
    hold_fetches: bool = False
    fetch_error: str | None = None
    action_error: str | None = None
    delete_errors: dict[int, str] = field(default_factory=dict)
    delete_delays: dict[int, float] = field(default_factory=dict)

    calls: list[tuple[Any, ...]] = field(default_factory=list)
    pending_fetches: list[asyncio.Future] = field(default_factory=list)
    callbacks: dict[str, list[OnChange]] = field(default_factory=dict)
    error_callbacks: dict[str, list[OnError]] = field(default_factory=dict)
    released: list[str] = field(default_factory=list)
    next_id: int = 1

    async def fetch_all(self, owner_id: str) -> list[Todo]:
        self.calls.append(("fetch_all", owner_id))
        if self.hold_fetches:
            future = asyncio.get_running_loop().create_future()
            self.pending_fetches.append(future)
            return await future
        if self.fetch_error:
            raise BackendError(self.fetch_error)
        return list(self.rows.get(owner_id, []))

    async def create(self, text: str, owner_id: str) -> Todo:
        self.calls.append(("create", text, owner_id))
        if self.action_error:
            raise BackendError(self.action_error)
        todo = Todo(
            id=self.next_id,
            text=text,
            owner_id=owner_id,
            created_at=datetime(2024, 1, 1) + timedelta(minutes=self.next_id),
        )
        self.next_id += 1
        self.rows.setdefault(owner_id, []).insert(0, todo)
        return todo

    async def update(self, todo_id: int, patch: TodoPatch) -> Todo:
        self.calls.append(("update", todo_id, patch))
        if self.action_error:
            raise BackendError(self.action_error)
        for todos in self.rows.values():
            for i, todo in enumerate(todos):
                if todo.id == todo_id:
                    todos[i] = replace(todo, **patch.to_fields())
                    return todos[i]
        raise BackendError(f"Todo {todo_id} not found")

    async def delete(self, todo_id: int) -> bool:
        self.calls.append(("delete", todo_id))
        await asyncio.sleep(self.delete_delays.get(todo_id, 0))
        if todo_id in self.delete_errors:
            raise BackendError(self.delete_errors[todo_id])
        if self.action_error:
            raise BackendError(self.action_error)
        for owner_id, todos in self.rows.items():
            self.rows[owner_id] = [t for t in todos if t.id != todo_id]
        return True

    def subscribe(
        self, owner_id: str, on_change: OnChange, on_error: OnError | None = None
    ) -> Release:
        self.calls.append(("subscribe", owner_id))
        self.callbacks.setdefault(owner_id, []).append(on_change)
        if on_error is not None:
            self.error_callbacks.setdefault(owner_id, []).append(on_error)

        def release() -> None:
            self.calls.append(("release", owner_id))
            self.released.append(owner_id)

        return release

    def push(self, owner_id: str, event: Any = "change") -> None:
        # deliberately also reaches released subscriptions, like a late message on a closing channel
        for callback in self.callbacks.get(owner_id, []):
            callback(event)

    def fail_subscription(self, owner_id: str, message: str, status: int = 401) -> None:
        for callback in self.error_callbacks.get(owner_id, []):
            callback(BackendError(message, status=status))

    def fetch_count(self, owner_id: str) -> int:
        return self.calls.count(("fetch_all", owner_id))

    def resolve_fetch(self, index: int, todos: list[Todo]) -> None:
        self.pending_fetches[index].set_result(todos)


@dataclass
class FakeAuthClient(AuthClient):
    links: dict[str, Session] = field(default_factory=dict)  # link token -> session
    users: dict[str, Identity] = field(default_factory=dict)  # access token -> user
    sent_links: list[str] = field(default_factory=list)
    signed_out: list[str] = field(default_factory=list)
    send_error: str | None = None
    sign_out_error: str | None = None

    def add_link(self, link_token: str, user_id: str, email: str | None = None) -> Session:
        session = Session(f"access-{user_id}", Identity(user_id, email))
        self.links[link_token] = session
        return session

    async def get_user(self, access_token: str) -> Identity:
        if access_token not in self.users:
            raise BackendError("Unauthorized", status=401)
        return self.users[access_token]

    async def send_link(self, email: str) -> None:
        if self.send_error:
            raise BackendError(self.send_error, status=500)
        self.sent_links.append(email)

    async def verify_link(self, token: str) -> Session:
        session = self.links.pop(token, None)
        if session is None:
            raise BackendError("Sign-in link is invalid or has already been used", 401)
        self.users[session.access_token] = session.user
        return session

    async def sign_out(self, access_token: str) -> None:
        self.signed_out.append(access_token)
        if self.sign_out_error:
            raise BackendError(self.sign_out_error)
        self.users.pop(access_token, None)


async def eventually(predicate, timeout: float = 5.0, interval: float = 0.02) -> None:
    # for behavior driven by background polling
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
