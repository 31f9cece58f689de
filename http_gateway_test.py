import asyncio
from dataclasses import dataclass

import pytest

from testing_fakes import eventually
from todobackend.sql_backend import SqlTodoBackend
from todostore.local_todostore import InMemorySlot
from todostore.todostore import TodoPatch
from todosync.errors import BackendError, ValidationError
from todosync.gateway import READY, ChangeEvent
from todosync.network.http_auth import HttpAuthClient
from todosync.network.http_gateway import HttpTodoGateway
from todosync.reconciler import ListState, TodoListReconciler
from todosync.session import SessionManager

POLL_INTERVAL = 0.05


def client_for(backend_url: str, slot: InMemorySlot | None = None):
    session = SessionManager(HttpAuthClient(backend_url), storage=slot or InMemorySlot())
    gateway = HttpTodoGateway(
        backend_url,
        access_token=lambda: session.access_token,
        poll_interval=POLL_INTERVAL,
    )
    return session, gateway


async def sign_in(session: SessionManager, outbox: dict[str, str], email: str) -> str:
    result = await session.sign_in_with_link(email)
    assert result.ok
    assert session.identity is None
    result = await session.complete_sign_in(outbox[email])
    assert result.ok, result.message
    assert session.identity is not None
    return session.identity.id


def test_records(backend_url: str, outbox: dict[str, str]):
    session, gateway = client_for(backend_url)

    async def scenario():
        owner_id = await sign_in(session, outbox, "alice@example.com")
        assert await gateway.fetch_all(owner_id) == []

        first = await gateway.create("buy milk", owner_id)
        second = await gateway.create("walk dog", owner_id)
        assert first.text == "buy milk"
        assert first.completed is False
        assert first.owner_id == owner_id
        assert first.created_at is not None
        assert [t.id for t in await gateway.fetch_all(owner_id)] == [second.id, first.id]

        updated = await gateway.update(first.id, TodoPatch(completed=True))
        assert updated.completed
        assert updated.text == "buy milk"
        updated = await gateway.update(first.id, TodoPatch(text="buy oat milk"))
        assert updated.completed
        assert updated.text == "buy oat milk"

        assert await gateway.delete(second.id) is True
        # already gone, still fine
        assert await gateway.delete(second.id) is True
        assert [t.id for t in await gateway.fetch_all(owner_id)] == [first.id]

    asyncio.run(scenario())


def test_errors(backend_url: str, outbox: dict[str, str]):
    alice, alice_gateway = client_for(backend_url)
    bob, bob_gateway = client_for(backend_url)

    async def scenario():
        with pytest.raises(BackendError) as e:
            await alice_gateway.fetch_all("anyone")
        assert e.value.status == 401

        alice_id = await sign_in(alice, outbox, "alice@example.com")
        await sign_in(bob, outbox, "bob@example.com")
        todo = await alice_gateway.create("secret", alice_id)

        with pytest.raises(BackendError) as e:
            await bob_gateway.fetch_all(alice_id)
        assert e.value.status == 403
        with pytest.raises(BackendError) as e:
            await bob_gateway.update(todo.id, TodoPatch(completed=True))
        assert e.value.status == 403

        with pytest.raises(BackendError) as e:
            await alice_gateway.update(999, TodoPatch(completed=True))
        assert e.value.status == 404
        assert e.value.message == "Todo 999 not found"

        with pytest.raises(ValidationError):
            await alice_gateway.create("  ", alice_id)

    asyncio.run(scenario())


def test_unreachable_backend():
    gateway = HttpTodoGateway("http://127.0.0.1:9", timeout=1.0)
    with pytest.raises(BackendError) as e:
        asyncio.run(gateway.fetch_all("u1"))
    assert e.value.status is None
    assert e.value.message.startswith("Backend unreachable")


def test_subscription_only_sees_own_changes(backend_url: str, outbox: dict[str, str]):
    alice, alice_gateway = client_for(backend_url)
    bob, bob_gateway = client_for(backend_url)
    events: list[ChangeEvent] = []

    async def scenario():
        alice_id = await sign_in(alice, outbox, "alice@example.com")
        bob_id = await sign_in(bob, outbox, "bob@example.com")
        await alice_gateway.create("before subscribing", alice_id)

        release = alice_gateway.subscribe(alice_id, events.append)
        await eventually(lambda: len(events) == 1)
        assert events[0].event_type == READY
        assert events[0].record_id is None

        await bob_gateway.create("bob's", bob_id)
        todo = await alice_gateway.create("alice's", alice_id)
        await alice_gateway.update(todo.id, TodoPatch(completed=True))
        await alice_gateway.delete(todo.id)
        await eventually(lambda: len(events) == 4)
        assert [e.event_type for e in events[1:]] == ["INSERT", "UPDATE", "DELETE"]
        assert {e.record_id for e in events[1:]} == {todo.id}

        release()
        release()
        await alice_gateway.create("after release", alice_id)
        await asyncio.sleep(POLL_INTERVAL * 6)
        assert len(events) == 4

    asyncio.run(scenario())


def test_subscription_reports_failed_polls(backend_url: str):
    gateway = HttpTodoGateway(
        backend_url, access_token=lambda: "expired", poll_interval=POLL_INTERVAL
    )
    events: list[ChangeEvent] = []
    errors: list[BackendError] = []

    async def scenario():
        release = gateway.subscribe("u1", events.append, errors.append)
        await eventually(lambda: len(errors) >= 2)
        release()
        assert errors[0].status == 401
        assert events == []

    asyncio.run(scenario())


def test_subscription_survives_failing_handler(backend_url: str, outbox: dict[str, str]):
    session, gateway = client_for(backend_url)
    events: list[ChangeEvent] = []

    def on_change(event: ChangeEvent) -> None:
        events.append(event)
        raise RuntimeError("handler bug")

    async def scenario():
        owner_id = await sign_in(session, outbox, "alice@example.com")
        release = gateway.subscribe(owner_id, on_change)
        await eventually(lambda: len(events) == 1)

        await gateway.create("one", owner_id)
        await gateway.create("two", owner_id)
        await eventually(lambda: len(events) == 3)
        release()

    asyncio.run(scenario())


def test_session_round_trip(backend_url: str, outbox: dict[str, str]):
    slot = InMemorySlot()
    session, _ = client_for(backend_url, slot)

    async def scenario():
        owner_id = await sign_in(session, outbox, "Alice@Example.com")

        # a restarted client picks up the stored session
        restarted, _ = client_for(backend_url, slot)
        identity = await restarted.get_current_session()
        assert identity is not None
        assert identity.id == owner_id
        assert identity.email == "alice@example.com"

        await restarted.sign_out()
        assert slot.read("auth.session") is None
        assert await session.get_current_session() is None

        result = await session.complete_sign_in("not-a-link")
        assert not result.ok

        result = await session.sign_in_with_link("not an email")
        assert not result.ok

    asyncio.run(scenario())


def test_reconciler_against_backend(backend_url: str, outbox: dict[str, str]):
    session, gateway = client_for(backend_url)

    async def scenario():
        todo_list = TodoListReconciler(gateway, session)
        await todo_list.start()
        assert todo_list.state is ListState.SIGNED_OUT

        await sign_in(session, outbox, "alice@example.com")
        await eventually(lambda: todo_list.state is ListState.SYNCED)
        assert todo_list.todos == []

        await todo_list.add("buy milk")
        await eventually(lambda: len(todo_list.todos) == 1)
        assert todo_list.todos[0].text == "buy milk"

        await todo_list.toggle(todo_list.todos[0].id)
        await eventually(lambda: todo_list.items_left == 0)

        await todo_list.clear_completed()
        await eventually(lambda: todo_list.todos == [])
        assert todo_list.error is None

        await session.sign_out()
        assert todo_list.state is ListState.SIGNED_OUT
        todo_list.close()

    asyncio.run(scenario())


@dataclass
class SlowToSubscribeGateway(HttpTodoGateway):
    subscribe_delay: float = 0.3
    delayed: bool = False

    async def _call(self, method: str, path: str, token: str | None = None, **kwargs):
        if path == "/todos/changes" and not self.delayed:
            self.delayed = True
            await asyncio.sleep(self.subscribe_delay)
        return await super()._call(method, path, token, **kwargs)


def test_change_before_subscription_is_positioned_is_not_lost(
    backend: SqlTodoBackend, backend_url: str, outbox: dict[str, str]
):
    session = SessionManager(HttpAuthClient(backend_url), storage=InMemorySlot())
    gateway = SlowToSubscribeGateway(
        backend_url,
        access_token=lambda: session.access_token,
        poll_interval=POLL_INTERVAL,
    )

    async def scenario():
        todo_list = TodoListReconciler(gateway, session)
        await todo_list.start()
        owner_id = await sign_in(session, outbox, "alice@example.com")
        await eventually(lambda: todo_list.state is ListState.SYNCED)

        # written by another device after the first fetch,
        # before the change feed was first read
        backend.create_todo("from other device", owner_id)
        await eventually(
            lambda: [t.text for t in todo_list.todos] == ["from other device"]
        )
        todo_list.close()

    asyncio.run(scenario())
