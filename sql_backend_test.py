from todobackend.sql_backend import SqlTodoBackend


def test_todos_are_listed_newest_first(backend: SqlTodoBackend):
    first = backend.create_todo("buy milk", "u1")
    second = backend.create_todo("walk dog", "u1")
    backend.create_todo("other owner", "u2")

    assert [t.id for t in backend.list_todos("u1")] == [second.id, first.id]
    assert backend.get_owner(first.id) == "u1"
    assert backend.get_owner(12345) is None


def test_update_and_delete(backend: SqlTodoBackend):
    todo = backend.create_todo("buy milk", "u1")

    updated = backend.update_todo(todo.id, {"completed": True})
    assert updated is not None
    assert updated.completed
    assert updated.text == "buy milk"
    assert backend.update_todo(12345, {"completed": True}) is None

    assert backend.delete_todo(todo.id)
    assert not backend.delete_todo(todo.id)
    assert backend.list_todos("u1") == []


def test_change_feed(backend: SqlTodoBackend):
    backend.create_todo("old", "u1")
    start = backend.changes("u1", -1)
    assert start.events == []

    todo = backend.create_todo("new", "u1")
    backend.create_todo("not mine", "u2")
    backend.update_todo(todo.id, {"text": "newer"})
    backend.delete_todo(todo.id)

    feed = backend.changes("u1", start.cursor)
    assert [(e.event_type, e.record_id) for e in feed.events] == [
        ("INSERT", todo.id),
        ("UPDATE", todo.id),
        ("DELETE", todo.id),
    ]
    assert feed.cursor == start.cursor + 4

    assert backend.changes("u1", feed.cursor).events == []
    assert backend.changes("u1", feed.cursor).cursor == feed.cursor


def test_link_sign_in(backend: SqlTodoBackend, outbox: dict[str, str]):
    token = backend.request_link("Alice@Example.com")
    assert outbox == {"Alice@Example.com": token}

    session = backend.verify_link(token)
    assert session is not None
    assert session.user.email == "alice@example.com"
    assert backend.verify_link(token) is None

    again = backend.verify_link(backend.request_link("alice@example.com"))
    assert again is not None
    assert again.user == session.user
    assert again.access_token != session.access_token

    assert backend.session_for_token(session.access_token) == session
    backend.end_session(session.access_token)
    assert backend.session_for_token(session.access_token) is None
    assert backend.session_for_token(again.access_token) == again
