import pytest

from sqlite_setup import get_engine
from todostore.local_todostore import (
    InMemorySlot,
    LocalTodoList,
    LocalTodoStore,
    SqlKeyValueSlot,
)
from todostore.todostore import Todo, ViewFilter

STORED = '[{"id":1700000000001,"text":"walk dog","completed":true},{"id":1700000000000,"text":"buy milk","completed":false}]'


@pytest.fixture
def store(slot: InMemorySlot) -> LocalTodoStore:
    return LocalTodoStore(slot)


def test_load_stored_list(store: LocalTodoStore, slot: InMemorySlot):
    slot.write("todos", STORED)
    assert store.load() == [
        Todo(1700000000001, "walk dog", completed=True),
        Todo(1700000000000, "buy milk"),
    ]


def test_save_of_load_keeps_stored_bytes(store: LocalTodoStore, slot: InMemorySlot):
    slot.write("todos", STORED)
    store.save(store.load())
    assert slot.read("todos") == STORED

    store.save([])
    assert slot.read("todos") == "[]"
    store.save(store.load())
    assert slot.read("todos") == "[]"


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "not json",
        '{"id": 1, "text": "a"}',
        '[{"text": "no id"}]',
        "null",
    ],
)
def test_unreadable_storage_is_an_empty_list(
    store: LocalTodoStore, slot: InMemorySlot, raw: str | None
):
    if raw is not None:
        slot.write("todos", raw)
    assert store.load() == []


def test_sql_slot(tmp_path):
    db_file = str(tmp_path / "local.db")
    slot = SqlKeyValueSlot(get_engine(db_file=db_file))
    assert slot.read("todos") is None

    slot.write("todos", "[]")
    slot.write("todos", STORED)
    slot.write("auth.session", "token")

    reopened = SqlKeyValueSlot(get_engine(db_file=db_file))
    assert reopened.read("todos") == STORED
    reopened.remove("auth.session")
    reopened.remove("auth.session")
    assert slot.read("auth.session") is None


def test_local_list_writes_every_change_through(store: LocalTodoStore):
    now = iter([1.0, 2.0, 3.0])
    todo_list = LocalTodoList(store, clock=lambda: next(now))

    first = todo_list.add("  buy milk ")
    assert first == Todo(1000, "buy milk")
    assert todo_list.add("   ") is None
    todo_list.add("walk dog")
    todo_list.add("read book")
    assert [t.text for t in todo_list.todos] == ["read book", "walk dog", "buy milk"]
    assert store.load() == todo_list.todos

    todo_list.toggle(2000)
    assert store.load()[1].completed
    assert todo_list.items_left == 2

    todo_list.delete(3000)
    assert [t.id for t in store.load()] == [2000, 1000]

    todo_list.clear_completed()
    assert store.load() == [Todo(1000, "buy milk")]
    assert LocalTodoList(store).todos == [Todo(1000, "buy milk")]


def test_local_ids_stay_unique_within_a_millisecond(store: LocalTodoStore):
    todo_list = LocalTodoList(store, clock=lambda: 5.0)
    ids = [todo_list.add(text).id for text in ("a", "b", "c")]  # type: ignore
    assert ids == [5000, 5001, 5002]


def test_local_view_filter(store: LocalTodoStore, slot: InMemorySlot):
    slot.write("todos", STORED)
    todo_list = LocalTodoList(store)
    assert [t.text for t in todo_list.visible_todos] == ["walk dog", "buy milk"]
    todo_list.view_filter = ViewFilter.ACTIVE
    assert [t.text for t in todo_list.visible_todos] == ["buy milk"]
    todo_list.view_filter = ViewFilter.COMPLETED
    assert [t.text for t in todo_list.visible_todos] == ["walk dog"]
    assert todo_list.items_left == 1
