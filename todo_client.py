from typing import Callable

from sqlite_setup import get_engine
from todo_settings import Settings, get_settings
from todostore.local_todostore import (
    KeyValueSlot,
    LocalTodoList,
    LocalTodoStore,
    SqlKeyValueSlot,
)
from todosync.network.http_auth import HttpAuthClient
from todosync.network.http_gateway import HttpTodoGateway
from todosync.reconciler import TodoListReconciler
from todosync.session import SessionManager

# wiring of both client variants from the settings


def open_local_slot(settings: Settings) -> KeyValueSlot:
    return SqlKeyValueSlot(get_engine(settings.local_db_file))


def open_local_list(settings: Settings | None = None) -> LocalTodoList:
    settings = settings or get_settings()
    return LocalTodoList(LocalTodoStore(open_local_slot(settings)))


def open_synced_list(
    settings: Settings | None = None,
    on_update: Callable[[TodoListReconciler], None] | None = None,
    slot: KeyValueSlot | None = None,
) -> TodoListReconciler:
    """
    the reconciler still has to be started, from within the event loop:

        todo_list = open_synced_list()
        await todo_list.start()
    """
    settings = settings or get_settings()
    auth = HttpAuthClient(
        settings.backend_url, settings.api_key, timeout=settings.request_timeout
    )
    session = SessionManager(auth, storage=slot or open_local_slot(settings))
    gateway = HttpTodoGateway(
        settings.backend_url,
        settings.api_key,
        access_token=lambda: session.access_token,
        timeout=settings.request_timeout,
        poll_interval=settings.poll_interval,
    )
    return TodoListReconciler(gateway, session, on_update=on_update)
