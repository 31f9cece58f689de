import threading

import pytest
from werkzeug.serving import make_server

from sqlite_setup import get_engine
from testing_fakes import FakeAuthClient, FakeGateway
from todobackend.server import create_app
from todobackend.sql_backend import SqlTodoBackend
from todostore.local_todostore import InMemorySlot
from todosync.session import SessionManager

HOST = "127.0.0.1"


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def auth() -> FakeAuthClient:
    return FakeAuthClient()


@pytest.fixture
def slot() -> InMemorySlot:
    return InMemorySlot()


@pytest.fixture
def session(auth: FakeAuthClient, slot: InMemorySlot) -> SessionManager:
    return SessionManager(auth, storage=slot)


@pytest.fixture
def outbox() -> dict[str, str]:
    # email -> last sign-in link token sent to it
    return {}


@pytest.fixture
def backend(tmp_path, outbox: dict[str, str]) -> SqlTodoBackend:
    return SqlTodoBackend(
        get_engine(db_file=str(tmp_path / "backend.db")),
        mailer=outbox.__setitem__,
    )


@pytest.fixture
def backend_url(backend: SqlTodoBackend):
    # serve the reference backend on a free port for the duration of a test
    server = make_server(HOST, 0, create_app(backend), threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://{HOST}:{server.server_port}"
    server.shutdown()
    thread.join()
