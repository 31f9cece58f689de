from apiflask import APIFlask, HTTPTokenAuth, abort

from logging_setup import setup_logging
from sqlite_setup import get_engine
from todo_settings import get_settings
from todobackend.sql_backend import SqlTodoBackend
from todostore.todostore import Todo, TodoPatch, todo_patch_schema, todo_schema, todos_schema
from todosync.gateway import ChangeFeed, ChangesQuery
from todosync.network.schemas import (
    LinkRequest,
    LinkVerification,
    NewTodo,
    OwnerQuery,
    change_feed_schema,
    changes_query_schema,
    identity_schema,
    link_request_schema,
    link_verification_schema,
    new_todo_schema,
    owner_query_schema,
    session_schema,
)
from todosync.session import Identity, Session


# expose the reference backend via http-endpoints


def create_app(backend: SqlTodoBackend) -> APIFlask:
    app = APIFlask(__name__, title="todo backend")
    auth = HTTPTokenAuth(scheme="Bearer")

    @auth.verify_token
    def verify_token(token: str) -> Session | None:
        return backend.session_for_token(token)

    def current_session() -> Session:
        return auth.current_user  # type: ignore

    def require_owner(user_id: str) -> None:
        if user_id != current_session().user.id:
            abort(403, message="Not allowed to access todos of another user")

    @app.get("/")
    def index() -> str:
        return "todo backend"

    @app.get("/todos")
    @app.auth_required(auth)
    @app.input(owner_query_schema, location="query")  # type: ignore
    @app.output(todos_schema)  # type: ignore
    def list_todos(query_data: OwnerQuery) -> list[Todo]:
        require_owner(query_data.user_id)
        return backend.list_todos(query_data.user_id)

    @app.post("/todos")
    @app.auth_required(auth)
    @app.input(new_todo_schema, arg_name="new_todo")  # type: ignore
    @app.output(todo_schema, status_code=201)  # type: ignore
    def create_todo(new_todo: NewTodo) -> Todo:
        require_owner(new_todo.user_id)
        return backend.create_todo(new_todo.text.strip(), new_todo.user_id)

    @app.patch("/todos/<int:todo_id>")
    @app.auth_required(auth)
    @app.input(todo_patch_schema, arg_name="patch")  # type: ignore
    @app.output(todo_schema)  # type: ignore
    def update_todo(todo_id: int, patch: TodoPatch) -> Todo:
        owner = backend.get_owner(todo_id)
        if owner is None:
            abort(404, message=f"Todo {todo_id} not found")
        require_owner(owner)
        todo = backend.update_todo(todo_id, patch.to_fields())
        if todo is None:
            abort(404, message=f"Todo {todo_id} not found")
        return todo

    @app.delete("/todos/<int:todo_id>")
    @app.auth_required(auth)
    @app.output({}, status_code=204)
    def delete_todo(todo_id: int) -> str:
        owner = backend.get_owner(todo_id)
        if owner is not None:
            require_owner(owner)
            backend.delete_todo(todo_id)
        return ""

    @app.get("/todos/changes")
    @app.auth_required(auth)
    @app.input(changes_query_schema, location="query")  # type: ignore
    @app.output(change_feed_schema)  # type: ignore
    def get_changes(query_data: ChangesQuery) -> ChangeFeed:
        require_owner(query_data.user_id)
        return backend.changes(query_data.user_id, query_data.since)

    @app.post("/auth/otp")
    @app.input(link_request_schema, arg_name="link_request")  # type: ignore
    @app.output({}, status_code=204)
    def send_link(link_request: LinkRequest) -> str:
        backend.request_link(link_request.email)
        return ""

    @app.post("/auth/verify")
    @app.input(link_verification_schema, arg_name="verification")  # type: ignore
    @app.output(session_schema)  # type: ignore
    def verify_link(verification: LinkVerification) -> Session:
        session = backend.verify_link(verification.token)
        if session is None:
            abort(401, message="Sign-in link is invalid or has already been used")
        return session

    @app.get("/auth/user")
    @app.auth_required(auth)
    @app.output(identity_schema)  # type: ignore
    def get_user() -> Identity:
        return current_session().user

    @app.post("/auth/logout")
    @app.auth_required(auth)
    @app.output({}, status_code=204)
    def logout() -> str:
        backend.end_session(current_session().access_token)
        return ""

    return app


def run_backend_server(backend: SqlTodoBackend, host: str, port: int, debug=False):
    app = create_app(backend)
    app.run(host, port, debug=debug, threaded=True, use_reloader=False)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, json=settings.log_json)
    backend = SqlTodoBackend(get_engine(settings.backend_db_file))
    run_backend_server(backend, settings.backend_host, settings.backend_port)


if __name__ == "__main__":
    main()
