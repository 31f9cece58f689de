import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from sqlalchemy import Engine, func, select
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    MappedAsDataclass,
    Session,
    mapped_column,
)

from todostore.todostore import Todo
from todosync.gateway import ChangeEvent, ChangeFeed
from todosync.session import Identity
from todosync.session import Session as AuthSession

log = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackendBase(DeclarativeBase, MappedAsDataclass):
    pass


class PTodo(BackendBase):
    __tablename__ = "todos"

    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    text: Mapped[str]
    user_id: Mapped[str] = mapped_column(index=True)
    completed: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(default_factory=utcnow)


class PTodoChange(BackendBase):
    """append-only log of todo writes, read by the change feed"""

    __tablename__ = "todo_changes"

    seq: Mapped[int] = mapped_column(primary_key=True, init=False)
    event_type: Mapped[str]
    record_id: Mapped[int]
    user_id: Mapped[str] = mapped_column(index=True)


class PUser(BackendBase):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(unique=True)
    id: Mapped[str] = mapped_column(
        primary_key=True, default_factory=lambda: str(uuid.uuid4())
    )


class PLinkToken(BackendBase):
    __tablename__ = "link_tokens"

    token: Mapped[str] = mapped_column(primary_key=True)
    email: Mapped[str]


class PAuthSession(BackendBase):
    __tablename__ = "auth_sessions"

    access_token: Mapped[str] = mapped_column(primary_key=True)
    user_id: Mapped[str]


def from_p_todo(p_todo: PTodo) -> Todo:
    return Todo(
        id=p_todo.id,
        text=p_todo.text,
        completed=p_todo.completed,
        owner_id=p_todo.user_id,
        created_at=p_todo.created_at,
    )


def from_p_change(p_change: PTodoChange) -> ChangeEvent:
    return ChangeEvent(
        seq=p_change.seq,
        event_type=p_change.event_type,
        record_id=p_change.record_id,
        user_id=p_change.user_id,
    )


def log_link(email: str, token: str) -> None:
    # stands in for sending the email
    log.info("sign_in_link_issued", email=email, token=token)


def create_all(engine: Engine) -> None:
    BackendBase.metadata.create_all(engine)


@dataclass
class SqlTodoBackend:
    """
    reference implementation of the backend contract on sqlite,
    for local development and integration tests
    """

    engine: Engine
    mailer: Callable[[str, str], None] = field(default=log_link)

    def __post_init__(self):
        create_all(self.engine)

    # records

    def list_todos(self, user_id: str) -> list[Todo]:
        with Session(self.engine) as session:
            p_todos = session.scalars(
                select(PTodo)
                .where(PTodo.user_id == user_id)
                .order_by(PTodo.created_at.desc(), PTodo.id.desc())
            ).all()
            return [from_p_todo(p) for p in p_todos]

    def get_owner(self, todo_id: int) -> str | None:
        with Session(self.engine) as session:
            return session.scalar(select(PTodo.user_id).where(PTodo.id == todo_id))

    def create_todo(self, text: str, user_id: str) -> Todo:
        with Session(self.engine) as session, session.begin():
            p_todo = PTodo(text=text, user_id=user_id)
            session.add(p_todo)
            session.flush()
            session.add(PTodoChange("INSERT", p_todo.id, user_id))
            return from_p_todo(p_todo)

    def update_todo(self, todo_id: int, fields: dict[str, Any]) -> Todo | None:
        with Session(self.engine) as session, session.begin():
            p_todo = session.get(PTodo, todo_id)
            if p_todo is None:
                return None
            for name, value in fields.items():
                setattr(p_todo, name, value)
            session.add(PTodoChange("UPDATE", todo_id, p_todo.user_id))
            session.flush()
            return from_p_todo(p_todo)

    def delete_todo(self, todo_id: int) -> bool:
        with Session(self.engine) as session, session.begin():
            p_todo = session.get(PTodo, todo_id)
            if p_todo is None:
                return False
            session.delete(p_todo)
            session.add(PTodoChange("DELETE", todo_id, p_todo.user_id))
            return True

    def changes(self, user_id: str, since: int) -> ChangeFeed:
        with Session(self.engine) as session:
            head = session.scalar(select(func.max(PTodoChange.seq))) or 0
            if since < 0:
                return ChangeFeed([], head)
            p_changes = session.scalars(
                select(PTodoChange)
                .where(
                    (PTodoChange.user_id == user_id)
                    & (PTodoChange.seq > since)
                    & (PTodoChange.seq <= head)
                )
                .order_by(PTodoChange.seq)
            ).all()
            return ChangeFeed([from_p_change(c) for c in p_changes], max(head, since))

    # passwordless sign-in

    def request_link(self, email: str) -> str:
        token = secrets.token_urlsafe(16)
        with Session(self.engine) as session, session.begin():
            session.add(PLinkToken(token=token, email=email.lower()))
        self.mailer(email, token)
        return token

    def verify_link(self, token: str) -> AuthSession | None:
        with Session(self.engine) as session, session.begin():
            p_link = session.get(PLinkToken, token)
            if p_link is None:
                return None
            session.delete(p_link)  # single use
            p_user = session.scalar(select(PUser).where(PUser.email == p_link.email))
            if p_user is None:
                p_user = PUser(email=p_link.email)
                session.add(p_user)
            p_session = PAuthSession(secrets.token_urlsafe(32), p_user.id)
            session.add(p_session)
            return AuthSession(p_session.access_token, Identity(p_user.id, p_user.email))

    def session_for_token(self, access_token: str) -> AuthSession | None:
        with Session(self.engine) as session:
            p_session = session.get(PAuthSession, access_token)
            if p_session is None:
                return None
            p_user = session.get(PUser, p_session.user_id)
            if p_user is None:
                return None
            return AuthSession(access_token, Identity(p_user.id, p_user.email))

    def end_session(self, access_token: str) -> None:
        with Session(self.engine) as session, session.begin():
            p_session = session.get(PAuthSession, access_token)
            if p_session is not None:
                session.delete(p_session)
