from abc import ABCMeta, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

import structlog

from todostore.local_todostore import KeyValueSlot

from .errors import BackendError, ValidationError

log = structlog.get_logger()


@dataclass
class Identity:
    id: str
    email: str | None = None


@dataclass
class Session:
    access_token: str
    user: Identity


@dataclass
class SignInResult:
    ok: bool
    message: str = ""


SessionListener = Callable[[Identity | None], None]


class AuthClient(metaclass=ABCMeta):
    @abstractmethod
    async def get_user(self, access_token: str) -> Identity: ...

    @abstractmethod
    async def send_link(self, email: str) -> None: ...

    @abstractmethod
    async def verify_link(self, token: str) -> Session: ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None: ...


def require_text(value: str, what: str) -> str:
    value = value.strip()
    if not value:
        raise ValidationError(f"{what} must not be empty")
    return value


@dataclass
class SessionManager:
    """
    owns the current session and tells listeners whenever the identity changes.

    a passwordless sign-in is two steps: sign_in_with_link() only asks the backend
    to email a link, the session appears once complete_sign_in() is called with
    the link's token. listeners observe both that and sign_out().
    """

    auth: AuthClient
    storage: KeyValueSlot | None = None
    storage_key: str = "auth.session"

    _session: Session | None = field(default=None, init=False)
    _listeners: list[SessionListener] = field(default_factory=list, init=False)

    @property
    def identity(self) -> Identity | None:
        return self._session.user if self._session else None

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def get_current_session(self) -> Identity | None:
        token = self.storage.read(self.storage_key) if self.storage else None
        session = None
        if token:
            try:
                session = Session(token, await self.auth.get_user(token))
            except BackendError as e:
                log.info("stored_session_rejected", reason=str(e), status=e.status)
                if e.status == 401:
                    self._forget_token()
        self._set_session(session)
        return self.identity

    async def sign_in_with_link(self, email: str) -> SignInResult:
        try:
            email = require_text(email, "email")
            await self.auth.send_link(email)
        except (ValidationError, BackendError) as e:
            log.info("sign_in_link_failed", reason=str(e))
            return SignInResult(False, str(e))
        log.info("sign_in_link_sent", email=email)
        return SignInResult(True, f"Check {email} for a sign-in link.")

    async def complete_sign_in(self, link_token: str) -> SignInResult:
        try:
            session = await self.auth.verify_link(require_text(link_token, "link"))
        except (ValidationError, BackendError) as e:
            log.info("sign_in_failed", reason=str(e))
            return SignInResult(False, str(e))
        if self.storage is not None:
            self.storage.write(self.storage_key, session.access_token)
        self._set_session(session)
        return SignInResult(True, f"Signed in as {session.user.email or session.user.id}.")

    async def sign_out(self) -> None:
        session = self._session
        if session is None:
            return
        self._forget_token()
        self._set_session(None)
        try:
            await self.auth.sign_out(session.access_token)
        except BackendError as e:
            log.warning("remote_sign_out_failed", reason=str(e))

    def _forget_token(self) -> None:
        if self.storage is not None:
            self.storage.remove(self.storage_key)

    def _set_session(self, session: Session | None) -> None:
        previous = self.identity
        self._session = session
        if previous == self.identity:
            return
        log.info(
            "session_changed",
            user_id=self.identity.id if self.identity else None,
        )
        for listener in list(self._listeners):
            listener(self.identity)
