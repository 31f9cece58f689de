from dataclasses import dataclass

from todosync.network.http_client import HttpBackendClient
from todosync.network.schemas import (
    LinkRequest,
    LinkVerification,
    identity_schema,
    link_request_schema,
    link_verification_schema,
    session_schema,
)
from todosync.session import AuthClient, Identity, Session


@dataclass
class HttpAuthClient(HttpBackendClient, AuthClient):
    async def get_user(self, access_token: str) -> Identity:
        r = await self._call("GET", "/auth/user", token=access_token)
        return self._load(identity_schema, r)

    async def send_link(self, email: str) -> None:
        await self._call(
            "POST", "/auth/otp", json=link_request_schema.dump(LinkRequest(email))
        )

    async def verify_link(self, token: str) -> Session:
        r = await self._call(
            "POST",
            "/auth/verify",
            json=link_verification_schema.dump(LinkVerification(token)),
        )
        return self._load(session_schema, r)

    async def sign_out(self, access_token: str) -> None:
        await self._call("POST", "/auth/logout", token=access_token)
