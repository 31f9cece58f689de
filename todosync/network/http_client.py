import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
from marshmallow import Schema
from marshmallow import ValidationError as SchemaValidationError

from todosync.errors import BackendError


def extract_error(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    text = (r.text or "").strip()
    if text:
        return f"HTTP {r.status_code}: {text[:300]}"
    return f"HTTP {r.status_code}: request failed"


@dataclass
class HttpBackendClient:
    """
    blocking requests against the backend's http api, run in a worker thread
    so that awaiting them never blocks the event loop
    """

    base_url: str  # e.g. http://localhost:5000
    api_key: str = ""
    access_token: Callable[[], str | None] = field(default=lambda: None)
    timeout: float = 10.0

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {"apikey": self.api_key}
        token = token or self.access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self, method: str, path: str, token: str | None = None, **kwargs
    ) -> requests.Response:
        try:
            r = requests.request(
                method,
                self.base_url + path,
                headers=self._headers(token),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise BackendError(f"Backend unreachable: {e}") from e
        if r.status_code >= 300:
            raise BackendError(extract_error(r), status=r.status_code)
        return r

    async def _call(
        self, method: str, path: str, token: str | None = None, **kwargs
    ) -> requests.Response:
        return await asyncio.to_thread(self._request, method, path, token, **kwargs)

    @staticmethod
    def _load(schema: Schema, r: requests.Response) -> Any:
        try:
            return schema.loads(r.text)
        except (ValueError, SchemaValidationError) as e:
            raise BackendError(f"Unexpected response from backend: {e}") from e
