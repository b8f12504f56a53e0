from contextlib import contextmanager
from typing import Iterator

import httpx

from .config import ClientSettings, settings as default_settings


class ApiClient:
    """Тонкая обёртка над httpx.Client: префикс /api/v1 и bearer-токен."""

    def __init__(self, http: httpx.Client, token: str | None = None, prefix: str = "/api/v1"):
        self.http = http
        self.token = token
        self.prefix = prefix.rstrip("/")

    @classmethod
    def from_settings(cls, token: str | None = None, config: ClientSettings = default_settings) -> "ApiClient":
        http = httpx.Client(base_url=config.INSTANCE_URL.rstrip("/"), timeout=config.HTTP_TIMEOUT)
        return cls(http, token=token)

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = self._headers(kwargs.pop("headers", None))
        return self.http.request(method, self.prefix + path, headers=headers, **kwargs)

    def get(self, path: str, **kwargs) -> httpx.Response:
        return self.request("GET", path, **kwargs)

    def patch(self, path: str, json: dict, **kwargs) -> httpx.Response:
        return self.request("PATCH", path, json=json, **kwargs)

    @contextmanager
    def stream(self, path: str, params: dict | None = None, headers: dict | None = None) -> Iterator[httpx.Response]:
        with self.http.stream("GET", self.prefix + path, params=params, headers=self._headers(headers)) as response:
            yield response

    def close(self) -> None:
        self.http.close()
