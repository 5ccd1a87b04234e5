from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import requests


@dataclass(frozen=True)
class HttpResponse:
    """Provider response with its status and headers kept alongside the body."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    payload: Any = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class HttpClient(Protocol):
    def post_json(
        self,
        url: str,
        *,
        json: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
        timeout: float = 120,
    ) -> HttpResponse:
        ...


class RequestsHttpClient:
    """``HttpClient`` backed by a ``requests.Session``.

    Non-2xx responses are returned, not raised; only transport failures raise
    ``requests.RequestException``.
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self.session = session or requests.Session()

    def post_json(
        self,
        url: str,
        *,
        json: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
        timeout: float = 120,
    ) -> HttpResponse:
        response = self.session.post(url, json=dict(json), headers=dict(headers or {}), timeout=timeout)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return HttpResponse(
            status=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            payload=payload,
            text=response.text,
        )
