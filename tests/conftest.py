from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union
from urllib.parse import urlsplit

import pytest
import requests

from companion.repository.api_client import IntraAPIClient
from companion.repository.blob_store import InMemoryBlobStore
from companion.services.auth_service import AuthService, InMemoryTokenStore
from companion.services.ttl_cache import TTLCache
from companion.utils.clock import FixedClock
from companion.utils.config import get_settings


BASE_URL = "https://api.test"
TOKEN_URL = "https://api.test/oauth/token"
NOW = datetime(2026, 3, 4, 10, 7, 30, tzinfo=timezone.utc)


def make_response(
    status: int = 200,
    payload: Any = None,
    headers: Optional[dict[str, str]] = None,
    text: Optional[str] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = ""
    response.url = BASE_URL
    response.encoding = "utf-8"
    if text is not None:
        response._content = text.encode("utf-8")
    elif payload is not None:
        response._content = json.dumps(payload).encode("utf-8")
    else:
        response._content = b""
    response.headers.update(headers or {})
    return response


Reply = Union[requests.Response, Exception, Callable[..., requests.Response]]


class FakeSession:
    """Routes requests by (method, path); each route replays its replies in order.

    The last reply of a route is sticky so polling-style calls keep working.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, path: str, *replies: Reply) -> "FakeSession":
        self.routes.setdefault((method.upper(), path), []).extend(replies)
        return self

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [
            call for call in self.calls if call["method"] == method.upper() and call["path"] == path
        ]

    def request(self, method, url, params=None, json=None, data=None, headers=None, timeout=None):
        path = urlsplit(url).path
        call = {
            "method": method.upper(),
            "path": path,
            "params": dict(params or {}),
            "json": json,
            "data": data,
            "headers": dict(headers or {}),
        }
        self.calls.append(call)
        replies = self.routes.get((method.upper(), path))
        if not replies:
            raise AssertionError(f"Unexpected request {method} {path}")
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply) and not isinstance(reply, requests.Response):
            return reply(call)
        return reply

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        return self.request("POST", url, json=json, data=data, headers=headers, timeout=timeout)


class FlakyBlobStore(InMemoryBlobStore):
    """In-memory store whose writes fail while `fail` is set."""

    def __init__(self, data: Optional[bytes] = None, fail: bool = False) -> None:
        super().__init__(data)
        self.fail = fail

    def save(self, data: bytes) -> None:
        if self.fail:
            raise OSError("disk full")
        super().save(data)

    def clear(self) -> None:
        if self.fail:
            raise OSError("read-only file system")
        super().clear()


@pytest.fixture
def settings(tmp_path):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        api_base_url=BASE_URL,
        api_token_url=TOKEN_URL,
        api_client_id="client-id",
        api_client_secret="client-secret",
        token_store_path=tmp_path / "tokens.json",
        cache_path=tmp_path / "cache.json",
        time_zone="UTC",
        profile_login=None,
        campus_id=None,
        campus_cache_dir=tmp_path / "campus",
        api_max_attempts=3,
        api_page_size=100,
        api_fanout_workers=4,
    )


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def token_session():
    return FakeSession()


@pytest.fixture
def auth_service(settings, clock, token_session):
    store = InMemoryTokenStore({"access_token": "token-1", "refresh_token": "refresh-1"})
    return AuthService(settings=settings, token_store=store, clock=clock, session=token_session)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(auth_service, settings, session, sleeps):
    return IntraAPIClient(
        auth_service=auth_service,
        settings=settings,
        session=session,
        sleep=sleeps.append,
        random_source=lambda: 0.0,
    )


@pytest.fixture
def cache(clock):
    return TTLCache(InMemoryBlobStore(), clock, default_ttl_seconds=300)
