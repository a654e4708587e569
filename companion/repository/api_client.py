"""HTTP client for the intranet REST API with retry, refresh and paging."""

from __future__ import annotations

import json
import random
import time
from typing import Any, Callable, Mapping, Optional

import requests

from companion.domain.constraints import ClientConfig, validate_client_config
from companion.services.auth_service import AuthenticationError, AuthService
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)

RETRYABLE_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE"})

TRANSPORT_MESSAGES = {
    "offline": "You appear to be offline. Check your connection and try again.",
    "timed_out": "The intranet did not answer in time. Try again shortly.",
    "generic": "A network error occurred while contacting the intranet.",
}


class APIError(Exception):
    """Base failure of an intranet API call."""


class UnauthorizedError(APIError):
    """Raised when no valid access token is available or a refreshed token is rejected."""


class RateLimitedError(APIError):
    def __init__(self, retry_after: Optional[float]) -> None:
        super().__init__(f"Rate limited; retry after {retry_after or 'unknown'}s")
        self.retry_after = retry_after


class HTTPStatusError(APIError):
    def __init__(self, status: int, body: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(self.message)

    @property
    def message(self) -> str:
        if self.body:
            try:
                payload = json.loads(self.body)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                for field_name in ("message", "error_description", "error"):
                    value = payload.get(field_name)
                    if isinstance(value, str) and value.strip():
                        return value.strip()
        return f"Server returned HTTP {self.status}"


class DecodingError(APIError):
    def __init__(self, detail: str = "") -> None:
        super().__init__("invalid server response" + (f": {detail}" if detail else ""))


class TransportError(APIError):
    def __init__(self, kind: str, detail: str = "") -> None:
        if kind not in TRANSPORT_MESSAGES:
            kind = "generic"
        self.kind = kind
        super().__init__(detail or TRANSPORT_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        return TRANSPORT_MESSAGES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind in {"offline", "timed_out"}


def _transport_error(exc: requests.RequestException) -> TransportError:
    # ConnectTimeout is both a Timeout and a ConnectionError.
    if isinstance(exc, requests.Timeout):
        return TransportError("timed_out", str(exc))
    if isinstance(exc, requests.ConnectionError):
        return TransportError("offline", str(exc))
    return TransportError("generic", str(exc))


def _retry_after_seconds(response: requests.Response) -> Optional[float]:
    header = response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        return float(header.strip())
    except ValueError:
        return None


class IntraAPIClient:
    """Authenticated JSON client.

    429 responses are always retried after `Retry-After`. 5xx responses and
    connection failures are retried with exponential backoff, except for
    POST. A 401 triggers exactly one token refresh followed by one retry.
    """

    def __init__(
        self,
        auth_service: AuthService,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        random_source: Callable[[], float] = random.random,
        retry_rate_limited: bool = True,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = ClientConfig.from_settings(self._settings)
        validate_client_config(self._config)
        self._auth = auth_service
        self._session = session or requests.Session()
        self._sleep = sleep
        self._random = random_source
        self._retry_rate_limited = retry_rate_limited

    def _url(self, path: str) -> str:
        return f"{self._settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def backoff_delay(self, attempt: int) -> float:
        jitter = self._random() * self._config.backoff_jitter
        return self._config.backoff_base_seconds * (2 ** (attempt - 1)) * (1 + jitter)

    def _rate_limit_delay(self, response: requests.Response) -> float:
        retry_after = _retry_after_seconds(response)
        if retry_after is None:
            retry_after = self._config.rate_limit_default_seconds
        return max(retry_after, self._config.rate_limit_min_seconds)

    def _send(
        self,
        path: str,
        query: Optional[Mapping[str, Any]],
        method: str,
        body: Any,
    ) -> requests.Response:
        retryable = method in RETRYABLE_METHODS
        retried_after_401 = False
        attempt = 0

        while True:
            token = self._auth.access_token
            if not token:
                raise UnauthorizedError("Not signed in")

            try:
                response = self._session.request(
                    method,
                    self._url(path),
                    params=dict(query) if query else None,
                    json=body,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/json",
                    },
                    timeout=self._config.timeout_seconds,
                )
            except requests.RequestException as exc:
                error = _transport_error(exc)
                attempt += 1
                if not (retryable and error.retryable) or attempt >= self._config.max_attempts:
                    raise error from exc
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s %s failed (%s); retry %d in %.2fs", method, path, error.kind, attempt, delay
                )
                self._sleep(delay)
                continue

            status = response.status_code
            if 200 <= status < 300:
                return response

            if status == 401:
                if retried_after_401:
                    raise UnauthorizedError("Access token rejected after refresh")
                retried_after_401 = True
                logger.info("%s %s returned 401; refreshing access token", method, path)
                try:
                    self._auth.refresh_access_token()
                except AuthenticationError as exc:
                    raise UnauthorizedError(str(exc)) from exc
                continue

            if status == 429:
                if not self._retry_rate_limited:
                    raise RateLimitedError(_retry_after_seconds(response))
                delay = self._rate_limit_delay(response)
                logger.info("%s %s rate limited; sleeping %.2fs", method, path, delay)
                self._sleep(delay)
                continue

            if 500 <= status < 600:
                attempt += 1
                if not retryable or attempt >= self._config.max_attempts:
                    raise HTTPStatusError(status, response.text)
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s %s returned %d; retry %d in %.2fs", method, path, status, attempt, delay
                )
                self._sleep(delay)
                continue

            raise HTTPStatusError(status, response.text)

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise DecodingError(str(exc)) from exc

    def request(
        self,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
        body: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (None when empty)."""
        method = method.upper()
        response = self._send(path, query, method, body)
        if method == "DELETE":
            try:
                return self._decode(response)
            except DecodingError:
                return None
        return self._decode(response)

    def paged_request(
        self,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        page_size: Optional[int] = None,
    ) -> list[Any]:
        """Collect every page of a list endpoint.

        Stops on an empty page or when the response carries no `rel="next"`
        link, pausing between pages to stay under the rate limit.
        """

        params: dict[str, Any] = dict(query or {})
        if page_size is not None:
            params["page[size]"] = page_size
        params.setdefault("page[size]", self._config.page_size)

        items: list[Any] = []
        page = 1
        while True:
            params["page[number]"] = page
            response = self._send(path, params, "GET", None)
            payload = self._decode(response)
            if payload is None:
                break
            if not isinstance(payload, list):
                raise DecodingError(f"expected a list from {path}")
            if not payload:
                break
            items.extend(payload)
            if "next" not in response.links:
                break
            page += 1
            self._sleep(self._config.page_delay_seconds)
        return items
