"""OAuth token storage and refresh-token grant for the intranet API."""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from threading import RLock
from typing import Optional, Protocol

import requests

from companion.utils.clock import Clock, SystemClock, as_utc, iso_string, load_time_zone, parse_iso
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
EXPIRATION_KEY = "token_expiration"
LOGIN_KEY = "current_login"


class AuthenticationError(Exception):
    """Base authentication failure."""


class MissingCredentialsError(AuthenticationError):
    """Raised when a refresh is attempted without client credentials or refresh token."""


class TokenRefreshError(AuthenticationError):
    """Raised when the token endpoint rejects or garbles a refresh-token grant."""


class TokenStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryTokenStore:
    def __init__(self, values: Optional[dict[str, str]] = None) -> None:
        self._values: dict[str, str] = dict(values or {})
        self._lock = RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class FileTokenStore:
    """JSON file readable only by the current user."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = RLock()

    def _read(self) -> dict[str, str]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Token store %s unreadable, treating as empty: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {key: value for key, value in raw.items() if isinstance(value, str)}

    def _write(self, values: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        descriptor = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
            json.dump(values, handle)
        os.chmod(self._path, 0o600)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            values = self._read()
            values[key] = value
            self._write(values)

    def delete(self, key: str) -> None:
        with self._lock:
            values = self._read()
            if values.pop(key, None) is not None:
                self._write(values)


class AuthService:
    """Holds the signed-in user's tokens and renews them with the refresh grant."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        token_store: Optional[TokenStore] = None,
        clock: Optional[Clock] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or get_settings()
        if token_store is None:
            token_store = FileTokenStore(self._settings.token_store_path)
        self._store: TokenStore = token_store
        self._clock = clock or SystemClock(load_time_zone(self._settings.time_zone))
        self._session = session or requests.Session()
        self._refresh_lock = RLock()

    @property
    def access_token(self) -> Optional[str]:
        return self._store.get(ACCESS_TOKEN_KEY) or None

    @property
    def refresh_token(self) -> Optional[str]:
        return self._store.get(REFRESH_TOKEN_KEY) or None

    @property
    def token_expiration(self) -> Optional[datetime]:
        return parse_iso(self._store.get(EXPIRATION_KEY))

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def current_login(self) -> Optional[str]:
        return self._store.get(LOGIN_KEY) or None

    def set_current_login(self, login: str) -> None:
        if not login.strip():
            raise ValueError("login must be non-empty")
        self._store.set(LOGIN_KEY, login.strip())

    def store_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[float] = None,
    ) -> None:
        if not access_token:
            raise ValueError("access_token must be non-empty")
        self._store.set(ACCESS_TOKEN_KEY, access_token)
        if refresh_token:
            self._store.set(REFRESH_TOKEN_KEY, refresh_token)
        if expires_in is not None:
            expiration = as_utc(self._clock.now()) + timedelta(seconds=float(expires_in))
            self._store.set(EXPIRATION_KEY, iso_string(expiration))

    def refresh_access_token(self) -> None:
        """Exchange the stored refresh token for a new access token."""
        with self._refresh_lock:
            refresh_token = self.refresh_token
            client_id = self._settings.api_client_id
            client_secret = self._settings.api_client_secret
            if not refresh_token:
                raise MissingCredentialsError("No refresh token stored. Sign in first.")
            if not client_id or not client_secret:
                raise MissingCredentialsError(
                    "INTRA_CLIENT_ID and INTRA_CLIENT_SECRET must be configured to refresh tokens."
                )

            try:
                response = self._session.post(
                    self._settings.api_token_url,
                    data={
                        "grant_type": "refresh_token",
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "refresh_token": refresh_token,
                    },
                    headers={"Accept": "application/json"},
                    timeout=self._settings.api_timeout_seconds,
                )
            except requests.RequestException as exc:
                raise TokenRefreshError(f"Token endpoint unreachable: {exc}") from exc

            if not response.ok:
                raise TokenRefreshError(f"Token endpoint returned HTTP {response.status_code}")
            try:
                payload = response.json()
            except ValueError as exc:
                raise TokenRefreshError("Token endpoint returned invalid JSON") from exc

            access_token = payload.get("access_token") if isinstance(payload, dict) else None
            expires_in = payload.get("expires_in") if isinstance(payload, dict) else None
            if not isinstance(access_token, str) or not access_token:
                raise TokenRefreshError("Token response is missing access_token")
            if not isinstance(expires_in, (int, float)) or isinstance(expires_in, bool):
                raise TokenRefreshError("Token response is missing expires_in")

            new_refresh = payload.get("refresh_token")
            self.store_tokens(
                access_token,
                refresh_token=new_refresh if isinstance(new_refresh, str) else None,
                expires_in=expires_in,
            )
            logger.info("Access token refreshed; expires in %ss", expires_in)

    def refresh_delay_seconds(self) -> float:
        """Seconds until the next scheduled refresh, never below the minimum delay."""
        minimum = float(self._settings.token_refresh_min_delay_seconds)
        expiration = self.token_expiration
        if expiration is None:
            return minimum
        remaining = (expiration - as_utc(self._clock.now())).total_seconds()
        return max(remaining - self._settings.token_refresh_margin_seconds, minimum)

    def refresh_if_due(self) -> bool:
        """Refresh when the token expires within the configured margin."""
        if self.refresh_token is None:
            return False
        expiration = self.token_expiration
        if expiration is not None:
            remaining = (expiration - as_utc(self._clock.now())).total_seconds()
            if remaining > self._settings.token_refresh_margin_seconds:
                return False
        self.refresh_access_token()
        return True

    def logout(self) -> None:
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRATION_KEY, LOGIN_KEY):
            self._store.delete(key)
        logger.info("Signed out; stored tokens removed")
