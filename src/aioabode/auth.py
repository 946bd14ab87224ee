"""Abode session and credential lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import replace

import aiohttp

from .const import (
    API_BASE_URL,
    CLAIMS_PATH,
    LOGIN_PATH,
    RENEW_INTERVAL,
    REQUEST_TIMEOUT,
    SESSION_COOKIE_NAME,
    SESSION_PATH,
    USER_AGENT,
)
from .exceptions import AbodeError, AuthError, ProtocolError
from .interceptor import RequestInterceptor
from .models import AuthState, Credentials
from .transport import AbodeHttp

_LOGGER = logging.getLogger(__name__)


def parse_session_cookie(set_cookies: list[str]) -> str | None:
    """Return the SESSION value from a list of Set-Cookie header values.

    Only the leading name=value pair of each header is a cookie; the
    attributes after it (Path, HttpOnly, Partitioned, ...) are ignored.
    """
    for header in set_cookies:
        name, sep, value = header.split(";", 1)[0].partition("=")
        if not sep or name.strip() != SESSION_COOKIE_NAME:
            continue
        value = value.strip().strip('"')
        if value:
            return value
    return None


class AuthSessionManager:
    """Owns the session cookie, API key and OAuth token of one account.

    The three secrets live in a single immutable AuthState that is swapped
    as a whole, so it is always either fully empty or fully populated.
    Login clears it before the first request goes out; a failed login
    leaves it cleared.

    Usage:
        auth = AuthSessionManager(session)
        await auth.async_initialize("me@example.com", "secret")
        body = await auth.http.async_request_json("GET", "/api/v1/devices")
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str = API_BASE_URL,
        user_agent: str = USER_AGENT,
        request_timeout: float = REQUEST_TIMEOUT,
        renew_interval: float = RENEW_INTERVAL,
    ) -> None:
        """Initialize the manager.

        Args:
            session: aiohttp client session (caller manages lifecycle).
            base_url: API base URL.
            user_agent: User-Agent sent on every request.
            request_timeout: Total timeout in seconds for each REST call.
            renew_interval: Seconds between periodic session renewals.
        """
        self._credentials = Credentials()
        self._client_id = str(uuid.uuid4())
        self._state = AuthState()
        self._renew_interval = renew_interval

        self.interceptor = RequestInterceptor(
            lambda: self._state, self._client_id, user_agent=user_agent
        )
        self.http = AbodeHttp(
            session,
            self.interceptor,
            base_url=base_url,
            request_timeout=request_timeout,
        )

        self._renew_task: asyncio.Task[None] | None = None
        self._renew_loop_task: asyncio.Task[None] | None = None

    # ── Public properties ────────────────────────────────────────────

    @property
    def client_id(self) -> str:
        """Random identifier scoping the session cookie to this client."""
        return self._client_id

    @property
    def state(self) -> AuthState:
        """Snapshot of the current secrets."""
        return self._state

    @property
    def is_authenticated(self) -> bool:
        """Return True if all three secrets are held."""
        return self._state.is_authenticated

    def cookie_header(self) -> str:
        """Cookie header value for the current state, even when empty."""
        return self._state.cookie_header(self._client_id)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def async_initialize(self, email: str, password: str) -> None:
        """Store credentials, sign in and start periodic renewal.

        Raises:
            AuthError: If the initial login fails. Renewal is not started.
        """
        self._credentials = Credentials(email=email, password=password)
        await self.async_login()
        self._start_renewal()

    async def async_close(self) -> None:
        """Stop periodic renewal and any renewal in flight."""
        tasks = [t for t in (self._renew_loop_task, self._renew_task) if t]
        self._renew_loop_task = None
        self._renew_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _start_renewal(self) -> None:
        if self._renew_loop_task is None or self._renew_loop_task.done():
            self._renew_loop_task = asyncio.create_task(self._renew_periodically())

    async def _renew_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._renew_interval)
            await self.async_renew()

    # ── Authentication ───────────────────────────────────────────────

    async def async_login(self) -> None:
        """Sign in with the stored credentials.

        Raises:
            AuthError: If sign in fails. ``err.cause`` holds the
                underlying ProtocolError, TransportError or
                MissingCredentialError.
        """
        if not self._credentials.is_complete:
            raise AuthError("Missing credentials")

        self._state = AuthState()
        _LOGGER.info("Signing into Abode account")
        try:
            state = await self._authenticate()
        except AbodeError as err:
            self._state = AuthState()
            _LOGGER.error("Failed to sign into Abode account: %s", err)
            raise AuthError("Failed to sign into Abode account", cause=err) from err
        self._state = state
        _LOGGER.debug("Signed into Abode account")

    async def _authenticate(self) -> AuthState:
        resp = await self.http.async_request(
            "POST",
            LOGIN_PATH,
            json_data={
                "id": self._credentials.email,
                "password": self._credentials.password,
                "uuid": self._client_id,
            },
        )
        if resp.status != 200:
            raise ProtocolError(
                f"Received {resp.status} response to login", status_code=resp.status
            )

        body = resp.body if isinstance(resp.body, dict) else {}
        api_key = body.get("token")
        if not api_key:
            raise ProtocolError("Login response did not contain an API key")

        session_cookie = parse_session_cookie(resp.set_cookies)
        if not session_cookie:
            raise ProtocolError("Login response did not contain a session")

        # The claims call must present the new session before it is installed.
        pending = AuthState(session_cookie=session_cookie, api_key=api_key)
        oauth_token = await self._fetch_oauth_token(pending)
        return replace(pending, oauth_token=oauth_token)

    async def async_fetch_oauth_token(self) -> str:
        """Fetch a fresh OAuth token. Does not store it.

        Raises:
            ProtocolError: On a non-200 response or an empty token.
        """
        return await self._fetch_oauth_token(None)

    async def _fetch_oauth_token(self, state: AuthState | None) -> str:
        resp = await self.http.async_request("GET", CLAIMS_PATH, state=state)
        if resp.status != 200:
            raise ProtocolError(
                f"Received {resp.status} response to claims", status_code=resp.status
            )
        body = resp.body if isinstance(resp.body, dict) else {}
        oauth_token = body.get("access_token")
        if not oauth_token:
            raise ProtocolError("Claims response did not contain an OAuth token")
        return str(oauth_token)

    async def _fetch_session(self, state: AuthState | None) -> str | None:
        body = await self.http.async_request_json("GET", SESSION_PATH, state=state)
        session_id = body.get("id") if isinstance(body, dict) else None
        return str(session_id) if session_id else None

    # ── Renewal ──────────────────────────────────────────────────────

    async def async_renew(self) -> None:
        """Refresh the token and session, falling back to a full login.

        Never raises. Overlapping calls share one renewal.
        """
        if self._renew_task is None or self._renew_task.done():
            self._renew_task = asyncio.create_task(self._renew())
        await asyncio.shield(self._renew_task)

    async def _renew(self) -> None:
        snapshot = self._state
        if snapshot.is_authenticated:
            _LOGGER.debug("Renewing Abode session")
            try:
                oauth_token = await self._fetch_oauth_token(snapshot)
                session_cookie = await self._fetch_session(snapshot)
            except AbodeError as err:
                _LOGGER.debug("Session renewal failed, signing in again: %s", err)
            else:
                # A login that ran while we were waiting owns the state now.
                if self._state is snapshot:
                    self._state = replace(
                        snapshot,
                        oauth_token=oauth_token,
                        session_cookie=session_cookie or snapshot.session_cookie,
                    )
                else:
                    _LOGGER.debug("Session changed during renewal, discarding result")
                return
        else:
            _LOGGER.debug("No Abode session to renew, signing in")

        try:
            await self.async_login()
        except AuthError as err:
            _LOGGER.warning("Failed to renew Abode session: %s", err)
