"""Header injection for outbound Abode REST calls."""

from __future__ import annotations

import logging
from collections.abc import Callable

from .const import (
    API_KEY_HEADER,
    AUTH_PATH_PREFIX,
    SESSION_PATH,
    USER_AGENT,
    RequestClass,
)
from .exceptions import MissingCredentialError
from .models import AuthState

_LOGGER = logging.getLogger(__name__)


def classify_path(path: str) -> RequestClass:
    """Return which secrets a request to ``path`` must carry."""
    if path.startswith(AUTH_PATH_PREFIX):
        return RequestClass.UNAUTHENTICATED
    if path == SESSION_PATH:
        return RequestClass.SESSION_ONLY
    return RequestClass.FULLY_AUTHENTICATED


class RequestInterceptor:
    """Signs requests with the identity headers and the secrets their path needs.

    Every call reads one AuthState snapshot, so all headers of a request come
    from the same state. Nothing here retries: a request lacking a required
    secret fails locally with MissingCredentialError and never hits the wire.
    """

    def __init__(
        self,
        state_getter: Callable[[], AuthState],
        client_id: str,
        *,
        user_agent: str = USER_AGENT,
    ) -> None:
        self._state_getter = state_getter
        self._client_id = client_id
        self.user_agent = user_agent

    def identity_headers(self, state: AuthState | None = None) -> dict[str, str]:
        """Headers sent with every request and the push channel handshake."""
        if state is None:
            state = self._state_getter()
        return {
            "User-Agent": self.user_agent,
            "Cookie": state.cookie_header(self._client_id),
        }

    def build_headers(
        self, path: str, state: AuthState | None = None
    ) -> dict[str, str]:
        """Build the headers for a request to ``path``.

        Args:
            path: API path, e.g. "/api/v1/devices".
            state: Sign with this state instead of the current one (used
                while a login is still assembling its secrets).

        Raises:
            MissingCredentialError: If a secret required by the path's
                request class is empty.
        """
        if state is None:
            state = self._state_getter()
        request_class = classify_path(path)
        _LOGGER.debug("Signing %s request to %s", request_class, path)
        headers = self.identity_headers(state)

        if request_class is RequestClass.UNAUTHENTICATED:
            return headers

        if not state.session_cookie:
            raise MissingCredentialError(f"Missing session for {path}")
        if not state.api_key:
            raise MissingCredentialError(f"Missing API key for {path}")
        headers[API_KEY_HEADER] = state.api_key

        if request_class is RequestClass.SESSION_ONLY:
            return headers

        if not state.oauth_token:
            raise MissingCredentialError(f"Missing OAuth token for {path}")
        headers["Authorization"] = f"Bearer {state.oauth_token}"
        return headers
