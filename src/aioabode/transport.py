"""aiohttp transport for Abode REST calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .const import API_BASE_URL, REQUEST_TIMEOUT
from .exceptions import ProtocolError, TransportError
from .interceptor import RequestInterceptor
from .models import AuthState, HttpResponse

_LOGGER = logging.getLogger(__name__)


class AbodeHttp:
    """Runs every REST call through the request interceptor.

    There is no retry here; callers renew the session and re-issue.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        interceptor: RequestInterceptor,
        *,
        base_url: str = API_BASE_URL,
        request_timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._session = session
        self._interceptor = interceptor
        self._base_url = base_url
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    async def async_request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        state: AuthState | None = None,
    ) -> HttpResponse:
        """Make a signed request and return its status, body and cookies.

        Raises:
            MissingCredentialError: If the path needs a secret we don't hold.
            ProtocolError: If the response body is not valid JSON.
            TransportError: If the API could not be reached.
        """
        headers = self._interceptor.build_headers(path, state)
        headers["Accept"] = "application/json"
        if json_data is not None:
            headers["Content-Type"] = "application/json"

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(
                method, url, headers=headers, json=json_data, timeout=self._timeout
            ) as resp:
                set_cookies = list(resp.headers.getall("Set-Cookie", []))
                body = await resp.json(content_type=None)
                _LOGGER.debug("%s %s -> %s", method, path, resp.status)
                return HttpResponse(status=resp.status, body=body, set_cookies=set_cookies)
        except aiohttp.ClientError as err:
            raise TransportError(f"Connection error: {method} {path}: {err}") from err
        except asyncio.TimeoutError as err:
            raise TransportError(f"Timeout: {method} {path}") from err
        except ValueError as err:
            raise ProtocolError(f"Invalid JSON in response: {method} {path}") from err

    async def async_request_json(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        state: AuthState | None = None,
    ) -> Any:
        """Make a signed request that must succeed with status 200.

        Returns:
            The decoded JSON body.

        Raises:
            ProtocolError: If the status is not 200.
        """
        resp = await self.async_request(method, path, json_data=json_data, state=state)
        if resp.status != 200:
            raise ProtocolError(
                f"Received {resp.status} response: {method} {path}",
                status_code=resp.status,
            )
        return resp.body
