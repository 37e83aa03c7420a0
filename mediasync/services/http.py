from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from ..errors import AuthError, RemoteServiceError, TransientNetworkError
from ..retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] or None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            return str(message) if message else None
        if isinstance(error, str):
            return error
        message = payload.get("message")
        return str(message) if message else None
    return None


def raise_for_status(response: httpx.Response, *, service: str, description: str) -> httpx.Response:
    status_code = response.status_code
    if status_code < 400:
        return response
    message = _error_message(response)
    detail = f": {message}" if message else ""
    context = {"service": service, "request": description}
    if status_code in {401, 403}:
        raise AuthError(
            f"{service} rejected credentials with status {status_code}{detail}",
            status_code=status_code,
            context=context,
        )
    if status_code == 429 or status_code >= 500:
        raise TransientNetworkError(
            f"{service} returned status {status_code}{detail}",
            status_code=status_code,
            context=context,
        )
    raise RemoteServiceError(
        f"{service} request failed with status {status_code}{detail}",
        status_code=status_code,
        context=context,
    )


def json_payload(response: httpx.Response, *, service: str) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteServiceError(
            f"{service} returned a non-JSON body",
            status_code=response.status_code,
        ) from exc


class ApiClient:
    """Thin wrapper over `httpx.Client` that maps failures onto the error taxonomy.

    Requests are sequential and throttled by a fixed delay; idempotent calls go
    through the retry policy.
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        service: str,
        retry_policy: RetryPolicy = NO_RETRY,
        request_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self.service = service
        self._retry = retry_policy
        self._request_delay = max(0.0, float(request_delay))
        self._sleep = sleep
        self._requests_sent = 0

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _throttle(self) -> None:
        if self._requests_sent and self._request_delay:
            self._sleep(self._request_delay)

    def _send(self, method: str, url: str, description: str, kwargs: dict[str, Any]) -> httpx.Response:
        self._throttle()
        self._requests_sent += 1
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"{self.service} request timed out",
                context={"service": self.service, "request": description},
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(
                f"Failed to call {self.service}: {exc}",
                context={"service": self.service, "request": description},
            ) from exc
        return raise_for_status(response, service=self.service, description=description)

    def request(
        self,
        method: str,
        url: str,
        *,
        retry: bool = True,
        description: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        label = description or f"{method} {url}"
        if not retry:
            return self._send(method, url, label, kwargs)
        return self._retry.call(
            lambda: self._send(method, url, label, kwargs),
            description=label,
            sleep=self._sleep,
        )

    def get_json(self, url: str, *, description: str | None = None, **kwargs: Any) -> Any:
        response = self.request("GET", url, description=description, **kwargs)
        return json_payload(response, service=self.service)
