"""Shared HTTP plumbing for the Prometheus and Grafana adapters.

Both backends are read-only JSON APIs reached with GET requests. Transport
errors and throttling responses are retried with exponential backoff; any
other non-2xx status is logged with a truncated body and re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import BackendError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = (429, 502, 503, 504)


class JSONAdapter:
    """Base class for read-only JSON HTTP adapters.

    Parameters
    ----------
    endpoint: str
        Base URL of the backend (e.g., "https://demo.promlabs.com/").
    api_key: Optional[str]
        Optional bearer token for authenticating requests.
    timeout: float
        Request timeout in seconds for all HTTP operations.
    max_retries: int
        Retries after the first attempt for transport errors and
        throttling statuses.
    backoff_initial_ms: int
        Delay before the first retry, in milliseconds.
    backoff_multiplier: float
        Growth factor of the delay between consecutive retries.
    """

    name = "http"

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 30,
        *,
        max_retries: int = 1,
        backoff_initial_ms: int = 200,
        backoff_multiplier: float = 2.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=endpoint, timeout=timeout, headers=self._headers(api_key)
        )
        self._endpoint = endpoint
        self._max_retries = max(0, int(max_retries))
        self._backoff_initial_ms = max(0, int(backoff_initial_ms))
        self._backoff_multiplier = max(1.0, float(backoff_multiplier))
        self._timeout_seconds = timeout
        logger.info(
            f"{self.name}.adapter.init",
            extra={"endpoint": endpoint, "timeout_seconds": timeout},
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JSONAdapter":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @staticmethod
    def _headers(api_key: Optional[str]) -> dict:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _backoff(self, attempt: int) -> float:
        return (self._backoff_initial_ms / 1000.0) * (self._backoff_multiplier**attempt)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` and return the decoded JSON body.

        Raises
        ------
        httpx.HTTPError
            On transport errors that outlast the retries, or non-2xx responses.
        BackendError
            If the response body is not valid JSON.
        """
        logger.debug(f"{self.name}.http.get", extra={"path": path, "params": params})
        attempt = 0
        while True:
            try:
                resp = await self._client.get(path, params=params)
                resp.raise_for_status()
                break
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                if attempt >= self._max_retries:
                    logger.error(
                        f"{self.name}.http.transport_error",
                        extra={
                            "path": path,
                            "attempts": attempt + 1,
                            "error": str(exc),
                            "timeout_seconds": self._timeout_seconds,
                        },
                    )
                    raise
                logger.warning(
                    f"{self.name}.http.retry",
                    extra={"path": path, "attempt": attempt + 1, "error": type(exc).__name__},
                )
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status in _RETRYABLE_STATUS and attempt < self._max_retries:
                    logger.warning(
                        f"{self.name}.http.retry",
                        extra={"path": path, "attempt": attempt + 1, "status": status},
                    )
                else:
                    text = exc.response.text
                    logger.error(
                        f"{self.name}.http.status_error",
                        extra={
                            "path": path,
                            "status": status,
                            "body_preview": text if len(text) <= 500 else text[:500] + "...",
                        },
                    )
                    raise
            await asyncio.sleep(self._backoff(attempt))
            attempt += 1

        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendError(self.name, path, f"invalid JSON body: {exc}") from exc
        logger.debug(
            f"{self.name}.http.response",
            extra={"path": path, "status_code": resp.status_code},
        )
        return data
