"""Shared transport and error handling for the paper source adapters."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, ClassVar, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from paperdesk import __version__
from paperdesk.errors import (
    ApiError,
    AppError,
    NetworkError,
    RequestTimeoutError,
    Result,
    ValidationError,
    failure,
    normalize_error,
    success,
)
from paperdesk.models import Paper, PaperSource, SearchCriteria
from paperdesk.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

USER_AGENT = f"PaperDesk/{__version__} (academic paper reader)"

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AppError) and exc.retryable


class PaperSourceClient(ABC):
    """Capability interface implemented once per paper source.

    Public methods never raise: transport, HTTP and parse failures come
    back as failed :class:`Result` values tagged with an error code.
    """

    source: ClassVar[PaperSource]

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        max_results: int = 50,
        retries: int = 3,
        requests_per_second: float = 0.0,
        http_client: httpx.AsyncClient | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_results = max_results
        self.retries = max(1, retries)
        self._limiter = RateLimiter(requests_per_second)
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=30)
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                timeout=self.timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PaperSourceClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ---------- capability surface ----------

    @abstractmethod
    async def search(self, criteria: SearchCriteria) -> Result[list[Paper]]:
        """Search this source, returning normalized papers."""

    async def get_by_id(self, paper_id: str) -> Result[Paper | None]:
        return failure(
            ValidationError(
                f"{self.source.value} does not support lookup by id",
                {"source": self.source.value, "operation": "get_by_id", "id": paper_id},
            )
        )

    async def get_by_doi(self, doi: str) -> Result[Paper | None]:
        return failure(
            ValidationError(
                f"{self.source.value} does not support lookup by DOI",
                {"source": self.source.value, "operation": "get_by_doi", "doi": doi},
            )
        )

    # ---------- transport helpers ----------

    async def _get(self, operation: str, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET with rate limiting and retries on transient failures.

        ``timeout_seconds`` bounds the whole call, retry waits included.
        Raises :class:`AppError` subclasses; callers wrap with :meth:`_guard`.
        """
        try:
            return await asyncio.wait_for(
                self._get_with_retries(operation, url, params),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            raise RequestTimeoutError(operation, self.timeout_seconds) from e

    async def _get_with_retries(self, operation: str, url: str, params: dict[str, Any] | None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self._limiter.acquire()
                return await self._request_once(operation, url, params)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _request_once(self, operation: str, url: str, params: dict[str, Any] | None) -> httpx.Response:
        logger.debug("%s %s: GET %s params=%s", self.source.value, operation, url, params)
        try:
            response = await self.client.get(url, params=params, timeout=self.timeout_seconds)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(operation, self.timeout_seconds) from e
        except httpx.TransportError as e:
            raise NetworkError(
                "Network request failed - no response",
                {"source": self.source.value, "operation": operation, "error": str(e)},
            ) from e

        if not response.is_success:
            raise ApiError(
                f"{self._display_name} API error: {response.status_code} {response.reason_phrase}",
                response.status_code,
                {
                    "source": self.source.value,
                    "operation": operation,
                    "status_code": response.status_code,
                    "url": url,
                },
            )
        return response

    async def _guard(self, operation: str, work: Awaitable[T]) -> Result[T]:
        """Run *work*, converting any exception into a failed Result."""
        try:
            return success(await work)
        except AppError as e:
            logger.error("%s %s failed: %s", self.source.value, operation, e.message)
            return failure(e)
        except Exception as e:
            logger.exception("%s %s failed unexpectedly", self.source.value, operation)
            return failure(normalize_error(e, f"{self._display_name} {operation} failed: {e}"))

    @property
    def _display_name(self) -> str:
        return {"arxiv": "ArXiv", "biorxiv": "BioRxiv"}.get(self.source.value, self.source.value)
