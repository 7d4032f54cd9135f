"""Outbound HTTP: user agent, proxy, timeouts, retries and concurrency pools.

Feed and sitemap downloads go through ``HttpClient.get``, which retries
connection errors, timeouts and 5xx responses with exponential backoff and
treats 4xx responses as permanent. LLM calls go through an OpenAI SDK client
built by ``HttpClient.build_llm_client`` with the same user agent, proxy and
attempt ceiling, and are throttled by ``HttpClient.llm_slot``.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

import requests
from openai import DefaultHttpxClient, OpenAI

from common.errors import FetchError

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_SUFFIX = "/chat/completions"

TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


@dataclass(frozen=True)
class HttpSettings:
    user_agent: str = "FilterFlow/1.0 (+news watcher)"
    proxy: str | None = None
    timeout: float = 20.0
    max_attempts: int = 4
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    fetch_concurrency: int = 8
    llm_concurrency: int = 1


def llm_base_url(endpoint: str) -> str:
    """Turn a chat-completions endpoint URL into an OpenAI SDK base URL."""
    base = endpoint.rstrip("/")
    if base.endswith(CHAT_COMPLETIONS_SUFFIX):
        base = base[: -len(CHAT_COMPLETIONS_SUFFIX)]
    return base


class HttpClient:
    """Shared HTTP client with a bounded fetch pool and a narrow LLM pool."""

    def __init__(
        self,
        settings: HttpSettings,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"User-Agent": settings.user_agent})
        if settings.proxy:
            self.session.proxies.update({"http": settings.proxy, "https": settings.proxy})
        self._sleep = sleep
        self._fetch_slots = threading.BoundedSemaphore(settings.fetch_concurrency)
        self._llm_slots = threading.BoundedSemaphore(settings.llm_concurrency)

    def get(self, url: str, timeout: float | None = None) -> bytes:
        """Download a URL and return the response body.

        Raises:
            FetchError: On a 4xx response, or once every attempt has failed.
        """
        with self._fetch_slots:
            response = self._get_with_retries(url, timeout or self.settings.timeout)
        return response.content

    def _get_with_retries(self, url: str, timeout: float) -> requests.Response:
        max_attempts = self.settings.max_attempts
        error: FetchError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self.session.get(url, timeout=timeout)
            except TRANSIENT_ERRORS as exc:
                error = FetchError(url, f"request failed: {exc}")
            except requests.exceptions.RequestException as exc:
                raise FetchError(url, f"invalid request: {exc}") from exc
            else:
                status = response.status_code
                if status < 400:
                    return response
                if status < 500:
                    # Blocked or missing resource, retrying will not help
                    raise FetchError(url, f"HTTP {status}", status=status)
                error = FetchError(url, f"HTTP {status}", status=status)

            if attempt < max_attempts:
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "Attempt %d/%d for %s failed (%s), retrying in %.1fs",
                    attempt, max_attempts, url, error, delay,
                )
                self._sleep(delay)

        logger.error("Giving up on %s after %d attempts", url, max_attempts)
        raise error

    def _backoff_delay(self, attempt: int) -> float:
        delay = self.settings.backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self.settings.max_backoff_seconds)

    @contextmanager
    def llm_slot(self) -> Iterator[None]:
        """Hold one slot of the LLM pool for the duration of a model call."""
        with self._llm_slots:
            yield

    def build_llm_client(self, endpoint: str, api_key: str, timeout: float) -> OpenAI:
        """Build an OpenAI SDK client for a local OpenAI-compatible server.

        The SDK retries connection errors, timeouts, 408/409/429 and 5xx
        responses with exponential backoff and fails fast on other 4xx.
        """
        httpx_kwargs = {"headers": {"User-Agent": self.settings.user_agent}}
        if self.settings.proxy:
            httpx_kwargs["proxy"] = self.settings.proxy

        return OpenAI(
            base_url=llm_base_url(endpoint),
            api_key=api_key,
            timeout=timeout,
            max_retries=max(self.settings.max_attempts - 1, 0),
            default_headers={"User-Agent": self.settings.user_agent},
            http_client=DefaultHttpxClient(**httpx_kwargs),
        )

    def close(self) -> None:
        self.session.close()
