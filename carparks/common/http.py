"""HTTP client with retries, timeouts, and deadline-bounded streaming bodies."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential_jitter,
)

from carparks.common.constants import USER_AGENT
from carparks.common.errors import UpstreamUnavailableError

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 20.0
    read: float = 120.0
    total: float = 120.0

    @classmethod
    def from_config(cls, cfg: dict) -> "TimeoutConfig":
        return cls(
            connect=float(cfg["connect_seconds"]),
            read=float(cfg["read_seconds"]),
            total=float(cfg["total_seconds"]),
        )


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 1
    multiplier: float = 1.0
    max_wait: float = 30.0

    @classmethod
    def from_config(cls, cfg: dict | None) -> "RetryConfig":
        cfg = cfg or {}
        return cls(
            max_attempts=int(cfg.get("max_attempts", 1)),
            multiplier=float(cfg.get("multiplier", 1.0)),
            max_wait=float(cfg.get("max_wait", 30.0)),
        )


class HttpRequestError(UpstreamUnavailableError):
    error_code = "HTTP_ERROR"


class RetryableHttpError(HttpRequestError):
    pass


class FeedTimeoutError(UpstreamUnavailableError):
    error_code = "UPSTREAM_TIMEOUT"


class DeadlineReader:
    """File-like view of a streamed body that fails once the deadline passes.

    The deadline is checked around every chunk. A single stalled socket read
    is bounded by the read timeout, which ``HttpClient`` clamps to the time
    left when the request is opened, so a stream never outlives its deadline
    by more than that.
    """

    def __init__(self, chunks: Iterator[bytes], *, deadline: float, url: str) -> None:
        self._chunks = chunks
        self._deadline = deadline
        self._url = url
        self._buffer = bytearray()
        self._exhausted = False

    def _check_deadline(self) -> None:
        if time.monotonic() > self._deadline:
            raise FeedTimeoutError(f"Deadline exceeded while reading {self._url}")

    def _pull(self) -> None:
        self._check_deadline()
        try:
            chunk = next(self._chunks)
        except StopIteration:
            self._exhausted = True
            return
        except requests.Timeout as exc:
            raise FeedTimeoutError(f"Read timed out for {self._url}") from exc
        except requests.RequestException as exc:
            raise HttpRequestError(f"Stream interrupted for {self._url}") from exc
        self._check_deadline()
        if chunk:
            self._buffer.extend(chunk)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            while not self._exhausted:
                self._pull()
            size = len(self._buffer)
        while len(self._buffer) < size and not self._exhausted:
            self._pull()
        out = bytes(self._buffer[:size])
        del self._buffer[:size]
        return out


class HttpClient:
    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if headers:
            out.update(headers)
        return out

    @staticmethod
    def _check_status(response: requests.Response, url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        response.close()
        error_cls = RetryableHttpError if status in RETRYABLE_STATUS_CODES else HttpRequestError
        raise error_cls(f"{url} answered HTTP {status}")

    def _open_stream(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None,
        timeout: TimeoutConfig,
        deadline: float,
    ) -> requests.Response:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FeedTimeoutError(f"Deadline exceeded before opening {url}")
        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=self._headers(headers),
                timeout=(min(timeout.connect, remaining), min(timeout.read, remaining)),
                stream=True,
            )
        except requests.Timeout as exc:
            raise FeedTimeoutError(f"Timed out connecting to {url}") from exc
        except requests.RequestException as exc:
            raise RetryableHttpError(f"Connection failed for {url}") from exc

        self._check_status(response, url)
        return response

    @contextmanager
    def stream(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> Iterator[DeadlineReader]:
        """Open a GET and yield its body as a deadline-bounded reader."""
        req_timeout = timeout or self.timeout
        deadline = time.monotonic() + req_timeout.total

        @retry(
            stop=stop_after_attempt(self.retry.max_attempts) | stop_after_delay(req_timeout.total),
            wait=wait_exponential_jitter(
                initial=self.retry.multiplier,
                max=self.retry.max_wait,
                jitter=1.0,
            ),
            retry=retry_if_exception_type(RetryableHttpError),
            reraise=True,
        )
        def _wrapped() -> requests.Response:
            return self._open_stream("GET", url, headers=headers, timeout=req_timeout, deadline=deadline)

        response = _wrapped()
        try:
            yield DeadlineReader(response.iter_content(chunk_size=chunk_size), deadline=deadline, url=url)
        finally:
            response.close()
