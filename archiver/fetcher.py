"""
HTTP retrieval with retry/backoff.

Every network call of the pipeline goes through ``ResilientFetcher``. One
``RetryPolicy`` value describes how failures are retried; two presets cover
the usual cases:

* ``RetryPolicy.bounded()``: a few attempts with a short fixed delay, for
  images, where losing a page must not stall the run.
* ``RetryPolicy.exponential()``: doubling backoff from 10s up to a 320s
  ceiling, then a bounded number of retries at the ceiling, for chapter and
  listing pages.

Image responses are also sanity-checked: an HTML page served with status 200
or a non-``image/*`` Content-Type never reaches the archive.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional
from urllib.parse import urlparse

import cloudscraper
import requests

from .errors import (
    ContentTypeError,
    ExhaustedRetriesError,
    FetchCancelled,
    FetchError,
    HtmlResponseError,
    HttpStatusError,
)
from .images import looks_like_html

DEFAULT_TIMEOUT = 30

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"

# 525 is Cloudflare's "SSL handshake failed"
RETRYABLE_STATUS = frozenset(list(range(500, 600)) + [525, 429])


@dataclass(frozen=True)
class RetryPolicy:
    initial_delay: float = 10.0
    max_delay: float = 320.0
    max_retries_at_ceiling: int = 3
    backoff_factor: float = 2.0
    success_decay: float = 2.0
    # only consulted for image fetches; page bodies are HTML by nature
    retry_on_html: bool = True

    def __post_init__(self) -> None:
        if self.initial_delay < 0 or self.max_delay < self.initial_delay:
            raise ValueError("require 0 <= initial_delay <= max_delay")
        if self.max_retries_at_ceiling < 1:
            raise ValueError("max_retries_at_ceiling must be at least 1")
        if self.backoff_factor < 1 or self.success_decay < 1:
            raise ValueError("backoff_factor and success_decay must be >= 1")

    @classmethod
    def bounded(cls, attempts: int = 3, delay: float = 2.0) -> "RetryPolicy":
        return cls(
            initial_delay=delay,
            max_delay=delay,
            max_retries_at_ceiling=attempts,
            backoff_factor=1.0,
            retry_on_html=False,
        )

    @classmethod
    def exponential(
        cls,
        initial: float = 10.0,
        ceiling: float = 320.0,
        retries_at_ceiling: int = 3,
    ) -> "RetryPolicy":
        return cls(
            initial_delay=initial,
            max_delay=ceiling,
            max_retries_at_ceiling=retries_at_ceiling,
        )

    def new_state(self) -> "RetryState":
        return RetryState(self)


class RetryState:
    """Backoff bookkeeping for one logical fetch (or one chapter's images)."""

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy
        self.backoff = policy.initial_delay
        self.retries_at_ceiling = 0

    @property
    def at_ceiling(self) -> bool:
        return self.backoff >= self.policy.max_delay

    def next_delay(self) -> Optional[float]:
        """Record a failure and return how long to wait, or None once exhausted."""
        if self.at_ceiling:
            self.retries_at_ceiling += 1
            if self.retries_at_ceiling >= self.policy.max_retries_at_ceiling:
                return None
        delay = self.backoff
        self.backoff = min(self.backoff * self.policy.backoff_factor, self.policy.max_delay)
        return delay

    def start_fetch(self) -> None:
        """Give the next logical fetch a fresh retry budget at the ceiling."""
        self.retries_at_ceiling = 0

    def record_success(self) -> None:
        self.backoff = max(self.policy.initial_delay, self.backoff / self.policy.success_decay)
        self.retries_at_ceiling = 0

    def __repr__(self) -> str:
        return f"RetryState(backoff={self.backoff}, retries_at_ceiling={self.retries_at_ceiling})"


class HostLimiter:
    """Caps the number of in-flight requests to any single host."""

    def __init__(self, max_per_host: int = 1) -> None:
        if max_per_host < 1:
            raise ValueError("max_per_host must be at least 1")
        self.max_per_host = max_per_host
        self._lock = threading.Lock()
        self._slots: Dict[str, threading.BoundedSemaphore] = {}

    @contextmanager
    def slot(self, url: str) -> Iterator[None]:
        host = urlparse(url).netloc.lower()
        with self._lock:
            semaphore = self._slots.get(host)
            if semaphore is None:
                semaphore = threading.BoundedSemaphore(self.max_per_host)
                self._slots[host] = semaphore
        with semaphore:
            yield


class _RetryableFailure(Exception):
    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


class ResilientFetcher:
    def __init__(
        self,
        session,
        image_policy: Optional[RetryPolicy] = None,
        page_policy: Optional[RetryPolicy] = None,
        limiter: Optional[HostLimiter] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Optional[Callable[[float], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.image_policy = image_policy or RetryPolicy.bounded()
        self.page_policy = page_policy or RetryPolicy.exponential()
        self.limiter = limiter or HostLimiter()
        self.cancel_event = cancel_event or threading.Event()
        self.timeout = timeout
        self._sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    # --- public API ------------------------------------------------------
    def fetch(
        self,
        url: str,
        referer: Optional[str] = None,
        expect_image: bool = True,
        state: Optional[RetryState] = None,
    ) -> bytes:
        """Return the body of ``url``, retrying per the image or page policy."""
        return self._fetch_response(url, referer, expect_image, state).content

    def fetch_text(
        self,
        url: str,
        referer: Optional[str] = None,
        state: Optional[RetryState] = None,
    ) -> str:
        return self._fetch_response(url, referer, False, state).text

    def post_text(
        self,
        url: str,
        data: Optional[Dict[str, str]] = None,
        referer: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        """POST form ``data`` (e.g. a WordPress admin-ajax call) and return the body text."""
        return self._fetch_response(
            url, referer, False, None, method="POST", data=data, extra_headers=headers
        ).text

    # --- internals -------------------------------------------------------
    def _fetch_response(
        self, url, referer, expect_image, state, method="GET", data=None, extra_headers=None
    ):
        policy = self.image_policy if expect_image else self.page_policy
        if state is None:
            state = policy.new_state()
        state.start_fetch()

        attempt = 0
        while True:
            if self.cancel_event.is_set():
                raise FetchCancelled(f"cancelled before fetching {url}", url)
            attempt += 1
            try:
                response = self._attempt(
                    url, referer, expect_image, policy, method, data, extra_headers
                )
            except _RetryableFailure as failure:
                delay = state.next_delay()
                if delay is None:
                    raise ExhaustedRetriesError(url, attempt, failure.error) from failure.error
                self.log.warning(
                    "Attempt %d failed for %s: %s. Backing off for %.1fs",
                    attempt,
                    url,
                    failure.error,
                    delay,
                )
                self._wait(delay, url)
                continue

            state.record_success()
            self.log.debug("Attempt %d: fetched %s", attempt, url)
            return response

    def _attempt(self, url, referer, expect_image, policy, method="GET", data=None, extra_headers=None):
        headers = {"Accept": IMAGE_ACCEPT} if expect_image else {}
        if extra_headers:
            headers.update(extra_headers)
        if referer:
            headers["Referer"] = referer

        with self.limiter.slot(url):
            try:
                response = self.session.request(
                    method, url, headers=headers, data=data, timeout=self.timeout
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                raise _RetryableFailure(e)
            except requests.exceptions.RequestException as e:
                raise FetchError(f"request failed for {url}: {e}", url) from e

        status = response.status_code
        if status in RETRYABLE_STATUS:
            raise _RetryableFailure(HttpStatusError(status, url))
        if status != 200:
            raise HttpStatusError(status, url)

        if expect_image:
            if looks_like_html(response.content):
                error = HtmlResponseError(f"received HTML instead of image for {url}", url)
                if policy.retry_on_html:
                    raise _RetryableFailure(error)
                raise error
            content_type = response.headers.get("Content-Type", "")
            if not content_type.lower().startswith("image/"):
                raise ContentTypeError(content_type, url)
        return response

    def _wait(self, delay: float, url: str) -> None:
        if self._sleep is not None:
            self._sleep(delay)
            interrupted = self.cancel_event.is_set()
        else:
            interrupted = self.cancel_event.wait(delay)
        if interrupted:
            raise FetchCancelled(f"cancelled while backing off on {url}", url)


# --- Session construction ---------------------------------------------------
def parse_cookies(cookie_str: str) -> Dict[str, str]:
    """``"a=1; b=2"`` -> ``{"a": "1", "b": "2"}``."""
    return dict(
        (k.strip(), v.strip())
        for k, v in (kv.split("=", 1) for kv in cookie_str.split(";") if "=" in kv)
    )


def create_session(cookies: str = "", logger: Optional[logging.Logger] = None):
    """Build the HTTP session: a cloudscraper scraper, or requests.Session if it fails."""
    log = logger or logging.getLogger(__name__)
    session = None
    try:
        session = cloudscraper.create_scraper(
            browser={
                "browser": "chrome",
                "platform": "darwin",
                "mobile": False,
            }
        )
    except Exception as e:
        log.info("cloudscraper init failed (%s). Falling back to requests.Session()", e)
    if session is None:
        session = requests.Session()
        session.headers.update({"User-Agent": USER_AGENT})
    session.headers.update({"Accept-Language": "en-US,en;q=0.9"})
    if cookies:
        session.cookies.update(parse_cookies(cookies))
    return session


__all__ = [
    "DEFAULT_TIMEOUT",
    "RETRYABLE_STATUS",
    "RetryPolicy",
    "RetryState",
    "HostLimiter",
    "ResilientFetcher",
    "parse_cookies",
    "create_session",
]
