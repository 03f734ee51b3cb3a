# FILE: tests/test_fetcher.py

import threading

import pytest
import requests

from archiver.errors import (
    ContentTypeError,
    ExhaustedRetriesError,
    FetchCancelled,
    FetchError,
    HtmlResponseError,
    HttpStatusError,
)
from archiver.fetcher import HostLimiter, RetryPolicy, RetryState, parse_cookies
from conftest import FakeResponse, FakeSession, html_response, image_response

IMG = "https://cdn.example.com/ch1/001.png"
PAGE = "https://example.com/manga/title/chapter-1/"


# --- RetryState ----------------------------------------------------------
def test_exponential_backoff_doubles_to_ceiling_then_counts_retries():
    state = RetryState(RetryPolicy.exponential(initial=10, ceiling=320, retries_at_ceiling=3))
    delays = []
    while True:
        delay = state.next_delay()
        if delay is None:
            break
        delays.append(delay)

    assert delays == [10, 20, 40, 80, 160, 320, 320]
    assert state.retries_at_ceiling == 3


def test_success_halves_backoff_with_floor():
    state = RetryState(RetryPolicy.exponential(initial=10, ceiling=320))
    for _ in range(4):
        state.next_delay()
    assert state.backoff == 160

    state.record_success()
    assert state.backoff == 80
    for _ in range(5):
        state.record_success()
    assert state.backoff == 10
    assert state.retries_at_ceiling == 0


def test_bounded_policy_gives_fixed_number_of_attempts():
    state = RetryState(RetryPolicy.bounded(attempts=3, delay=2.0))
    assert [state.next_delay(), state.next_delay(), state.next_delay()] == [2.0, 2.0, None]


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(initial_delay=5, max_delay=1)
    with pytest.raises(ValueError):
        RetryPolicy(max_retries_at_ceiling=0)


# --- ResilientFetcher ----------------------------------------------------
def test_503_twice_then_success_returns_body_and_resets(make_fetcher, sleeper, png_bytes):
    session = FakeSession()
    session.add(
        IMG,
        FakeResponse(503),
        FakeResponse(503),
        image_response(png_bytes, "image/png"),
    )
    fetcher = make_fetcher(session, image_policy=RetryPolicy.exponential(initial=1, ceiling=8))

    assert fetcher.fetch(IMG) == png_bytes
    assert sleeper.delays == [1, 2]

    # the next logical fetch starts again from the initial delay
    other = "https://cdn.example.com/ch1/002.png"
    session.add(other, FakeResponse(502), image_response(png_bytes, "image/png"))
    fetcher.fetch(other)
    assert sleeper.delays == [1, 2, 1]


def test_525_is_retryable(make_fetcher, jpeg_bytes):
    session = FakeSession({IMG: [FakeResponse(525), image_response(jpeg_bytes)]})
    assert make_fetcher(session).fetch(IMG) == jpeg_bytes


def test_shared_state_decays_after_degraded_period(make_fetcher, png_bytes):
    session = FakeSession({IMG: [FakeResponse(500), FakeResponse(500), image_response(png_bytes)]})
    policy = RetryPolicy.exponential(initial=1, ceiling=64)
    fetcher = make_fetcher(session, image_policy=policy)
    state = policy.new_state()

    fetcher.fetch(IMG, state=state)
    assert state.backoff == 2


def test_html_body_with_200_is_a_failure(make_fetcher):
    body = "<html><body>Too many requests</body></html>"
    session = FakeSession({IMG: [FakeResponse(200, body.encode(), {"Content-Type": "image/jpeg"})]})

    with pytest.raises(HtmlResponseError):
        make_fetcher(session).fetch(IMG)
    assert len(session.calls) == 1


def test_html_body_is_retried_when_policy_says_so(make_fetcher, sleeper, jpeg_bytes):
    session = FakeSession(
        {IMG: [html_response("<!DOCTYPE html><html></html>"), image_response(jpeg_bytes)]}
    )
    fetcher = make_fetcher(session, image_policy=RetryPolicy.exponential(initial=1, ceiling=4))

    assert fetcher.fetch(IMG) == jpeg_bytes
    assert sleeper.delays == [1]


def test_non_image_content_type_is_hard_failure(make_fetcher, jpeg_bytes):
    session = FakeSession({IMG: [FakeResponse(200, jpeg_bytes, {"Content-Type": "application/json"})]})

    with pytest.raises(ContentTypeError):
        make_fetcher(session).fetch(IMG)
    assert len(session.calls) == 1


def test_client_error_is_not_retried(make_fetcher, sleeper):
    session = FakeSession({IMG: [FakeResponse(404)]})

    with pytest.raises(HttpStatusError) as excinfo:
        make_fetcher(session).fetch(IMG)
    assert excinfo.value.status_code == 404
    assert sleeper.delays == []


def test_exhausted_retries(make_fetcher, sleeper):
    session = FakeSession({IMG: [FakeResponse(503)]})

    with pytest.raises(ExhaustedRetriesError) as excinfo:
        make_fetcher(session).fetch(IMG)
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.last_error, HttpStatusError)
    assert len(session.calls) == 3
    assert sleeper.delays == [0.5, 0.5]


def test_connection_errors_are_retried(make_fetcher, jpeg_bytes):
    session = FakeSession(
        {IMG: [requests.exceptions.ConnectionError("reset"), requests.exceptions.Timeout("slow"), image_response(jpeg_bytes)]}
    )
    assert make_fetcher(session).fetch(IMG) == jpeg_bytes


def test_other_request_errors_are_hard_failures(make_fetcher):
    session = FakeSession({IMG: [requests.exceptions.InvalidURL("bad")]})
    with pytest.raises(FetchError):
        make_fetcher(session).fetch(IMG)
    assert len(session.calls) == 1


def test_referer_and_accept_headers(make_fetcher, jpeg_bytes):
    session = FakeSession({IMG: [image_response(jpeg_bytes)]})
    make_fetcher(session).fetch(IMG, referer=PAGE)

    _, _, headers, _ = session.calls[0]
    assert headers["Referer"] == PAGE
    assert headers["Accept"].startswith("image/")


def test_fetch_text_skips_image_checks(make_fetcher):
    session = FakeSession({PAGE: [html_response("<html><body>chapter</body></html>")]})
    assert "chapter" in make_fetcher(session).fetch_text(PAGE)


def test_post_text_sends_form_data(make_fetcher):
    url = "https://example.com/wp-admin/admin-ajax.php"
    session = FakeSession({url: [html_response("<li class='wp-manga-chapter'></li>")]})
    make_fetcher(session).post_text(url, data={"action": "manga_get_chapters", "manga": "7"})

    method, _, _, data = session.calls[0]
    assert method == "POST"
    assert data == {"action": "manga_get_chapters", "manga": "7"}


def test_cancelled_fetch_does_not_start(make_fetcher):
    event = threading.Event()
    event.set()
    session = FakeSession()
    with pytest.raises(FetchCancelled):
        make_fetcher(session, cancel_event=event).fetch(IMG)
    assert session.calls == []


def test_backoff_sleep_is_cancellable():
    event = threading.Event()
    session = FakeSession({PAGE: [FakeResponse(503)]})

    def cancel_during_sleep(seconds):
        event.set()

    from archiver.fetcher import ResilientFetcher

    fetcher = ResilientFetcher(session, cancel_event=event, sleep=cancel_during_sleep)
    with pytest.raises(FetchCancelled):
        fetcher.fetch_text(PAGE)
    assert len(session.calls) == 1


def test_default_sleep_waits_on_cancel_event():
    event = threading.Event()
    session = FakeSession({PAGE: [FakeResponse(503)]})
    from archiver.fetcher import ResilientFetcher

    fetcher = ResilientFetcher(
        session, page_policy=RetryPolicy.exponential(initial=30, ceiling=60), cancel_event=event
    )
    timer = threading.Timer(0.05, event.set)
    timer.start()
    try:
        with pytest.raises(FetchCancelled):
            fetcher.fetch_text(PAGE)
    finally:
        timer.cancel()


# --- HostLimiter / cookies -----------------------------------------------
def test_host_limiter_caps_concurrency_per_host():
    limiter = HostLimiter(max_per_host=2)
    active = []
    peak = []
    lock = threading.Lock()
    release = threading.Event()

    def worker():
        with limiter.slot("https://cdn.example.com/a.jpg"):
            with lock:
                active.append(1)
                peak.append(len(active))
            release.wait(0.2)
            with lock:
                active.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert max(peak) <= 2


def test_host_limiter_hosts_are_independent():
    limiter = HostLimiter(max_per_host=1)
    with limiter.slot("https://a.example.com/x"):
        with limiter.slot("https://b.example.com/y"):
            pass


def test_parse_cookies():
    assert parse_cookies("a=1; b = two ;junk; c=x=y") == {"a": "1", "b": "two", "c": "x=y"}


def test_shared_state_gives_each_image_its_own_budget(make_fetcher, jpeg_bytes):
    first = "https://cdn.example.com/ch1/001.jpg"
    second = "https://cdn.example.com/ch1/002.jpg"
    session = FakeSession(
        {first: [FakeResponse(503)], second: [FakeResponse(503), image_response(jpeg_bytes)]}
    )
    fetcher = make_fetcher(session)
    state = fetcher.image_policy.new_state()

    with pytest.raises(ExhaustedRetriesError):
        fetcher.fetch(first, state=state)
    assert fetcher.fetch(second, state=state) == jpeg_bytes


def test_page_fetch_returns_html_without_retrying(make_fetcher, sleeper):
    session = FakeSession({PAGE: [html_response("<!DOCTYPE html><html>listing</html>")]})
    assert "listing" in make_fetcher(session).fetch_text(PAGE)
    assert len(session.calls) == 1
    assert sleeper.delays == []
