# FILE: tests/conftest.py

import io
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from PIL import Image

from archiver.fetcher import ResilientFetcher, RetryPolicy


class FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}

    @property
    def text(self):
        return self.content.decode("utf-8", errors="replace")


def image_response(data, content_type="image/jpeg"):
    return FakeResponse(200, data, {"Content-Type": content_type})


def html_response(html, status_code=200):
    return FakeResponse(status_code, html.encode("utf-8"), {"Content-Type": "text/html"})


class FakeSession:
    """Serves scripted responses per URL; the last scripted item repeats."""

    def __init__(self, routes=None):
        self.routes = {url: list(items) for url, items in (routes or {}).items()}
        self.calls = []
        self.headers = {}
        self.cookies = {}

    def add(self, url, *items):
        self.routes.setdefault(url, []).extend(items)

    def request(self, method, url, headers=None, data=None, timeout=None):
        self.calls.append((method, url, dict(headers or {}), data))
        items = self.routes.get(url)
        if not items:
            return FakeResponse(404, b"not found", {"Content-Type": "text/plain"})
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def urls(self):
        return [url for _, url, _, _ in self.calls]


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def _encode(mode, fmt, size=(16, 24), color=None, **save_kwargs):
    img = Image.new(mode, size, color if color is not None else (200, 30, 30))
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes():
    return _encode("RGB", "JPEG")


@pytest.fixture
def png_bytes():
    return _encode("RGB", "PNG")


@pytest.fixture
def rgba_png_bytes():
    return _encode("RGBA", "PNG", color=(0, 0, 255, 0))


@pytest.fixture
def gif_bytes():
    return _encode("P", "GIF", color=3)


@pytest.fixture
def webp_bytes():
    return _encode("RGB", "WEBP")


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_fetcher(sleeper):
    def _make(session, image_policy=None, page_policy=None, **kwargs):
        return ResilientFetcher(
            session,
            image_policy=image_policy or RetryPolicy.bounded(attempts=3, delay=0.5),
            page_policy=page_policy or RetryPolicy.exponential(),
            sleep=sleeper,
            **kwargs,
        )

    return _make
