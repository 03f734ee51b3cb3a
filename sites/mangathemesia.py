"""Handler for MangaThemesia (``ts_reader``) based sites."""

from __future__ import annotations

import json
import re
from typing import Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from archiver.errors import DiscoveryError

from .base import BaseSiteHandler

_TS_READER_RE = re.compile(r"ts_reader\.run\((\{.*?\})\);", re.DOTALL)


def _ts_reader_object(html: str) -> Optional[str]:
    """The ``{...}`` argument of ``ts_reader.run(``, matched by brace depth."""
    marker = html.find("ts_reader.run(")
    if marker == -1:
        return None
    begin = marker + len("ts_reader.run(")
    depth = 0
    quoted = escaped = False
    for pos, ch in enumerate(html[begin:], start=begin):
        if quoted:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                quoted = False
        elif ch == '"':
            quoted = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return html[begin : pos + 1]
    return None


def _normalize_ts_json(raw: str) -> str:
    """Convert common JS literals (e.g. !0) into valid JSON."""
    return raw.replace("!0", "true").replace("!1", "false")


def extract_ts_reader_images(html: str) -> List[str]:
    """Image URLs of the first source in a ``ts_reader.run({...})`` call."""
    candidates = []
    match = _TS_READER_RE.search(html)
    if match:
        candidates.append(match.group(1))
    balanced = _ts_reader_object(html)
    if balanced:
        candidates.append(balanced)

    for raw in candidates:
        try:
            data = json.loads(_normalize_ts_json(raw))
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        sources = data.get("sources") or []
        if not isinstance(sources, list) or not sources or not isinstance(sources[0], dict):
            continue
        if isinstance(sources[0].get("images"), list):
            return [src for src in sources[0]["images"] if src]
    return []


class MangaThemesiaSiteHandler(BaseSiteHandler):
    """Base handler for MangaThemesia framework sites."""

    chapter_selectors: Sequence[str] = ("div.eplister ul li", "#chapterlist li")
    reader_selectors: Sequence[str] = ("#readerarea img", "img.ts-main-image")

    def __init__(
        self,
        name: str,
        display_name: str,
        base_url: str,
        domains: Tuple[str, ...],
        image_filter: Optional[str] = None,
    ):
        self.name = name
        self.display_name = display_name
        self.base_url = base_url.rstrip("/")
        self.domains = domains
        self.image_filter = image_filter

    def shortname_url(self, shortname: str) -> str:
        return f"{self.base_url}/series/{shortname}/"

    def _chapter_token(self, item, link) -> Optional[str]:
        num = (item.get("data-num") or "").strip()
        if num:
            return num
        label = item.select_one(".chapternum")
        text = label.get_text(" ", strip=True) if label else link.get_text(" ", strip=True)
        return text or None

    def list_chapters(self, title_url: str, fetcher) -> Dict[str, str]:
        soup = self._make_soup(fetcher.fetch_text(title_url))
        chapters: Dict[str, str] = {}
        for selector in self.chapter_selectors:
            for item in soup.select(selector):
                link = item if item.name == "a" else item.select_one("a")
                if not link or not link.get("href"):
                    continue
                token = self._chapter_token(item, link)
                if token:
                    chapters.setdefault(token, self._absolute(link["href"], title_url))
            if chapters:
                break
        if not chapters:
            raise DiscoveryError(f"no chapter URLs found at {title_url}")
        return chapters

    def _keep(self, src: str) -> bool:
        return not self.image_filter or self.image_filter in src

    def get_chapter_images(self, chapter_url: str, fetcher) -> List[str]:
        html = fetcher.fetch_text(chapter_url)
        images = [
            self._absolute(src, chapter_url)
            for src in extract_ts_reader_images(html)
            if self._keep(src)
        ]
        if images:
            return list(dict.fromkeys(images))

        soup: BeautifulSoup = self._make_soup(html)
        images = [
            src
            for src in self._collect_images(soup, self.reader_selectors, chapter_url)
            if self._keep(src)
        ]
        if not images:
            raise DiscoveryError(f"Unable to locate images for chapter {chapter_url}")
        return images


class RizzFablesSiteHandler(MangaThemesiaSiteHandler):
    def __init__(self) -> None:
        super().__init__(
            name="rizzfables",
            display_name="RizzFables",
            base_url="https://rizzfables.com",
            domains=("rizzfables.com", "www.rizzfables.com"),
            image_filter="/wp-content/uploads",
        )


class RavenScansSiteHandler(MangaThemesiaSiteHandler):
    def __init__(self) -> None:
        super().__init__(
            name="ravenscans",
            display_name="RavenScans",
            base_url="https://ravenscans.com",
            domains=("ravenscans.com", "www.ravenscans.com"),
        )


__all__ = [
    "MangaThemesiaSiteHandler",
    "RizzFablesSiteHandler",
    "RavenScansSiteHandler",
    "extract_ts_reader_images",
]
