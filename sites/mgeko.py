from __future__ import annotations

import re
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlparse

from archiver.errors import DiscoveryError

from .base import BaseSiteHandler

_HAS_DIGIT = re.compile(r"\d")


def manga_name_from_url(url: str) -> str:
    """``https://www.mgeko.cc/manga/monster-eater/all-chapters/`` -> ``monster-eater``."""
    parts = [p for p in urlparse(url).path.split("/") if p]
    for i, part in enumerate(parts):
        if part == "manga" and i + 1 < len(parts):
            return parts[i + 1]
    return ""


class MgekoSiteHandler(BaseSiteHandler):
    name = "mgeko"
    display_name = "Mgeko"
    base_url = "https://www.mgeko.cc"
    domains = ("mgeko.cc", "www.mgeko.cc", "mgeko.com", "www.mgeko.com")

    reader_selectors = ("#chapter-reader img[id^='image-']", "#chapter-reader img")

    def title_url(self, url: Optional[str] = None, shortname: Optional[str] = None) -> str:
        # The series page only shows the latest chapters; the full list lives on all-chapters/
        name = manga_name_from_url(url) if url else (shortname or "").strip("/")
        if not name:
            return super().title_url(url, shortname)
        return self.shortname_url(name)

    def shortname_url(self, shortname: str) -> str:
        return f"{self.base_url}/manga/{shortname}/all-chapters/"

    def list_chapters(self, title_url: str, fetcher) -> Dict[str, str]:
        soup = self._make_soup(fetcher.fetch_text(title_url))
        chapters: Dict[str, str] = {}
        for link in soup.select("ul.chapter-list li a"):
            href = (link.get("href") or "").strip()
            if not href:
                continue
            url = urljoin(self.base_url + "/", href)
            slug = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
            token = slug if _HAS_DIGIT.search(slug) else link.get_text(" ", strip=True)
            chapters.setdefault(token, url)
        if not chapters:
            raise DiscoveryError(f"no chapter URLs found at {title_url}")
        return chapters

    def get_chapter_images(self, chapter_url: str, fetcher) -> List[str]:
        soup = self._make_soup(fetcher.fetch_text(chapter_url))
        return self._collect_images(soup, self.reader_selectors, chapter_url, attrs=("src", "data-src"))


__all__ = ["MgekoSiteHandler", "manga_name_from_url"]
