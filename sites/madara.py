from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from archiver.errors import DiscoveryError, FetchError

from .base import BaseSiteHandler

log = logging.getLogger(__name__)

_HAS_DIGIT = re.compile(r"\d")


class MadaraSiteHandler(BaseSiteHandler):
    """
    Shared scraper for Madara (WP-Manga) based sites.

    KunManga and ManhuaUS both serve the stock Madara markup: chapters as
    ``li.wp-manga-chapter`` entries (inline, or behind the ``ajax/chapters/``
    endpoint) and reader pages with the images inside ``div.reading-content``.
    """

    chapter_selectors: Sequence[str] = (
        "ul.main.version-chap li.wp-manga-chapter > a",
        "li.wp-manga-chapter a",
        "div#chapterlist li a",
    )

    reader_selectors: Sequence[str] = (
        "div.reading-content img",
        "img.wp-manga-chapter-img",
        "div#chapter-images img",
        "div.page-break img",
    )

    def __init__(
        self,
        site_name: str,
        base_url: str,
        display_name: Optional[str] = None,
        extra_domains: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__()
        self.name = site_name
        self.display_name = display_name or site_name
        self.base_url = base_url.rstrip("/")
        netloc = urlparse(self.base_url).netloc
        domains = {netloc}
        if netloc.startswith("www."):
            domains.add(netloc[4:])
        else:
            domains.add(f"www.{netloc}")
        if extra_domains:
            domains.update(extra_domains)
        self.domains = tuple(sorted(domains))

    # ------------------------------------------------------------------ helpers
    def _chapter_token(self, href: str, text: str) -> str:
        """The chapter slug (``chapter-43-5``) when it carries a number, else the link text."""
        slug = urlparse(href).path.rstrip("/").rsplit("/", 1)[-1]
        if _HAS_DIGIT.search(slug):
            return slug
        return text

    def _collect_chapters(self, soup: BeautifulSoup) -> Dict[str, str]:
        chapters: Dict[str, str] = {}
        for selector in self.chapter_selectors:
            for link in soup.select(selector):
                href = (link.get("href") or "").strip()
                if not href or href.startswith("#"):
                    continue
                href = urljoin(self.base_url + "/", href)
                token = self._chapter_token(href, link.get_text(" ", strip=True))
                chapters.setdefault(token, href)
            if chapters:
                break
        return chapters

    def _load_ajax_chapters(self, soup: BeautifulSoup, title_url: str, fetcher) -> Optional[BeautifulSoup]:
        headers = {"X-Requested-With": "XMLHttpRequest", "Origin": self.base_url}

        # Newer Madara builds: POST <title>/ajax/chapters/
        ajax_chapters_url = urljoin(title_url.rstrip("/") + "/", "ajax/chapters/")
        try:
            html = fetcher.post_text(ajax_chapters_url, referer=title_url, headers=headers)
            if "wp-manga-chapter" in html:
                return self._make_soup(html)
        except FetchError as e:
            log.debug("  ajax/chapters/ failed for %s: %s", title_url, e)

        # Older builds: admin-ajax.php with the post id from the chapter holder
        holder = soup.select_one("#manga-chapters-holder, #chapterlist")
        post_id = holder and (holder.get("data-id") or holder.get("data-post-id"))
        if not post_id:
            return None
        ajax_url = urljoin(self.base_url + "/", "/wp-admin/admin-ajax.php")
        payload = {"action": "manga_get_chapters", "manga": post_id}
        try:
            html = fetcher.post_text(ajax_url, data=payload, referer=title_url, headers=headers)
        except FetchError as e:
            log.debug("  admin-ajax.php failed for %s: %s", title_url, e)
            return None
        if html and html != "0":
            return self._make_soup(html)
        return None

    # ------------------------------------------------------------- base overrides
    def list_chapters(self, title_url: str, fetcher) -> Dict[str, str]:
        soup = self._make_soup(fetcher.fetch_text(title_url))
        chapters = self._collect_chapters(soup)
        if not chapters:
            ajax_soup = self._load_ajax_chapters(soup, title_url, fetcher)
            if ajax_soup is not None:
                chapters = self._collect_chapters(ajax_soup)
        if not chapters:
            raise DiscoveryError(f"no chapter URLs found at {title_url}")
        return chapters

    def get_chapter_images(self, chapter_url: str, fetcher) -> List[str]:
        soup = self._make_soup(fetcher.fetch_text(chapter_url))
        return self._collect_images(soup, self.reader_selectors, chapter_url)


class KunMangaSiteHandler(MadaraSiteHandler):
    def __init__(self) -> None:
        super().__init__("kunmanga", "https://kunmanga.com", display_name="KunManga")


class ManhuaUSSiteHandler(MadaraSiteHandler):
    def __init__(self) -> None:
        super().__init__("manhuaus", "https://manhuaus.com", display_name="ManhuaUS")


__all__ = ["MadaraSiteHandler", "KunMangaSiteHandler", "ManhuaUSSiteHandler"]
