from __future__ import annotations

from typing import Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from archiver.errors import DiscoveryError


class BaseSiteHandler:
    """Base class for site-specific handlers.

    A handler knows one website's markup. It supplies the pipeline with two
    things: the chapter listing of a title and the ordered image URLs of one
    chapter. Everything else (numbering, retries, archiving) is shared.
    """

    name: str = "base"
    display_name: str = "Base"
    base_url: str = ""
    domains: tuple[str, ...] = ()

    def matches(self, url: str) -> bool:
        netloc = urlparse(url).netloc.lower()
        return any(domain in netloc for domain in self.domains)

    # --- Session lifecycle -------------------------------------------------
    def configure_session(self, session) -> None:
        """Give the handler a chance to tweak the HTTP session."""
        if self.base_url:
            session.headers.setdefault("Referer", self.base_url + "/")

    # --- Title resolution --------------------------------------------------
    def title_url(self, url: Optional[str] = None, shortname: Optional[str] = None) -> str:
        if url:
            return url
        if shortname:
            return self.shortname_url(shortname.strip("/"))
        raise ValueError("either a title URL or a shortname is required")

    def shortname_url(self, shortname: str) -> str:
        return f"{self.base_url}/manga/{shortname}/"

    # --- Chapter helpers ---------------------------------------------------
    def list_chapters(self, title_url: str, fetcher) -> Dict[str, str]:
        """Return ``{raw chapter token: chapter url}`` for a title."""
        raise NotImplementedError

    def get_chapter_images(self, chapter_url: str, fetcher) -> List[str]:
        """Return the chapter's image URLs in reading order."""
        raise NotImplementedError

    # --- Shared helpers ----------------------------------------------------
    def _make_soup(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "html.parser")

    def _absolute(self, src: str, page_url: str) -> str:
        src = src.strip()
        if src.startswith("//"):
            return "https:" + src
        if src.startswith("http"):
            return src
        return urljoin(page_url, src)

    def _collect_images(
        self,
        soup: BeautifulSoup,
        selectors: Iterable[str],
        page_url: str,
        attrs: Iterable[str] = ("data-src", "data-lazy-src", "data-cfsrc", "src"),
    ) -> List[str]:
        """First selector that yields images wins; duplicates are dropped, order kept."""
        for selector in selectors:
            image_urls: List[str] = []
            for img in soup.select(selector):
                src = next((img.get(a) for a in attrs if (img.get(a) or "").strip()), None)
                if not src:
                    continue
                src = self._absolute(src, page_url)
                if src not in image_urls:
                    image_urls.append(src)
            if image_urls:
                return image_urls
        raise DiscoveryError(f"Unable to locate images for chapter {page_url}")


__all__ = [
    "BaseSiteHandler",
]
