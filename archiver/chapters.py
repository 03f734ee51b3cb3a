"""
Chapter keys and work-queue reconciliation.

A chapter key is the stable, sortable name of one chapter archive:
``ch005``, ``ch043.5`` or ``ch1000``. The integer part is padded to at least
three digits so that plain string order matches reading order for every
chapter below 1000; ``chapter_sort_key`` keeps the order numeric past that.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ChapterKeyError

ARCHIVE_SUFFIX = ".cbz"

_KEY_RE = re.compile(r"^ch(\d+)(?:\.(\d+))?(?:\.cbz)?$", re.IGNORECASE)
# "chapter-43-5", "Chapter 12", "Ch. 7", "chap_3.5" but not the "ch" in "watch-2"
_LABELLED_RE = re.compile(
    r"(?<![a-z])(?:chapter|chap|ch)[\s._-]*(\d+)(?:[._-](\d+))?", re.IGNORECASE
)
_NUMBER_RE = re.compile(r"(\d+)(?:[._-](\d+))?")


@dataclass(frozen=True)
class ChapterEntry:
    key: str
    url: str
    raw: Optional[str] = None

    @property
    def filename(self) -> str:
        return archive_filename(self.key)


def _split_number(raw: str) -> Tuple[str, Optional[str]]:
    token = raw.strip()
    match = _KEY_RE.match(token) or _LABELLED_RE.search(token) or _NUMBER_RE.search(token)
    if not match:
        raise ChapterKeyError(f"cannot parse chapter number from {raw!r}")
    return match.group(1), match.group(2)


def chapter_key(raw: str) -> str:
    """Normalize a chapter token (``"43.5"``, ``".../chapter-43-5/"``) to ``ch043.5``.

    A fractional part made only of zeros is dropped, so ``5.0`` and ``5``
    share the key ``ch005``.
    """
    if raw is None:
        raise ChapterKeyError("chapter token is missing")
    whole, frac = _split_number(str(raw))
    key = "ch%03d" % int(whole)
    if frac and frac.strip("0"):
        key = f"{key}.{frac}"
    return key


def archive_filename(raw: str) -> str:
    return chapter_key(raw) + ARCHIVE_SUFFIX


def strip_archive_suffix(name: str) -> str:
    if name.lower().endswith(ARCHIVE_SUFFIX):
        return name[: -len(ARCHIVE_SUFFIX)]
    return name


def chapter_sort_key(key: str) -> tuple:
    """Numeric ordering for keys and archive filenames; unknown names sort last."""
    match = _KEY_RE.match(key)
    if not match:
        return (1, 0, 0.0, key)
    whole, frac = match.groups()
    return (0, int(whole), float(f"0.{frac}") if frac else 0.0, key)


def chapter_number(key: str) -> float:
    match = _KEY_RE.match(key)
    if not match:
        raise ChapterKeyError(f"{key!r} is not a chapter key")
    whole, frac = match.groups()
    return float(f"{int(whole)}.{frac}") if frac else float(int(whole))


def build_chapter_map(
    raw_chapters: Mapping[str, str], logger: Optional[logging.Logger] = None
) -> Dict[str, str]:
    """Turn a site's ``{raw token: url}`` listing into ``{chapter key: url}``.

    Tokens without a chapter number are logged and left out; when two tokens
    map to the same key the first one listed wins.
    """
    log = logger or logging.getLogger(__name__)
    chapters: Dict[str, str] = {}
    for raw, url in raw_chapters.items():
        try:
            key = chapter_key(raw)
        except ChapterKeyError as e:
            log.warning("Skipping chapter with invalid number: %s", e)
            continue
        if key in chapters:
            log.debug("Duplicate chapter %s (%s), keeping %s", key, url, chapters[key])
            continue
        chapters[key] = url
    return chapters


def reconcile(remote: Mapping[str, str], local: Iterable[str]) -> List[ChapterEntry]:
    """Return the chapters of ``remote`` that are missing locally, in ascending order."""
    pending = set(remote) - set(local)
    return [
        ChapterEntry(key=key, url=remote[key])
        for key in sorted(pending, key=chapter_sort_key)
    ]


def filter_range(
    entries: Iterable[ChapterEntry], start: int = 0, end: int = 0
) -> List[ChapterEntry]:
    """Keep entries whose integer chapter number lies in ``[start, end]``; 0 means open."""
    selected = []
    for entry in entries:
        whole = int(chapter_number(strip_archive_suffix(entry.key)))
        if start and whole < start:
            continue
        if end and whole > end:
            continue
        selected.append(entry)
    return selected


__all__ = [
    "ARCHIVE_SUFFIX",
    "ChapterEntry",
    "chapter_key",
    "archive_filename",
    "strip_archive_suffix",
    "chapter_sort_key",
    "chapter_number",
    "build_chapter_map",
    "reconcile",
    "filter_range",
]
