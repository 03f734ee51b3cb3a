"""
Chapter archival pipeline.

``ChapterPipeline`` ties a site handler to the shared machinery: it lists the
title's chapters, drops the ones already archived in the destination
directory, and turns every remaining chapter into ``<key>.cbz``. Per-image
and per-chapter failures are logged and recorded in the ``RunSummary``;
only resource problems (no scratch space, unusable destination) abort a run.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from .archive import build_archive, build_comic_info_xml, list_local_archives, scratch_directory
from .chapters import (
    ChapterEntry,
    build_chapter_map,
    chapter_number,
    filter_range,
    reconcile,
    strip_archive_suffix,
)
from .errors import (
    ArchiveError,
    DiscoveryError,
    FetchCancelled,
    FetchError,
    ImageError,
)
from .images import DEFAULT_JPEG_QUALITY, detect_format, to_jpeg


class ChapterStatus(enum.Enum):
    ARCHIVED = "archived"
    SKIPPED = "skipped"
    EMPTY = "empty"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ChapterResult:
    key: str
    status: ChapterStatus
    pages: int = 0
    failed_images: int = 0
    error: Optional[str] = None

    def describe(self) -> str:
        text = f"{self.key}: {self.status.value}"
        if self.pages or self.failed_images:
            text += f" ({self.pages} pages, {self.failed_images} failed images)"
        if self.error:
            text += f" - {self.error}"
        return text


@dataclass
class RunSummary:
    results: List[ChapterResult] = field(default_factory=list)

    def count(self, status: ChapterStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def ok(self) -> bool:
        return not any(
            r.status in (ChapterStatus.FAILED, ChapterStatus.EMPTY) for r in self.results
        )

    def report(self) -> List[str]:
        lines = [r.describe() for r in self.results]
        totals = ", ".join(f"{self.count(s)} {s.value}" for s in ChapterStatus)
        lines.append(f"{len(self.results)} chapter(s): {totals}")
        return lines


@dataclass
class PipelineConfig:
    dest_dir: str = "."
    quality: int = DEFAULT_JPEG_QUALITY
    workers: int = 1
    image_delay: float = 0.0
    comic_info: bool = False
    series: str = ""
    start: int = 0
    end: int = 0
    scratch_root: Optional[str] = None


class ChapterPipeline:
    def __init__(
        self,
        handler,
        fetcher,
        config: Optional[PipelineConfig] = None,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.handler = handler
        self.fetcher = fetcher
        self.config = config or PipelineConfig()
        self.cancel_event = cancel_event or fetcher.cancel_event
        self.log = logger or logging.getLogger(__name__)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    # --- Planning --------------------------------------------------------
    def plan(self, title_url: str) -> List[ChapterEntry]:
        """The ordered work queue: remote chapters not yet archived, within range."""
        try:
            raw_chapters = self.handler.list_chapters(title_url, self.fetcher)
        except FetchCancelled:
            raise
        except (FetchError, DiscoveryError) as e:
            raise DiscoveryError(f"cannot list chapters of {title_url}: {e}") from e

        remote = build_chapter_map(raw_chapters, self.log)
        local = {strip_archive_suffix(n) for n in list_local_archives(self.config.dest_dir)}
        queue = filter_range(reconcile(remote, local), self.config.start, self.config.end)
        self.log.info(
            "Found %d chapter(s), %d already archived, %d to download",
            len(remote),
            len(remote.keys() & local),
            len(queue),
        )
        return queue

    def run(self, title_url: str) -> RunSummary:
        os.makedirs(self.config.dest_dir, exist_ok=True)
        queue = self.plan(title_url)
        summary = RunSummary()

        if self.config.workers <= 1:
            for entry in queue:
                summary.results.append(self.archive_chapter(entry))
            return summary

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = [pool.submit(self.archive_chapter, entry) for entry in queue]
            try:
                for future in futures:
                    summary.results.append(future.result())
            except BaseException:
                self.cancel_event.set()
                raise
        return summary

    # --- One chapter -----------------------------------------------------
    def archive_chapter(self, entry: ChapterEntry) -> ChapterResult:
        final_path = os.path.join(self.config.dest_dir, entry.filename)
        if self.cancelled:
            return ChapterResult(entry.key, ChapterStatus.CANCELLED)
        if os.path.exists(final_path):
            self.log.info("Chapter %s already archived, skipping", entry.key)
            return ChapterResult(entry.key, ChapterStatus.SKIPPED)

        self.log.info("Chapter %s (%s)", entry.key, entry.url)
        try:
            image_urls = self.handler.get_chapter_images(entry.url, self.fetcher)
        except FetchCancelled:
            return ChapterResult(entry.key, ChapterStatus.CANCELLED)
        except (FetchError, DiscoveryError) as e:
            self.log.error("  Could not list images for %s: %s", entry.key, e)
            return ChapterResult(entry.key, ChapterStatus.FAILED, error=str(e))

        try:
            with scratch_directory(prefix=f"{entry.key}-", root=self.config.scratch_root) as tmp:
                pages, failed = self._download_images(entry, image_urls, tmp)
                if not pages:
                    self.log.warning("  Warning: No images downloaded for %s. Skipping.", entry.key)
                    return ChapterResult(
                        entry.key, ChapterStatus.EMPTY, failed_images=failed, error="no images"
                    )
                if self.config.comic_info:
                    self._write_comic_info(entry, pages, tmp)
                try:
                    build_archive(tmp, final_path)
                except ArchiveError as e:
                    self.log.error("  Could not archive %s: %s", entry.key, e)
                    return ChapterResult(
                        entry.key, ChapterStatus.FAILED, pages, failed, error=str(e)
                    )
        except FetchCancelled:
            self.log.warning("  Chapter %s interrupted, discarding partial download", entry.key)
            return ChapterResult(entry.key, ChapterStatus.CANCELLED)

        self.log.info("  CBZ saved -> %s (%d pages)", entry.filename, pages)
        return ChapterResult(entry.key, ChapterStatus.ARCHIVED, pages, failed)

    def _download_images(self, entry: ChapterEntry, image_urls: List[str], tmp: str):
        """Fetch, check and convert each image into ``tmp`` as ``NNN.jpg``.

        Names follow the position in ``image_urls`` so a skipped image leaves a
        gap rather than shifting later pages.
        """
        state = self.fetcher.image_policy.new_state()
        width = max(3, len(str(len(image_urls))))
        pages = failed = 0
        self.log.debug("  Fetching %d image(s)...", len(image_urls))

        for index, url in enumerate(image_urls, start=1):
            if self.cancelled:
                raise FetchCancelled(f"cancelled during {entry.key}", url)
            if index > 1 and self.config.image_delay > 0:
                if self.cancel_event.wait(self.config.image_delay):
                    raise FetchCancelled(f"cancelled during {entry.key}", url)

            name = f"{index:0{width}d}.jpg"
            try:
                data = self.fetcher.fetch(url, referer=entry.url, state=state)
                jpeg = to_jpeg(data, detect_format(data), self.config.quality)
            except FetchCancelled:
                raise
            except (FetchError, ImageError) as e:
                self.log.warning("  Skipping image %s of %s: %s", name, entry.key, e)
                failed += 1
                continue

            with open(os.path.join(tmp, name), "wb") as fh:
                fh.write(jpeg)
            pages += 1
            self.log.debug("    Saved -> %s", name)
        return pages, failed

    def _write_comic_info(self, entry: ChapterEntry, pages: int, tmp: str) -> None:
        number = ("%f" % chapter_number(entry.key)).rstrip("0").rstrip(".")
        xml = build_comic_info_xml(self.config.series, number, pages, web=entry.url)
        with open(os.path.join(tmp, "ComicInfo.xml"), "w", encoding="utf-8") as fh:
            fh.write(xml)


__all__ = [
    "ChapterStatus",
    "ChapterResult",
    "RunSummary",
    "PipelineConfig",
    "ChapterPipeline",
]
