"""Shared chapter-archival pipeline: numbering, fetching, conversion and CBZ assembly."""

from .archive import build_archive, list_local_archives, scratch_directory
from .chapters import ChapterEntry, archive_filename, chapter_key, reconcile
from .fetcher import HostLimiter, ResilientFetcher, RetryPolicy, create_session
from .images import ImageFormat, detect_format, to_jpeg
from .pipeline import ChapterPipeline, ChapterStatus, PipelineConfig, RunSummary

__version__ = "1.0.0"

__all__ = [
    "build_archive",
    "list_local_archives",
    "scratch_directory",
    "ChapterEntry",
    "archive_filename",
    "chapter_key",
    "reconcile",
    "HostLimiter",
    "ResilientFetcher",
    "RetryPolicy",
    "create_session",
    "ImageFormat",
    "detect_format",
    "to_jpeg",
    "ChapterPipeline",
    "ChapterStatus",
    "PipelineConfig",
    "RunSummary",
]
