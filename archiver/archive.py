"""Scratch directories and CBZ assembly."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import xml.sax.saxutils
import zipfile
from contextlib import contextmanager
from typing import Iterator, List, Optional, Set

from .chapters import ARCHIVE_SUFFIX
from .errors import ArchiveError, ScratchDirectoryError

PART_SUFFIX = ".part"

log = logging.getLogger(__name__)


def rm_tree(path: str) -> None:
    log.debug("  Cleaning up temporary directory: %s", path)
    shutil.rmtree(path, ignore_errors=True)


@contextmanager
def scratch_directory(prefix: str = "chapter-", root: Optional[str] = None) -> Iterator[str]:
    """Yield a fresh private directory that is removed however the block exits."""
    try:
        path = tempfile.mkdtemp(prefix=prefix, dir=root)
    except OSError as e:
        raise ScratchDirectoryError(f"cannot create scratch directory: {e}") from e
    try:
        yield path
    finally:
        rm_tree(path)


def list_local_archives(dir_path: str) -> Set[str]:
    """Names of the ``.cbz`` files directly inside ``dir_path``."""
    if not os.path.isdir(dir_path):
        return set()
    with os.scandir(dir_path) as entries:
        return {
            entry.name
            for entry in entries
            if entry.is_file() and entry.name.lower().endswith(ARCHIVE_SUFFIX)
        }


def _sorted_files(source_dir: str) -> List[str]:
    with os.scandir(source_dir) as entries:
        return sorted(entry.name for entry in entries if entry.is_file())


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("  Could not remove partial archive %s: %s", path, e)


def build_archive(source_dir: str, archive_path: str) -> List[str]:
    """
    Zip the regular files of ``source_dir`` into ``archive_path``.

    Entries are written in lexicographic filename order, which is page order
    for zero-padded ``NNN.jpg`` names. Subdirectories are ignored. The archive
    is assembled next to its destination and only renamed into place once it
    is complete; an existing archive is never replaced.

    Returns the entry names in archive order.
    """
    try:
        names = _sorted_files(source_dir)
    except OSError as e:
        raise ArchiveError(f"cannot list {source_dir}: {e}") from e

    part_path = archive_path + PART_SUFFIX
    replaced = False
    try:
        with zipfile.ZipFile(part_path, "w", zipfile.ZIP_DEFLATED) as zf:
            for name in names:
                zf.write(os.path.join(source_dir, name), arcname=name)
        if os.path.exists(archive_path):
            raise ArchiveError(f"{archive_path} already exists, not overwriting")
        os.replace(part_path, archive_path)
        replaced = True
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"cannot write {archive_path}: {e}") from e
    finally:
        if not replaced:
            _discard(part_path)

    log.debug("  Wrote %d entries to %s", len(names), archive_path)
    return names


def build_comic_info_xml(series: str, number: str, page_count: int, web: str = "") -> str:
    """ComicInfo.xml content for a single chapter archive."""

    def escape(s):
        return xml.sax.saxutils.escape(s) if s else ""

    return f'''<?xml version="1.0" encoding="utf-8"?>
<ComicInfo xmlns:xsd="http://www.w3.org/2001/XMLSchema" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
    <Series>{escape(series)}</Series>
    <Number>{escape(number)}</Number>
    <PageCount>{page_count}</PageCount>
    <Web>{escape(web)}</Web>
</ComicInfo>
'''


__all__ = [
    "PART_SUFFIX",
    "rm_tree",
    "scratch_directory",
    "list_local_archives",
    "build_archive",
    "build_comic_info_xml",
]
