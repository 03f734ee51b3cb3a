"""Site handlers for the archiver."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .base import BaseSiteHandler
from .madara import KunMangaSiteHandler, ManhuaUSSiteHandler
from .mangathemesia import RavenScansSiteHandler, RizzFablesSiteHandler
from .mgeko import MgekoSiteHandler

_REGISTERED_HANDLERS: Iterable[BaseSiteHandler] = (
    KunMangaSiteHandler(),
    ManhuaUSSiteHandler(),
    RizzFablesSiteHandler(),
    RavenScansSiteHandler(),
    MgekoSiteHandler(),
)


def available_sites() -> List[BaseSiteHandler]:
    return sorted(_REGISTERED_HANDLERS, key=lambda h: h.name)


def get_handler_by_name(name: str) -> Optional[BaseSiteHandler]:
    lowered = name.lower()
    for handler in _REGISTERED_HANDLERS:
        if handler.name == lowered:
            return handler
    return None


def get_handler_for_url(url: str) -> Optional[BaseSiteHandler]:
    for handler in _REGISTERED_HANDLERS:
        if handler.matches(url):
            return handler
    return None


__all__ = [
    "available_sites",
    "get_handler_by_name",
    "get_handler_for_url",
    "BaseSiteHandler",
]
