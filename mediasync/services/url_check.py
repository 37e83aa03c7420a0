from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from ..models import FolderTree, MediaEntry, Scope
from ..utils.media_variants import Provider
from .comparator import UNFILED, entry_folder_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BrokenUrl:
    media_entry_id: int
    name: str
    folder: str
    url: str
    problem: str


def check_reference_urls(
    media: Iterable[MediaEntry],
    tree: FolderTree,
    *,
    check: Callable[[str], str | None],
    is_cdn_url: Callable[[str], bool],
    scope: Scope | None = None,
) -> list[BrokenUrl]:
    """Resolve every CDN URL of the in-scope reference entries, one request at a time.

    Off-CDN URLs are already reported as invariant violations and are not
    requested. A URL shared by several entries is requested once.
    """
    scope = scope or Scope.all()
    results: dict[str, str | None] = {}
    broken: list[BrokenUrl] = []
    checked = 0
    for entry in sorted(media, key=lambda e: e.id):
        if entry.provider != Provider.cdn_reference:
            continue
        path = entry_folder_path(entry, tree)
        if not scope.includes_image(path, entry.basename):
            continue
        for url in dict.fromkeys(entry.urls()):
            if not url or not is_cdn_url(url):
                continue
            if url not in results:
                results[url] = check(url)
                checked += 1
            problem = results[url]
            if problem is None:
                continue
            logger.warning("Broken CDN URL on id=%s %s: %s (%s)", entry.id, entry.name, url, problem)
            broken.append(
                BrokenUrl(
                    media_entry_id=entry.id,
                    name=entry.name,
                    folder=path if path is not None else UNFILED,
                    url=url,
                    problem=problem,
                )
            )
    logger.info("Checked %s CDN URL(s), %s broken", checked, len(broken))
    return broken


__all__ = ["BrokenUrl", "check_reference_urls"]
