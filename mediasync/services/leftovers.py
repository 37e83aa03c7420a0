from __future__ import annotations

import logging
from typing import Iterable, Protocol

from ..models import AssetRecord, MediaEntry
from ..utils.media_variants import Provider, is_cdn_url

logger = logging.getLogger(__name__)


class CdnIndex:
    """Lookup view over the CDN inventory used by leftover strategies."""

    def __init__(
        self,
        assets: Iterable[AssetRecord],
        *,
        cloud_name: str,
        delivery_base_url: str,
        folders: Iterable[str] = (),
    ) -> None:
        self.cloud_name = cloud_name
        self.delivery_base_url = delivery_base_url
        self.basenames: set[str] = set()
        folder_paths: set[str] = set(folders)
        for asset in assets:
            self.basenames.add(asset.basename)
            if asset.folder:
                folder_paths.add(asset.folder)
        self.folder_names: set[str] = {
            segment for path in folder_paths for segment in path.split("/") if segment
        }

    def has_basename(self, basename: str) -> bool:
        return basename in self.basenames

    def is_cdn_url(self, url: str | None) -> bool:
        return is_cdn_url(url, delivery_base_url=self.delivery_base_url, cloud_name=self.cloud_name)


class LeftoverStrategy(Protocol):
    name: str
    heuristic: bool

    def is_leftover(self, entry: MediaEntry, index: CdnIndex) -> str | None:
        ...


class ProviderLeftoverStrategy:
    """Native uploads served off the CDN with no CDN image of the same name."""

    name = "provider"
    heuristic = False

    def is_leftover(self, entry: MediaEntry, index: CdnIndex) -> str | None:
        if entry.provider != Provider.native:
            return None
        if index.is_cdn_url(entry.url):
            return None
        if index.has_basename(entry.basename):
            return None
        return "native_without_cdn_asset"


class NamePrefixLeftoverStrategy:
    """Native uploads whose name starts with a known project prefix.

    Prefixes come from CDN folder names (`haythorne` -> `haythorne_`) plus
    any configured extras.
    """

    name = "name-prefix"
    heuristic = True

    def __init__(self, extra_prefixes: Iterable[str] = ()) -> None:
        self.extra_prefixes = tuple(
            prefix.strip().lower() for prefix in extra_prefixes if prefix.strip()
        )

    def prefixes(self, index: CdnIndex) -> list[str]:
        derived = {f"{name.lower()}_" for name in index.folder_names}
        return sorted(derived.union(self.extra_prefixes), key=lambda p: (-len(p), p))

    def is_leftover(self, entry: MediaEntry, index: CdnIndex) -> str | None:
        if entry.provider != Provider.native:
            return None
        lowered = entry.name.lower()
        for prefix in self.prefixes(index):
            if lowered.startswith(prefix):
                return f"name_prefix:{prefix}"
        return None


class AllOfLeftoverStrategy:
    def __init__(self, *strategies: LeftoverStrategy) -> None:
        if not strategies:
            raise ValueError("AllOfLeftoverStrategy needs at least one strategy")
        self.strategies = strategies
        self.name = "+".join(strategy.name for strategy in strategies)
        self.heuristic = all(strategy.heuristic for strategy in strategies)

    def is_leftover(self, entry: MediaEntry, index: CdnIndex) -> str | None:
        reasons: list[str] = []
        for strategy in self.strategies:
            reason = strategy.is_leftover(entry, index)
            if reason is None:
                return None
            reasons.append(reason)
        return "+".join(reasons)


LEFTOVER_STRATEGY_NAMES: tuple[str, ...] = ("provider", "name-prefix", "provider+name-prefix")


def build_leftover_strategy(name: str, *, extra_prefixes: Iterable[str] = ()) -> LeftoverStrategy:
    normalized = (name or "provider").strip().lower()
    if normalized == "provider":
        return ProviderLeftoverStrategy()
    if normalized == "name-prefix":
        logger.warning("Using the name-prefix leftover heuristic; review the preview before deleting")
        return NamePrefixLeftoverStrategy(extra_prefixes)
    if normalized == "provider+name-prefix":
        return AllOfLeftoverStrategy(
            ProviderLeftoverStrategy(),
            NamePrefixLeftoverStrategy(extra_prefixes),
        )
    raise ValueError(f"Unknown leftover strategy: {name}")


__all__ = [
    "AllOfLeftoverStrategy",
    "CdnIndex",
    "LEFTOVER_STRATEGY_NAMES",
    "LeftoverStrategy",
    "NamePrefixLeftoverStrategy",
    "ProviderLeftoverStrategy",
    "build_leftover_strategy",
]
