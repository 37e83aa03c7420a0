"""Variant and path classification primitives.

Shared by the inventory readers, the comparator and the reports. The string
values of the enums appear verbatim in reports and CMS payloads, so they are
stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlparse


class Variant(StrEnum):
    original = "original"
    thumbnail = "thumbnail"
    small = "small"
    medium = "medium"
    large = "large"


class Provider(StrEnum):
    native = "native"
    cdn_reference = "cdn-reference"


SIZE_VARIANTS: tuple[Variant, ...] = (
    Variant.thumbnail,
    Variant.small,
    Variant.medium,
    Variant.large,
)

VARIANT_DIRECTORY_NAMES: frozenset[str] = frozenset(
    {"thumbnail", "thumbnails", "small", "medium", "large"}
)


@dataclass(frozen=True, slots=True)
class SizeClass:
    variant: Variant
    max_width: int
    max_height: int
    crop: str = "limit"

    @property
    def transformation(self) -> str:
        return f"c_{self.crop},w_{self.max_width},h_{self.max_height}"


SIZE_CLASSES: dict[Variant, SizeClass] = {
    Variant.thumbnail: SizeClass(Variant.thumbnail, 245, 156),
    Variant.small: SizeClass(Variant.small, 500, 500),
    Variant.medium: SizeClass(Variant.medium, 750, 750),
    Variant.large: SizeClass(Variant.large, 1000, 1000),
}


def normalize_folder_path(value: str | None, *, root: str | None = None) -> str:
    """Return a `/`-delimited path without empty segments, relative to `root`."""
    raw = (value or "").replace("\\", "/")
    segments = [segment.strip() for segment in raw.split("/") if segment.strip()]
    if root:
        root_segments = normalize_folder_path(root).split("/")
        if segments[: len(root_segments)] == root_segments:
            segments = segments[len(root_segments) :]
    return "/".join(segments)


def parent_path(path: str) -> str | None:
    if "/" not in path:
        return None
    return path.rsplit("/", 1)[0]


def path_prefixes(path: str) -> list[str]:
    """`a/b/c` -> `["a", "a/b", "a/b/c"]`."""
    segments = [segment for segment in path.split("/") if segment]
    return ["/".join(segments[: idx + 1]) for idx in range(len(segments))]


def is_within(path: str, scope_folder: str) -> bool:
    return path == scope_folder or path.startswith(f"{scope_folder}/")


def strip_extension(name: str) -> str:
    stem, dot, ext = name.rpartition(".")
    if dot and stem and ext.isalnum() and len(ext) <= 5:
        return stem
    return name


def split_variant(name: str) -> tuple[Variant, str]:
    """Split a file or public-id leaf into `(variant, basename)`.

    `thumbnail_agricola_001.jpg` -> `(thumbnail, "agricola_001")`.
    """
    leaf = name.rsplit("/", 1)[-1].strip()
    stem = strip_extension(leaf)
    for variant in SIZE_VARIANTS:
        prefix = f"{variant.value}_"
        if stem.startswith(prefix) and len(stem) > len(prefix):
            return variant, stem[len(prefix) :]
    return Variant.original, stem


def collapse_variant_directory(folder: str, variant: Variant) -> str:
    """Variants stored under `<project>/thumbnails/` belong to `<project>`."""
    if variant == Variant.original or not folder:
        return folder
    head, _, last = folder.rpartition("/")
    if last.lower() in VARIANT_DIRECTORY_NAMES:
        return head
    return folder


def is_variant_directory(path: str) -> bool:
    last = path.rsplit("/", 1)[-1]
    return last.lower() in VARIANT_DIRECTORY_NAMES


def is_cdn_url(url: str | None, *, delivery_base_url: str, cloud_name: str) -> bool:
    """True when `url` is served from the configured cloud on the delivery host."""
    if not url:
        return False
    parsed = urlparse(url.strip())
    base = urlparse(delivery_base_url)
    if parsed.scheme not in {"http", "https"}:
        return False
    if (parsed.hostname or "").lower() != (base.hostname or "").lower():
        return False
    return parsed.path.startswith(f"/{cloud_name}/")


def classify_provider(provider_name: str | None, reference_names: set[str]) -> Provider:
    normalized = (provider_name or "").strip().lower()
    if normalized in reference_names:
        return Provider.cdn_reference
    return Provider.native


__all__ = [
    "Provider",
    "SIZE_CLASSES",
    "SIZE_VARIANTS",
    "SizeClass",
    "VARIANT_DIRECTORY_NAMES",
    "Variant",
    "classify_provider",
    "collapse_variant_directory",
    "is_cdn_url",
    "is_variant_directory",
    "is_within",
    "normalize_folder_path",
    "parent_path",
    "path_prefixes",
    "split_variant",
    "strip_extension",
]
