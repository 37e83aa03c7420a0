"""Build and write CMS media entries that point at CDN assets.

A reference entry carries the CDN URL of the original image plus one
on-the-fly transformation URL per size class. No image bytes are copied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from ..errors import ConflictError, ITEM_LEVEL_ERRORS
from ..models import (
    ActionResult,
    AssetRecord,
    CreateReference,
    FormatEntry,
    MediaEntry,
    ResultStatus,
    UpdateReference,
)
from ..utils.media_variants import (
    SIZE_CLASSES,
    SIZE_VARIANTS,
    Provider,
    SizeClass,
    Variant,
    is_cdn_url,
)

logger = logging.getLogger(__name__)

MIME_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "svg": "image/svg+xml",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "heic": "image/heic",
}


def mime_type_for(fmt: str) -> str:
    normalized = (fmt or "").lower()
    return MIME_TYPES.get(normalized, f"image/{normalized or 'jpeg'}")


def extension_for(fmt: str) -> str:
    normalized = (fmt or "").lower()
    if normalized in {"jpg", "jpeg", ""}:
        return ".jpeg"
    return f".{normalized}"


def scaled_dimensions(width: int, height: int, size_class: SizeClass) -> tuple[int, int]:
    """Fit `width`x`height` inside the size class box, never upscaling."""
    if width <= 0 or height <= 0:
        return 0, 0
    ratio = min(size_class.max_width / width, size_class.max_height / height, 1.0)
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def estimated_size(asset: AssetRecord, width: int, height: int) -> int:
    area = asset.width * asset.height
    if area <= 0 or asset.size_bytes <= 0:
        return 0
    return round(asset.size_bytes * (width * height) / area)


@dataclass(frozen=True, slots=True)
class ExpectedReference:
    url: str
    formats: Mapping[str, FormatEntry]
    provider_name: str
    provider_metadata: Mapping[str, Any]

    def urls(self) -> list[str]:
        return [self.url] + [fmt.url for _, fmt in sorted(self.formats.items())]


@dataclass(frozen=True, slots=True)
class ReferenceBuilder:
    cloud_name: str
    delivery_base_url: str = "https://res.cloudinary.com"
    provider_name: str = "cloudinary"

    @classmethod
    def from_settings(cls, settings) -> "ReferenceBuilder":
        return cls(
            cloud_name=settings.cloudinary_name or "",
            delivery_base_url=settings.cdn_delivery_base_url,
            provider_name=settings.cdn_reference_provider,
        )

    def is_cdn_url(self, url: str | None) -> bool:
        return is_cdn_url(url, delivery_base_url=self.delivery_base_url, cloud_name=self.cloud_name)

    def transformation_url(self, asset: AssetRecord, size_class: SizeClass) -> str:
        version = f"v{asset.version}/" if asset.version else ""
        extension = f".{asset.format}" if asset.format else ""
        return (
            f"{self.delivery_base_url}/{self.cloud_name}/image/upload/"
            f"{size_class.transformation}/{version}{asset.public_id}{extension}"
        )

    def expected(self, asset: AssetRecord) -> ExpectedReference:
        formats: dict[str, FormatEntry] = {}
        for variant in SIZE_VARIANTS:
            size_class = SIZE_CLASSES[variant]
            width, height = scaled_dimensions(asset.width, asset.height, size_class)
            formats[variant.value] = FormatEntry(
                url=self.transformation_url(asset, size_class),
                width=width,
                height=height,
                size_bytes=estimated_size(asset, width, height),
            )
        return ExpectedReference(
            url=asset.url,
            formats=formats,
            provider_name=self.provider_name,
            provider_metadata={
                "public_id": asset.public_id,
                "version": asset.version,
                "format": asset.format,
                "resource_type": "image",
            },
        )

    def mismatches(self, entry: MediaEntry, asset: AssetRecord) -> tuple[str, ...]:
        """Reasons an existing entry differs from the reference it should be."""
        expected = self.expected(asset)
        reasons: list[str] = []
        if any(not self.is_cdn_url(url) for url in entry.urls()):
            reasons.append("off_cdn_url")
        if entry.url != expected.url:
            reasons.append("url_mismatch")
        for name, fmt in expected.formats.items():
            current = entry.formats.get(name)
            if current is None or current.url != fmt.url:
                reasons.append("formats_mismatch")
                break
        if entry.provider != Provider.cdn_reference:
            reasons.append("provider_mismatch")
        return tuple(reasons)

    def _format_payload(self, asset: AssetRecord, variant: str, fmt: FormatEntry) -> dict[str, Any]:
        return {
            "name": f"{variant}_{asset.filename}",
            "hash": f"{variant}_{asset.basename}",
            "ext": extension_for(asset.format),
            "mime": mime_type_for(asset.format),
            "width": fmt.width,
            "height": fmt.height,
            "size": round(fmt.size_bytes / 1024, 2),
            "sizeInBytes": fmt.size_bytes,
            "url": fmt.url,
            "path": None,
        }

    def update_patch(self, asset: AssetRecord) -> dict[str, Any]:
        expected = self.expected(asset)
        return {
            "url": expected.url,
            "formats": {
                name: self._format_payload(asset, name, fmt)
                for name, fmt in expected.formats.items()
            },
            "provider": expected.provider_name,
            "provider_metadata": dict(expected.provider_metadata),
        }

    def payload(self, asset: AssetRecord, folder_id: int | None) -> dict[str, Any]:
        return {
            "name": asset.filename,
            "alternativeText": asset.basename,
            "caption": None,
            "hash": asset.basename,
            "ext": extension_for(asset.format),
            "mime": mime_type_for(asset.format),
            "width": asset.width,
            "height": asset.height,
            "size": round(asset.size_bytes / 1024, 2),
            "folder": folder_id,
            **self.update_patch(asset),
        }


def build_reference_payload(asset: AssetRecord, folder_id: int | None, settings) -> dict[str, Any]:
    return ReferenceBuilder.from_settings(settings).payload(asset, folder_id)


def build_update_patch(asset: AssetRecord, settings) -> dict[str, Any]:
    return ReferenceBuilder.from_settings(settings).update_patch(asset)


def _failure(action, exc: Exception) -> ActionResult:
    return ActionResult(
        action=action,
        status=ResultStatus.failed,
        detail=exc.describe() if hasattr(exc, "describe") else str(exc),
        error=type(exc).__name__,
    )


class ReferenceWriter:
    def __init__(self, cms, builder: ReferenceBuilder, *, requires_binary_upload: bool = False) -> None:
        self._cms = cms
        self._builder = builder
        self._requires_binary_upload = requires_binary_upload

    def _existing_reference(self, asset: AssetRecord, folder_id: int | None) -> MediaEntry | None:
        for entry in self._cms.list_media(folder_id):
            if entry.folder_id != folder_id or entry.variant != Variant.original:
                continue
            if entry.basename == asset.basename:
                return entry
        return None

    def create(self, action: CreateReference, folder_id: int | None) -> ActionResult:
        asset = action.asset
        payload = self._builder.payload(asset, folder_id)
        try:
            if self._requires_binary_upload:
                media_id = self._cms.upload_placeholder(name=asset.filename, folder_id=folder_id)
                entry = self._cms.update_media(media_id, payload)
            else:
                entry = self._cms.create_media_reference(payload)
        except ITEM_LEVEL_ERRORS as exc:
            # Creates are not retried; a lost response may still have created the entry.
            try:
                existing = self._existing_reference(asset, folder_id)
            except ITEM_LEVEL_ERRORS:
                existing = None
            if existing is not None and not self._builder.mismatches(existing, asset):
                logger.info(
                    "Reference %s exists after a failed create (id=%s)",
                    asset.filename,
                    existing.id,
                )
                return ActionResult(
                    action=action,
                    status=ResultStatus.already_satisfied,
                    detail="entry present after failed create",
                    entry_id=existing.id,
                )
            logger.warning("Failed to create reference %s: %s", asset.public_id, exc)
            return _failure(action, exc)

        logger.info(
            "Created reference id=%s name=%s folder=%s",
            entry.id,
            entry.name,
            action.target_folder_path or "<root>",
        )
        return ActionResult(action=action, status=ResultStatus.applied, entry_id=entry.id)

    def update(self, action: UpdateReference) -> ActionResult:
        patch = self._builder.update_patch(action.asset)
        try:
            entry = self._cms.update_media(action.media_entry_id, patch)
        except ConflictError as exc:
            current = None
            try:
                current = self._cms.get_media(action.media_entry_id)
            except ITEM_LEVEL_ERRORS as lookup_exc:
                logger.warning("Could not re-read id=%s after conflict: %s", action.media_entry_id, lookup_exc)
            detail = exc.describe()
            if current is None:
                detail = f"{detail}; entry no longer exists"
            logger.warning("Update of id=%s conflicted: %s", action.media_entry_id, detail)
            return ActionResult(
                action=action,
                status=ResultStatus.failed,
                detail=detail,
                error=type(exc).__name__,
                entry_id=action.media_entry_id,
            )
        except ITEM_LEVEL_ERRORS as exc:
            logger.warning("Failed to update reference id=%s: %s", action.media_entry_id, exc)
            return _failure(action, exc)

        logger.info("Updated reference id=%s name=%s", entry.id, entry.name)
        return ActionResult(action=action, status=ResultStatus.applied, entry_id=entry.id)

    def execute(
        self,
        actions: Iterable[CreateReference | UpdateReference],
        *,
        folder_ids: Mapping[str, int | None],
        failed_paths: Sequence[str] | set[str] = (),
    ) -> list[ActionResult]:
        failed = set(failed_paths)
        results: list[ActionResult] = []
        for action in actions:
            if isinstance(action, UpdateReference):
                results.append(self.update(action))
                continue

            path = action.target_folder_path
            if path in failed:
                results.append(
                    ActionResult(
                        action=action,
                        status=ResultStatus.failed,
                        detail=f"target folder {path} could not be created",
                        error=ConflictError.__name__,
                    )
                )
                continue
            folder_id = folder_ids.get(path, action.target_folder_id)
            if path and folder_id is None:
                results.append(
                    ActionResult(
                        action=action,
                        status=ResultStatus.failed,
                        detail=f"target folder {path} is missing in the CMS",
                        error=ConflictError.__name__,
                    )
                )
                continue
            results.append(self.create(action, folder_id))
        return results
