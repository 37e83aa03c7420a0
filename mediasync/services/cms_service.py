from __future__ import annotations

import base64
import json
import logging
import time
from typing import Any, Callable, Iterable, Mapping

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..errors import ConflictError, RemoteServiceError, ValidationError
from ..models import Folder, FolderTree, FormatEntry, MediaEntry
from ..retry import NO_RETRY, RetryPolicy
from ..schemas import CmsFile, CmsFolder, unwrap_collection, unwrap_entity
from ..utils.media_variants import classify_provider
from .http import ApiClient, json_payload

logger = logging.getLogger(__name__)

SERVICE_NAME = "Strapi"

# 1x1 transparent PNG. Only sent when the CMS refuses to create an entry
# without a binary payload; the entry is re-pointed at the CDN right after.
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PLACEHOLDER_FILENAME = "placeholder.png"


def to_media_entry(file: CmsFile, *, reference_provider_names: set[str]) -> MediaEntry:
    formats: dict[str, FormatEntry] = {}
    for name, fmt in (file.formats or {}).items():
        if fmt is None:
            continue
        formats[name] = FormatEntry(
            url=fmt.url or "",
            width=int(fmt.width or 0),
            height=int(fmt.height or 0),
            size_bytes=fmt.resolved_size_bytes,
        )
    return MediaEntry(
        id=file.id,
        name=file.name,
        folder_id=file.folder_id,
        url=file.url,
        formats=formats,
        provider=classify_provider(file.provider, reference_provider_names),
        provider_name=file.provider or "",
        provider_metadata=dict(file.provider_metadata or {}),
        width=file.width,
        height=file.height,
    )


def flatten_folders(items: Iterable[CmsFolder], parent_id: int | None = None) -> list[Folder]:
    flattened: list[Folder] = []
    for item in items:
        resolved_parent = item.parent_id if item.parent_id is not None else parent_id
        flattened.append(Folder(id=item.id, name=item.name, parent_id=resolved_parent))
        if item.children:
            flattened.extend(flatten_folders(item.children, parent_id=item.id))
    return flattened


class CmsService:
    """Strapi media library: folder tree, file listing and reference writes."""

    files_endpoint = "/api/upload/files"
    folders_endpoint = "/api/upload/folders"
    media_files_endpoint = "/api/media-files"
    upload_endpoint = "/api/upload"

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str,
        root_folder_id: int | None = None,
        page_size: int = 100,
        max_pages: int = 50,
        reference_provider_names: Iterable[str] = ("cloudinary", "cdn-reference"),
        retry_policy: RetryPolicy = NO_RETRY,
        request_delay: float = 0.0,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.root_folder_id = root_folder_id
        self.page_size = max(1, int(page_size))
        self.max_pages = max(1, int(max_pages))
        self.reference_provider_names = {
            name.strip().lower() for name in reference_provider_names if name.strip()
        }
        client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
            transport=transport,
        )
        self._api = ApiClient(
            client,
            service=SERVICE_NAME,
            retry_policy=retry_policy,
            request_delay=request_delay,
            sleep=sleep,
        )
        self.skipped: list[ValidationError] = []

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        retry_policy: RetryPolicy = NO_RETRY,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "CmsService":
        return cls(
            base_url=settings.strapi_base_url or "",
            api_token=settings.strapi_api_token or "",
            root_folder_id=settings.cms_root_folder_id,
            page_size=settings.cms_page_size,
            max_pages=settings.cms_max_pages,
            reference_provider_names=settings.reference_provider_names,
            retry_policy=retry_policy,
            request_delay=settings.request_delay_seconds,
            timeout=settings.request_timeout_seconds,
            transport=transport,
            sleep=sleep,
        )

    def close(self) -> None:
        self._api.close()

    def _entry(self, raw: Any) -> MediaEntry:
        try:
            parsed = CmsFile.model_validate(raw)
        except PydanticValidationError as exc:
            identifier = raw.get("id") if isinstance(raw, dict) else None
            raise ValidationError(
                "Malformed CMS media entry",
                context={"id": identifier, "errors": exc.error_count()},
            ) from exc
        return to_media_entry(parsed, reference_provider_names=self.reference_provider_names)

    def list_media(self, folder_id: int | None = None) -> list[MediaEntry]:
        entries: list[MediaEntry] = []
        page = 1
        while True:
            params: dict[str, Any] = {
                "pagination[page]": page,
                "pagination[pageSize]": self.page_size,
                "populate": "folder",
                "sort": "id:asc",
            }
            if folder_id is not None:
                params["filters[folder][id][$eq]"] = folder_id
            payload = self._api.get_json(
                self.files_endpoint,
                params=params,
                description=f"list CMS media page {page}",
            )
            items = unwrap_collection(payload)
            for raw in items:
                try:
                    entries.append(self._entry(raw))
                except ValidationError as exc:
                    logger.warning("Skipping malformed CMS entry: %s", exc.describe())
                    self.skipped.append(exc)

            page_count = None
            if isinstance(payload, dict):
                pagination = (payload.get("meta") or {}).get("pagination") or {}
                page_count = pagination.get("pageCount")
            if not items:
                break
            # Strapi clamps pageSize to its maxLimit, so a short page only ends
            # the listing when the server reports no page count.
            if page_count is not None:
                if page >= int(page_count):
                    break
            elif len(items) < self.page_size:
                break
            if page >= self.max_pages:
                raise RemoteServiceError(
                    "CMS media listing exceeds the page limit; refusing to compare a partial inventory",
                    context={
                        "max_pages": self.max_pages,
                        "page_size": self.page_size,
                        "page_count": page_count,
                        "listed": len(entries),
                    },
                )
            page += 1

        if folder_id is not None:
            # Older plugin endpoints ignore the folder filter.
            entries = [entry for entry in entries if entry.folder_id == folder_id]
        logger.info("Listed %s CMS media entries", len(entries))
        return entries

    def get_media(self, media_id: int) -> MediaEntry | None:
        try:
            payload = self._api.get_json(
                f"{self.files_endpoint}/{media_id}",
                description=f"get CMS media {media_id}",
            )
        except RemoteServiceError as exc:
            if exc.status_code == 404:
                return None
            raise
        entity = unwrap_entity(payload)
        return self._entry(entity) if entity else None

    def list_folders(self) -> FolderTree:
        payload = self._api.get_json(self.folders_endpoint, description="list CMS folders")
        raw_items = unwrap_collection(payload)
        parsed: list[CmsFolder] = []
        for raw in raw_items:
            try:
                parsed.append(CmsFolder.model_validate(raw))
            except PydanticValidationError:
                logger.warning("Skipping malformed CMS folder: %r", raw)
        return FolderTree(flatten_folders(parsed), root_id=self.root_folder_id)

    def create_folder(self, name: str, parent_id: int | None) -> Folder:
        response = self._api.request(
            "POST",
            self.folders_endpoint,
            retry=False,
            json={"data": {"name": name, "parent": parent_id}},
            description=f"create CMS folder {name}",
        )
        entity = unwrap_entity(json_payload(response, service=SERVICE_NAME))
        try:
            folder = CmsFolder.model_validate(entity)
        except PydanticValidationError as exc:
            raise RemoteServiceError(
                "CMS folder creation returned an unexpected payload",
                context={"name": name},
            ) from exc
        return Folder(
            id=folder.id,
            name=folder.name,
            parent_id=folder.parent_id if folder.parent_id is not None else parent_id,
        )

    def create_media_reference(self, payload: Mapping[str, Any]) -> MediaEntry:
        response = self._api.request(
            "POST",
            self.media_files_endpoint,
            retry=False,
            json=dict(payload),
            description=f"create CMS reference {payload.get('name')}",
        )
        return self._entry(unwrap_entity(json_payload(response, service=SERVICE_NAME)))

    def upload_placeholder(self, *, name: str, folder_id: int | None) -> int:
        file_info: dict[str, Any] = {"name": name, "alternativeText": name}
        if folder_id is not None:
            file_info["folder"] = folder_id
        response = self._api.request(
            "POST",
            self.upload_endpoint,
            retry=False,
            files={"files": (PLACEHOLDER_FILENAME, PLACEHOLDER_PNG, "image/png")},
            data={"fileInfo": json.dumps(file_info)},
            description=f"upload placeholder for {name}",
        )
        entity = unwrap_entity(json_payload(response, service=SERVICE_NAME))
        media_id = entity.get("id")
        if media_id is None:
            raise RemoteServiceError(
                "Placeholder upload returned no media id",
                context={"name": name},
            )
        return int(media_id)

    def update_media(self, media_id: int, fields: Mapping[str, Any]) -> MediaEntry:
        try:
            response = self._api.request(
                "PUT",
                f"{self.media_files_endpoint}/{media_id}",
                json=dict(fields),
                description=f"update CMS media {media_id}",
            )
        except RemoteServiceError as exc:
            if exc.status_code == 404:
                raise ConflictError(
                    "CMS media entry disappeared before it could be updated",
                    status_code=404,
                    context={"id": media_id},
                ) from exc
            raise
        return self._entry(unwrap_entity(json_payload(response, service=SERVICE_NAME)))

    def delete_media(self, media_id: int) -> bool:
        try:
            self._api.request(
                "DELETE",
                f"{self.files_endpoint}/{media_id}",
                description=f"delete CMS media {media_id}",
            )
        except RemoteServiceError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True
