from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable
from urllib.parse import quote

import httpx

from ..errors import MediaSyncError, RemoteServiceError, ValidationError
from ..models import AssetRecord
from ..retry import NO_RETRY, RetryPolicy
from ..schemas import CdnFolderPage, CdnResource, CdnResourcePage
from ..utils.media_variants import (
    collapse_variant_directory,
    is_variant_directory,
    normalize_folder_path,
    parent_path,
    split_variant,
)
from .http import ApiClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "Cloudinary"


def normalize_asset(resource: CdnResource, *, root: str | None) -> AssetRecord:
    public_id = resource.public_id.strip()
    if not public_id or public_id.endswith("/"):
        raise ValidationError(
            "CDN asset has no basename",
            context={"public_id": public_id or "<empty>"},
        )
    variant, basename = split_variant(public_id)
    if not basename:
        raise ValidationError("CDN asset has no basename", context={"public_id": public_id})
    url = resource.delivery_url
    if not url:
        raise ValidationError("CDN asset has no delivery URL", context={"public_id": public_id})

    raw_folder = resource.asset_folder or resource.folder or parent_path(public_id) or ""
    folder = collapse_variant_directory(normalize_folder_path(raw_folder, root=root), variant)
    return AssetRecord(
        public_id=public_id,
        folder=folder,
        variant=variant,
        basename=basename,
        url=url,
        width=int(resource.width),
        height=int(resource.height),
        size_bytes=int(resource.bytes),
        version=resource.version or "",
        format=(resource.format or "").lower(),
    )


class CdnService:
    """Read-only view of the Cloudinary asset and folder listings."""

    def __init__(
        self,
        *,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        api_base_url: str = "https://api.cloudinary.com/v1_1",
        root_folder: str = "",
        page_size: int = 500,
        retry_policy: RetryPolicy = NO_RETRY,
        request_delay: float = 0.0,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cloud_name = cloud_name
        self.root_folder = normalize_folder_path(root_folder)
        self.page_size = max(1, min(int(page_size), 500))
        client = httpx.Client(
            base_url=f"{api_base_url.rstrip('/')}/{cloud_name}",
            auth=(api_key, api_secret),
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
        # Delivery URLs are public; the Admin API credentials stay on the API client.
        self._delivery = ApiClient(
            httpx.Client(timeout=timeout, transport=transport, follow_redirects=True),
            service=f"{SERVICE_NAME} delivery",
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
    ) -> "CdnService":
        return cls(
            cloud_name=settings.cloudinary_name or "",
            api_key=settings.cloudinary_key or "",
            api_secret=settings.cloudinary_secret or "",
            api_base_url=settings.cdn_api_base_url,
            root_folder=settings.cdn_root_folder,
            page_size=settings.cdn_page_size,
            retry_policy=retry_policy,
            request_delay=settings.request_delay_seconds,
            timeout=settings.request_timeout_seconds,
            transport=transport,
            sleep=sleep,
        )

    def close(self) -> None:
        self._api.close()
        self._delivery.close()

    def list_assets(self, root_folder: str | None = None, folder: str | None = None) -> list[AssetRecord]:
        root = normalize_folder_path(root_folder) if root_folder is not None else self.root_folder
        prefix_path = "/".join(part for part in (root, normalize_folder_path(folder)) if part)

        params: dict[str, Any] = {"type": "upload", "max_results": self.page_size}
        if prefix_path:
            params["prefix"] = f"{prefix_path}/"

        assets: list[AssetRecord] = []
        seen_cursors: set[str] = set()
        page_number = 0
        while True:
            page_number += 1
            payload = self._api.get_json(
                "/resources/image",
                params=params,
                description=f"list CDN assets page {page_number} prefix={prefix_path or '<all>'}",
            )
            page = CdnResourcePage.model_validate(payload or {})
            for resource in page.resources:
                try:
                    assets.append(normalize_asset(resource, root=root))
                except ValidationError as exc:
                    logger.warning("Skipping malformed CDN asset: %s", exc.describe())
                    self.skipped.append(exc)

            cursor = page.next_cursor
            if not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)
            params = {**params, "next_cursor": cursor}

        logger.info(
            "Listed %s CDN assets under %s in %s page(s)",
            len(assets),
            prefix_path or "<all>",
            page_number,
        )
        return assets

    def _list_subfolders(self, path: str) -> list[str]:
        params: dict[str, Any] = {"max_results": self.page_size}
        found: list[str] = []
        seen_cursors: set[str] = set()
        endpoint = f"/folders/{quote(path, safe='/')}" if path else "/folders"
        while True:
            payload = self._api.get_json(
                endpoint,
                params=params,
                description=f"list CDN folders under {path or '<root>'}",
            )
            page = CdnFolderPage.model_validate(payload or {})
            found.extend(folder.path for folder in page.folders)
            cursor = page.next_cursor
            if not cursor or cursor in seen_cursors:
                return found
            seen_cursors.add(cursor)
            params = {**params, "next_cursor": cursor}

    def list_folders(self, root_folder: str | None = None) -> list[str]:
        """Root-relative folder paths below the root, variant directories excluded."""
        root = normalize_folder_path(root_folder) if root_folder is not None else self.root_folder
        folders: list[str] = []
        queue: deque[str] = deque([root])
        while queue:
            current = queue.popleft()
            try:
                children = self._list_subfolders(current)
            except RemoteServiceError as exc:
                if exc.status_code == 404 and current == root:
                    logger.warning("CDN root folder %s does not exist", root or "<root>")
                    return []
                raise
            for child in children:
                relative = normalize_folder_path(child, root=root)
                if not relative or is_variant_directory(relative):
                    continue
                folders.append(relative)
                queue.append(normalize_folder_path(child))
        return sorted(set(folders))

    def check_url(self, url: str) -> str | None:
        """HEAD a delivery URL. Returns None when it resolves, else what went wrong."""
        try:
            self._delivery.request("HEAD", url, description=f"check CDN URL {url}")
        except MediaSyncError as exc:
            if exc.status_code is not None:
                return f"status {exc.status_code}"
            return str(exc)
        return None
