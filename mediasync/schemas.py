"""Wire schemas for the Cloudinary Admin API and the Strapi upload API.

Only the fields the reconciliation needs are declared; everything else in the
payloads is ignored.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _id_from_relation(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("id")
        if value is None:
            return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class CdnResource(_Wire):
    public_id: str = ""
    secure_url: Optional[str] = None
    url: Optional[str] = None
    width: int = 0
    height: int = 0
    bytes: int = 0
    version: Optional[str] = None
    format: str = ""
    asset_folder: Optional[str] = None
    folder: Optional[str] = None
    resource_type: str = "image"

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value):
        if value is None:
            return None
        return str(value)

    @field_validator("width", "height", "bytes", mode="before")
    @classmethod
    def _none_as_zero(cls, value):
        return 0 if value is None else value

    @property
    def delivery_url(self) -> Optional[str]:
        return self.secure_url or self.url


class CdnResourcePage(_Wire):
    resources: List[CdnResource] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    total_count: Optional[int] = None


class CdnFolder(_Wire):
    name: str
    path: str


class CdnFolderPage(_Wire):
    folders: List[CdnFolder] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class CmsFormat(_Wire):
    url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    size: Optional[float] = None
    size_in_bytes: Optional[int] = Field(default=None, alias="sizeInBytes")

    @property
    def resolved_size_bytes(self) -> int:
        if self.size_in_bytes is not None:
            return int(self.size_in_bytes)
        if self.size is not None:
            return int(round(self.size * 1024))
        return 0


class CmsFile(_Wire):
    id: int
    name: str = ""
    url: str = ""
    formats: Optional[dict[str, Optional[CmsFormat]]] = None
    provider: Optional[str] = None
    provider_metadata: Optional[dict[str, Any]] = None
    folder_id: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _folder_relation(cls, data):
        if isinstance(data, dict) and "folder_id" not in data:
            relation = data.get("folder", data.get("folderId"))
            data = {**data, "folder_id": _id_from_relation(relation)}
        return data

    @field_validator("url", "name", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return "" if value is None else value


class CmsFolder(_Wire):
    id: int
    name: str
    parent_id: Optional[int] = None
    children: List["CmsFolder"] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _parent_relation(cls, data):
        if not isinstance(data, dict):
            return data
        normalized = dict(data)
        if "parent_id" not in normalized:
            normalized["parent_id"] = _id_from_relation(
                normalized.get("parent", normalized.get("parentId"))
            )
        # The admin API reports `children: {"count": n}` when not populated.
        if not isinstance(normalized.get("children"), list):
            normalized["children"] = []
        return normalized


CmsFolder.model_rebuild()


def unwrap_collection(payload: Any) -> list[Any]:
    """Strapi answers with either a bare list or `{"data": [...]}`."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        results = payload.get("results")
        if isinstance(results, list):
            return results
    return []


def unwrap_entity(payload: Any) -> dict[str, Any]:
    """Single-entity answers: `{...}`, `{"data": {...}}` or `{"data": [{...}]}`."""
    if isinstance(payload, list):
        return payload[0] if payload and isinstance(payload[0], dict) else {}
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            return data
        if isinstance(data, list):
            return data[0] if data and isinstance(data[0], dict) else {}
        return payload
    return {}
