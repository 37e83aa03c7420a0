from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, Iterable, Iterator, Mapping, Union

from .errors import FolderCycleError
from .utils.media_variants import (
    Provider,
    Variant,
    collapse_variant_directory,
    is_within,
    normalize_folder_path,
    parent_path,
    path_prefixes,
    split_variant,
)


@dataclass(frozen=True, slots=True)
class AssetRecord:
    public_id: str
    folder: str
    variant: Variant
    basename: str
    url: str
    width: int
    height: int
    size_bytes: int
    version: str
    format: str

    @property
    def filename(self) -> str:
        return f"{self.basename}.{self.format}" if self.format else self.basename


@dataclass(frozen=True, slots=True)
class FormatEntry:
    url: str
    width: int
    height: int
    size_bytes: int


@dataclass(frozen=True, slots=True)
class MediaEntry:
    id: int
    name: str
    folder_id: int | None
    url: str
    formats: Mapping[str, FormatEntry] = field(default_factory=dict)
    provider: Provider = Provider.native
    provider_name: str = ""
    provider_metadata: Mapping[str, Any] = field(default_factory=dict)
    width: int | None = None
    height: int | None = None

    @property
    def variant(self) -> Variant:
        return split_variant(self.name)[0]

    @property
    def basename(self) -> str:
        return split_variant(self.name)[1]

    def urls(self) -> list[str]:
        return [self.url] + [fmt.url for _, fmt in sorted(self.formats.items())]


@dataclass(frozen=True, slots=True)
class Folder:
    id: int
    name: str
    parent_id: int | None = None


class FolderTree:
    """CMS folders with root-relative path resolution.

    Paths are built from folder names below `root_id`; folders outside that
    subtree have no path. Construction fails on cycles.
    """

    def __init__(self, folders: Iterable[Folder], *, root_id: int | None = None) -> None:
        self.root_id = root_id
        self._by_id: dict[int, Folder] = {}
        for folder in folders:
            self._by_id[folder.id] = folder
        self._check_cycles()
        self._paths: dict[int, str] = {}
        self._by_path: dict[str, Folder] = {}
        for folder_id in sorted(self._by_id):
            path = self._resolve_path(folder_id)
            if path is None:
                continue
            self._paths[folder_id] = path
            # Same name under the same parent twice: the oldest id wins.
            self._by_path.setdefault(path, self._by_id[folder_id])

    def _check_cycles(self) -> None:
        for folder in self._by_id.values():
            seen: set[int] = set()
            current: Folder | None = folder
            while current is not None:
                if current.id in seen:
                    raise FolderCycleError(
                        f"CMS folder tree contains a cycle through folder {current.id}",
                        context={"folder_id": current.id, "name": current.name},
                    )
                seen.add(current.id)
                if current.parent_id is None:
                    break
                current = self._by_id.get(current.parent_id)

    def _resolve_path(self, folder_id: int) -> str | None:
        if folder_id == self.root_id:
            return None
        names: list[str] = []
        current = self._by_id.get(folder_id)
        while current is not None:
            names.append(current.name)
            if current.parent_id is None:
                if self.root_id is not None:
                    return None
                break
            if current.parent_id == self.root_id:
                break
            current = self._by_id.get(current.parent_id)
            if current is None and self.root_id is not None:
                return None
        return normalize_folder_path("/".join(reversed(names)))

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[Folder]:
        return iter(sorted(self._by_id.values(), key=lambda f: f.id))

    def __contains__(self, folder_id: object) -> bool:
        return folder_id in self._by_id

    def get(self, folder_id: int | None) -> Folder | None:
        if folder_id is None:
            return None
        return self._by_id.get(folder_id)

    def path_of(self, folder_id: int | None) -> str | None:
        if folder_id is None:
            return None
        return self._paths.get(folder_id)

    def find(self, path: str) -> Folder | None:
        return self._by_path.get(normalize_folder_path(path))

    def find_child(self, name: str, parent_id: int | None) -> Folder | None:
        matches = [
            folder
            for folder in self._by_id.values()
            if folder.name == name and folder.parent_id == parent_id
        ]
        if not matches:
            return None
        return min(matches, key=lambda f: f.id)

    def children_of(self, parent_id: int | None) -> list[Folder]:
        return sorted(
            (folder for folder in self._by_id.values() if folder.parent_id == parent_id),
            key=lambda f: f.id,
        )

    def paths(self) -> list[str]:
        return sorted(self._by_path)

    def ids_within(self, scope_folder: str) -> set[int]:
        return {
            folder_id
            for folder_id, path in self._paths.items()
            if is_within(path, scope_folder)
        }


@dataclass(frozen=True, slots=True)
class Scope:
    """Blast-radius limit for one run: everything, one folder subtree, or one image."""

    folder: str | None = None
    asset_folder: str | None = None
    asset_basename: str | None = None

    @classmethod
    def all(cls) -> "Scope":
        return cls()

    @classmethod
    def for_folder(cls, folder: str, *, root: str | None = None) -> "Scope":
        return cls(folder=normalize_folder_path(folder, root=root))

    @classmethod
    def for_asset(cls, public_id: str, *, root: str | None = None) -> "Scope":
        normalized = normalize_folder_path(public_id, root=root)
        variant, basename = split_variant(normalized)
        folder = collapse_variant_directory(parent_path(normalized) or "", variant)
        return cls(asset_folder=folder, asset_basename=basename)

    @property
    def is_all(self) -> bool:
        return self.folder is None and self.asset_basename is None

    @property
    def label(self) -> str:
        if self.asset_basename is not None:
            prefix = f"{self.asset_folder}/" if self.asset_folder else ""
            return f"asset:{prefix}{self.asset_basename}"
        if self.folder is not None:
            return f"folder:{self.folder}"
        return "all"

    def includes_folder(self, path: str) -> bool:
        if self.asset_basename is not None:
            return path == self.asset_folder
        if self.folder is not None:
            return is_within(path, self.folder)
        return True

    def needs_folder(self, path: str) -> bool:
        """Folders that may be created: the scoped subtree plus its ancestors."""
        if self.includes_folder(path):
            return True
        anchor = self.asset_folder if self.asset_basename is not None else self.folder
        return bool(anchor) and path in path_prefixes(anchor)

    def includes_image(self, folder: str | None, basename: str) -> bool:
        if folder is None:
            return self.is_all
        if not self.includes_folder(folder):
            return False
        if self.asset_basename is not None:
            return basename == self.asset_basename
        return True


class ActionKind(StrEnum):
    create_folder = "createFolder"
    create_reference = "createReference"
    update_reference = "updateReference"
    delete_entry = "deleteEntry"


@dataclass(frozen=True, slots=True)
class CreateFolder:
    kind: ClassVar[ActionKind] = ActionKind.create_folder

    name: str
    path: str
    parent_path: str | None
    parent_id: int | None

    @property
    def depth(self) -> int:
        return self.path.count("/") + 1

    def describe(self) -> str:
        parent = self.parent_path or "<root>"
        return f"create folder {self.path} (name={self.name} parent={parent})"


@dataclass(frozen=True, slots=True)
class CreateReference:
    kind: ClassVar[ActionKind] = ActionKind.create_reference

    asset: AssetRecord
    target_folder_path: str
    target_folder_id: int | None

    def describe(self) -> str:
        return (
            f"create reference {self.asset.filename} -> {self.target_folder_path or '<root>'}"
            f" ({self.asset.url})"
        )


@dataclass(frozen=True, slots=True)
class UpdateReference:
    kind: ClassVar[ActionKind] = ActionKind.update_reference

    media_entry_id: int
    name: str
    folder_path: str
    asset: AssetRecord
    new_urls: tuple[tuple[str, str], ...]
    reasons: tuple[str, ...] = ()

    def describe(self) -> str:
        why = ",".join(self.reasons) or "url_mismatch"
        return f"update reference id={self.media_entry_id} {self.name} [{why}]"


@dataclass(frozen=True, slots=True)
class DeleteEntry:
    kind: ClassVar[ActionKind] = ActionKind.delete_entry

    media_entry_id: int
    name: str
    folder_id: int | None
    reason: str

    def describe(self) -> str:
        return f"delete entry id={self.media_entry_id} {self.name} [{self.reason}]"


ReconciliationAction = Union[CreateFolder, CreateReference, UpdateReference, DeleteEntry]


class ResultStatus(StrEnum):
    applied = "applied"
    already_satisfied = "already_satisfied"
    failed = "failed"


@dataclass(frozen=True, slots=True)
class ActionResult:
    action: ReconciliationAction
    status: ResultStatus
    detail: str = ""
    error: str | None = None
    entry_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.status != ResultStatus.failed


@dataclass
class ExecutionOutcome:
    executed: bool = False
    results: list[ActionResult] = field(default_factory=list)

    def extend(self, results: Iterable[ActionResult]) -> None:
        self.executed = True
        self.results.extend(results)

    @property
    def failures(self) -> list[ActionResult]:
        return [result for result in self.results if not result.ok]

    def tallies(self) -> dict[str, dict[str, int]]:
        tallies: dict[str, dict[str, int]] = {}
        for result in self.results:
            row = tallies.setdefault(
                result.action.kind.value,
                {"succeeded": 0, "failed": 0, "alreadySatisfied": 0},
            )
            if not result.ok:
                row["failed"] += 1
            else:
                row["succeeded"] += 1
                if result.status == ResultStatus.already_satisfied:
                    row["alreadySatisfied"] += 1
        return {key: tallies[key] for key in sorted(tallies)}


__all__ = [
    "ActionKind",
    "ActionResult",
    "AssetRecord",
    "CreateFolder",
    "CreateReference",
    "DeleteEntry",
    "ExecutionOutcome",
    "Folder",
    "FolderTree",
    "FormatEntry",
    "MediaEntry",
    "ReconciliationAction",
    "ResultStatus",
    "Scope",
    "UpdateReference",
]
