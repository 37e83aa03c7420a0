"""Diff the CDN inventory against the CMS media library.

`compare` is pure: it reads normalized inventories and returns a
`Comparison` holding the ordered action plan plus everything the reports
need (folder status, orphan variants, duplicates, invariant violations).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterable, Mapping, Sequence

from ..errors import ValidationError
from ..models import (
    ActionKind,
    AssetRecord,
    CreateFolder,
    CreateReference,
    DeleteEntry,
    FolderTree,
    MediaEntry,
    ReconciliationAction,
    Scope,
    UpdateReference,
)
from ..utils.media_variants import Provider, Variant, parent_path, path_prefixes
from .leftovers import CdnIndex, LeftoverStrategy, ProviderLeftoverStrategy
from .reference_writer import ReferenceBuilder

UNFILED = "<unfiled>"


class FolderStatus(StrEnum):
    exists = "EXISTS"
    needs_creation = "NEEDS_CREATION"


@dataclass(frozen=True, slots=True)
class OrphanVariant:
    folder: str
    basename: str
    variants: tuple[str, ...]
    public_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class InvalidItem:
    source: str
    message: str
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DuplicateEntry:
    folder: str
    basename: str
    kept_id: int
    duplicate_ids: tuple[int, ...]


@dataclass(frozen=True, slots=True)
class NoopMatch:
    media_entry_id: int
    name: str
    folder: str


@dataclass(frozen=True, slots=True)
class InvariantViolation:
    media_entry_id: int
    name: str
    folder: str
    urls: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Comparison:
    scope: Scope
    actions: tuple[ReconciliationAction, ...]
    folder_status: Mapping[str, FolderStatus]
    cdn_asset_count: int
    cdn_image_count: int
    cms_entry_count: int
    orphan_variants: tuple[OrphanVariant, ...] = ()
    invalid: tuple[InvalidItem, ...] = ()
    duplicates: tuple[DuplicateEntry, ...] = ()
    noops: tuple[NoopMatch, ...] = ()
    violations: tuple[InvariantViolation, ...] = ()
    folder_breakdown: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    leftover_strategy: str = "provider"
    leftover_heuristic: bool = False

    def actions_of(self, kind: ActionKind) -> list[ReconciliationAction]:
        return [action for action in self.actions if action.kind == kind]

    def plan_for(self, command: str) -> list[ReconciliationAction]:
        """Actions a mutating command executes, in execution order."""
        if command in {"migrate", "execute"}:
            kinds = {ActionKind.create_folder, ActionKind.create_reference, ActionKind.update_reference}
        elif command == "cleanup":
            kinds = {ActionKind.delete_entry}
        else:
            return []
        return [action for action in self.actions if action.kind in kinds]

    @property
    def counts(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in ActionKind}
        for action in self.actions:
            counts[action.kind.value] += 1
        counts["orphanVariant"] = len(self.orphan_variants)
        counts["noop"] = len(self.noops)
        counts["invalid"] = len(self.invalid)
        return {key: counts[key] for key in sorted(counts)}


def invalid_items(source: str, errors: Iterable[ValidationError]) -> list[InvalidItem]:
    return [InvalidItem(source=source, message=str(exc), context=dict(exc.context)) for exc in errors]


def entry_folder_path(entry: MediaEntry, tree: FolderTree) -> str | None:
    """Root-relative folder of a CMS entry, or None when it lives outside the root."""
    if entry.folder_id is None:
        return "" if tree.root_id is None else None
    if entry.folder_id == tree.root_id:
        return ""
    return tree.path_of(entry.folder_id)


def _folder_id_for(path: str, tree: FolderTree) -> int | None:
    if not path:
        return tree.root_id
    folder = tree.find(path)
    return folder.id if folder else None


def _action_sort_key(action: ReconciliationAction) -> tuple:
    if isinstance(action, CreateFolder):
        return (0, action.depth, action.path, 0)
    if isinstance(action, CreateReference):
        return (1, 0, action.target_folder_path, action.asset.basename)
    if isinstance(action, UpdateReference):
        return (2, 0, action.folder_path, action.media_entry_id)
    return (3, 0, "", action.media_entry_id)


def _bump(breakdown: dict[str, dict[str, Any]], folder: str, key: str, amount: int = 1) -> None:
    row = breakdown.setdefault(
        folder or "<root>",
        {
            "status": None,
            "cdnImages": 0,
            "cmsEntries": 0,
            ActionKind.create_reference.value: 0,
            ActionKind.update_reference.value: 0,
            ActionKind.delete_entry.value: 0,
            "noop": 0,
        },
    )
    row[key] = row.get(key, 0) + amount


def compare(
    assets: Sequence[AssetRecord],
    media: Sequence[MediaEntry],
    tree: FolderTree,
    *,
    builder: ReferenceBuilder,
    cdn_folders: Iterable[str] = (),
    scope: Scope | None = None,
    leftover_strategy: LeftoverStrategy | None = None,
    invalid: Iterable[InvalidItem] = (),
) -> Comparison:
    scope = scope or Scope.all()
    strategy = leftover_strategy or ProviderLeftoverStrategy()
    cdn_folder_list = list(cdn_folders)
    index = CdnIndex(
        assets,
        cloud_name=builder.cloud_name,
        delivery_base_url=builder.delivery_base_url,
        folders=cdn_folder_list,
    )

    breakdown: dict[str, dict[str, Any]] = {}
    actions: list[ReconciliationAction] = []

    # Logical images: (folder, basename) -> variant -> asset.
    groups: dict[tuple[str, str], dict[Variant, AssetRecord]] = defaultdict(dict)
    for asset in sorted(assets, key=lambda a: a.public_id):
        if not scope.includes_image(asset.folder, asset.basename):
            continue
        groups[(asset.folder, asset.basename)].setdefault(asset.variant, asset)

    images: list[AssetRecord] = []
    orphans: list[OrphanVariant] = []
    for (folder, basename), variants in sorted(groups.items()):
        original = variants.get(Variant.original)
        if original is None:
            orphans.append(
                OrphanVariant(
                    folder=folder,
                    basename=basename,
                    variants=tuple(sorted(v.value for v in variants)),
                    public_ids=tuple(sorted(a.public_id for a in variants.values())),
                )
            )
            continue
        images.append(original)
        _bump(breakdown, folder, "cdnImages")

    # Folders: every CDN path segment the scope may touch.
    wanted: set[str] = set()
    for path in cdn_folder_list + [folder for folder, _ in groups]:
        for prefix in path_prefixes(path):
            if scope.needs_folder(prefix):
                wanted.add(prefix)

    folder_status: dict[str, FolderStatus] = {}
    for path in sorted(wanted, key=lambda p: (p.count("/"), p)):
        if tree.find(path) is not None:
            folder_status[path] = FolderStatus.exists
            continue
        folder_status[path] = FolderStatus.needs_creation
        parent = parent_path(path)
        actions.append(
            CreateFolder(
                name=path.rsplit("/", 1)[-1],
                path=path,
                parent_path=parent,
                parent_id=_folder_id_for(parent or "", tree),
            )
        )
    for path, status in folder_status.items():
        _bump(breakdown, path, "cdnImages", 0)
        breakdown[path or "<root>"]["status"] = status.value

    # CMS entries keyed by (folder path, basename); variant-named entries never match.
    in_scope: list[tuple[MediaEntry, str | None]] = []
    by_key: dict[tuple[str, str], list[MediaEntry]] = defaultdict(list)
    for entry in sorted(media, key=lambda e: e.id):
        path = entry_folder_path(entry, tree)
        if not scope.includes_image(path, entry.basename):
            continue
        in_scope.append((entry, path))
        _bump(breakdown, path if path is not None else UNFILED, "cmsEntries")
        if path is not None and entry.variant == Variant.original:
            by_key[(path, entry.basename)].append(entry)

    matched: set[int] = set()
    noops: list[NoopMatch] = []
    duplicates: list[DuplicateEntry] = []
    for asset in images:
        candidates = by_key.get((asset.folder, asset.basename), [])
        if not candidates:
            actions.append(
                CreateReference(
                    asset=asset,
                    target_folder_path=asset.folder,
                    target_folder_id=_folder_id_for(asset.folder, tree),
                )
            )
            _bump(breakdown, asset.folder, ActionKind.create_reference.value)
            continue

        kept, extra = candidates[0], candidates[1:]
        matched.update(entry.id for entry in candidates)
        if extra:
            duplicates.append(
                DuplicateEntry(
                    folder=asset.folder,
                    basename=asset.basename,
                    kept_id=kept.id,
                    duplicate_ids=tuple(entry.id for entry in extra),
                )
            )
            for entry in extra:
                actions.append(
                    DeleteEntry(
                        media_entry_id=entry.id,
                        name=entry.name,
                        folder_id=entry.folder_id,
                        reason=f"duplicate_of:{kept.id}",
                    )
                )
                _bump(breakdown, asset.folder, ActionKind.delete_entry.value)
        reasons = builder.mismatches(kept, asset)
        if reasons:
            expected = builder.expected(asset)
            actions.append(
                UpdateReference(
                    media_entry_id=kept.id,
                    name=kept.name,
                    folder_path=asset.folder,
                    asset=asset,
                    new_urls=(("url", expected.url),)
                    + tuple((name, fmt.url) for name, fmt in expected.formats.items()),
                    reasons=reasons,
                )
            )
            _bump(breakdown, asset.folder, ActionKind.update_reference.value)
        else:
            noops.append(NoopMatch(media_entry_id=kept.id, name=kept.name, folder=asset.folder))
            _bump(breakdown, asset.folder, "noop")

    violations: list[InvariantViolation] = []
    for entry, path in in_scope:
        folder_label = path if path is not None else UNFILED
        if entry.provider == Provider.cdn_reference:
            bad = tuple(url for url in entry.urls() if not builder.is_cdn_url(url))
            if bad:
                violations.append(
                    InvariantViolation(
                        media_entry_id=entry.id,
                        name=entry.name,
                        folder=folder_label,
                        urls=bad,
                    )
                )
        if entry.id in matched:
            continue
        reason = strategy.is_leftover(entry, index)
        if reason is None:
            continue
        actions.append(
            DeleteEntry(
                media_entry_id=entry.id,
                name=entry.name,
                folder_id=entry.folder_id,
                reason=reason,
            )
        )
        _bump(breakdown, folder_label, ActionKind.delete_entry.value)

    actions.sort(key=_action_sort_key)
    return Comparison(
        scope=scope,
        actions=tuple(actions),
        folder_status=folder_status,
        cdn_asset_count=sum(len(v) for v in groups.values()),
        cdn_image_count=len(images),
        cms_entry_count=len(in_scope),
        orphan_variants=tuple(orphans),
        invalid=tuple(invalid),
        duplicates=tuple(duplicates),
        noops=tuple(noops),
        violations=tuple(violations),
        folder_breakdown={key: dict(breakdown[key]) for key in sorted(breakdown)},
        leftover_strategy=strategy.name,
        leftover_heuristic=strategy.heuristic,
    )


__all__ = [
    "Comparison",
    "DuplicateEntry",
    "FolderStatus",
    "InvalidItem",
    "InvariantViolation",
    "NoopMatch",
    "OrphanVariant",
    "UNFILED",
    "compare",
    "entry_folder_path",
    "invalid_items",
]
