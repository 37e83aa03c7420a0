from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..errors import ITEM_LEVEL_ERRORS, ConflictError
from ..models import ActionResult, CreateFolder, FolderTree, ResultStatus

logger = logging.getLogger(__name__)


@dataclass
class FolderSyncResult:
    folder_ids: dict[str, int | None] = field(default_factory=dict)
    failed_paths: set[str] = field(default_factory=set)
    results: list[ActionResult] = field(default_factory=list)


class FolderSynchronizer:
    """Create missing CMS folders parents-first.

    The CMS tree is re-read before every creation so a folder created by a
    concurrent or earlier run is adopted instead of duplicated.
    """

    def __init__(self, cms) -> None:
        self._cms = cms

    def _fail(self, result: FolderSyncResult, action: CreateFolder, detail: str, error: str) -> None:
        result.failed_paths.add(action.path)
        result.results.append(
            ActionResult(action=action, status=ResultStatus.failed, detail=detail, error=error)
        )

    def execute(self, actions: Sequence[CreateFolder], *, initial: FolderTree) -> FolderSyncResult:
        result = FolderSyncResult()
        result.folder_ids[""] = initial.root_id
        for path in initial.paths():
            folder = initial.find(path)
            if folder is not None:
                result.folder_ids[path] = folder.id

        for action in sorted(actions, key=lambda a: (a.depth, a.path)):
            parent = action.parent_path or ""
            if parent in result.failed_paths:
                logger.warning("Skipping folder %s: parent %s failed", action.path, parent)
                self._fail(result, action, f"parent folder {parent} failed", ConflictError.__name__)
                continue

            parent_id = result.folder_ids.get(parent, action.parent_id)
            if parent and parent_id is None:
                self._fail(
                    result,
                    action,
                    f"parent folder {parent} is missing in the CMS",
                    ConflictError.__name__,
                )
                continue

            try:
                current = self._cms.list_folders()
                existing = current.find_child(action.name, parent_id)
                if existing is not None:
                    logger.info(
                        "Folder %s already exists (id=%s); nothing to create",
                        action.path,
                        existing.id,
                    )
                    result.folder_ids[action.path] = existing.id
                    result.results.append(
                        ActionResult(
                            action=action,
                            status=ResultStatus.already_satisfied,
                            detail="folder already exists",
                            entry_id=existing.id,
                        )
                    )
                    continue
                created = self._cms.create_folder(action.name, parent_id)
            except ITEM_LEVEL_ERRORS as exc:
                logger.warning("Failed to create folder %s: %s", action.path, exc)
                self._fail(result, action, exc.describe(), type(exc).__name__)
                continue

            logger.info("Created folder %s (id=%s)", action.path, created.id)
            result.folder_ids[action.path] = created.id
            result.results.append(
                ActionResult(action=action, status=ResultStatus.applied, entry_id=created.id)
            )
        return result
