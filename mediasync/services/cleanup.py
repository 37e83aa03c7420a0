from __future__ import annotations

import logging
from typing import Sequence

from ..errors import ITEM_LEVEL_ERRORS
from ..models import ActionResult, DeleteEntry, ResultStatus

logger = logging.getLogger(__name__)


class CleanupExecutor:
    def __init__(self, cms) -> None:
        self._cms = cms

    def execute(self, actions: Sequence[DeleteEntry]) -> list[ActionResult]:
        results: list[ActionResult] = []
        for action in actions:
            logger.info(
                "Deleting CMS entry id=%s name=%s reason=%s",
                action.media_entry_id,
                action.name,
                action.reason,
            )
            try:
                deleted = self._cms.delete_media(action.media_entry_id)
            except ITEM_LEVEL_ERRORS as exc:
                logger.warning("Failed to delete id=%s: %s", action.media_entry_id, exc)
                results.append(
                    ActionResult(
                        action=action,
                        status=ResultStatus.failed,
                        detail=exc.describe(),
                        error=type(exc).__name__,
                        entry_id=action.media_entry_id,
                    )
                )
                continue
            results.append(
                ActionResult(
                    action=action,
                    status=ResultStatus.applied if deleted else ResultStatus.already_satisfied,
                    detail="" if deleted else "already deleted",
                    entry_id=action.media_entry_id,
                )
            )
        return results
