"""Run orchestration: READ_INVENTORIES -> COMPARE -> PREVIEW|EXECUTE -> REPORT.

Any run-level failure moves the run to ABORTED. Per-item failures during
EXECUTE are collected in the outcome and never stop the batch.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

import httpx

from .config import Settings
from .errors import MediaSyncError, RUN_LEVEL_ERRORS
from .logging_context import capture_run_abort, pop_run_context, push_run_context
from .models import (
    AssetRecord,
    CreateFolder,
    CreateReference,
    DeleteEntry,
    ExecutionOutcome,
    FolderTree,
    MediaEntry,
    Scope,
    UpdateReference,
)
from .retry import RetryPolicy
from .services.cdn_service import CdnService
from .services.cleanup import CleanupExecutor
from .services.cms_service import CmsService
from .services.comparator import Comparison, InvalidItem, compare, invalid_items
from .services.folder_sync import FolderSynchronizer
from .services.leftovers import LeftoverStrategy, ProviderLeftoverStrategy
from .services.reference_writer import ReferenceBuilder, ReferenceWriter
from .services.report import build_report, format_preview
from .services.url_check import BrokenUrl, check_reference_urls

logger = logging.getLogger(__name__)

MUTATING_COMMANDS = {"migrate", "execute", "cleanup"}
COMMANDS = ("audit", "validate", "report", "preview", "migrate", "execute", "cleanup")


class RunState(StrEnum):
    read_inventories = "READ_INVENTORIES"
    compare = "COMPARE"
    preview = "PREVIEW"
    execute = "EXECUTE"
    report = "REPORT"
    aborted = "ABORTED"


@dataclass
class RunContext:
    """Everything one invocation needs; built once and passed down explicitly."""

    settings: Settings
    cdn: Any
    cms: Any
    builder: ReferenceBuilder
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    out: Callable[[str], None] = print

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        cdn_transport: httpx.BaseTransport | None = None,
        cms_transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        out: Callable[[str], None] = print,
    ) -> "RunContext":
        settings.require_credentials()
        policy = RetryPolicy.from_settings(settings)
        return cls(
            settings=settings,
            cdn=CdnService.from_settings(settings, retry_policy=policy, transport=cdn_transport, sleep=sleep),
            cms=CmsService.from_settings(settings, retry_policy=policy, transport=cms_transport, sleep=sleep),
            builder=ReferenceBuilder.from_settings(settings),
            retry_policy=policy,
            out=out,
        )

    def close(self) -> None:
        for service in (self.cdn, self.cms):
            close = getattr(service, "close", None)
            if close is not None:
                close()


@dataclass(frozen=True, slots=True)
class RunOptions:
    command: str
    scope: Scope = field(default_factory=Scope.all)
    execute: bool = False
    leftover_strategy: LeftoverStrategy = field(default_factory=ProviderLeftoverStrategy)
    check_urls: bool = True


@dataclass
class Inventories:
    assets: list[AssetRecord]
    cdn_folders: list[str]
    media: list[MediaEntry]
    tree: FolderTree
    invalid: list[InvalidItem]


@dataclass
class RunResult:
    command: str
    state: RunState = RunState.read_inventories
    transitions: list[RunState] = field(default_factory=list)
    comparison: Comparison | None = None
    outcome: ExecutionOutcome = field(default_factory=ExecutionOutcome)
    report: dict[str, Any] | None = None
    error: MediaSyncError | None = None
    aborted_in: RunState | None = None
    broken_urls: list[BrokenUrl] = field(default_factory=list)

    def enter(self, state: RunState) -> None:
        logger.info("Run state %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    @property
    def exit_code(self) -> int:
        return 0 if self.state == RunState.report else 1


def read_inventories(ctx: RunContext) -> Inventories:
    root = ctx.settings.cdn_root_folder
    assets = ctx.cdn.list_assets(root)
    cdn_folders = ctx.cdn.list_folders(root)
    tree = ctx.cms.list_folders()
    media = ctx.cms.list_media()

    invalid = invalid_items("cdn", getattr(ctx.cdn, "skipped", []))
    invalid.extend(invalid_items("cms", getattr(ctx.cms, "skipped", [])))
    root_id = ctx.settings.cms_root_folder_id
    if root_id is not None and root_id not in tree:
        logger.warning("Configured CMS root folder %s does not exist", root_id)
        invalid.append(
            InvalidItem(
                source="cms",
                message="configured CMS root folder not found",
                context={"folder_id": root_id},
            )
        )
    logger.info(
        "Read inventories: %s CDN assets, %s CDN folders, %s CMS folders, %s CMS entries",
        len(assets),
        len(cdn_folders),
        len(tree),
        len(media),
    )
    return Inventories(assets=assets, cdn_folders=cdn_folders, media=media, tree=tree, invalid=invalid)


def _execute_migration(ctx: RunContext, plan: list, tree: FolderTree) -> ExecutionOutcome:
    outcome = ExecutionOutcome(executed=True)
    folder_actions = [action for action in plan if isinstance(action, CreateFolder)]
    reference_actions = [
        action for action in plan if isinstance(action, (CreateReference, UpdateReference))
    ]
    synced = FolderSynchronizer(ctx.cms).execute(folder_actions, initial=tree)
    outcome.extend(synced.results)
    writer = ReferenceWriter(
        ctx.cms,
        ctx.builder,
        requires_binary_upload=ctx.settings.cms_requires_binary_upload,
    )
    outcome.extend(
        writer.execute(
            reference_actions,
            folder_ids=synced.folder_ids,
            failed_paths=synced.failed_paths,
        )
    )
    return outcome


def _execute_cleanup(ctx: RunContext, plan: list) -> ExecutionOutcome:
    outcome = ExecutionOutcome(executed=True)
    outcome.extend(CleanupExecutor(ctx.cms).execute([a for a in plan if isinstance(a, DeleteEntry)]))
    return outcome


def run(ctx: RunContext, options: RunOptions) -> RunResult:
    command = options.command
    result = RunResult(command=command)
    token = push_run_context(ctx.run_id, command)
    try:
        result.enter(RunState.read_inventories)
        inventories = read_inventories(ctx)

        result.enter(RunState.compare)
        comparison = compare(
            inventories.assets,
            inventories.media,
            inventories.tree,
            builder=ctx.builder,
            cdn_folders=inventories.cdn_folders,
            scope=options.scope,
            leftover_strategy=options.leftover_strategy,
            invalid=inventories.invalid,
        )
        result.comparison = comparison
        plan = comparison.plan_for(command)

        if command == "validate" and options.check_urls:
            result.broken_urls = check_reference_urls(
                inventories.media,
                inventories.tree,
                check=ctx.cdn.check_url,
                is_cdn_url=ctx.builder.is_cdn_url,
                scope=options.scope,
            )

        if command in MUTATING_COMMANDS or command == "preview":
            preview_plan = plan if command in MUTATING_COMMANDS else list(comparison.actions)
            ctx.out(format_preview(comparison, command=command, actions=preview_plan))

        if options.execute and command in MUTATING_COMMANDS:
            result.enter(RunState.execute)
            if not plan:
                result.outcome = ExecutionOutcome(executed=True)
            elif command == "cleanup":
                result.outcome = _execute_cleanup(ctx, plan)
            else:
                result.outcome = _execute_migration(ctx, plan, inventories.tree)
        else:
            result.enter(RunState.preview)

        result.enter(RunState.report)
        result.report = build_report(
            comparison,
            command=command,
            outcome=result.outcome,
            broken_urls=result.broken_urls,
        )
        return result
    except RUN_LEVEL_ERRORS as exc:
        failed_state = result.state
        logger.error("Run aborted in %s: %s", failed_state.value, exc.describe())
        capture_run_abort(exc, state=failed_state.value)
        result.error = exc
        result.aborted_in = failed_state
        result.enter(RunState.aborted)
        return result
    except MediaSyncError as exc:
        # Without both inventories there is nothing safe to compare or execute.
        if result.state != RunState.read_inventories:
            raise
        logger.error("Run aborted while reading inventories: %s", exc.describe())
        capture_run_abort(exc, state=result.state.value)
        result.error = exc
        result.aborted_in = result.state
        result.enter(RunState.aborted)
        return result
    finally:
        pop_run_context(token)
