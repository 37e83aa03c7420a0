from __future__ import annotations

import json
from typing import Any, Sequence

from ..models import (
    ActionResult,
    CreateFolder,
    CreateReference,
    DeleteEntry,
    ExecutionOutcome,
    ReconciliationAction,
    UpdateReference,
)
from .comparator import Comparison
from .url_check import BrokenUrl

FOLDER_BREAKDOWN_COMMANDS = {"audit", "report", "validate"}


def action_record(action: ReconciliationAction) -> dict[str, Any]:
    record: dict[str, Any] = {"kind": action.kind.value, "description": action.describe()}
    if isinstance(action, CreateFolder):
        record.update(
            {
                "name": action.name,
                "path": action.path,
                "parentPath": action.parent_path,
                "parentId": action.parent_id,
            }
        )
    elif isinstance(action, CreateReference):
        record.update(
            {
                "name": action.asset.filename,
                "publicId": action.asset.public_id,
                "folder": action.target_folder_path,
                "folderId": action.target_folder_id,
                "url": action.asset.url,
            }
        )
    elif isinstance(action, UpdateReference):
        record.update(
            {
                "id": action.media_entry_id,
                "name": action.name,
                "folder": action.folder_path,
                "publicId": action.asset.public_id,
                "newUrls": {key: url for key, url in action.new_urls},
                "reasons": list(action.reasons),
            }
        )
    elif isinstance(action, DeleteEntry):
        record.update(
            {
                "id": action.media_entry_id,
                "name": action.name,
                "folderId": action.folder_id,
                "reason": action.reason,
            }
        )
    return record


def _failure_record(result: ActionResult) -> dict[str, Any]:
    record = action_record(result.action)
    return {
        "kind": record["kind"],
        "id": record.get("id", result.entry_id),
        "name": record.get("name"),
        "folder": record.get("folder", record.get("path", record.get("folderId"))),
        "error": result.error,
        "detail": result.detail,
    }


def build_report(
    comparison: Comparison,
    *,
    command: str,
    outcome: ExecutionOutcome | None = None,
    broken_urls: Sequence[BrokenUrl] = (),
) -> dict[str, Any]:
    """Deterministic snapshot of one run; contains no timestamps or run ids."""
    outcome = outcome or ExecutionOutcome()
    if command in {"migrate", "execute", "cleanup"}:
        plan = comparison.plan_for(command)
    else:
        plan = list(comparison.actions)

    summary = {
        "counts": comparison.counts,
        "cdnAssets": comparison.cdn_asset_count,
        "cdnImages": comparison.cdn_image_count,
        "cmsEntries": comparison.cms_entry_count,
        "folderStatus": {
            path: status.value for path, status in sorted(comparison.folder_status.items())
        },
        "duplicates": len(comparison.duplicates),
        "invariantViolations": len(comparison.violations),
        "brokenUrls": len(broken_urls),
    }

    report: dict[str, Any] = {
        "command": command,
        "scope": comparison.scope.label,
        "leftoverStrategy": {
            "name": comparison.leftover_strategy,
            "heuristic": comparison.leftover_heuristic,
        },
        "summary": summary,
        "actions": [action_record(action) for action in plan],
        "orphanVariants": [
            {
                "folder": orphan.folder,
                "basename": orphan.basename,
                "variants": list(orphan.variants),
                "publicIds": list(orphan.public_ids),
            }
            for orphan in comparison.orphan_variants
        ],
        "invalid": [
            {"source": item.source, "message": item.message, "context": dict(item.context)}
            for item in comparison.invalid
        ],
        "duplicates": [
            {
                "folder": dup.folder,
                "basename": dup.basename,
                "keptId": dup.kept_id,
                "duplicateIds": list(dup.duplicate_ids),
            }
            for dup in comparison.duplicates
        ],
        "violations": [
            {
                "id": violation.media_entry_id,
                "name": violation.name,
                "folder": violation.folder,
                "urls": list(violation.urls),
            }
            for violation in comparison.violations
        ],
        "brokenUrls": [
            {
                "id": item.media_entry_id,
                "name": item.name,
                "folder": item.folder,
                "url": item.url,
                "problem": item.problem,
            }
            for item in broken_urls
        ],
        "execution": {
            "executed": outcome.executed,
            "tallies": outcome.tallies(),
            "succeeded": sum(1 for result in outcome.results if result.ok),
            "failed": len(outcome.failures),
            "failures": [_failure_record(result) for result in outcome.failures],
        },
    }
    if command in FOLDER_BREAKDOWN_COMMANDS:
        report["folders"] = {
            key: dict(value) for key, value in sorted(comparison.folder_breakdown.items())
        }
    return report


def format_report(report: dict[str, Any]) -> str:
    return json.dumps(report, indent=2, sort_keys=True)


def format_markdown_report(report: dict[str, Any]) -> str:
    summary: dict[str, Any] = dict(report.get("summary") or {})
    execution: dict[str, Any] = dict(report.get("execution") or {})
    strategy: dict[str, Any] = dict(report.get("leftoverStrategy") or {})

    lines: list[str] = []
    lines.append("# Media Reconciliation Report")
    lines.append("")
    lines.append(f"- Command: `{report.get('command')}`")
    lines.append(f"- Scope: `{report.get('scope')}`")
    heuristic = " (heuristic)" if strategy.get("heuristic") else ""
    lines.append(f"- Leftover strategy: `{strategy.get('name')}`{heuristic}")
    lines.append(f"- CDN images: `{summary.get('cdnImages', 0)}`")
    lines.append(f"- CMS entries: `{summary.get('cmsEntries', 0)}`")
    lines.append("")

    def emit_counts(title: str, mapping: dict[str, Any]) -> None:
        lines.append(f"## {title}")
        lines.append("")
        if not mapping:
            lines.append("_None_")
            lines.append("")
            return
        for key in sorted(mapping):
            lines.append(f"- `{key}`: `{mapping[key]}`")
        lines.append("")

    emit_counts("Counts", dict(summary.get("counts") or {}))
    emit_counts("Folder Status", dict(summary.get("folderStatus") or {}))

    def cell(value: Any) -> str:
        raw = "" if value is None else str(value)
        return raw.replace("\n", " ").replace("|", "\\|")

    folders: dict[str, Any] = dict(report.get("folders") or {})
    if folders:
        lines.append("## Folders")
        lines.append("")
        lines.append("| folder | status | cdn | cms | create | update | delete | noop |")
        lines.append("|---|---|---|---|---|---|---|---|")
        for name in sorted(folders):
            row = folders[name]
            lines.append(
                "| "
                + " | ".join(
                    [
                        cell(name),
                        cell(row.get("status")),
                        cell(row.get("cdnImages")),
                        cell(row.get("cmsEntries")),
                        cell(row.get("createReference")),
                        cell(row.get("updateReference")),
                        cell(row.get("deleteEntry")),
                        cell(row.get("noop")),
                    ]
                )
                + " |"
            )
        lines.append("")

    lines.append("## Actions")
    lines.append("")
    actions: list[dict[str, Any]] = list(report.get("actions") or [])
    if not actions:
        lines.append("_None_")
    for action in actions:
        lines.append(f"- `{action.get('kind')}` {cell(action.get('description'))}")
    lines.append("")

    violations: list[dict[str, Any]] = list(report.get("violations") or [])
    if violations:
        lines.append("## Invariant Violations")
        lines.append("")
        for violation in violations:
            lines.append(
                f"- id={violation.get('id')} {cell(violation.get('name'))}"
                f" folder={cell(violation.get('folder'))}: {len(violation.get('urls') or [])} off-CDN URL(s)"
            )
        lines.append("")

    broken: list[dict[str, Any]] = list(report.get("brokenUrls") or [])
    if broken:
        lines.append("## Broken URLs")
        lines.append("")
        lines.append("| id | name | folder | url | problem |")
        lines.append("|---|---|---|---|---|")
        for item in broken:
            lines.append(
                "| "
                + " | ".join(
                    cell(item.get(key)) for key in ("id", "name", "folder", "url", "problem")
                )
                + " |"
            )
        lines.append("")

    if execution.get("executed"):
        lines.append("## Execution")
        lines.append("")
        lines.append(f"- Succeeded: `{execution.get('succeeded', 0)}`")
        lines.append(f"- Failed: `{execution.get('failed', 0)}`")
        for failure in execution.get("failures") or []:
            lines.append(
                f"- FAILED `{failure.get('kind')}` id={failure.get('id')} {cell(failure.get('name'))}"
                f" folder={cell(failure.get('folder'))}: {cell(failure.get('detail'))}"
            )
        lines.append("")

    lines.append("## Notes")
    lines.append("")
    lines.append("- Output is deterministic (no timestamps).")
    lines.append("- Binary image content is never copied; CMS entries reference CDN URLs.")
    lines.append("")
    return "\n".join(lines)


def format_preview(comparison: Comparison, *, command: str, actions: Sequence[ReconciliationAction]) -> str:
    lines = [f"Plan for {command} ({comparison.scope.label}): {len(actions)} action(s)"]
    if comparison.leftover_heuristic and any(isinstance(a, DeleteEntry) for a in actions):
        lines.append(
            f"WARNING: delete candidates come from the '{comparison.leftover_strategy}'"
            " heuristic; review every entry below."
        )
    for action in actions:
        lines.append(f"- {action.describe()}")
    if comparison.orphan_variants:
        lines.append(f"Orphan variants (no original, skipped): {len(comparison.orphan_variants)}")
    if comparison.invalid:
        lines.append(f"Invalid inventory items (skipped): {len(comparison.invalid)}")
    return "\n".join(lines)


def format_summary(report: dict[str, Any]) -> str:
    counts: dict[str, Any] = dict((report.get("summary") or {}).get("counts") or {})
    parts = [f"{key}={counts[key]}" for key in sorted(counts)]
    line = f"{report.get('command')} {report.get('scope')}: " + " ".join(parts)
    execution: dict[str, Any] = dict(report.get("execution") or {})
    if execution.get("executed"):
        line += f" | succeeded={execution.get('succeeded', 0)} failed={execution.get('failed', 0)}"
    return line
