"""Command line entry point.

  mediasync audit [FOLDER | --asset PUBLIC_ID]
  mediasync preview agricola
  mediasync validate                    # invariant check plus a HEAD per CDN reference URL
  mediasync migrate agricola            # prints the plan, then executes it
  mediasync migrate --all --dry-run
  mediasync cleanup                     # preview of delete candidates
  mediasync cleanup --execute --confirm

Exit codes: 0 on success (per-item failures are reported, not fatal),
1 when credentials are missing or rejected or the run aborts, 2 on usage errors.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from .config import Settings, load_settings
from .errors import AuthError
from .logging_context import init_error_reporting
from .logging_utils import setup_logging
from .models import Scope
from .services.leftovers import LEFTOVER_STRATEGY_NAMES, build_leftover_strategy
from .services.report import format_markdown_report, format_report, format_summary
from .workflow import COMMANDS, RunContext, RunOptions, run

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mediasync",
        description="Reconcile the Cloudinary image inventory with the Strapi media library.",
    )
    parser.add_argument("command", choices=COMMANDS, help="Workflow command to run.")
    parser.add_argument(
        "target",
        nargs="?",
        default=None,
        help="Folder to scope the run to (root-relative, e.g. 'agricola').",
    )
    parser.add_argument(
        "--asset",
        default=None,
        help="Scope the run to one logical image by CDN public id.",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Target every folder under the CDN root.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the plan without mutating the CMS (migrate only; cleanup is dry-run by default).",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Perform deletes (cleanup only; requires --confirm).",
    )
    parser.add_argument(
        "--confirm",
        action="store_true",
        help="Confirm destructive cleanup together with --execute.",
    )
    parser.add_argument(
        "--skip-url-check",
        action="store_true",
        help="validate only: do not request every CDN reference URL.",
    )
    parser.add_argument(
        "--leftover-strategy",
        choices=LEFTOVER_STRATEGY_NAMES,
        default="provider",
        help="How cleanup identifies leftover CMS entries (default: %(default)s).",
    )
    parser.add_argument(
        "--output-dir",
        default=".",
        help="Output directory for report files (default: current directory).",
    )
    parser.add_argument(
        "--json-out",
        default=None,
        help="JSON report filename or '-' for stdout (default: not written).",
    )
    parser.add_argument(
        "--md-out",
        default=None,
        help="Markdown report filename or '-' for stdout (default: not written).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level for the JSON log on stderr (default: %(default)s).",
    )
    return parser.parse_args(argv)


def _usage_error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return EXIT_USAGE


def validate_args(args: argparse.Namespace) -> str | None:
    if args.target and args.asset:
        return "give either a folder target or --asset, not both"
    if args.all and (args.target or args.asset):
        return "--all cannot be combined with a folder target or --asset"
    if args.command in {"migrate", "execute"}:
        if not (args.target or args.asset or args.all):
            return f"{args.command} needs a folder target, --asset or --all"
        if args.execute or args.confirm:
            return "--execute/--confirm only apply to cleanup; use --dry-run to preview a migration"
    elif args.command == "cleanup":
        if args.dry_run and args.execute:
            return "--dry-run and --execute are mutually exclusive"
    elif args.execute or args.confirm:
        return f"{args.command} never mutates; --execute/--confirm are not accepted"
    return None


def build_scope(args: argparse.Namespace, settings: Settings) -> Scope:
    if args.asset:
        return Scope.for_asset(args.asset, root=settings.cdn_root_folder)
    if args.target:
        return Scope.for_folder(args.target, root=settings.cdn_root_folder)
    return Scope.all()


def should_execute(args: argparse.Namespace) -> bool:
    if args.command in {"migrate", "execute"}:
        return not args.dry_run
    if args.command == "cleanup":
        return bool(args.execute and args.confirm)
    return False


def write_outputs(report: dict[str, Any], args: argparse.Namespace) -> None:
    output_dir = Path(str(args.output_dir or ".")).resolve()
    outputs = (
        (args.json_out, format_report),
        (args.md_out, format_markdown_report),
    )
    for target, render in outputs:
        if target is None:
            continue
        payload = render(report)
        target = str(target).strip() or "-"
        if target == "-":
            print(payload)
            continue
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / target
        path.write_text(payload + "\n", encoding="utf-8")
        print(f"Wrote report to {path}")


def _print_command_output(command: str, report: dict[str, Any], args: argparse.Namespace) -> None:
    print(format_summary(report))
    if command == "validate":
        violations = report.get("violations") or []
        invalid = report.get("invalid") or []
        broken = report.get("brokenUrls") or []
        if not violations and not invalid and not broken:
            print("No invariant violations found.")
        for violation in violations:
            print(
                f"VIOLATION id={violation['id']} {violation['name']} folder={violation['folder']}:"
                f" {', '.join(violation['urls'])}"
            )
        for item in invalid:
            print(f"INVALID [{item['source']}] {item['message']} {item['context']}")
        for item in broken:
            print(
                f"BROKEN id={item['id']} {item['name']} folder={item['folder']}:"
                f" {item['url']} ({item['problem']})"
            )
    if command == "report" and args.json_out is None and args.md_out is None:
        print(format_markdown_report(report))
    for failure in (report.get("execution") or {}).get("failures") or []:
        print(
            f"FAILED {failure['kind']} id={failure['id']} name={failure['name']}"
            f" folder={failure['folder']}: {failure['detail']}",
            file=sys.stderr,
        )


def main(
    argv: Sequence[str] | None = None,
    *,
    settings_factory: Callable[[], Settings] = load_settings,
    context_factory: Callable[[Settings], RunContext] = RunContext.from_settings,
) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        return EXIT_OK if not exc.code else EXIT_USAGE

    problem = validate_args(args)
    if problem:
        return _usage_error(problem)

    setup_logging(args.log_level)
    settings = settings_factory()
    init_error_reporting(settings.sentry_dsn)
    strategy = build_leftover_strategy(
        args.leftover_strategy,
        extra_prefixes=settings.leftover_name_prefixes,
    )

    try:
        ctx = context_factory(settings)
    except AuthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    command = "migrate" if args.command == "execute" else args.command
    options = RunOptions(
        command=command,
        scope=build_scope(args, settings),
        execute=should_execute(args),
        leftover_strategy=strategy,
        check_urls=not args.skip_url_check,
    )
    logger.info(
        "Starting %s scope=%s execute=%s",
        command,
        options.scope.label,
        options.execute,
        extra={"leftover_strategy": strategy.name},
    )
    try:
        result = run(ctx, options)
    finally:
        ctx.close()

    if result.error is not None:
        stage = result.aborted_in or result.state
        print(f"Aborted ({stage.value}): {result.error.describe()}", file=sys.stderr)
        return EXIT_FAILURE
    if result.report is None:  # pragma: no cover - run always reports or aborts
        return EXIT_FAILURE

    _print_command_output(command, result.report, args)
    write_outputs(result.report, args)

    if command == "cleanup" and args.execute and not args.confirm:
        print(
            "\nRefusing to delete without --confirm. Re-run with --execute --confirm.",
            file=sys.stderr,
        )
        return EXIT_USAGE
    if command == "cleanup" and not options.execute:
        print("\nDry-run only. Re-run with --execute --confirm to delete.")
    if command == "migrate" and not options.execute:
        print("\nDry-run only. Re-run without --dry-run to apply.")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
