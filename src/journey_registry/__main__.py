"""Entry point for `python -m journey_registry` and the `journeys` CLI script."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from journey_registry.engine import ValidationEngine, ValidationOptions
from journey_registry.errors import JourneyError, RecordRejected
from journey_registry.ids import parse_id_list
from journey_registry.models import JourneyStatus, Severity
from journey_registry.promote import promote
from journey_registry.registry import stale_generated, write_generated
from journey_registry.report import (
    current_status_block,
    diff_status_block,
    emit_report,
    merge_status_block,
    relative_report_path,
    render_status_block,
    report_paths,
)
from journey_registry.settings import MODE_CHOICES, RegistrySettings
from journey_registry.state_store import JourneyStore


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="journeys", description="Journey registry and validation engine")
    parser.add_argument("--root", type=Path, default=Path.cwd(), help="Repository root (default: cwd)")
    parser.add_argument("--config", type=Path, default=None, help="Path to journeys.config.yml")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    allocate = sub.add_parser("allocate", help="Print the next free journey id")
    allocate.add_argument("--prefix", default=None)
    allocate.add_argument("--width", type=int, default=None)

    generate = sub.add_parser("generate", help="Regenerate BACKLOG.md and index.json")
    generate.add_argument("--check", action="store_true", help="Exit non-zero if generated files are stale; write nothing")

    validate = sub.add_parser("validate", help="Run the validation gates for one or more journeys")
    validate.add_argument("ids", help="Journey id, comma list or range (JRN-0001..JRN-0003)")
    validate.add_argument("--strict", action="store_true", default=None, help="Promote issues to errors and fail on any error")
    validate.add_argument("--mode", choices=sorted(MODE_CHOICES), default=None)
    validate.add_argument("--merge-status", action="store_true", help="Write the validation-status block into the record")
    validate.add_argument("--dry-run", action="store_true", help="Write nothing; print the status block diff")

    promote_cmd = sub.add_parser("promote", help="Validate strictly and mark a journey implemented")
    promote_cmd.add_argument("id")
    promote_cmd.add_argument("--dry-run", action="store_true")

    status = sub.add_parser("status", help="Move a journey to another lifecycle status")
    status.add_argument("id")
    status.add_argument(
        "status", choices=[item.value for item in JourneyStatus if item != JourneyStatus.IMPLEMENTED]
    )
    status.add_argument("--owner", default=None)
    status.add_argument("--issue", default=None)
    status.add_argument("--replaced-by", default=None)
    status.add_argument("--reason", default=None)
    return parser.parse_args(argv)


def _cmd_allocate(store: JourneyStore, args: argparse.Namespace) -> int:
    print(store.allocate(args.prefix, args.width))
    return 0


def _cmd_generate(store: JourneyStore, args: argparse.Namespace) -> int:
    if args.check:
        stale = stale_generated(store)
        for path in stale:
            print(f"stale: {path}")
        return 1 if stale else 0
    result = write_generated(store)
    for path in result.written:
        print(f"wrote: {path}")
    for path in result.unchanged:
        print(f"unchanged: {path}")
    return 0


def _cmd_validate(store: JourneyStore, args: argparse.Namespace) -> int:
    settings = store.settings
    engine = ValidationEngine(settings, store.repo_root)
    options = ValidationOptions(strict=args.strict, mode=args.mode, dry_run=args.dry_run)
    exit_code = 0
    for record_id in parse_id_list(args.ids, prefix=settings.id_prefix, width=settings.id_width):
        report = engine.validate(record_id, store=store, options=options)
        print(
            f"{record_id}: {'PASS' if report.passed else 'FAIL'} "
            f"({report.count(Severity.ERROR)} error(s), {report.count(Severity.WARNING)} warning(s), backend {report.backend})"
        )
        for issue in report.issues:
            print(f"  [{issue.severity.value}] {issue.gate}/{issue.rule_id} {issue.location}: {issue.message}")

        markdown_path, _ = report_paths(report, settings, store.repo_root)
        report_rel = relative_report_path(markdown_path, store.repo_root)
        if args.dry_run:
            snapshot = store.snapshot()
            stored = snapshot.find(record_id)
            if stored is not None:
                print(diff_status_block(current_status_block(stored), render_status_block(report, report_rel)), end="")
        else:
            emit_report(report, settings, store.repo_root)
            if args.merge_status and store.snapshot().find(record_id) is not None:
                merge_status_block(store, report, snapshot=store.snapshot(), report_path=report_rel)
        if report.strict and not report.passed:
            exit_code = 1
    return exit_code


def _cmd_promote(store: JourneyStore, args: argparse.Namespace) -> int:
    result = promote(store, args.id, dry_run=args.dry_run)
    for warning in result.warnings:
        print(f"warning: {warning}")
    if result.dry_run:
        print(result.status_diff, end="")
        print(f"{args.id}: would {'' if result.would_promote else 'not '}be promoted")
        return 0 if result.would_promote else 1
    print(f"{args.id}: {'promoted to implemented' if result.promoted else 'not promoted'}")
    return 0 if result.promoted else 1


def _cmd_status(store: JourneyStore, args: argparse.Namespace) -> int:
    stored = store.set_status(
        args.id,
        args.status,
        snapshot=store.snapshot(),
        owner=args.owner,
        issue=args.issue,
        replaced_by=args.replaced_by,
        status_reason=args.reason,
    )
    print(f"{args.id}: {stored.record.status.value} ({stored.rel_path})")
    return 0


COMMANDS = {
    "allocate": _cmd_allocate,
    "generate": _cmd_generate,
    "validate": _cmd_validate,
    "promote": _cmd_promote,
    "status": _cmd_status,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    repo_root = args.root.resolve()
    try:
        settings = RegistrySettings.load(repo_root, config_path=args.config)
    except (OSError, ValueError) as exc:
        logging.error("Unable to load configuration: %s", exc)
        return 1

    store = JourneyStore(repo_root, settings)
    try:
        return COMMANDS[args.command](store, args)
    except RecordRejected as exc:
        logging.error("%s", exc)
        for error in exc.errors:
            print(f"  [{error.kind}] {error}")
        return 1
    except (JourneyError, KeyError, ValueError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
