# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""EventProbe CLI: run, validate-catalog commands.

Usage:
    eventprobe run --catalog catalog.yaml --tasks tasks.yaml --property 123456 [--output report.json] [--json-logs]
    eventprobe validate-catalog --catalog catalog.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from . import logging_config
from .analytics import GA4QueryService
from .browser_renderer import PlaywrightRenderer
from .catalog import YamlCatalogSource
from .config import ConfigSnapshot, PipelineConfig
from .errors import ConfigurationError
from .models import PageStatus, PageTask
from .reporter import build_report, write_report
from .scheduler import ConcurrencyScheduler, RunReport
from .vision import DEFAULT_MODEL, AnthropicVisionService

logger = logging.getLogger(__name__)

GA4_TOKEN_ENV = "GA4_ACCESS_TOKEN"


def load_tasks(path: str | Path) -> list[PageTask]:
    """Read page tasks from YAML: a list, or a mapping with a ``tasks`` list.

    Each entry: ``id``, ``url``, optional ``page_type_hint`` and
    ``expected_events``.
    """
    p = Path(path)
    try:
        document = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot load tasks from {p}: {exc}") from exc

    raw_tasks: Any = document.get("tasks") if isinstance(document, dict) else document
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise ConfigurationError(f"{p}: expected a non-empty list of tasks")

    tasks = []
    for i, raw in enumerate(raw_tasks):
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{p}: tasks[{i}] must be a mapping")
        try:
            tasks.append(
                PageTask(
                    id=str(raw.get("id") or ""),
                    url=str(raw.get("url") or ""),
                    page_type_hint=raw.get("page_type_hint"),
                    expected_event_names=tuple(raw.get("expected_events") or ()),
                )
            )
        except ValueError as exc:
            raise ConfigurationError(f"{p}: tasks[{i}]: {exc}") from exc
    return tasks


def _print_summary(report: RunReport) -> None:
    summary = report.summary
    print(f"\nPages: {summary.total}")
    for status in PageStatus:
        n = summary.count(status)
        if n:
            print(f"  {status.value:<24} {n}")
    print(f"Overall accuracy:   {summary.overall_accuracy:.1%} ({summary.compared} pages compared)")
    print(f"Mean page accuracy: {summary.mean_page_accuracy:.1%}")
    if summary.missed_by_event:
        print("Most missed events:")
        for name, n in list(summary.missed_by_event.items())[:10]:
            print(f"  {name:<32} {n}")
    if summary.wrong_by_event:
        print("Most wrongly predicted events:")
        for name, n in list(summary.wrong_by_event.items())[:10]:
            print(f"  {name:<32} {n}")
    print(f"Elapsed: {summary.elapsed_seconds:.1f}s")


async def _run_pipeline(
    snapshot: ConfigSnapshot, tasks: list[PageTask], config: PipelineConfig, args: argparse.Namespace
) -> RunReport:
    token = os.environ.get(GA4_TOKEN_ENV, "")
    vision = AnthropicVisionService(model_name=args.model)
    async with PlaywrightRenderer() as renderer, GA4QueryService(args.property, token) as analytics:
        scheduler = ConcurrencyScheduler(snapshot, renderer, vision, analytics, config)
        return await scheduler.run_batch(tasks)


def cmd_run(args: argparse.Namespace) -> int:
    snapshot = YamlCatalogSource(args.catalog).load()
    tasks = load_tasks(args.tasks)
    overrides = {}
    if args.render_concurrency is not None:
        overrides["render_concurrency"] = args.render_concurrency
    if args.inference_concurrency is not None:
        overrides["inference_concurrency"] = args.inference_concurrency
    try:
        config = PipelineConfig.from_env(**overrides)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    report = asyncio.run(_run_pipeline(snapshot, tasks, config, args))
    _print_summary(report)
    if args.output:
        out = write_report(args.output, build_report(report.results, report.summary))
        print(f"\nSaved to {out}")
    return 0


def cmd_validate_catalog(args: argparse.Namespace) -> int:
    snapshot = YamlCatalogSource(args.catalog).load()
    print(f"{len(snapshot.events)} events, default page type {snapshot.page_types.default_page_type}")
    for event in snapshot.events:
        pages = ", ".join(sorted(event.allowed_page_types)) if event.allowed_page_types else "ALL"
        flags = []
        if event.requires_ui:
            flags.append(f"ui={','.join(event.requires_ui_elements)}")
        if event.filters:
            flags.append(f"filters={len(event.filters)}")
        if event.session_once:
            flags.append("session_once")
        print(f"  {event.event_name:<32} [{pages}] {' '.join(flags)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="EventProbe: predict and validate analytics events", prog="eventprobe")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_run = subparsers.add_parser(
        "run",
        help="Predict events per page and compare against GA4",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"The GA4 bearer token is read from ${GA4_TOKEN_ENV}; the Anthropic key from $ANTHROPIC_API_KEY.",
    )
    p_run.add_argument("--catalog", required=True, metavar="PATH", help="Tag configuration YAML")
    p_run.add_argument("--tasks", required=True, metavar="PATH", help="Page task list YAML")
    p_run.add_argument("--property", required=True, metavar="ID", help="GA4 property id")
    p_run.add_argument("-o", "--output", metavar="PATH", help="Write the JSON report here")
    p_run.add_argument("--model", default=DEFAULT_MODEL, help=f"Vision model (default: {DEFAULT_MODEL})")
    p_run.add_argument("--render-concurrency", type=int, metavar="N")
    p_run.add_argument("--inference-concurrency", type=int, metavar="N")
    p_run.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    p_validate = subparsers.add_parser("validate-catalog", help="Load the tag configuration and list its events")
    p_validate.add_argument("--catalog", required=True, metavar="PATH", help="Tag configuration YAML")

    args = parser.parse_args(argv)
    logging_config.configure(json_output=getattr(args, "json_logs", False), level="DEBUG" if args.verbose else "INFO")

    commands = {"run": cmd_run, "validate-catalog": cmd_validate_catalog}
    try:
        return commands[args.command](args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
