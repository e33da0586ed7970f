"""CLI entry point for the bookmark curator tool.

Provides parsing, AI organisation planning (concurrent batches across a group of
AI configurations), plan application, HTML rendering and validation modes.
Distinct workflow segments are delegated to focused helper functions.
"""

from __future__ import annotations

# Standard library imports (alphabetical within groups)
import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

# Third-party imports
from dotenv import load_dotenv

# Internal imports
from bookmark_curator.ai_service import check_connection
from bookmark_curator.applier import apply_organization_plan, auto_select, filter_plan
from bookmark_curator.errors import ConfigNotFoundError
from bookmark_curator.html_writer import write_bookmark_html
from bookmark_curator.models import (
    ApplyOptions,
    BookmarkTreeModel,
    OrganizationPlan,
    OrganizeOptions,
)
from bookmark_curator.organiser import BookmarkOrganiser
from bookmark_curator.parser import parse_bookmark_html
from bookmark_curator.settings_store import JsonFileConfigRepository
from bookmark_curator.validator import validate_application

if TYPE_CHECKING:  # pragma: no cover
    from bookmark_curator.models import BookmarkNode, ProcessingLog
    from bookmark_curator.settings_store import AiSettings

STAGES: dict[int, str] = {
    1: "Parse bookmark export",
    2: "Persist bookmark tree JSON",
    3: "AI organisation plan",
    4: "Apply plan & HTML rebuild",
    5: "Validation",
}

DEFAULT_SETTINGS_FILE = "ai_settings.json"

LOGGER = logging.getLogger("bookmark_curator")


def configure_logging(*, verbose: bool) -> None:
    """Configure root logging (debug when verbose).

    verbose: when True, sets DEBUG level; otherwise INFO.
    (Keyword-only to improve call-site clarity.)
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def log_stage(stage_number: int, message: str, *args: object) -> None:
    """Log a message prefixed with a stage label."""
    stage_label = STAGES.get(stage_number, f"Stage {stage_number}")
    LOGGER.info("[%s] %s", stage_label, message % args if args else message)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Organise browser bookmark exports with AI")
    parser.add_argument(
        "--input",
        help=(
            "Path to the exported bookmarks HTML file. If omitted, the environment variable"
            " BOOKMARKS_EXPORT_FILE is used."
        ),
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to the AI settings JSON file. Defaults to BOOKMARK_CURATOR_CONFIG or"
            f" {DEFAULT_SETTINGS_FILE}."
        ),
    )
    parser.add_argument(
        "--mode",
        choices=("plan", "apply", "all", "configs"),
        default="all",
        help=(
            "Workflow: 'plan'→tree JSON + plan JSON; 'apply'→apply a saved plan and write"
            " HTML; 'all'→plan then apply; 'configs'→list AI configurations and groups."
        ),
    )
    parser.add_argument("--group", help="AI config group id or name to organise with")
    parser.add_argument(
        "--tree-output", default="bookmarks_tree.json", help="Path of the parsed tree JSON",
    )
    parser.add_argument(
        "--plan-output", default="organization_plan.json", help="Path of the plan JSON",
    )
    parser.add_argument(
        "--log-output", default="processing_log.json", help="Path of the processing log JSON",
    )
    parser.add_argument(
        "--html-output",
        default="bookmarks_organised.html",
        help="Path to emit the organised bookmarks HTML",
    )
    parser.add_argument("--batch-size", type=int, default=OrganizeOptions().batch_size)
    parser.add_argument("--max-depth", type=int, default=OrganizeOptions().max_depth)
    parser.add_argument(
        "--confidence-threshold",
        type=float,
        default=OrganizeOptions().confidence_threshold,
    )
    parser.add_argument("--flat", action="store_true", help="Suggest single-level categories")
    parser.add_argument("--no-duplicates", action="store_true", help="Skip duplicate detection")
    parser.add_argument("--no-tags", action="store_true", help="Do not ask for tags")
    parser.add_argument(
        "--keep-duplicates",
        action="store_true",
        help="Keep duplicate bookmarks instead of merging them when applying",
    )
    parser.add_argument(
        "--auto-select",
        action="store_true",
        help="Apply only confident suggestions and exact-URL duplicates",
    )
    parser.add_argument(
        "--test-connections",
        action="store_true",
        help="With --mode configs, send a test prompt through every configuration",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()
    if args.test_connections and args.mode != "configs":
        parser.error("--test-connections can only be combined with mode=configs")
    return args


def _resolve_input(path_arg: str | None) -> Path:
    resolved = path_arg or os.getenv("BOOKMARKS_EXPORT_FILE")
    if not resolved:
        msg = "No input file provided. Supply --input or set BOOKMARKS_EXPORT_FILE in env."
        raise SystemExit(msg)
    return Path(resolved)


def _resolve_settings_path(path_arg: str | None) -> Path:
    return Path(path_arg or os.getenv("BOOKMARK_CURATOR_CONFIG") or DEFAULT_SETTINGS_FILE)


def _resolve_group_id(settings: AiSettings, requested: str | None) -> str | None:
    """Accept a group id or name; fall back to the active group."""
    if not requested:
        return settings.active_group_id
    if any(group.id == requested for group in settings.groups):
        return requested
    group = settings.find_group_by_name(requested)
    if group is None:
        msg = f"AiConfigGroup '{requested}' not found"
        raise ConfigNotFoundError(msg)
    return group.id


@dataclass(slots=True)
class PipelinePaths:
    """Bundle of core paths used by the pipeline."""

    tree_path: Path
    plan_path: Path
    log_path: Path
    html_path: Path


def write_tree_json(nodes: list[BookmarkNode], path: Path) -> None:
    """Write a bookmark tree to a JSON file."""
    path.write_text(BookmarkTreeModel.from_nodes(nodes).model_dump_json(indent=2), encoding="utf-8")
    LOGGER.info("Wrote bookmark tree to %s", path)


def load_tree_json(path: Path) -> list[BookmarkNode]:
    """Load a bookmark tree from a JSON file."""
    return BookmarkTreeModel.model_validate_json(path.read_text(encoding="utf-8")).to_nodes()


def write_plan_json(plan: OrganizationPlan, path: Path) -> None:
    path.write_text(plan.model_dump_json(indent=2), encoding="utf-8")
    LOGGER.info("Wrote plan with %d suggestions to %s", len(plan.suggestions), path)


def load_plan_json(path: Path) -> OrganizationPlan:
    return OrganizationPlan.model_validate_json(path.read_text(encoding="utf-8"))


def write_log_json(entries: list[ProcessingLog], path: Path) -> None:
    payload = [entry.model_dump(mode="json") for entry in entries]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def _build_options(args: argparse.Namespace, group_id: str | None) -> OrganizeOptions:
    return OrganizeOptions(
        max_depth=args.max_depth,
        create_hierarchy=not args.flat,
        detect_duplicates=not args.no_duplicates,
        generate_tags=not args.no_tags,
        confidence_threshold=args.confidence_threshold,
        batch_size=args.batch_size,
        group_id=group_id,
    )


async def _organise(
    organiser: BookmarkOrganiser, nodes: list[BookmarkNode], options: OrganizeOptions,
) -> OrganizationPlan:
    loop = asyncio.get_running_loop()
    # Signal handlers are unavailable on some platforms (Windows event loops).
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, organiser.cancel_operation)
    try:
        return await organiser.organize_bookmarks(nodes, options)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


def _run_plan(
    args: argparse.Namespace, input_path: Path, paths: PipelinePaths,
) -> tuple[list[BookmarkNode], OrganizationPlan]:
    log_stage(1, "Starting stage 1: Parse bookmark export")
    nodes = parse_bookmark_html(input_path)
    log_stage(2, "Writing bookmark tree JSON to %s", paths.tree_path)
    write_tree_json(nodes, paths.tree_path)

    repository = JsonFileConfigRepository(_resolve_settings_path(args.config))
    group_id = _resolve_group_id(repository.load(), args.group)
    organiser = BookmarkOrganiser(
        repository,
        on_progress=lambda progress: log_stage(
            3, "Batches settled: %d/%d", progress.processed, progress.total,
        ),
    )
    log_stage(3, "Requesting organisation plan")
    try:
        plan = asyncio.run(_organise(organiser, nodes, _build_options(args, group_id)))
    finally:
        write_log_json(organiser.get_logs(), paths.log_path)
    write_plan_json(plan, paths.plan_path)
    if not plan.metadata.is_complete:
        LOGGER.warning(
            "Plan covers %d of %d bookmarks (%d failed batches); see %s",
            plan.metadata.processed_bookmarks,
            plan.metadata.total_bookmarks,
            plan.metadata.failed_batches,
            paths.log_path,
        )
    log_stage(3, "Organisation state: %s", organiser.state.value)
    return nodes, plan


def _run_apply(
    args: argparse.Namespace,
    nodes: list[BookmarkNode],
    plan: OrganizationPlan,
    paths: PipelinePaths,
) -> None:
    if args.auto_select:
        suggestion_ids, duplicate_ids = auto_select(plan)
        plan = filter_plan(plan, suggestion_ids, duplicate_ids)
        log_stage(4, "Auto-selected %d suggestions", len(plan.suggestions))
    options = ApplyOptions(handle_duplicates="keep_all" if args.keep_duplicates else "merge")
    log_stage(4, "Applying plan and building HTML at %s", paths.html_path)
    organised = apply_organization_plan(nodes, plan, options)
    write_bookmark_html(organised, paths.html_path)
    log_stage(5, "Running validation checks")
    validate_application(nodes, organised, plan, options.handle_duplicates)
    log_stage(5, "Workflow completed successfully")


def _handle_apply_only(args: argparse.Namespace, paths: PipelinePaths) -> None:
    for required in (paths.tree_path, paths.plan_path):
        if not required.exists():
            msg = f"{required} not found; run in 'plan' mode first"
            raise FileNotFoundError(msg)
    log_stage(4, "Loading tree from %s and plan from %s", paths.tree_path, paths.plan_path)
    _run_apply(args, load_tree_json(paths.tree_path), load_plan_json(paths.plan_path), paths)


def _handle_configs(args: argparse.Namespace) -> None:
    repository = JsonFileConfigRepository(_resolve_settings_path(args.config))
    settings = repository.load()
    if not settings.configs:
        LOGGER.info("No AI configurations in %s", repository.path)
    for config in settings.configs:
        marker = "*" if config.id == settings.active_config_id else " "
        LOGGER.info(
            "%s %s | %s | %s | %s", marker, config.id, config.name, config.provider, config.model_id,
        )
        if args.test_connections:
            check = asyncio.run(check_connection(config))
            LOGGER.info("    %s", check.message)
    for group in settings.groups:
        marker = "*" if group.id == settings.active_group_id else " "
        names = [
            config.name for config in settings.configs if config.id in group.ai_config_ids
        ]
        LOGGER.info("%s group %s | %s | %s", marker, group.id, group.name, ", ".join(names))


def main() -> None:
    """Entry point for the bookmark curator CLI."""
    load_dotenv()
    args = _parse_args()
    configure_logging(verbose=args.verbose)
    paths = PipelinePaths(
        tree_path=Path(args.tree_output),
        plan_path=Path(args.plan_output),
        log_path=Path(args.log_output),
        html_path=Path(args.html_output),
    )

    if args.mode == "configs":  # Early dispatch
        _handle_configs(args)
        return
    if args.mode == "apply":  # Early dispatch
        _handle_apply_only(args, paths)
        return

    nodes, plan = _run_plan(args, _resolve_input(args.input), paths)
    if args.mode == "all":
        _run_apply(args, nodes, plan, paths)


if __name__ == "__main__":
    main()
