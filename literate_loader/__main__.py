"""
Load a literate project and stream its load events.

Usage:
    python -m literate_loader ./docs --identity cell --ignore "drafts/" --json
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import LoaderConfig
from .loading import (
    IgnorePatternError,
    LoadEvent,
    ProjectLoader,
    ProjectStatus,
    SqlAlchemyLoadRepository,
)


def setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    config = LoaderConfig.from_env()
    parser = argparse.ArgumentParser(prog="literate_loader", description="Load a literate markdown project")
    parser.add_argument("path", help="Project directory or markdown file")
    parser.add_argument("--kind", choices=["auto", "directory", "file"], default="auto", help="Root kind hint")
    parser.add_argument(
        "--identity",
        choices=["auto", "document", "cell"],
        default=config.identity_mode,
        help="Granularity of stable task identifiers",
    )
    parser.add_argument("--skip-gitignore", action="store_true", help="Do not read .gitignore or info/exclude")
    parser.add_argument(
        "--no-repository-exclude",
        action="store_true",
        help="Do not read the repository info/exclude file",
    )
    parser.add_argument("--ignore", action="append", default=[], metavar="PATTERN", help="Extra ignore pattern")
    parser.add_argument("--database-url", default=None, help="Persist the load to this SQLAlchemy URL")
    parser.add_argument("--workers", type=int, default=config.workers, help="Parallel document parsers")
    parser.add_argument("--max-file-size", type=int, default=config.max_file_size, help="Per-document byte limit")
    parser.add_argument("--json", action="store_true", help="Print one JSON object per event")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    return parser


def _print_event(event: LoadEvent, as_json: bool) -> None:
    if as_json:
        print(json.dumps(event.to_dict(), default=str), flush=True)
        return
    line = f"{event.sequence_number:>5} {event.event_type.value:<21} {event.path or ''}"
    if event.task_name:
        line += f"  [{event.task_language}] {event.task_name}"
    if event.error_message:
        line += f"  ! {event.error_kind}: {event.error_message}"
    print(line, flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    repo = SqlAlchemyLoadRepository(args.database_url) if args.database_url else None
    loader = ProjectLoader(repository=repo, max_file_size=args.max_file_size, workers=args.workers)
    try:
        result = loader.load(
            args.path,
            kind_hint=args.kind,
            skip_gitignore=args.skip_gitignore,
            ignore_file_patterns=args.ignore,
            identity=args.identity,
            use_repository_exclude=not args.no_repository_exclude,
            on_event=lambda event: _print_event(event, args.json),
        )
    except IgnorePatternError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    project = result.project
    failed = result.documents_in_error()
    print(
        f"Project {project.name} ({project.kind.value}) {project.status.value}: "
        f"{project.document_count} documents, {project.task_count} tasks, {len(failed)} document errors",
        file=sys.stderr,
    )
    for document in failed:
        print(f"  {document.path}: {document.error_message}", file=sys.stderr)
    return 0 if project.status == ProjectStatus.LOADED else 1


if __name__ == "__main__":
    sys.exit(main())
