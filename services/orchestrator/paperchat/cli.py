"""命令行入口：批量导入目录下的论文文件。

用法：python -m paperchat.cli import-papers ./data --tags nlp,rag
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from paperchat.application.container import get_indexer, shutdown_container_resources
from paperchat.application.indexing import SUPPORTED_SUFFIXES
from paperchat.config import get_settings
from paperchat.infra.db.session import init_db
from paperchat.infra.logging.setup import configure_logging, shutdown_logging

logger = logging.getLogger(__name__)


def _collect_files(directory: Path) -> list[Path]:
    return sorted(path for path in directory.iterdir() if path.is_file() and path.suffix.lower() in SUPPORTED_SUFFIXES)


async def import_papers(directory: Path, tags: list[str]) -> int:
    """逐个导入，单个文件失败不影响其余文件；返回失败数量。"""
    indexer = get_indexer()
    failures = 0
    try:
        for path in _collect_files(directory):
            try:
                summary = await indexer.index_file(path, tags=tags)
            except Exception as exc:
                failures += 1
                logger.error(
                    "paper import failed",
                    extra={"event": "cli.import.failed", "op": path.name, "error_type": type(exc).__name__, "error": str(exc)},
                )
                print(f"[fail] {path.name}: {exc}", file=sys.stderr)
                continue
            print(f"[ok] {summary.paper_id}: {summary.chunk_count} chunks - {summary.title[:50]}")
    finally:
        await shutdown_container_resources()
    return failures


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="paperchat")
    subcommands = parser.add_subparsers(dest="command", required=True)
    importer = subcommands.add_parser("import-papers", help="index every pdf/txt/md file in a directory")
    importer.add_argument("directory", type=Path)
    importer.add_argument("--tags", default="", help="comma separated tags applied to every paper")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if not args.directory.is_dir():
        print(f"not a directory: {args.directory}", file=sys.stderr)
        return 2
    configure_logging(get_settings(), process_role="cli")
    try:
        init_db()
        tags = [tag.strip() for tag in args.tags.split(",") if tag.strip()]
        failures = asyncio.run(import_papers(args.directory, tags))
    finally:
        shutdown_logging()
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
