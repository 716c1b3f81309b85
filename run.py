"""Command-line entry point for the Pustakam book generator."""

import argparse
import logging
import sys
from pathlib import Path

from pustakam.analytics import analyze_book
from pustakam.config import AppConfig, load_config
from pustakam.errors import PustakamError
from pustakam.export.markdown import export_markdown
from pustakam.export.pdf import PdfRenderer
from pustakam.generation.llm_client import LLMClient
from pustakam.generation.orchestrator import BookGenerator, ProgressEvent
from pustakam.generation.rate_limiter import RateLimiter
from pustakam.models.book import BookSession, ComplexityLevel, GenerationMode, Language
from pustakam.storage.backup import apply_import, backup_filename, export_backup, load_backup, preview_import
from pustakam.storage.bookmarks import BookmarkStore
from pustakam.storage.kv import SQLiteKeyValueStore
from pustakam.storage.repository import LocalStore

logger = logging.getLogger("pustakam")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pustakam", description="Generate learning books with AI.")
    parser.add_argument("--config", default="config.yaml", help="Path to the YAML configuration file")
    parser.add_argument("--user", default=None, help="Profile id whose books to use")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a new book")
    gen.add_argument("goal", help="What the book should teach")
    gen.add_argument("--title")
    gen.add_argument("--audience")
    gen.add_argument("--complexity", choices=[c.value for c in ComplexityLevel])
    gen.add_argument("--language", choices=[lang.value for lang in Language])
    gen.add_argument("--mode", choices=[m.value for m in GenerationMode])
    gen.add_argument("--reasoning")
    gen.add_argument("--exercises", action="store_true", help="Ask for practice exercises")

    resume = sub.add_parser("resume", help="Continue an interrupted book")
    resume.add_argument("book_id")

    export = sub.add_parser("export", help="Export a finished book")
    export.add_argument("book_id")
    export.add_argument("--format", choices=["pdf", "md"], default="pdf")
    export.add_argument("--out", default=None, help="Output directory")

    sub.add_parser("list", help="List stored books")

    stats = sub.add_parser("stats", help="Show reading statistics for a book")
    stats.add_argument("book_id")

    bookmark = sub.add_parser("bookmark", help="Remember where you stopped reading")
    bookmark.add_argument("book_id")
    bookmark.add_argument("module", type=int, help="1-based module number")
    bookmark.add_argument("--prune-days", type=int, default=30, help="Drop bookmarks older than this")

    backup = sub.add_parser("backup", help="Write a backup of books and settings")
    backup.add_argument("--out", default=".", help="Output directory")

    restore = sub.add_parser("restore", help="Import a backup file")
    restore.add_argument("path")
    restore.add_argument("--mode", choices=["merge", "replace"], default="merge")
    return parser


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.percent:3d}%] {event.message}")


def _client(config: AppConfig) -> LLMClient:
    return LLMClient(config.generation, rate_limiter=RateLimiter(config.rate_limits))


def _generator(config: AppConfig, store: LocalStore, client: LLMClient, user_id: str | None) -> BookGenerator:
    return BookGenerator(client, store, config=config, user_id=user_id, on_progress=_print_progress)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one command and return the exit code."""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    kv = SQLiteKeyValueStore(config.storage.sqlite_path)
    store = LocalStore(kv)
    exports_dir = Path(config.storage.exports_dir)

    try:
        if args.command == "generate":
            settings = store.get_settings()
            session = BookSession(
                goal=args.goal,
                language=args.language or settings.default_language,
                target_audience=args.audience,
                complexity_level=args.complexity,
                reasoning=args.reasoning,
                generation_mode=args.mode or settings.default_generation_mode,
            )
            session.preferences.include_practical_exercises = args.exercises
            with _client(config) as client:
                generator = _generator(config, store, client, args.user)
                problems = generator.validate_settings()
                if problems:
                    for problem in problems:
                        print(f"Configuration problem: {problem}", file=sys.stderr)
                    return 2
                project = generator.run(session, title=args.title)
            print(f"Book {project.id}: {project.status.value}")

        elif args.command == "resume":
            with _client(config) as client:
                project = _generator(config, store, client, args.user).resume(args.book_id)
            print(f"Book {project.id}: {project.status.value}")

        elif args.command == "export":
            project = store.get_book(args.book_id, args.user)
            if project is None:
                print(f"Book {args.book_id} not found", file=sys.stderr)
                return 1
            out_dir = Path(args.out) if args.out else exports_dir
            if args.format == "pdf":
                path = PdfRenderer(config.export).render(project, out_dir)
            else:
                path = export_markdown(project, out_dir)
            print(path)

        elif args.command == "list":
            for book in store.get_books(args.user):
                print(f"{book.id}  {book.status.value:<20} {book.progress:3d}%  {book.title}")

        elif args.command == "stats":
            project = store.get_book(args.book_id, args.user)
            if project is None:
                print(f"Book {args.book_id} not found", file=sys.stderr)
                return 1
            analytics = analyze_book(project)
            reading = BookmarkStore(kv).bookmark_stats(project.id)
            print(f"Words: {analytics.total_words:,}")
            print(f"Reading time: {analytics.reading_time}")
            print(f"Complexity: {analytics.complexity.value}")
            if analytics.topics:
                print(f"Topics: {', '.join(analytics.topics)}")
            if reading.has_bookmark:
                print(f"Read: {reading.percent_complete}% (last opened {reading.days_ago} day(s) ago)")

        elif args.command == "bookmark":
            project = store.get_book(args.book_id, args.user)
            if project is None:
                print(f"Book {args.book_id} not found", file=sys.stderr)
                return 1
            if not 1 <= args.module <= len(project.modules):
                print(f"Module must be between 1 and {len(project.modules)}", file=sys.stderr)
                return 1
            bookmarks = BookmarkStore(kv)
            pruned = bookmarks.clear_old_bookmarks(args.prune_days)
            if pruned:
                logger.info("Dropped %d stale bookmark(s)", pruned)
            saved = bookmarks.save_bookmark(project.id, args.module - 1, 0.0, len(project.modules))
            if saved is None:
                print("Bookmark could not be saved", file=sys.stderr)
                return 1
            print(f"Bookmarked module {args.module} ({saved.percent_complete}%)")

        elif args.command == "backup":
            path = Path(args.out) / backup_filename()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(export_backup(store, args.user), encoding="utf-8")
            print(path)

        elif args.command == "restore":
            envelope = load_backup(Path(args.path).read_bytes())
            preview = preview_import(store, envelope, args.user)
            if preview.duplicate_book_ids:
                print(f"{len(preview.duplicate_book_ids)} book(s) already exist")
            summary = apply_import(store, envelope, args.mode, args.user)
            print(f"Imported {summary.books_added} book(s), skipped {summary.books_skipped}")

    except PustakamError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(exc.user_message, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
