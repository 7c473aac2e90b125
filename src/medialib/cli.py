"""
medialib CLI - Entry point

Manages monitored directories, scans them into the library cache, lists the
cache and runs tag, sync and cover operations on files.
"""

import argparse
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from medialib.core import (
    Config,
    ensure_directories,
    load_config,
    log,
    set_quiet,
    setup_from_config,
)
from medialib.domain.library import (
    ConflictPolicy,
    LibraryCache,
    SourceConfig,
    SourceStore,
    SourceType,
    extract_embedded_cover,
)
from medialib.domain.library.events import (
    LibraryScanDone,
    ScanProgress,
    SyncConflict,
)
from medialib.domain.sync import MetadataSync, SyncStats, TO_NATIVE, TO_TAGS

console = Console()

CONFLICT_KEYS = {"s": "skip", "t": "use_tags", "n": "use_native"}


def _open_store(config: Config) -> SourceStore:
    return SourceStore(config.directories_path, config.legacy_directories_path)


def _open_cache(config: Config, store: SourceStore) -> LibraryCache:
    cache = LibraryCache(config, store)
    cache.start()
    cache.load_cache()
    return cache


def _print_stats(label: str, stats: SyncStats) -> None:
    console.print(
        f"{label}: [green]{stats.updated} updated[/green], "
        f"{stats.unchanged} unchanged, {stats.skipped} skipped, "
        f"[red]{stats.failed} failed[/red]"
    )


# ---------------------------------------------------------------------------
# dirs
# ---------------------------------------------------------------------------


def run_dirs(args: argparse.Namespace, config: Config) -> int:
    store = _open_store(config)

    if args.dirs_command == "add":
        path = Path(args.path).expanduser()
        if not path.is_dir():
            console.print(f"[yellow]Warning: {path} is not a directory right now[/yellow]")
        ok = store.add(
            SourceConfig(
                path=str(path),
                primary=SourceType(args.primary),
                secondary=SourceType(args.secondary),
                conflict_policy=ConflictPolicy(args.policy),
            )
        )
        if ok:
            log(f"Added {path}")
        return 0 if ok else 1

    if args.dirs_command == "remove":
        if store.remove(args.path):
            log(f"Removed {args.path}")
            return 0
        console.print(f"[red]Not configured: {args.path}[/red]")
        return 1

    sources = store.load()
    if not sources:
        console.print("No directories configured. Add one with: medialib dirs add PATH")
        return 0

    table = Table(title="Monitored directories")
    table.add_column("Path")
    table.add_column("Primary")
    table.add_column("Secondary")
    table.add_column("Conflicts")
    for source in sources:
        table.add_row(
            source.path,
            source.primary.value,
            source.secondary.value,
            source.conflict_policy.value,
        )
    console.print(table)
    return 0


# ---------------------------------------------------------------------------
# scan / list
# ---------------------------------------------------------------------------


def run_scan(args: argparse.Namespace, config: Config) -> int:
    store = _open_store(config)
    cache = _open_cache(config, store)
    done = threading.Event()
    result = {"count": 0}

    with console.status("Scanning...") as status:

        def on_event(event) -> None:
            if isinstance(event, ScanProgress):
                status.update(
                    f"Scanning... {event.dirs} dirs, {event.files} files "
                    f"({event.elapsed_sec:.1f}s)"
                )
            elif isinstance(event, LibraryScanDone):
                result["count"] = event.count
                done.set()

        cache.register_listener(on_event)
        cache.start_scan()
        try:
            while not done.wait(0.2):
                pass
        except KeyboardInterrupt:
            console.print("[yellow]Stopping scan...[/yellow]")
            cache.stop_scan()
            done.wait()
        finally:
            cache.unregister_listener(on_event)

    entries = cache.all_entries()
    missing = sum(1 for entry in entries if entry.missing)
    cache.shutdown()
    log(f"Library: {result['count']} entries ({missing} missing)")
    return 0


def run_list(args: argparse.Namespace, config: Config) -> int:
    store = _open_store(config)
    cache = _open_cache(config, store)
    entries = sorted(cache.all_entries(), key=lambda e: e.path)
    cache.shutdown()

    if args.missing:
        entries = [entry for entry in entries if entry.missing]
    if args.limit:
        entries = entries[: args.limit]

    table = Table(title=f"Library ({len(entries)} shown)")
    table.add_column("Artist")
    table.add_column("Title")
    table.add_column("Album")
    table.add_column("Year", justify="right")
    table.add_column("Rating", justify="right")
    table.add_column("Path", overflow="fold")
    for entry in entries:
        style = "dim" if entry.missing else None
        table.add_row(
            entry.artist,
            entry.title,
            entry.album,
            str(entry.year or ""),
            str(entry.rating or ""),
            entry.path,
            style=style,
        )
    console.print(table)
    return 0


# ---------------------------------------------------------------------------
# sync / tag / cover
# ---------------------------------------------------------------------------


def _ask_conflict(conflict: SyncConflict) -> tuple[str, bool]:
    console.print(
        f"\n[bold]Conflict {conflict.index + 1}/{conflict.total}:[/bold] {conflict.path}"
    )
    table = Table()
    table.add_column("Field")
    table.add_column("Primary")
    table.add_column("Secondary")
    for name in conflict.primary.differences(conflict.secondary):
        table.add_row(
            name,
            str(getattr(conflict.primary, name)),
            str(getattr(conflict.secondary, name)),
        )
    console.print(table)
    answer = Prompt.ask(
        "[s]kip, use [t]ags, use [n]ative (uppercase applies to all)",
        choices=["s", "t", "n", "S", "T", "N"],
        default="s",
        case_sensitive=True,
    )
    return CONFLICT_KEYS[answer.lower()], answer.isupper()


def run_sync(args: argparse.Namespace, config: Config) -> int:
    store = _open_store(config)
    cache = _open_cache(config, store)
    engine = MetadataSync(store, cache=cache, supported_formats=config.scanner.supported_formats)

    conflicts: list[SyncConflict] = []

    def on_event(event) -> None:
        if isinstance(event, SyncConflict):
            conflicts.append(event)

    cache.register_listener(on_event)
    direction = TO_NATIVE if args.to_native else TO_TAGS if args.to_tags else None
    try:
        stats = engine.sync_metadata_for_files(args.files, direction=direction)
        while stats.paused and conflicts:
            conflict = conflicts.pop()
            if args.on_conflict:
                choice, apply_all = args.on_conflict, True
            else:
                choice, apply_all = _ask_conflict(conflict)
            stats = engine.resolve_conflict(conflict.path, choice, apply_to_all=apply_all)
    finally:
        cache.unregister_listener(on_event)
        cache.shutdown()

    _print_stats("Sync", stats)
    return 1 if stats.failed else 0


def _parse_fields(pairs: list[str]) -> dict[str, str]:
    fields = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Expected FIELD=VALUE, got {pair!r}")
        name, value = pair.split("=", 1)
        fields[name.strip()] = value
    return fields


def run_tag(args: argparse.Namespace, config: Config) -> int:
    try:
        fields = _parse_fields(args.field)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 2

    store = _open_store(config)
    cache = _open_cache(config, store)
    engine = MetadataSync(store, cache=cache, supported_formats=config.scanner.supported_formats)
    try:
        stats = engine.save_tags_for_files(fields, args.files)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 2
    finally:
        cache.shutdown()

    _print_stats("Tags", stats)
    return 1 if stats.failed else 0


def run_cover(args: argparse.Namespace, config: Config) -> int:
    if args.cover_command == "export":
        data = extract_embedded_cover(args.file)
        if data is None:
            console.print(f"[yellow]No embedded cover in {args.file}[/yellow]")
            return 1
        Path(args.output).write_bytes(data)
        log(f"Wrote {len(data)} bytes to {args.output}")
        return 0

    store = _open_store(config)
    engine = MetadataSync(store, supported_formats=config.scanner.supported_formats)

    if args.cover_command == "apply":
        try:
            data = Path(args.image).read_bytes()
        except OSError as e:
            console.print(f"[red]Cannot read {args.image}: {e}[/red]")
            return 1
        if args.album:
            stats = SyncStats()
            for path in args.files:
                album = engine.apply_album_cover(path, data, args.mime)
                stats.updated += album.updated
                stats.failed += album.failed
        else:
            stats = engine.apply_cover(args.files, data, args.mime)
    else:
        if args.album:
            stats = SyncStats()
            for path in args.files:
                album = engine.clear_album_cover(path)
                stats.updated += album.updated
                stats.failed += album.failed
        else:
            stats = engine.clear_cover(args.files)

    _print_stats("Covers", stats)
    return 1 if stats.failed else 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="medialib",
        description="medialib - audio library scanner and metadata sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="Path to config.toml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to stderr")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print tables and errors")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    # Directory configuration
    dirs_parser = subparsers.add_parser("dirs", help="Manage monitored directories")
    dirs_sub = dirs_parser.add_subparsers(dest="dirs_command")
    dirs_sub.add_parser("list", help="List monitored directories")
    add_parser = dirs_sub.add_parser("add", help="Monitor a directory")
    add_parser.add_argument("path", help="Directory to monitor")
    add_parser.add_argument(
        "--primary", choices=[s.value for s in SourceType], default=SourceType.TAGS.value
    )
    add_parser.add_argument(
        "--secondary", choices=[s.value for s in SourceType], default=SourceType.NATIVE.value
    )
    add_parser.add_argument(
        "--policy",
        choices=[p.value for p in ConflictPolicy],
        default=ConflictPolicy.ASK.value,
        help="How disagreements between sources are resolved",
    )
    remove_parser = dirs_sub.add_parser("remove", help="Stop monitoring a directory")
    remove_parser.add_argument("path")

    # Library
    subparsers.add_parser("scan", help="Scan monitored directories into the cache")
    list_parser = subparsers.add_parser("list", help="List cached library entries")
    list_parser.add_argument("--missing", action="store_true", help="Only missing files")
    list_parser.add_argument("--limit", type=int, default=0)

    # Metadata
    sync_parser = subparsers.add_parser("sync", help="Sync tags and native attributes")
    sync_parser.add_argument("files", nargs="+")
    direction = sync_parser.add_mutually_exclusive_group()
    direction.add_argument("--to-native", action="store_true", help="Copy tags to attributes")
    direction.add_argument("--to-tags", action="store_true", help="Copy attributes to tags")
    sync_parser.add_argument(
        "--on-conflict",
        choices=list(CONFLICT_KEYS.values()),
        help="Resolve every conflict this way instead of asking",
    )

    tag_parser = subparsers.add_parser("tag", help="Write fields into files")
    tag_parser.add_argument("files", nargs="+")
    tag_parser.add_argument(
        "--field", "-f", action="append", default=[], required=True,
        help="FIELD=VALUE, e.g. artist=Nina Simone (repeatable)",
    )

    cover_parser = subparsers.add_parser("cover", help="Apply or clear embedded covers")
    cover_sub = cover_parser.add_subparsers(dest="cover_command", required=True)
    apply_parser = cover_sub.add_parser("apply", help="Embed an image as front cover")
    apply_parser.add_argument("image")
    apply_parser.add_argument("files", nargs="+")
    apply_parser.add_argument("--mime", help="Image MIME type (sniffed when omitted)")
    apply_parser.add_argument("--album", action="store_true", help="Whole directory of each file")
    clear_parser = cover_sub.add_parser("clear", help="Remove embedded covers")
    clear_parser.add_argument("files", nargs="+")
    clear_parser.add_argument("--album", action="store_true", help="Whole directory of each file")
    export_parser = cover_sub.add_parser("export", help="Save a file's embedded cover")
    export_parser.add_argument("file")
    export_parser.add_argument("output", help="Image file to write")

    return parser


COMMANDS = {
    "dirs": run_dirs,
    "scan": run_scan,
    "list": run_list,
    "sync": run_sync,
    "tag": run_tag,
    "cover": run_cover,
}


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the medialib command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config)
    if args.verbose:
        config.logging.console_output = True
    ensure_directories(config)
    setup_from_config(config)
    set_quiet(args.quiet)

    try:
        sys.exit(COMMANDS[args.subcommand](args, config))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Command {args.subcommand} failed")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
