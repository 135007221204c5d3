from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer
from dotenv import load_dotenv

from .workflows.content_api import ContentSynchronizer, PageQuery, PageResult
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import PostNotFoundError
from .workflows.preloader import Preloader
from .workflows.sync_config import DEFAULT_PER_PAGE, SYNC_MAX_PAGES, SYNC_PER_PAGE, load_config

app = typer.Typer(add_help_option=False, no_args_is_help=False)

T = TypeVar("T")


def _minimal_help() -> str:
    return """storysync (content sync CLI)

Usage:
  storysync page [--page N] [--per-page N] [--search Q] [--json]
  storysync post <slug> [--raw] [--json]
  storysync sync [--max-pages N] [--per-page N]
  storysync preload
  storysync status
  storysync doctor [--probe]

Common options:
  --json          Print machine-readable JSON.
  --skip-cache    Bypass the page cache for this request.
  --verbose, -v   Log tier transitions and cache hits to stderr.

Discoverability:
  --help-full     Expanded help + env vars + cache families.
  --find <query>  Search commands, flags, env vars.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """storysync content sync CLI

Commands:
  page      Fetch one page of posts (cache -> API bases -> snapshot -> mirror -> empty).
  post      Fetch one post by slug; exits 1 when no tier knows it.
  sync      Crawl the API into the local snapshot.
  preload   Warm the cache the way application startup does.
  status    Show availability, snapshot size and the last status/error records.
  doctor    Print configuration and environment diagnostics.

Cache families (under STORYSYNC_CACHE_DIR):
  pages         Listing pages, 30 min.
  converted     Display-ready posts, 24 h.
  availability  API reachability verdict, 5 min.
  snapshot      Long-lived local copy of posts, never expires.
  diagnostics   sync_status and last_error records.

Env vars:
  STORYSYNC_API_URL           Extra API base tried first.
  STORYSYNC_API_BASES         Comma list replacing the default bases.
  STORYSYNC_MIRROR_URL        Internal mirror posts endpoint.
  STORYSYNC_CACHE_DIR         Cache directory (default .storysync/cache).
  STORYSYNC_CACHE_DISABLE     Skip page/converted cache reads and writes.
  STORYSYNC_TIMEOUT           Per-request timeout in seconds.
  STORYSYNC_PROBE_TIMEOUT     Availability probe timeout in seconds.
  STORYSYNC_PAGE_TTL          Page cache TTL in seconds.
  STORYSYNC_CONVERTED_TTL     Converted post TTL in seconds.
  STORYSYNC_AVAILABILITY_TTL  Availability verdict TTL in seconds.
  STORYSYNC_SNAPSHOT_MAX      Snapshot record cap.
  STORYSYNC_SINGLE_FLIGHT     Share identical in-flight fetches (default 1).
  STORYSYNC_LOG_LEVEL         Logging level when --verbose is not given.

Listing commands always exit 0; degraded results are flagged in the output.
"""


_FIND_INDEX = [
    ("command", "page", "Fetch one page of posts."),
    ("command", "post", "Fetch one post by slug."),
    ("command", "sync", "Crawl the API into the local snapshot."),
    ("command", "preload", "Warm the cache like application startup."),
    ("command", "status", "Show availability and snapshot diagnostics."),
    ("command", "doctor", "Print configuration and environment diagnostics."),
    ("flag", "--page", "Page number (1-based)."),
    ("flag", "--per-page", "Posts per page."),
    ("flag", "--category", "Filter by category id (repeatable)."),
    ("flag", "--tag", "Filter by tag id (repeatable)."),
    ("flag", "--search", "Filter by search text."),
    ("flag", "--summary", "Request title/excerpt fields only."),
    ("flag", "--skip-cache", "Bypass the page cache."),
    ("flag", "--json", "Print machine-readable JSON."),
    ("flag", "--raw", "Print the validated record instead of the display post."),
    ("flag", "--probe", "Doctor: probe each API base over the network."),
    ("flag", "--verbose", "Log to stderr at debug level."),
    ("flag", "--help-full", "Expanded help, env vars, cache families."),
    ("flag", "--find", "Search commands, flags, env vars."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "STORYSYNC_API_URL", "Extra API base tried first."),
    ("env", "STORYSYNC_API_BASES", "Comma list replacing the default bases."),
    ("env", "STORYSYNC_MIRROR_URL", "Internal mirror posts endpoint."),
    ("env", "STORYSYNC_CACHE_DIR", "Cache directory."),
    ("env", "STORYSYNC_CACHE_DISABLE", "Skip page/converted cache."),
    ("env", "STORYSYNC_SNAPSHOT_MAX", "Snapshot record cap."),
    ("env", "STORYSYNC_LOG_LEVEL", "Logging level."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _configure_logging(verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        name = (os.getenv("STORYSYNC_LOG_LEVEL") or "WARNING").strip().upper()
        level = getattr(logging, name, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _with_synchronizer(action: Callable[[ContentSynchronizer], Awaitable[T]]) -> T:
    async def _runner() -> T:
        async with ContentSynchronizer(load_config()) as synchronizer:
            return await action(synchronizer)

    return asyncio.run(_runner())


def _emit_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def _print_page(result: PageResult) -> None:
    flags = [name for name in ("from_cache", "from_local_sync", "from_fallback") if getattr(result, name)]
    typer.echo(f"source: {result.source or 'none'}" + (f" ({', '.join(flags)})" if flags else ""))
    typer.echo(f"total: {result.total}  pages: {result.total_pages}")
    for record in result.records:
        typer.echo(f"- [{record.id}] {record.date.date().isoformat()} {record.slug}: {record.title}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr at debug level."),
) -> None:
    load_dotenv()
    _configure_logging(verbose)
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd(
    probe: bool = typer.Option(False, "--probe", help="Probe each API base over the network."),
) -> None:
    """Print configuration and environment diagnostics."""
    report = build_doctor_report(probe=probe)
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("page", add_help_option=True)
def page_cmd(
    page: int = typer.Option(1, "--page", min=1, help="Page number (1-based)."),
    per_page: int = typer.Option(DEFAULT_PER_PAGE, "--per-page", min=1, help="Posts per page."),
    category: Optional[List[int]] = typer.Option(None, "--category", help="Filter by category id."),
    tag: Optional[List[int]] = typer.Option(None, "--tag", help="Filter by tag id."),
    search: Optional[str] = typer.Option(None, "--search", help="Filter by search text."),
    summary: bool = typer.Option(False, "--summary", help="Request title/excerpt fields only."),
    skip_cache: bool = typer.Option(False, "--skip-cache", help="Bypass the page cache."),
    json_out: bool = typer.Option(False, "--json", help="Print machine-readable JSON."),
) -> None:
    """Fetch one page of posts."""
    query = PageQuery(
        page=page,
        per_page=per_page,
        categories=tuple(category or ()),
        tags=tuple(tag or ()),
        search=search,
        include_content=not summary,
        skip_cache=skip_cache,
    )
    result = _with_synchronizer(lambda s: s.fetch_page(query))
    if json_out:
        _emit_json(result.to_dict())
    else:
        _print_page(result)


@app.command("post", add_help_option=True)
def post_cmd(
    slug: str = typer.Argument(..., help="Post slug."),
    raw: bool = typer.Option(False, "--raw", help="Print the validated record instead of the display post."),
    json_out: bool = typer.Option(False, "--json", help="Print machine-readable JSON."),
) -> None:
    """Fetch one post by slug."""

    async def _action(synchronizer: ContentSynchronizer) -> Any:
        if raw:
            return (await synchronizer.fetch_post_by_slug(slug)).to_dict()
        return (await synchronizer.get_converted_post(slug)).to_dict()

    try:
        payload = _with_synchronizer(_action)
    except PostNotFoundError as exc:
        if json_out:
            _emit_json({"error": "not_found", "slug": slug})
        else:
            typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    if json_out or raw:
        _emit_json(payload)
        return
    typer.echo(payload["title"])
    typer.echo(f"{payload['created_at']} - {payload['reading_time']} min read")
    typer.echo("")
    typer.echo(payload["content"])


@app.command("sync", add_help_option=True)
def sync_cmd(
    max_pages: int = typer.Option(SYNC_MAX_PAGES, "--max-pages", min=1, help="Stop after this many pages."),
    per_page: int = typer.Option(SYNC_PER_PAGE, "--per-page", min=1, help="Posts per request."),
    json_out: bool = typer.Option(False, "--json", help="Print machine-readable JSON."),
) -> None:
    """Crawl the API into the local snapshot."""
    report = _with_synchronizer(lambda s: s.sync_snapshot(max_pages=max_pages, per_page=per_page))
    if json_out:
        _emit_json(report.to_dict())
        return
    typer.echo(
        f"synced {report.records} posts over {report.pages} page(s); snapshot size {report.snapshot_size}"
        + ("" if report.complete else " (incomplete)")
    )
    for error in report.errors:
        typer.echo(f"  error: {error}", err=True)


@app.command("preload", add_help_option=True)
def preload_cmd() -> None:
    """Warm the cache the way application startup does."""

    async def _action(synchronizer: ContentSynchronizer) -> None:
        preloader = Preloader(synchronizer)
        await preloader.preload()
        await preloader.drain()

    _with_synchronizer(_action)
    typer.echo("preload finished")


@app.command("status", add_help_option=True)
def status_cmd() -> None:
    """Show availability, snapshot size and the last status/error records."""
    _emit_json(_with_synchronizer(lambda s: s.status()))


if __name__ == "__main__":  # pragma: no cover
    app()
