from __future__ import annotations

import json
import logging
import threading

import typer
from rich import print
from rich.markup import escape

from . import __version__
from .config import GhinboxConfig, get_config_path, load_config, read_config_file
from .credentials import EnvCredentialProvider
from .inbox import Inbox
from .models import MergedThread, SyncResult
from .remote import GitHubClient
from .store import NotificationStore
from .sync import SyncEngine
from .sync.daemon import run_sync_loop
from .view import FilterState, count_by_repo, count_by_type

app = typer.Typer(help="ghinbox: offline-first GitHub notifications inbox")

EXIT_NO_CREDENTIAL = 2


def _config() -> GhinboxConfig:
    try:
        read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    return load_config()


def _store(cfg: GhinboxConfig, db_path: str | None) -> NotificationStore:
    store = NotificationStore(db_path or cfg.db_path, api_base_url=cfg.api_base_url)
    if store.memory_only:
        print("[yellow]Database unavailable; changes will not persist this session[/yellow]")
    return store


def _client(cfg: GhinboxConfig) -> GitHubClient:
    return GitHubClient(
        EnvCredentialProvider(),
        api_base_url=cfg.api_base_url,
        timeout_s=cfg.request_timeout_s,
        per_page=cfg.per_page,
        max_pages=cfg.max_pages,
    )


def _inbox(
    cfg: GhinboxConfig, store: NotificationStore, filters: FilterState | None = None
) -> Inbox:
    client = _client(cfg)
    engine = SyncEngine(store, client, detail_workers=cfg.detail_workers)
    return Inbox(store, client, engine=engine, filters=filters, events=engine.events)


def _require_known(inbox: Inbox, thread_ids: list[str]) -> None:
    unknown = [thread_id for thread_id in thread_ids if not inbox.is_known(thread_id)]
    for thread_id in unknown:
        print(f"[red]Unknown notification: {escape(thread_id)}[/red]")
    if unknown:
        raise typer.Exit(code=1)


def _format_row(row: MergedThread) -> str:
    marker = "[bold]●[/bold]" if row.unread else " "
    state = f" ({row.state})" if row.state else ""
    if row.detail is not None and row.detail.merged:
        state = " (merged)"
    number = f"#{row.thread.subject_id}" if row.thread.subject_id is not None else ""
    return (
        f"{marker} {row.id} | {row.thread.repo_full_name}{number} | "
        f"{row.thread.subject_type.value}{state} | {escape(row.title)} | {row.updated_at}"
    )


def _report_sync(result: SyncResult) -> None:
    if result.needs_credential:
        print("[red]No GitHub token found. Set GHINBOX_TOKEN or GITHUB_TOKEN.[/red]")
        return
    if result.error is not None:
        print(f"[yellow]Sync failed, showing cached data: {result.error}[/yellow]")
    else:
        print(f"[green]Synced[/green] {result.threads_in} thread(s), {result.details_ok} detail(s)")
    for thread_id, error in sorted(result.detail_errors.items()):
        print(f"[yellow]- detail unavailable for {thread_id}: {error}[/yellow]")
    print(f"{len(result.threads)} notification(s) cached")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command()
def sync(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Pull new notifications and resolve issue/PR details."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        result = SyncEngine(store, _client(cfg), detail_workers=cfg.detail_workers).sync()
    finally:
        store.close()
    _report_sync(result)
    if result.needs_credential:
        raise typer.Exit(code=EXIT_NO_CREDENTIAL)


@app.command("list")
def list_notifications(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    repo: list[str] = typer.Option(None, "--repo", help="Only show this repository (repeatable)"),
    subject_type: list[str] = typer.Option(
        None, "--type", help="Only show this subject type, e.g. Issue (repeatable)"
    ),
    show_all: bool = typer.Option(False, "--all", help="Include read notifications"),
    open_only: bool = typer.Option(None, "--open-only/--any-state", help="Hide closed subjects"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """List cached notifications (no network)."""

    cfg = _config()
    filters = FilterState(
        repos=frozenset(repo or cfg.default_repos),
        types=frozenset(subject_type or cfg.default_types),
        unread_only=False if show_all else cfg.unread_only,
        open_only=cfg.open_only if open_only is None else open_only,
    )
    store = _store(cfg, db_path)
    try:
        state = _inbox(cfg, store, filters).load()
    finally:
        store.close()
    if as_json:
        typer.echo(json.dumps([row.to_dict() for row in state.visible], indent=2))
        return
    if not state.visible:
        print("[dim]No notifications[/dim]")
        return
    for row in state.visible:
        print(_format_row(row))


@app.command()
def show(
    thread_id: str = typer.Argument(..., help="Notification thread id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    refresh: bool = typer.Option(False, help="Refetch detail even if cached"),
) -> None:
    """Open a notification: mark it read and print its detail and comments."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        inbox = _inbox(cfg, store)
        inbox.load()
        _require_known(inbox, [thread_id])
        pane = inbox.open_thread(thread_id, refresh=refresh)
    finally:
        store.close()
    if pane.detail is None:
        print(f"[dim]No issue or pull request detail for {thread_id}[/dim]")
    else:
        detail = pane.detail
        state_label = "merged" if detail.merged else detail.state
        print(f"[bold]{escape(detail.title)}[/bold] (#{detail.number}, {state_label})")
        print(f"- Author: {detail.user.login}")
        if detail.assignees:
            print(f"- Assignees: {', '.join(owner.login for owner in detail.assignees)}")
        if detail.html_url:
            print(f"- URL: {detail.html_url}")
        if detail.body:
            print("")
            print(escape(detail.body))
    for comment in pane.comments:
        print("")
        print(f"[bold]{comment.user.login}[/bold] at {comment.created_at}")
        print(escape(comment.body))
    if pane.error:
        print(f"[yellow]Could not load detail: {pane.error} (retry with --refresh)[/yellow]")


@app.command()
def done(
    thread_ids: list[str] = typer.Argument(..., help="Notification thread ids"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Archive notifications locally and on GitHub."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        inbox = _inbox(cfg, store)
        inbox.load()
        _require_known(inbox, thread_ids)
        inbox.archive(thread_ids)
    finally:
        store.close()
    print(f"[green]Marked {len(thread_ids)} notification(s) done[/green]")


@app.command()
def read(
    thread_id: str = typer.Argument(..., help="Notification thread id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Mark a notification read without opening it."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        inbox = _inbox(cfg, store)
        inbox.load()
        _require_known(inbox, [thread_id])
        inbox.mark_read(thread_id)
    finally:
        store.close()
    print(f"[green]Marked {thread_id} read[/green]")


@app.command()
def repos(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show repositories in the inbox with notification counts."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        state = _inbox(cfg, store).load()
    finally:
        store.close()
    for name, count in sorted(count_by_repo(state.threads).items()):
        print(f"{name}|{count}")


@app.command()
def types(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show subject types in the inbox with notification counts."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        state = _inbox(cfg, store).load()
    finally:
        store.close()
    for name, count in sorted(count_by_type(state.threads).items()):
        print(f"{name}|{count}")


@app.command()
def status(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show configuration, cache and credential status."""

    cfg = _config()
    store = _store(cfg, db_path)
    try:
        counts = store.stats()
        last_sync = store.get_last_sync_time()
    finally:
        store.close()
    print(f"- Config: {get_config_path()}")
    print(f"- Database: {store.db_path}{' (memory only)' if store.memory_only else ''}")
    print(f"- API: {cfg.api_base_url}")
    print(f"- Token: {'present' if _client(cfg).has_credential() else '[red]missing[/red]'}")
    print(f"- Threads: {counts.get('notification_threads', 0)} ({counts.get('done', 0)} done)")
    print(f"- Details cached: {counts.get('issue_pr', 0)}")
    print(f"- Last activity: {last_sync or 'never'}")


@app.command()
def daemon(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    interval: int = typer.Option(None, help="Seconds between syncs"),
) -> None:
    """Sync periodically until interrupted."""

    cfg = _config()
    interval_s = interval or cfg.sync_interval_s
    store = _store(cfg, db_path)
    stop = threading.Event()
    missing_token: list[bool] = []
    engine = SyncEngine(store, _client(cfg), detail_workers=cfg.detail_workers)

    def _on_result(result: SyncResult) -> None:
        _report_sync(result)
        if result.needs_credential:
            missing_token.append(True)
            stop.set()

    print(f"Syncing every {interval_s}s (Ctrl-C to stop)")
    try:
        run_sync_loop(engine, interval_s, stop_event=stop, on_result=_on_result)
    except KeyboardInterrupt:
        print("Stopped")
    finally:
        store.close()
    if missing_token:
        raise typer.Exit(code=EXIT_NO_CREDENTIAL)
