"""CLI command implementations — enrichment passes and the task list."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from inbox_enrich.pipeline.scheduler import BatchReport, EnrichmentPass, WorkingSet
from inbox_enrich.processing.types import (
    CustomLabel,
    EnrichmentRequest,
    InboundEmail,
    TaskStatus,
    ValidationError,
)

if TYPE_CHECKING:
    from inbox_enrich.pipeline.runtime import Runtime

logger = logging.getLogger(__name__)
console = Console(width=200)

#: Environment variable holding each provider's key when --api-key is absent.
API_KEY_ENV: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


# ── Input loading ──────────────────────────────────────────────────────────────


def _read_json_list(path: Path, what: str) -> list[dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise click.BadParameter(f"{path} must contain a JSON array of {what} objects")
    return data


def load_emails(path: Path) -> list[InboundEmail]:
    """Read ``[{id, sender, content|snippet, subject?}]`` from a JSON file."""
    emails = []
    for item in _read_json_list(path, "email"):
        if not item.get("id"):
            raise click.BadParameter(f"{path}: every email needs an id")
        emails.append(
            InboundEmail(
                id=str(item["id"]),
                sender=str(item.get("sender", "")),
                content=str(item.get("content") or ""),
                subject=str(item.get("subject") or ""),
                snippet=str(item.get("snippet") or ""),
            )
        )
    return emails


def load_custom_labels(path: Path | None) -> tuple[CustomLabel, ...]:
    """Read ``[{name, prompt, color?, applyRetroactively?}]`` from a JSON file."""
    if path is None:
        return ()
    return tuple(
        CustomLabel(
            name=str(item.get("name", "")),
            prompt=str(item.get("prompt", "")),
            color=str(item.get("color") or ""),
            apply_retroactively=bool(item.get("applyRetroactively", False)),
        )
        for item in _read_json_list(path, "label")
        if item.get("name")
    )


def build_request(
    runtime: Runtime,
    user_email: str,
    provider: str | None,
    api_key: str | None,
    labels_path: Path | None,
) -> EnrichmentRequest:
    """Resolve the per-call request; the only place credentials are read from the env."""
    name = (provider or runtime.config.default_provider).lower()
    credential = api_key or os.environ.get(API_KEY_ENV.get(name, ""), "")
    return EnrichmentRequest(
        credential=credential,
        user_email=user_email,
        custom_labels=load_custom_labels(labels_path),
        provider=name,
    )


def _request_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by the classify and extract commands."""
    f = click.option("--api-key", default=None, help="Provider API key (default: from env).")(f)
    f = click.option("--provider", default=None, help="anthropic or openai (default: ENRICH_PROVIDER).")(f)
    f = click.option(
        "--labels",
        "labels_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="JSON file of smart-label rules.",
    )(f)
    f = click.option("--user-email", envvar="ENRICH_USER_EMAIL", required=True, help="Owner of the inbox.")(f)
    f = click.argument(
        "emails_path", type=click.Path(exists=True, dir_okay=False, path_type=Path)
    )(f)
    return f


async def _run_pass(
    runtime: Runtime,
    service: EnrichmentPass,
    emails: list[InboundEmail],
    request: EnrichmentRequest,
) -> tuple[WorkingSet, BatchReport]:
    working_set: WorkingSet = {}
    report = await runtime.scheduler().run(emails, service, request, working_set)
    return working_set, report


def _label_cell(labels: Iterable[str]) -> str:
    return escape(", ".join(sorted(labels)))


def _print_report(report: BatchReport) -> None:
    for chunk in report.failed_chunks:
        reason = chunk.failure.value if chunk.failure else "unknown"
        console.print(f"[yellow]Chunk {chunk.index + 1} skipped ({reason}).[/yellow]")
    if report.cancelled:
        console.print("[yellow]Batch cancelled before all chunks ran.[/yellow]")


# ── Commands ───────────────────────────────────────────────────────────────────


@click.command()
@_request_options
@click.pass_obj
def classify(
    runtime: Runtime,
    emails_path: Path,
    user_email: str,
    labels_path: Path | None,
    provider: str | None,
    api_key: str | None,
) -> None:
    """Classify, summarise and draft replies for the emails in EMAILS_PATH."""
    emails = load_emails(emails_path)
    request = build_request(runtime, user_email, provider, api_key, labels_path)
    try:
        working_set, report = asyncio.run(_run_pass(runtime, runtime.classifier, emails, request))
    except ValidationError as exc:
        raise click.ClickException(f"{exc} (HTTP {exc.kind.http_status})") from exc

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", max_width=20)
    table.add_column("Category", width=11)
    table.add_column("Reply", width=5)
    table.add_column("Labels", max_width=30)
    table.add_column("Summary", max_width=70)
    for email in emails:
        enriched = working_set.get(email.id)
        if enriched is None or enriched.classification is None:
            table.add_row(escape(email.id), "[dim]—[/dim]", "", "", "[dim]not yet enriched[/dim]")
            continue
        c = enriched.classification
        table.add_row(
            escape(email.id),
            c.category.value,
            "[green]yes[/green]" if c.requires_reply else "no",
            _label_cell(enriched.applied_labels),
            escape(c.summary),
        )
    console.print(table)
    _print_report(report)


@click.command()
@_request_options
@click.pass_obj
def extract(
    runtime: Runtime,
    emails_path: Path,
    user_email: str,
    labels_path: Path | None,
    provider: str | None,
    api_key: str | None,
) -> None:
    """Extract tasks and apply smart labels for the emails in EMAILS_PATH."""
    emails = load_emails(emails_path)
    request = build_request(runtime, user_email, provider, api_key, labels_path)
    before = len(runtime.tasks.list_tasks(user_email))
    try:
        working_set, report = asyncio.run(_run_pass(runtime, runtime.extractor, emails, request))
    except ValidationError as exc:
        raise click.ClickException(f"{exc} (HTTP {exc.kind.http_status})") from exc
    created = len(runtime.tasks.list_tasks(user_email)) - before

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", max_width=20)
    table.add_column("Labels", max_width=60)
    for email in emails:
        enriched = working_set.get(email.id)
        if enriched is None:
            table.add_row(escape(email.id), "[dim]not yet enriched[/dim]")
        else:
            table.add_row(
                escape(email.id), _label_cell(enriched.applied_labels) or "[dim]none[/dim]"
            )
    console.print(table)
    console.print(f"{created} new task(s). Run `inbox-enrich tasks` to see them.")
    _print_report(report)


@click.command()
@click.option("--user-email", envvar="ENRICH_USER_EMAIL", required=True, help="Owner of the task list.")
@click.option(
    "--status",
    type=click.Choice([s.value for s in TaskStatus]),
    default=None,
    help="Only show tasks with this status.",
)
@click.pass_obj
def tasks(runtime: Runtime, user_email: str, status: str | None) -> None:
    """List the tasks extracted for a user."""
    rows = runtime.tasks.list_tasks(user_email, TaskStatus(status) if status else None)
    if not rows:
        console.print("[yellow]No tasks yet. Run `inbox-enrich extract` first.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Task ID", width=32)
    table.add_column("Title", max_width=50)
    table.add_column("Due", max_width=20)
    table.add_column("Flags", width=16)
    table.add_column("Status", width=7)
    table.add_column("Email", max_width=20)
    for t in rows:
        flags = " ".join(
            flag for flag, on in (("[red]urgent[/red]", t.is_urgent), ("past-due", t.is_past_due)) if on
        )
        status_style = "dim" if t.status == TaskStatus.DONE.value else "green"
        table.add_row(
            escape(t.id),
            escape(t.title),
            escape(t.date),
            flags,
            f"[{status_style}]{t.status}[/{status_style}]",
            escape(t.email_id),
        )
    console.print(table)


@click.command()
@click.argument("task_id")
@click.option("--user-email", envvar="ENRICH_USER_EMAIL", required=True, help="Owner of the task list.")
@click.pass_obj
def done(runtime: Runtime, task_id: str, user_email: str) -> None:
    """Mark TASK_ID as done."""
    if not runtime.tasks.set_status(user_email, task_id, TaskStatus.DONE):
        raise click.ClickException(f"No task {task_id!r} for {user_email}")
    console.print(f"Task {escape(task_id)} marked done.")
