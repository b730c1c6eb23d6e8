"""BlogFlow command line.

    blogflow run --title "Improv at Work" --keywords "improv, teamwork" --out posts/
    blogflow list
    blogflow show improv-at-work-3f9a1b2c
    blogflow resume improv-at-work-3f9a1b2c --out posts/
    blogflow export improv-at-work-3f9a1b2c --out posts/
    blogflow delete improv-at-work-3f9a1b2c
    blogflow prefs --provider openai
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from blogflow.config import Settings, load_brand
from blogflow.errors import AuthenticationError, BlogflowError
from blogflow.events import (
    ProgressUpdate, RunCancelled, RunCompleted, StepCompleted, StepError, StepStarted,
)
from blogflow.llm import DEFAULT_MODELS, CompletionClient
from blogflow.logging import setup_logging
from blogflow.models import RunStatus, WorkflowRun
from blogflow.recorder import SessionRecorder, format_duration
from blogflow.storage import open_store
from blogflow.workflow import WorkflowManager


def build_client(settings: Settings, provider: str | None) -> CompletionClient:
    if provider:
        settings.provider = provider
    return CompletionClient.from_settings(settings)


def _write_artifacts(artifacts: dict[str, str], out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for name, text in artifacts.items():
        (out_dir / name).write_text(text, encoding="utf-8")
        click.echo(f"  wrote {out_dir / name}")


def _make_manager(ctx: click.Context, provider: str | None, brand: str | None,
                  out: str | None) -> WorkflowManager:
    settings: Settings = ctx.obj["settings"]
    prefs = ctx.obj["store"].load_preferences()
    provider = provider or prefs.get("provider")
    brand = brand or prefs.get("brand")
    setup_logging("blogflow", log_level=ctx.obj["log_level"],
                  console=ctx.obj["verbose"], adapter=provider or settings.provider)
    manager = WorkflowManager(
        build_client(settings, provider),
        store=ctx.obj["store"],
        brand=load_brand(brand or settings.brand_path),
    )
    if hasattr(manager.store, "record_event"):
        manager.subscribe(manager.store.record_event)
    manager.on(StepStarted, lambda e: click.echo(f"→ [{e.step.index}] {e.step.name} ..."))
    manager.on(StepCompleted, lambda e: click.echo(
        f"✓ [{e.step.index}] {e.step.name} ({format_duration((e.step.duration or 0) * 1000)})"))
    manager.on(StepError, lambda e: click.echo(f"✗ [{e.step.index}] {e.step.name}: {e.error}", err=True))
    manager.on(ProgressUpdate, lambda e: click.echo(f"  progress {e.percentage}%"))
    manager.on(RunCancelled, lambda e: click.echo("Run cancelled."))
    if out:
        manager.on(RunCompleted, lambda e: _write_artifacts(e.artifacts, Path(out)))
    return manager


def _execute(fn, *args, **kwargs) -> WorkflowRun:
    try:
        return fn(*args, **kwargs)
    except AuthenticationError as e:
        raise click.ClickException(
            f"Authentication failed ({e}). Check your {e.provider.upper() or 'provider'} API key."
        ) from e
    except BlogflowError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--store", default=None, help="Snapshot store: directory, sqlite:///file.db or memory://")
@click.option("--log-level", default=None, help="debug | info | warning | error")
@click.option("-v", "--verbose", is_flag=True, help="Also log to the console")
@click.pass_context
def main(ctx, store, log_level, verbose):
    """Write blog posts with a ten-stage LLM pipeline."""
    settings = Settings.from_env()
    ctx.obj = {
        "settings": settings,
        "store": open_store(store or settings.store_url),
        "log_level": log_level or settings.log_level,
        "verbose": verbose,
    }


@main.command()
@click.option("--title", default="", help="Post title (generated if omitted)")
@click.option("--keywords", default="", help="Comma-separated target keywords")
@click.option("--context", "context_", default="", help="Audience and angle")
@click.option("--no-web", is_flag=True, help="Do not allow web research")
@click.option("--provider", type=click.Choice(sorted(DEFAULT_MODELS)), default=None)
@click.option("--brand", default=None, help="Brand profile YAML")
@click.option("--out", default=None, help="Directory for the finished artifacts")
@click.pass_context
def run(ctx, title, keywords, context_, no_web, provider, brand, out):
    """Start a new run."""
    if not (title or keywords or context_):
        raise click.UsageError("Give at least one of --title, --keywords, --context")
    manager = _make_manager(ctx, provider, brand, out)
    inputs = {"title": title, "keywords": keywords, "context": context_,
              "allow_web": not no_web}
    result = _execute(manager.start, inputs)
    click.echo(f"Run {result.run_id}: {result.status.value}")


@main.command()
@click.argument("run_id")
@click.option("--provider", type=click.Choice(sorted(DEFAULT_MODELS)), default=None)
@click.option("--brand", default=None, help="Brand profile YAML")
@click.option("--out", default=None, help="Directory for the finished artifacts")
@click.pass_context
def resume(ctx, run_id, provider, brand, out):
    """Continue a failed or cancelled run."""
    manager = _make_manager(ctx, provider, brand, out)
    result = _execute(manager.resume, run_id)
    click.echo(f"Run {result.run_id}: {result.status.value}")


@main.command("list")
@click.pass_context
def list_runs(ctx):
    """List saved runs, newest first."""
    rows = ctx.obj["store"].list_runs()
    if not rows:
        click.echo("No runs saved.")
        return
    for r in rows:
        click.echo(f"{r['run_id']:<45} {r['status']:<10} {r['progress']:>3}%  {r['title']}")


@main.command()
@click.argument("run_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw snapshot")
@click.pass_context
def show(ctx, run_id, as_json):
    """Show one run's steps."""
    snapshot = ctx.obj["store"].load(run_id)
    if snapshot is None:
        raise click.ClickException(f"Workflow not found: {run_id!r}")
    if as_json:
        click.echo(json.dumps(snapshot, indent=2, ensure_ascii=False))
        return
    run = WorkflowRun.from_dict(snapshot)
    click.echo(f"{run.run_id}  [{run.status.value}]  {run.progress}%")
    click.echo(f"title: {run.inputs.title or '(to be generated)'}")
    for s in run.steps:
        took = format_duration(s.duration * 1000) if s.duration is not None else "-"
        line = f"  {s.index}. {s.name:<22} {s.status.value:<10} {took}"
        if s.error:
            line += f"  error: {s.error}"
        click.echo(line)


@main.command()
@click.argument("run_id")
@click.option("--out", required=True, help="Directory for the artifacts")
@click.pass_context
def export(ctx, run_id, out):
    """Write the artifacts of a completed run."""
    snapshot = ctx.obj["store"].load(run_id)
    if snapshot is None:
        raise click.ClickException(f"Workflow not found: {run_id!r}")
    run = WorkflowRun.from_dict(snapshot)
    if run.status is not RunStatus.COMPLETED:
        raise click.ClickException(f"Run {run_id} is {run.status.value}, not completed")
    _write_artifacts(SessionRecorder.from_run(run).build_artifacts(run), Path(out))


@main.command()
@click.option("--provider", type=click.Choice(sorted(DEFAULT_MODELS)), default=None)
@click.option("--brand", default=None, help="Brand profile YAML")
@click.pass_context
def prefs(ctx, provider, brand):
    """Show or set defaults saved alongside the runs."""
    store = ctx.obj["store"]
    current = store.load_preferences()
    if provider:
        current["provider"] = provider
    if brand:
        current["brand"] = brand
    if provider or brand:
        store.save_preferences(current)
    for key, value in sorted(current.items()):
        click.echo(f"{key} = {value}")
    if not current:
        click.echo("No preferences saved.")


@main.command()
@click.argument("run_id")
@click.pass_context
def delete(ctx, run_id):
    """Delete a saved run."""
    if not ctx.obj["store"].delete(run_id):
        raise click.ClickException(f"Workflow not found: {run_id!r}")
    click.echo(f"Deleted {run_id}")


if __name__ == "__main__":
    main()
