"""CLI entry point for the triage pipeline."""

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import click
import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import CHECKPOINT, GAME_PLAN, list_runs
from repo_triage.engine.pipeline import PipelineSummary, TriagePipeline
from repo_triage.engine.run_lock import RunLock
from repo_triage.exceptions import ConfigurationError, PhaseError, RepoTriageError
from repo_triage.providers.external_agent import ExternalAgentRunner
from repo_triage.providers.git_history import GitHistory
from repo_triage.providers.github_tracker import GitHubTracker
from repo_triage.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option("--config", default="triage.yaml", help="Path to configuration file")
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--repo-root", default=".", type=click.Path(file_okay=False), help="Repository checkout to triage")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str, repo_root: str) -> None:
    """repo-triage: Autonomous issue triage for a repository."""
    configure_logging(log_level)

    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(1)

    try:
        settings = TriageSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings, "repo_root": Path(repo_root).resolve()}


@cli.command()
@click.argument("issue", type=int)
@click.option("--dry-run", is_flag=True, help="Decide without changing the tracker")
@click.option("--force", is_flag=True, help="Override a lock held by another run")
@click.pass_context
def single(ctx: click.Context, issue: int, dry_run: bool, force: bool) -> None:
    """Triage a single issue."""
    _run(ctx, "single", lambda p: p.run_single(issue, dry_run=dry_run), force)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Decide without changing the tracker")
@click.option("--force", is_flag=True, help="Override a lock held by another run")
@click.pass_context
def auto(ctx: click.Context, dry_run: bool, force: bool) -> None:
    """Triage every open issue without the triaged label."""
    _run(ctx, "auto", lambda p: p.run_auto(dry_run=dry_run), force)


@cli.command()
@click.argument("run_id")
@click.option("--dry-run", is_flag=True, help="Decide without changing the tracker")
@click.option("--force", is_flag=True, help="Override a lock held by another run")
@click.pass_context
def resume(ctx: click.Context, run_id: str, dry_run: bool, force: bool) -> None:
    """Resume an interrupted run from its checkpoint."""
    _run(ctx, "resume", lambda p: p.resume(run_id, dry_run=dry_run), force)


@cli.command("pre-release")
@click.option("--prev-tag", required=True, help="Tag of the previous release")
@click.option("--version", "version", required=True, help="Version being released")
@click.option("--force", is_flag=True, help="Override a lock held by another run")
@click.pass_context
def pre_release(ctx: click.Context, prev_tag: str, version: str, force: bool) -> None:
    """Correlate open issues with the upcoming release."""

    async def run(pipeline: TriagePipeline) -> None:
        store, manifest = await pipeline.pre_release(prev_tag, version)
        click.echo(manifest.summary)
        click.echo(f"Manifest: {store.path('issue_manifest.json')}")

    _run(ctx, "pre_release", run, force)


@cli.command("post-release")
@click.option("--version", "version", required=True, help="Released version")
@click.option("--release-tag", required=True, help="Git tag of the release")
@click.option("--release-url", default="", help="Release page URL")
@click.option("--manifest", type=click.Path(dir_okay=False), help="Manifest from pre-release (default: latest)")
@click.option("--force", is_flag=True, help="Override a lock held by another run")
@click.pass_context
def post_release(
    ctx: click.Context,
    version: str,
    release_tag: str,
    release_url: str,
    manifest: str | None,
    force: bool,
) -> None:
    """Notify and close issues addressed by a release."""

    async def run(pipeline: TriagePipeline) -> None:
        store, actions = await pipeline.post_release(
            version, release_tag, release_url, Path(manifest) if manifest else None
        )
        click.echo(f"Actions taken: {len(actions)}")
        click.echo(f"Report: {store.path('post_release_report.json')}")

    _run(ctx, "post_release", run, force)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration, lock state and recent runs."""
    settings: TriageSettings = ctx.obj["settings"]
    repo_root: Path = ctx.obj["repo_root"]

    click.echo(f"Repository: {settings.repository.full_name}")
    cross_repo = settings.cross_repo
    click.echo(
        f"Cross-repo: {'enabled' if cross_repo.enabled else 'disabled'} ({len(cross_repo.repos)} repos)"
    )
    click.echo(f"Agents: {', '.join(settings.agents.enabled)}")
    thresholds = settings.thresholds
    click.echo(
        f"Thresholds: close={thresholds.auto_close}, suggest={thresholds.suggest_close}, comment={thresholds.comment}"
    )

    lock = RunLock(settings.lock_path).status()
    if lock["locked"]:
        click.echo(f"Lock: ACTIVE (PID: {lock['pid']}, started: {lock.get('started_at')})")
    elif lock.get("stale"):
        click.echo(f"Lock: STALE (PID: {lock.get('pid')})")
    else:
        click.echo("Lock: none")

    runs = list_runs(settings.runs_dir(repo_root))
    click.echo(f"\nRecent runs ({len(runs)}):")
    for run_dir in runs[:5]:
        markers = ""
        if (run_dir / CHECKPOINT).exists():
            markers += " [checkpoint]"
        if (run_dir / GAME_PLAN).exists():
            markers += " [plan]"
        click.echo(f"  {run_dir.name}{markers}")


def _run(ctx: click.Context, command: str, operation, force: bool) -> None:
    settings: TriageSettings = ctx.obj["settings"]
    repo_root: Path = ctx.obj["repo_root"]
    try:
        asyncio.run(_execute(settings, repo_root, operation, force))
    except PhaseError as e:
        click.echo(f"Error: {e.message}", err=True)
        if e.resume_command:
            click.echo(f"Resume with: {e.resume_command}", err=True)
        log.debug(f"{command}_phase_error", exc_info=True)
        sys.exit(1)
    except RepoTriageError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug(f"{command}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{command}_unexpected", exc_info=True)
        sys.exit(1)


async def _execute(settings: TriageSettings, repo_root: Path, operation, force: bool) -> None:
    async with _create_pipeline(settings, repo_root, force) as pipeline:
        result = await operation(pipeline)
    if isinstance(result, PipelineSummary):
        _print_summary(result)


@asynccontextmanager
async def _create_pipeline(settings: TriageSettings, repo_root: Path, force: bool) -> AsyncIterator[TriagePipeline]:
    """Wire providers into a pipeline and connect the tracker.

    Args:
        settings: Triage settings
        repo_root: Repository checkout
        force: Override a live run lock
    """
    tracker = GitHubTracker(
        token=settings.tracker.token.get_secret_value(),
        owner=settings.repository.owner,
        repo=settings.repository.name,
        base_url=settings.tracker.base_url,
    )
    runner = ExternalAgentRunner(command=settings.runner.command, timeout=settings.runner.timeout)
    vcs = GitHistory(repo_root)

    await tracker.connect()
    try:
        yield TriagePipeline(
            settings,
            tracker,
            runner,
            vcs,
            repo_root,
            RunLock(settings.lock_path),
            force=force,
        )
    finally:
        await tracker.disconnect()


def _print_summary(summary: PipelineSummary) -> None:
    if summary.run_id is None:
        click.echo("No untriaged open issues found.")
        return

    click.echo(f"Run: {summary.run_id}")
    click.echo(f"Run dir: {summary.run_dir}")
    click.echo(f"Issues: {summary.issues}, decisions: {len(summary.decisions)}")
    for decision in summary.decisions:
        click.echo(
            f"  #{decision.issue_number}: {decision.risk_level.value} risk, "
            f"{decision.aggregate_confidence:.0%} confidence, {len(decision.actions)} actions"
        )
    if summary.dry_run:
        click.echo("Dry run: no tracker changes were made.")
        return
    if summary.verification is not None:
        report = summary.verification
        click.echo(f"Verified: {report.passed_count}/{len(report.verifications)} issues fully verified")
    click.echo(f"Links: {len(summary.links)}, cross-repo links: {len(summary.cross_repo_links)}")
    for phase, error in summary.phase_errors.items():
        click.echo(f"Warning: {phase} failed: {error}", err=True)


if __name__ == "__main__":
    cli()
