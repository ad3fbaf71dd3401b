"""gapwise CLI: study commands, catalog management and the local server."""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from gapwise.application.catalog import CatalogService
from gapwise.application.config import AppConfig, resolve_config
from gapwise.application.factory import get_repository
from gapwise.application.service import LearningService
from gapwise.domain.errors import GapwiseError
from gapwise.domain.models import GapLevel, PlanBudget, SessionType

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="gapwise: find and close the gaps in what you know.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

catalog_app = typer.Typer(help="Manage concepts and practice items.", no_args_is_help=True)
app.add_typer(catalog_app, name="catalog")

config_app = typer.Typer(help="Manage gapwise configuration.")
app.add_typer(config_app, name="config")

session_app = typer.Typer(help="Start, complete and list study sessions.", no_args_is_help=True)
app.add_typer(session_app, name="session")

db_app = typer.Typer(help="Learner database maintenance.", no_args_is_help=True)
app.add_typer(db_app, name="db")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

LEVEL_COLORS = {
    GapLevel.CRITICAL: "red",
    GapLevel.WEAK: "yellow",
    GapLevel.DEVELOPING: "cyan",
    GapLevel.STRONG: "green",
}


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
    db: Annotated[
        Path | None, typer.Option("--db", help="Learner database path. Defaults to config.")
    ] = None,
):
    """Global settings for gapwise."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["database_path"] = db

    if verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose == 1:
        logging.getLogger().setLevel(logging.INFO)


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.obj or {}
    return resolve_config(
        {"database_path": obj.get("database_path"), "verbose": obj.get("verbose")}
    )


def _run(
    ctx: typer.Context, work: Callable[[LearningService, CatalogService], Awaitable[T]]
) -> T:
    """Open the repository, run one coroutine against it and close it again."""
    config = _config(ctx)
    repo = get_repository(config)
    logger.debug(f"Using {config.backend} repository at {config.database_path}")
    try:
        return asyncio.run(work(LearningService(repo, config=config), CatalogService(repo)))
    except GapwiseError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None
    finally:
        close = getattr(repo, "close", None)
        if close is not None:
            close()


def _dump(rows: list[Any]) -> str:
    return json.dumps([asdict(r) for r in rows], indent=2, default=str)


# ---------------------------------------------------------------------------
# Study commands
# ---------------------------------------------------------------------------


@app.command()
def submit(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Id of the item that was answered.")],
    correct: Annotated[
        bool | None,
        typer.Option("--correct/--incorrect", help="Whether the answer was right."),
    ] = None,
    confidence: Annotated[
        int, typer.Option("--confidence", "-c", help="Self-rated confidence, 1-5.")
    ] = 3,
    answer: Annotated[str, typer.Option(help="The answer as given.")] = "",
    time_ms: Annotated[int, typer.Option("--time-ms", help="Time spent in milliseconds.")] = 0,
    session: Annotated[str | None, typer.Option(help="Study session id.")] = None,
    attempt_id: Annotated[
        str | None, typer.Option(help="Explicit attempt id for idempotent retries.")
    ] = None,
    at: Annotated[
        datetime | None, typer.Option(help="When the attempt happened. Defaults to now.")
    ] = None,
):
    """[bold green]Record[/bold green] an answer and update your mastery."""
    if correct is None:
        typer.secho("Pass --correct or --incorrect.", fg="red", err=True)
        raise typer.Exit(2)

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.submit_attempt(
            item_id,
            session,
            answer,
            correct,
            confidence,
            time_ms,
            attempted_at=at,
            attempt_id=attempt_id,
        )

    outcome = _run(ctx, run)
    if not outcome.ok:
        typer.secho(f"Error: {outcome.error}", fg="red", err=True)
        raise typer.Exit(1)
    typer.secho(f"Recorded attempt {outcome.attempt.id}", fg="green")


@app.command()
def plan(
    ctx: typer.Context,
    items: Annotated[int | None, typer.Option(help="Maximum items in the plan.")] = None,
    minutes: Annotated[float | None, typer.Option(help="Time budget in minutes.")] = None,
    at: Annotated[datetime | None, typer.Option(help="Plan for this moment.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Build today's study plan: due reviews first, then diagnostics."""

    async def run(service: LearningService, _catalog: CatalogService):
        budget = None
        if items is not None or minutes is not None:
            budget = PlanBudget(
                max_items=service.config.daily_item_budget if items is None else items,
                max_minutes=(
                    service.config.daily_time_budget_minutes if minutes is None else minutes
                ),
                review_share=service.config.review_share,
            )
        return await service.get_daily_plan(at, budget)

    daily = _run(ctx, run)
    if json_output:
        typer.echo(json.dumps(asdict(daily), indent=2, default=str))
        return

    typer.echo(f"Plan for {daily.date}")
    typer.echo(f"Items: {daily.total_items} (~{daily.estimated_time_minutes} min)")
    typer.echo(f"Coverage: {daily.coverage_percent}%")
    if not daily.items:
        typer.secho("Nothing to study.", fg="yellow")
        return
    for planned in daily.items:
        typer.echo(f"  {planned.priority:>3}. {planned.item_id}  [{planned.reason.value}]")


@app.command()
def gaps(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option(help="How many gaps to show.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show your weakest concepts."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.get_top_gaps(limit)

    summaries = _run(ctx, run)
    if json_output:
        typer.echo(_dump(summaries))
        return
    if not summaries:
        typer.secho("No attempted concepts yet.", fg="yellow")
        return
    for gap in summaries:
        typer.secho(
            f"{gap.concept_name or gap.concept_id}: {gap.mastery_score:.1f} "
            f"({gap.level.value}, {gap.review_backlog} due, trend {gap.trend.value})",
            fg=LEVEL_COLORS[gap.level],
        )


@app.command()
def mastery(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show mastery for every concept."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.get_concept_mastery()

    states = _run(ctx, run)
    if json_output:
        typer.echo(_dump(states))
        return
    for state in states:
        typer.echo(
            f"{state.concept_id}: {state.mastery_score:.1f} "
            f"({state.correct}/{state.attempts} correct)"
        )


@app.command()
def trends(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Daily accuracy and volume."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.get_performance_trends()

    days = _run(ctx, run)
    if json_output:
        typer.echo(_dump(days))
        return
    for day in days:
        typer.echo(
            f"{day.date}: {day.accuracy:.0%} of {day.items_completed} "
            f"(confidence {day.avg_confidence:.1f})"
        )


@app.command()
def due(ctx: typer.Context):
    """Count items due for review or never attempted."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.get_due_count()

    typer.echo(f"Due items: {_run(ctx, run)}")


@app.command()
def rebuild(ctx: typer.Context):
    """Recompute all memory and mastery state from the attempt log."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.rebuild_mastery()

    rebuilt = _run(ctx, run)
    typer.secho(f"Rebuilt mastery for {len(rebuilt)} concepts.", fg="green")


@app.command()
def history(
    ctx: typer.Context,
    item_id: Annotated[str, typer.Argument(help="Item whose attempts to show.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show every attempt on one item, oldest first."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.get_attempts_for_item(item_id)

    attempts = _run(ctx, run)
    if json_output:
        typer.echo(_dump(attempts))
        return
    if not attempts:
        typer.secho(f"No attempts on {item_id}.", fg="yellow")
        return
    for attempt in attempts:
        mark = "correct" if attempt.is_correct else "wrong"
        typer.echo(f"{attempt.timestamp.isoformat()}  {mark}  confidence {attempt.confidence}")


# ---------------------------------------------------------------------------
# Session subgroup
# ---------------------------------------------------------------------------


@session_app.command("start")
def session_start(
    ctx: typer.Context,
    session_type: Annotated[
        SessionType, typer.Option("--type", "-t", help="Kind of session.")
    ] = SessionType.MIXED,
    items: Annotated[int, typer.Option(help="Planned number of items.")] = 0,
    concept: Annotated[
        str | None, typer.Option(help="Concept id for a focused session.")
    ] = None,
    time_limit_ms: Annotated[
        int | None, typer.Option("--time-limit-ms", help="Time limit for an exam.")
    ] = None,
):
    """Start a session; pass its id to `submit --session`."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.create_session(session_type, items, concept, time_limit_ms)

    session = _run(ctx, run)
    typer.secho(f"Started {session.session_type.value} session {session.id}", fg="green")


@session_app.command("complete")
def session_complete(
    ctx: typer.Context,
    session_id: Annotated[str, typer.Argument(help="Session to close.")],
):
    """Close a session and summarise its attempts."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.complete_session(session_id)

    session = _run(ctx, run)
    typer.secho(
        f"Completed {session.id}: {session.completed_items} items, "
        f"{session.accuracy:.0%} correct, confidence {session.average_confidence:.1f}",
        fg="green",
    )


@session_app.command("list")
def session_list(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List sessions, oldest first."""

    async def run(service: LearningService, _catalog: CatalogService):
        return await service.get_all_sessions()

    sessions = _run(ctx, run)
    if json_output:
        typer.echo(_dump(sessions))
        return
    for session in sessions:
        status = "open" if session.completed_at is None else f"{session.accuracy:.0%}"
        typer.echo(f"{session.id}  {session.session_type.value}  {status}")


# ---------------------------------------------------------------------------
# Catalog subgroup
# ---------------------------------------------------------------------------


@catalog_app.command("load")
def catalog_load(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="YAML file with concepts and items.")],
):
    """Import concepts and items from a YAML file."""
    if not path.exists():
        typer.secho(f"File not found: {path}", fg="red", err=True)
        raise typer.Exit(1)

    async def run(_service: LearningService, catalog: CatalogService):
        return await catalog.load_yaml(path)

    result = _run(ctx, run)
    typer.secho(
        f"Loaded {len(result.concepts)} concepts and {len(result.items)} items.", fg="green"
    )


@catalog_app.command("concepts")
def catalog_concepts(ctx: typer.Context):
    """List concepts."""

    async def run(_service: LearningService, catalog: CatalogService):
        return await catalog.list_concepts()

    for concept in _run(ctx, run):
        typer.echo(f"{concept.id}  {concept.name}  [{concept.domain}]")


@catalog_app.command("items")
def catalog_items(ctx: typer.Context):
    """List items."""

    async def run(_service: LearningService, catalog: CatalogService):
        return await catalog.list_items()

    for item in _run(ctx, run):
        typer.echo(f"{item.id}  ({item.type.value})  {item.stem}")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


# ---------------------------------------------------------------------------
# DB subgroup
# ---------------------------------------------------------------------------


@db_app.command("clear")
def db_clear(
    ctx: typer.Context,
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip confirmation.")] = False,
):
    """Delete every concept, item, attempt and derived state."""
    if not force:
        typer.confirm("This deletes all learning data. Continue?", abort=True)

    async def run(service: LearningService, _catalog: CatalogService):
        await service.clear_all()

    _run(ctx, run)
    typer.secho("All learning data cleared.", fg="green")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def server(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8787,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API."""
    import uvicorn

    typer.secho(f"Starting gapwise server on http://{host}:{port}", fg="green")
    uvicorn.run("gapwise.server:app", host=host, port=port, reload=reload)
