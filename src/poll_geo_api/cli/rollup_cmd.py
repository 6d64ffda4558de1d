"""Rollup CLI commands for rebuilding aggregates and inspecting dirty state."""

import asyncio

import typer

rollup_app = typer.Typer()


@rollup_app.command("poll")
def rollup_one(
    poll_id: str = typer.Argument(..., help="Poll to rebuild"),
) -> None:
    """Rebuild every aggregate layer of one poll now."""
    asyncio.run(_rollup_one(poll_id))


async def _rollup_one(poll_id: str) -> None:
    """Async implementation of a single-poll rollup."""
    from poll_geo_api.core.config import get_settings
    from poll_geo_api.core.database import dispose_engine, get_session_factory, init_engine
    from poll_geo_api.lib.errors import RollupFailureError
    from poll_geo_api.services.rollup_service import rollup_poll

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            try:
                result = await rollup_poll(
                    session,
                    poll_id,
                    settings.aggregate_resolution_list,
                    batch_size=settings.rollup_scan_batch_size,
                )
            except RollupFailureError as e:
                typer.echo(str(e), err=True)
                raise typer.Exit(code=1) from e

        if result.locked_out:
            typer.echo(f"Poll {poll_id} is being rolled up by another process; it stays dirty")
            return

        typer.echo(f"Rollup of poll {poll_id} complete:")
        typer.echo(f"  Responses scanned:  {result.responses_scanned}")
        typer.echo(f"  Skipped (no cell):  {result.responses_skipped}")
        typer.echo(f"  Respondents:        {result.respondents}")
        for resolution, cells in result.cells_by_resolution.items():
            typer.echo(f"  Resolution {resolution:>2}:      {cells} cells")
        typer.echo(f"  Dirty cleared:      {'yes' if result.cleared_dirty else 'no'}")
    finally:
        await dispose_engine()


@rollup_app.command("dirty")
def rollup_dirty() -> None:
    """Rebuild every poll that has writes since its last rollup."""
    asyncio.run(_rollup_dirty())


async def _rollup_dirty() -> None:
    """Async implementation of a dirty-poll pass."""
    from poll_geo_api.core.config import get_settings
    from poll_geo_api.core.database import dispose_engine, get_session_factory, init_engine
    from poll_geo_api.services.rollup_service import rollup_dirty_polls

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        summary = await rollup_dirty_polls(
            get_session_factory(),
            settings.aggregate_resolution_list,
            batch_size=settings.rollup_scan_batch_size,
        )
    finally:
        await dispose_engine()

    typer.echo(f"Rolled up {len(summary.succeeded)} poll(s), {len(summary.failed)} failed")
    for poll_id in summary.locked_out:
        typer.echo(f"  locked by another process: {poll_id}")
    for poll_id in summary.failed:
        typer.echo(f"  failed: {poll_id}", err=True)
    if summary.failed:
        raise typer.Exit(code=1)


@rollup_app.command("state")
def rollup_state(
    poll_id: str = typer.Argument(..., help="Poll to inspect"),
) -> None:
    """Show a poll's dirty flag and rollup timestamps."""
    asyncio.run(_rollup_state(poll_id))


async def _rollup_state(poll_id: str) -> None:
    """Async implementation of the state lookup."""
    from poll_geo_api.core.config import get_settings
    from poll_geo_api.core.database import dispose_engine, get_session_factory, init_engine
    from poll_geo_api.services.dirty_tracker import get_rollup_state

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        async with get_session_factory()() as session:
            state = await get_rollup_state(session, poll_id)
    finally:
        await dispose_engine()

    if state is None:
        typer.echo(f"No rollup state for poll {poll_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Poll {poll_id}:")
    typer.echo(f"  Dirty:              {'yes' if state.dirty else 'no'}")
    typer.echo(f"  Last submission:    {state.last_submission_at or '-'}")
    typer.echo(f"  Last rolled:        {state.last_rolled_at or '-'}")
    if state.last_error:
        typer.echo(f"  Last error:         {state.last_error}")
