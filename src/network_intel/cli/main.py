"""
network-intel CLI: run the enrichment pipeline and inspect the graph.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from network_intel.errors import ConflictError, NetworkIntelError
from network_intel.settings import settings

console = Console()


def _configure_logging(verbose: bool = False) -> None:
    level = "DEBUG" if verbose else (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _components(*, with_mirror: bool = False):
    from network_intel.service.wiring import build_components

    return build_components(settings, with_mirror=with_mirror)


def _fail(msg: str, code: int = 1) -> None:
    console.print(f"[red]{msg}[/red]")
    sys.exit(code)


@click.group()
@click.option("--db", "db_path", default=None, help="SQLite path (overrides NETWORK_INTEL_DB_PATH)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(db_path, verbose):
    """network-intel - knowledge graph of organizations and people"""
    if db_path:
        settings.db_path = db_path
    _configure_logging(verbose)


@cli.command()
def version():
    """Print the package version"""
    from network_intel import __version__

    click.echo(__version__)


# ---------------------------------------------------------------- pipeline


@cli.group()
def pipeline():
    """Enrichment pipeline"""


@pipeline.command("run")
@click.option("--timeout", type=float, default=None, help="Wall-clock budget in seconds")
def pipeline_run(timeout):
    """Run every enrichment stage once"""
    c = _components(with_mirror=True)
    orch = c.orchestrator()
    if timeout is not None:
        orch.timeout_s = timeout

    async def _go():
        try:
            return await orch.run()
        finally:
            await c.aclose()

    try:
        report = asyncio.run(_go())
    except ConflictError as e:
        _fail(str(e), code=2)

    table = Table(title=f"Pipeline run {report.run_id}")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("ms", justify="right")
    table.add_column("Details", overflow="fold")
    for s in report.stages:
        style = "green" if s.status == "ok" else "red"
        detail = s.error or json.dumps(s.details, default=str)
        table.add_row(s.name, f"[{style}]{s.status}[/{style}]", f"{s.duration_ms:.0f}", detail)
    console.print(table)

    if not report.ok:
        _fail(f"Pipeline ended in error: {report.message}")
    console.print("[green]Pipeline completed[/green]")


@pipeline.command("status")
@click.option("--limit", default=5, help="Recent runs to show")
def pipeline_status(limit):
    """Show the sync state and recent runs"""
    c = _components()
    state = c.store.get_sync_state()
    color = {"idle": "green", "running": "yellow", "error": "red"}[state.status.value]
    console.print(
        Panel.fit(
            f"[{color}]{state.status.value}[/{color}]  {state.message or ''}\n"
            f"run: {state.run_id or '-'}\n"
            f"updated: {state.updated_at:%Y-%m-%d %H:%M:%S}\n"
            f"last success: {state.last_success_at.strftime('%Y-%m-%d %H:%M:%S') if state.last_success_at else '-'}",
            title="Sync state",
        )
    )

    runs = c.store.list_sync_runs(limit=limit)
    if not runs:
        return
    table = Table(title="Recent runs")
    table.add_column("Run", style="cyan")
    table.add_column("Status")
    table.add_column("Started", style="green")
    table.add_column("Message", overflow="fold")
    for r in runs:
        table.add_row(r.id[:12], r.status.value, f"{r.started_at:%Y-%m-%d %H:%M}", r.message or "")
    console.print(table)


# ---------------------------------------------------------------- maintenance


@cli.command()
@click.option("--apply", is_flag=True, help="Merge duplicates (default is a dry run)")
@click.option("--delete-invalid", is_flag=True, help="Delete entities with invalid names (needs --apply)")
def cleanup(apply, delete_invalid):
    """Validate names and merge duplicate entities"""
    c = _components()
    report = c.dedup.cleanup(dry_run=not apply, delete_invalid=delete_invalid and apply)

    if report.invalid:
        table = Table(title="Invalid names")
        table.add_column("Id", style="cyan", width=12)
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Reason", style="red")
        for f in report.invalid:
            table.add_row(f.entity_id[:12], f.kind.value, f.name, f.reason.value if f.reason else "")
        console.print(table)

    if report.proposed and report.proposed.proposed:
        table = Table(title="Duplicate groups")
        table.add_column("Key", style="cyan")
        table.add_column("Survivor", style="green")
        table.add_column("Duplicates")
        for p in report.proposed.proposed:
            table.add_row(p.key, p.survivor_name, ", ".join(p.duplicate_names))
        console.print(table)

    console.print(report.summary())
    if not apply:
        console.print("[yellow]Dry run; pass --apply to merge[/yellow]")


@cli.command()
def metrics():
    """Recompute centralities and importance"""
    c = _components(with_mirror=settings.analytics_backend == "neo4j-gds")
    try:
        report = c.metrics.recompute()
    finally:
        if c.mirror is not None:
            c.mirror.close()
    color = "green" if report.mode == "full" else "yellow"
    console.print(f"[{color}]{report.mode}[/{color}] {report.as_dict()}")


@cli.command()
def stats():
    """Graph counts and embedding coverage"""
    c = _components()
    s = c.store.stats()
    table = Table(title="Graph")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("entities", str(s.entities))
    table.add_row("relationships", str(s.relationships))
    table.add_row("interactions", str(s.interactions))
    table.add_row("embedding coverage", f"{s.embedding_coverage:.1%}")
    table.add_row("sync status", s.sync_state.status.value)
    console.print(table)


# ---------------------------------------------------------------- queries


@cli.command()
@click.argument("query")
@click.option("--limit", default=10, help="Number of results")
@click.option("--target", "target_id", default=None, help="Score relationship strength against this entity")
def search(query, limit, target_id):
    """Rank contacts for a free-text query"""
    c = _components()

    async def _go():
        try:
            return await c.scorer.search(query, limit=limit, target_id=target_id)
        finally:
            await c.aclose()

    try:
        res = asyncio.run(_go())
    except NetworkIntelError as e:
        _fail(str(e))

    if res.degraded:
        console.print(f"[yellow]Keyword fallback: {res.reason}[/yellow]")
    if not res.candidates:
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=f"Search Results for '{query}'")
    table.add_column("Score", style="cyan", width=8)
    table.add_column("Name", style="white")
    table.add_column("Kind", style="blue")
    table.add_column("Sim", justify="right")
    table.add_column("Strength", justify="right")
    table.add_column("Match", style="magenta")
    for r in res.candidates:
        table.add_row(
            f"{r.score:.3f}", r.name, r.kind.value, f"{r.similarity:.2f}", f"{r.relationship_strength:.2f}", r.match
        )
    console.print(table)


@cli.command("warm-paths")
@click.argument("target_id")
@click.option("--limit", default=10)
@click.option("--max-hops", default=3)
def warm_paths(target_id, limit, max_hops):
    """Who on the team can introduce us to TARGET_ID"""
    c = _components()
    try:
        paths = c.scorer.warm_paths(target_id, limit=limit, max_hops=max_hops)
    except NetworkIntelError as e:
        _fail(str(e))

    if not paths:
        console.print("[yellow]No warm paths[/yellow]")
        return
    table = Table(title=f"Warm paths to {target_id}")
    table.add_column("Score", style="cyan", width=8)
    table.add_column("Teammate", style="green")
    table.add_column("Contact")
    table.add_column("Degree", justify="right")
    table.add_column("Strength", justify="right")
    for p in paths:
        table.add_row(f"{p.score:.3f}", p.teammate_name, p.contact_name, str(p.degree), f"{p.strength:.2f}")
    console.print(table)


@cli.command()
@click.argument("source_id")
@click.argument("target_id")
@click.option("--strategy", type=click.Choice(["strongest", "shortest"]), default="strongest")
@click.option("--max-hops", default=6)
def path(source_id, target_id, strategy, max_hops):
    """Best connection path from SOURCE_ID to TARGET_ID"""
    c = _components()
    try:
        found = c.scorer.connection_path(source_id, target_id, strategy=strategy, max_hops=max_hops)
    except NetworkIntelError as e:
        _fail(str(e))

    if found is None:
        console.print(f"[yellow]No path within {max_hops} hops[/yellow]")
        return
    console.print(
        Panel(
            " -> ".join(found.names),
            title=f"{strategy} path: {found.hops} hops, strength {found.strength:.3f}",
        )
    )


@cli.command()
@click.option("--hub-min-degree", default=5, help="Degree at which an entity counts as a hub")
def influence(hub_min_degree):
    """Influencers, hubs, bridges and isolated entities from the stored metrics"""
    from network_intel.metrics.influence import analyze_influence

    c = _components()
    report = analyze_influence(c.store, hub_min_degree=hub_min_degree)
    s = report.stats
    console.print(
        f"nodes={s.nodes} edges={s.edges} avg_degree={s.avg_degree:.2f} "
        f"density={s.density:.4f} clustering={s.clustering:.3f}"
    )
    for title, entries in (
        ("Top influencers", report.top_influencers),
        ("Hubs", report.hubs),
        ("Bridges", report.bridges),
        ("Isolated", report.isolated),
    ):
        if not entries:
            continue
        table = Table(title=title)
        table.add_column("Name")
        table.add_column("Degree", justify="right")
        table.add_column("Importance", justify="right", style="cyan")
        table.add_column("Community", justify="right")
        for e in entries:
            table.add_row(e.name, str(e.degree), f"{e.importance:.3f}", "-" if e.community is None else str(e.community))
        console.print(table)


@cli.group()
def graph():
    """Progressive graph retrieval"""


@graph.command("initial")
@click.option("--mode", default="overview", help="overview|high-importance|portfolio|internal|pipeline|recent|hubs")
@click.option("--max-nodes", type=int, default=None)
def graph_initial(mode, max_nodes):
    """Print the initial slice as JSON"""
    c = _components()
    try:
        out = c.retrieval.load_initial(mode, max_nodes)
    except NetworkIntelError as e:
        _fail(str(e))
    click.echo(json.dumps(out.as_dict(), indent=2))


@graph.command("expand")
@click.argument("node_id")
@click.option("--loaded", multiple=True, help="Ids already held by the caller")
@click.option("--max-nodes", type=int, default=None)
def graph_expand(node_id, loaded, max_nodes):
    """Print the 1-hop expansion of NODE_ID as JSON"""
    c = _components()
    try:
        out = c.retrieval.expand(node_id, list(loaded), max_nodes)
    except NetworkIntelError as e:
        _fail(str(e))
    click.echo(json.dumps(out.as_dict(), indent=2))


@cli.command()
def serve():
    """Run the HTTP API (uvicorn)"""
    from network_intel.service.server import main as serve_main

    serve_main()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
