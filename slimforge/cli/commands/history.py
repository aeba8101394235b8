"""``slimforge history [RUN_ID]``: read-only view over the build ledger."""

from __future__ import annotations

import typer
from rich.console import Console

from slimforge.config import ForgeConfig
from slimforge.core.build_ledger import BuildLedger, LedgerIntegrityError
from slimforge.monitor.renderer import BuildRenderer

console = Console()


def history_cmd(
    ctx: typer.Context,
    run_id: str = typer.Argument(None, help="Show the transitions of this run."),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the run's hash chain integrity.",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to list."),
) -> None:
    """List recent runs, or show one run's state transitions."""
    config: ForgeConfig = ctx.obj
    db_path = config.resolved_ledger_path
    if not db_path.exists():
        console.print("[dim]No builds recorded yet.[/dim]")
        return

    ledger = BuildLedger(db_path)
    renderer = BuildRenderer(console=console)

    if run_id is None:
        runs = []
        for rid in ledger.get_all_run_ids()[:limit]:
            latest = ledger.get_latest(rid)
            if latest is not None:
                runs.append((rid, latest))
        console.print(renderer.render_runs(runs))
        return

    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    console.print(renderer.render_history(run_id, entries))
    failure = next((e for e in entries if e.detail and e.to_state == "failed"), None)
    if failure is not None:
        console.print()
        console.print(failure.detail, markup=False, highlight=False)

    if verify_chain:
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        if not valid:
            raise typer.Exit(code=1)
