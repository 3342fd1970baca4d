"""Main CLI entry point."""

from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import Session

from config import get_settings
from db.enums import MissionStatus, MissionType
from missionfactory.services._helpers import secret_commitment, unix_now
from missionfactory.services.errors import MissionError
from missionfactory.services.registry import MissionRegistry
from missionfactory.services.schemas.results import MissionParams
from missionfactory.services.transfers import LedgerTransferGateway

app = typer.Typer(
    name="missionfactory",
    help="Mission Factory operator CLI",
    add_completion=False,
)

console = Console()


def _registry(session: Session) -> MissionRegistry:
    settings = get_settings()
    gateway = LedgerTransferGateway(session, settings.missions.contract_addresses)
    return MissionRegistry(session, gateway, settings=settings.missions)


def _default_caller() -> str:
    return get_settings().missions.owner_address


def _fail(exc: MissionError) -> NoReturn:
    console.print(f"[red]{type(exc).__name__}: {exc.message}[/red]")
    for key, value in exc.context.items():
        console.print(f"  {key}: {value}")
    raise typer.Exit(code=1)


def _status_style(status: str) -> str:
    if status in (MissionStatus.SUCCESS.value, MissionStatus.ACTIVE.value):
        return "green"
    if status == MissionStatus.FAILED.value:
        return "red"
    if status in (MissionStatus.PAUSED.value, MissionStatus.PARTLY_SUCCESS.value):
        return "yellow"
    return "white"


@app.command()
def init_db(
    force: bool = typer.Option(False, "--force", "-f", help="Drop and recreate tables")
):
    """Initialize the database schema."""
    from db.connection import get_engine, init_database
    from db.models import Base

    with console.status("Initializing database..."):
        if force:
            Base.metadata.drop_all(get_engine())
            console.print("[yellow]Dropped existing tables[/yellow]")

        created = init_database()

    console.print("[green]Database initialized successfully[/green]")
    if created:
        console.print(f"  Created: {', '.join(created)}")


@app.command()
def create_mission(
    mission_type: MissionType = typer.Option(..., "--type", "-t", help="Mission type"),
    enrollment_start: int = typer.Option(..., help="Enrollment opens (unix seconds)"),
    enrollment_end: int = typer.Option(..., help="Enrollment closes (unix seconds)"),
    mission_start: int = typer.Option(..., help="Mission starts (unix seconds)"),
    mission_end: int = typer.Option(..., help="Mission ends (unix seconds)"),
    enrollment_amount: int = typer.Option(..., "--fee", help="Enrollment fee"),
    min_players: int = typer.Option(..., "--min-players"),
    max_players: int = typer.Option(..., "--max-players"),
    rounds: int = typer.Option(..., "--rounds", "-r"),
    name: str = typer.Option("", "--name", "-n"),
    round_pause: int = typer.Option(300, help="Pause after each round (seconds)"),
    last_round_pause: int = typer.Option(60, help="Pause before the final round (seconds)"),
    initial_pot: int = typer.Option(0, help="Seed capital added to the pool"),
    from_reserve: bool = typer.Option(True, "--from-reserve/--no-reserve"),
    passphrase: Optional[str] = typer.Option(None, help="Invite-only passphrase"),
    caller: Optional[str] = typer.Option(None, "--caller", help="Defaults to the configured owner"),
):
    """Create a mission."""
    from db.connection import get_session

    commitment = secret_commitment(passphrase, enrollment_start) if passphrase else None
    params = MissionParams(
        mission_type=mission_type,
        name=name,
        enrollment_start=enrollment_start,
        enrollment_end=enrollment_end,
        enrollment_amount=enrollment_amount,
        min_players=min_players,
        max_players=max_players,
        mission_start=mission_start,
        mission_end=mission_end,
        mission_rounds=rounds,
        round_pause_duration=round_pause,
        last_round_pause_duration=last_round_pause,
        secret_commitment=commitment,
        initial_pot=initial_pot,
        fund_from_reserve=from_reserve,
    )
    try:
        with get_session() as session:
            mission = _registry(session).create_mission(
                caller or _default_caller(), params, unix_now()
            )
            mission_id, pot = mission.id, mission.cro_initial
    except MissionError as e:
        _fail(e)

    console.print(f"[green]Created mission {mission_id}[/green]")
    console.print(f"  Type: {mission_type.value}")
    console.print(f"  Initial pot: {pot}")


@app.command()
def missions(
    scope: str = typer.Option("all", "--scope", "-s", help="all | not-ended | ended | latest"),
    status: Optional[MissionStatus] = typer.Option(None, "--status"),
    limit: int = typer.Option(20, "--limit", "-l"),
):
    """List missions with their live status."""
    from db.connection import get_session

    now = unix_now()
    with get_session() as session:
        registry = _registry(session)
        if status is not None:
            rows = registry.missions_by_status(status, now)
        elif scope == "not-ended":
            rows = registry.not_ended(now)
        elif scope == "ended":
            rows = registry.ended(now)
        elif scope == "latest":
            rows = registry.latest_missions(limit, now)
        else:
            rows = registry.all_missions(now)

    if not rows:
        console.print("[yellow]No missions found[/yellow]")
        return

    table = Table(title=f"Missions ({scope})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Enrollment End", justify="right")
    table.add_column("Mission End", justify="right")

    for row in rows[:limit]:
        style = _status_style(row["status"])
        table.add_row(
            row["mission_id"],
            row["name"],
            row["mission_type"],
            f"[{style}]{row['status']}[/{style}]",
            str(row["enrollment_end"]),
            str(row["mission_end"]),
        )

    console.print(table)


@app.command()
def mission(mission_id: str = typer.Argument(..., help="Mission ID")):
    """Show one mission and its players."""
    from db.connection import get_session

    try:
        with get_session() as session:
            snap = _registry(session).open(mission_id).snapshot(unix_now())
    except MissionError as e:
        _fail(e)

    fields: dict[str, object] = dict(snap)
    table = Table(title=f"Mission {snap['mission_id']}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key in (
        "name",
        "mission_type",
        "status",
        "creator",
        "enrollment_amount",
        "players_count",
        "round_count",
        "mission_rounds",
        "cro_start",
        "cro_current",
        "balance",
        "owner_share",
        "creator_share",
        "reserve_share",
    ):
        table.add_row(key, str(fields[key]))
    console.print(table)

    if snap["players"]:
        players = Table(title="Players")
        players.add_column("Address", style="cyan")
        players.add_column("Won", justify="right")
        players.add_column("Refunded")
        for p in snap["players"]:
            refund = "yes" if p["refunded"] else ("failed" if p["refund_failed"] else "")
            players.add_row(p["address"], p["amount_won"], refund)
        console.print(players)


@app.command()
def changes(after: int = typer.Option(0, "--after", "-a", help="Last seen sequence number")):
    """Print change-feed entries after a sequence number."""
    from db.connection import get_session

    with get_session() as session:
        entries = _registry(session).get_changes_after(after)

    if not entries:
        console.print("[yellow]No changes[/yellow]")
        return

    table = Table(title=f"Changes after {after}")
    table.add_column("Seq", justify="right", style="cyan")
    table.add_column("Mission")
    table.add_column("Status")
    table.add_column("Timestamp", justify="right")
    for e in entries:
        table.add_row(str(e["seq"]), e["mission_id"], e["status"], str(e["timestamp"]))
    console.print(table)


@app.command()
def limits(player: str = typer.Argument(..., help="Player address")):
    """Show a player's enrollment counts and limits."""
    from db.connection import get_session

    with get_session() as session:
        info = _registry(session).player_limits(player, unix_now())

    table = Table(title=f"Enrollment limits for {player}")
    table.add_column("Window", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Next slot in (s)", justify="right")
    table.add_row(
        "weekly",
        str(info["weekly_count"]),
        str(info["weekly_limit"]),
        str(info["seconds_till_weekly_slot"]),
    )
    table.add_row(
        "monthly",
        str(info["monthly_count"]),
        str(info["monthly_limit"]),
        str(info["seconds_till_monthly_slot"]),
    )
    console.print(table)


@app.command()
def summary():
    """Show factory totals, reserve pools and ownership."""
    from db.connection import get_session

    with get_session() as session:
        info = _registry(session).factory_summary(unix_now())

    table = Table(title="Mission Factory")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Owner", info["owner"])
    table.add_row("Pending owner", info["pending_owner"] or "-")
    table.add_row("Authorized", ", ".join(info["authorized"]) or "-")
    table.add_row("Missions", str(info["total_missions"]))
    table.add_row("Active missions", str(info["active_missions"]))
    table.add_row("Successes", str(info["total_successes"]))
    table.add_row("Failures", str(info["total_failures"]))
    table.add_row("Reserve total", info["total_mission_funds"])
    table.add_row("Owner earned", info["total_owner_earned"])
    table.add_row("Platform balance", info["platform_balance"])
    table.add_row("Limits (week/month)", f"{info['weekly_limit']}/{info['monthly_limit']}")
    console.print(table)

    pools = Table(title="Reserve pools")
    pools.add_column("Type", style="cyan")
    pools.add_column("Amount", justify="right")
    for mission_type, amount in info["funds_by_type"].items():
        pools.add_row(mission_type, amount)
    console.print(pools)


@app.command()
def authorize(
    address: str = typer.Argument(..., help="Address to authorize"),
    caller: Optional[str] = typer.Option(None, "--caller"),
):
    """Add an address to the authorized set (owner only)."""
    from db.connection import get_session

    try:
        with get_session() as session:
            added = _registry(session).add_authorized(
                caller or _default_caller(), address, unix_now()
            )
    except MissionError as e:
        _fail(e)

    if added:
        console.print(f"[green]Authorized {address}[/green]")
    else:
        console.print(f"[yellow]{address} was already authorized[/yellow]")


@app.command()
def deauthorize(
    address: str = typer.Argument(..., help="Address to remove"),
    caller: Optional[str] = typer.Option(None, "--caller"),
):
    """Remove an address from the authorized set (owner only)."""
    from db.connection import get_session

    try:
        with get_session() as session:
            removed = _registry(session).remove_authorized(caller or _default_caller(), address)
    except MissionError as e:
        _fail(e)

    if removed:
        console.print(f"[green]Removed {address}[/green]")
    else:
        console.print(f"[yellow]{address} was not authorized[/yellow]")


@app.command()
def set_limits(
    weekly: int = typer.Option(..., "--weekly", "-w"),
    monthly: int = typer.Option(..., "--monthly", "-m"),
    caller: Optional[str] = typer.Option(None, "--caller"),
):
    """Change the weekly/monthly enrollment caps."""
    from db.connection import get_session

    try:
        with get_session() as session:
            _registry(session).set_enrollment_limits(caller or _default_caller(), weekly, monthly)
    except MissionError as e:
        _fail(e)

    console.print(f"[green]Limits set: {weekly}/week, {monthly}/month[/green]")


if __name__ == "__main__":
    app()
