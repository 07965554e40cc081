"""CLI for share-cost using Typer."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from .cache import LocalCacheStore
from .clients.ledger import LedgerClient
from .config import Settings, load_settings
from .db import Database
from .exceptions import (
    PartialCrossLedgerFailureError,
    ShareCostError,
    UnresolvedIdentityError,
)
from .matcher import match_member
from .models import (
    Group,
    Member,
    Settlement,
    SharedExpenseDraft,
    StoredGroup,
    is_pending,
)
from .mutation_queue import MutationQueue
from .offline import OfflineLedger
from .planner import greedy_settlements, plan_settlements
from .registry import GroupRegistry
from .sync import SyncCoordinator
from .transfer import CrossLedgerTransfer

app = typer.Typer(
    name="share-cost",
    help="Track shared expenses and settle up, online or offline",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@dataclass
class Runtime:
    """Wired-up components for one CLI invocation."""

    settings: Settings
    ledger: OfflineLedger
    coordinator: SyncCoordinator


@asynccontextmanager
async def open_runtime() -> AsyncIterator[Runtime]:
    """Build the offline stack from settings and probe connectivity."""
    settings = load_settings()
    db = Database(settings.database_path)
    client = LedgerClient(settings.api_base_url, timeout=settings.request_timeout)
    ledger = OfflineLedger(
        client, LocalCacheStore(db), MutationQueue(db), GroupRegistry(db)
    )
    try:
        coordinator = SyncCoordinator(ledger, online=await client.health())
        await coordinator.start()
        yield Runtime(settings, ledger, coordinator)
    finally:
        await client.close()
        db.close()


def run(coro):
    """Run a command coroutine, reporting share-cost errors."""
    try:
        return asyncio.run(coro)
    except ShareCostError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


def format_amount(amount: Decimal, currency: str = "") -> str:
    """Display formatting for money; only used at the UI boundary."""
    text = f"{amount:,.2f}"
    return f"{text} {currency}".strip()


def queued_ago(timestamp: datetime) -> str:
    """Human-readable age of a queued mutation."""
    seconds = int((datetime.now(UTC) - timestamp).total_seconds())
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def print_status(rt: Runtime):
    status = rt.coordinator.status()
    state = "[green]online[/green]" if status.is_online else "[yellow]offline[/yellow]"
    console.print(f"{state} | pending changes: {status.pending_count}")


async def find_stored_group(rt: Runtime, ref: str) -> StoredGroup:
    """Find a registered group by id or case-insensitive name prefix."""
    groups = await rt.ledger.registry.list_groups()
    for group in groups:
        if group.id == ref:
            return group
    matches = [g for g in groups if g.name.lower().startswith(ref.lower())]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise typer.BadParameter(f"No joined group matches '{ref}'")
    raise typer.BadParameter(
        f"'{ref}' matches several groups: {', '.join(g.name for g in matches)}"
    )


def find_member(group: Group, ref: str) -> Member:
    """Find a group member by id or case-insensitive name."""
    for member in group.members:
        if member.id == ref or member.name.lower() == ref.lower():
            return member
    raise typer.BadParameter(f"No member '{ref}' in {group.name}")


async def load_group(rt: Runtime, stored: StoredGroup) -> Group:
    group = await rt.ledger.get_group(stored.token, stored.id)
    if group is None:
        raise typer.BadParameter(f"No data available for {stored.name}")
    return group


def select_member_interactive(group: Group, role: str, name: str) -> Member:
    """Ask the user which target-group member a source member corresponds to."""
    console.print(
        f"\n[yellow]Could not match {role} '{name}' in {group.name}.[/yellow]"
    )
    for idx, member in enumerate(group.members, 1):
        console.print(f"  {idx}. {member.name}")
    choice = typer.prompt("Select member", type=int)
    if not 1 <= choice <= len(group.members):
        raise typer.BadParameter("Invalid selection")
    return group.members[choice - 1]


def resolve_interactively(
    settlement: Settlement,
    target_group: Group,
    known_links: dict[str, str],
    failed_role: str,
) -> tuple[Member, Member]:
    """
    Finish resolving a settlement's parties after automatic matching failed.

    Only the side named by failed_role is asked for; the other side keeps its
    automatic match unless that collides with the manual pick.

    Raises:
        typer.BadParameter: If payer and payee end up being the same member
    """
    payer = payee = None
    if failed_role == "payer":
        payer = select_member_interactive(
            target_group, "payer", settlement.from_member_name
        )
        payee = match_member(
            settlement.to_member_id,
            settlement.to_member_name,
            target_group.members,
            known_links,
        )
    else:
        payer = match_member(
            settlement.from_member_id,
            settlement.from_member_name,
            target_group.members,
            known_links,
        )
        if payer is None:
            payer = select_member_interactive(
                target_group, "payer", settlement.from_member_name
            )

    if payee is None or payee.id == payer.id:
        payee = select_member_interactive(
            target_group, "payee", settlement.to_member_name
        )
    if payee.id == payer.id:
        raise typer.BadParameter(
            f"{payer.name} cannot owe themselves; pick two different members"
        )
    return payer, payee


# ============================================================================
# Groups
# ============================================================================


@app.command()
def join(
    token: str = typer.Argument(..., help="Group access token"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Join a group by its access token and cache it for offline use."""
    setup_logging(verbose)

    async def _join():
        async with open_runtime() as rt:
            group = await rt.ledger.join_group(token)
            console.print(
                f"[green]Joined {group.name} ({len(group.members)} members)[/green]"
            )

    run(_join())


@app.command()
def groups(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List joined groups."""
    setup_logging(verbose)

    async def _groups():
        async with open_runtime() as rt:
            stored = await rt.ledger.registry.list_groups()
            if not stored:
                console.print("[yellow]No groups joined yet.[/yellow]")
                return

            table = Table(title="Groups")
            table.add_column("Name", style="cyan")
            table.add_column("ID", style="dim")
            table.add_column("You are")
            table.add_column("Last accessed", style="dim")
            for group in stored:
                table.add_row(
                    group.name,
                    group.id,
                    group.selected_member_name or "-",
                    group.last_accessed.strftime("%Y-%m-%d %H:%M"),
                )
            console.print(table)

    run(_groups())


@app.command()
def whoami(
    group_ref: str = typer.Argument(..., help="Group id or name"),
    member_ref: str = typer.Argument(..., help="Your member name or id"),
):
    """Remember which member you are in a group."""

    async def _whoami():
        async with open_runtime() as rt:
            stored = await find_stored_group(rt, group_ref)
            member = find_member(await load_group(rt, stored), member_ref)
            await rt.ledger.registry.set_selected_member(stored.id, member.id, member.name)
            console.print(f"[green]You are {member.name} in {stored.name}[/green]")

    run(_whoami())


# ============================================================================
# Balances & settlements
# ============================================================================


@app.command()
def balances(
    group_ref: str = typer.Argument(..., help="Group id or name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show member balances."""
    setup_logging(verbose)

    async def _balances():
        async with open_runtime() as rt:
            print_status(rt)
            stored = await find_stored_group(rt, group_ref)
            group = await load_group(rt, stored)
            rows = await rt.ledger.get_balances(stored.token, stored.id)

            table = Table(title=f"Balances: {group.name}")
            table.add_column("Member", style="cyan")
            table.add_column("Balance", justify="right")
            for balance in rows:
                style = "green" if balance.net >= 0 else "red"
                table.add_row(
                    balance.member_name,
                    f"[{style}]{format_amount(balance.net, group.currency)}[/{style}]",
                )
            console.print(table)

    run(_balances())


@app.command()
def settle(
    group_ref: str = typer.Argument(..., help="Group id or name"),
    greedy: bool = typer.Option(
        False, "--greedy", help="Skip zero-sum partitioning (for comparison)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the payments that settle all balances."""
    setup_logging(verbose)

    async def _settle():
        async with open_runtime() as rt:
            print_status(rt)
            stored = await find_stored_group(rt, group_ref)
            group = await load_group(rt, stored)
            rows = await rt.ledger.get_balances(stored.token, stored.id)

            if greedy:
                plan = greedy_settlements(rows)
            else:
                plan = plan_settlements(rows, rt.settings.partition_limit)

            if not plan:
                console.print("[green]All settled up.[/green]")
                return

            table = Table(title=f"Settle up: {group.name}")
            table.add_column("#", style="dim")
            table.add_column("From", style="red")
            table.add_column("To", style="green")
            table.add_column("Amount", justify="right")
            for idx, settlement in enumerate(plan, 1):
                table.add_row(
                    str(idx),
                    settlement.from_member_name,
                    settlement.to_member_name,
                    format_amount(settlement.amount, group.currency),
                )
            console.print(table)

    run(_settle())


@app.command("move-debt")
def move_debt(
    source_ref: str = typer.Argument(..., help="Group the debt is recorded in"),
    target_ref: str = typer.Argument(..., help="Group to move the debt to"),
    index: int = typer.Option(1, "--index", "-i", help="Settlement number from 'settle'"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Move a debt from one group to another.

    The payment is marked as settled in the source group and recorded as an
    equal debt in the target group. The two writes are not atomic.
    """
    setup_logging(verbose)

    async def _move():
        async with open_runtime() as rt:
            source = await find_stored_group(rt, source_ref)
            target = await find_stored_group(rt, target_ref)
            source_group = await load_group(rt, source)
            target_group = await load_group(rt, target)

            plan = plan_settlements(
                await rt.ledger.get_balances(source.token, source.id),
                rt.settings.partition_limit,
            )
            if not 1 <= index <= len(plan):
                raise typer.BadParameter(f"No settlement #{index} in {source.name}")
            settlement = plan[index - 1]

            mover = CrossLedgerTransfer(rt.ledger)
            try:
                payer, payee = await mover.resolve(settlement, source.id, target_group)
            except UnresolvedIdentityError as e:
                console.print(f"[yellow]{e}[/yellow]")
                payer, payee = resolve_interactively(
                    settlement,
                    target_group,
                    await mover.known_links(source.id, target.id),
                    e.role,
                )

            console.print(
                f"\n{settlement.from_member_name} -> {settlement.to_member_name} "
                f"{format_amount(settlement.amount, source_group.currency)}\n"
                f"  settle in {source.name}\n"
                f"  {payer.name} will owe {payee.name} in {target.name}"
            )
            if not yes and not typer.confirm("Proceed?"):
                console.print("[yellow]Cancelled.[/yellow]")
                return

            try:
                await mover.execute(
                    settlement, source, target, payer, payee, source_group.currency
                )
            except PartialCrossLedgerFailureError as e:
                console.print(f"[red]{e}[/red]")
                console.print(
                    f"[red]Record the debt in {target.name} by hand or delete the "
                    f"transfer in {source.name}.[/red]"
                )
                raise typer.Exit(1) from e

            console.print("[green]Debt moved.[/green]")
            print_status(rt)

    run(_move())


# ============================================================================
# Expenses
# ============================================================================


@app.command("add-expense")
def add_expense(
    group_ref: str = typer.Argument(..., help="Group id or name"),
    description: str = typer.Argument(..., help="What was paid for"),
    amount: str = typer.Argument(..., help="Amount paid"),
    paid_by: str = typer.Option(..., "--paid-by", "-p", help="Member who paid"),
    split: list[str] = typer.Option(
        None, "--split", "-s", help="Member sharing the cost (repeatable, default all)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a shared expense (queued if offline)."""
    setup_logging(verbose)

    try:
        value = Decimal(amount)
    except InvalidOperation as e:
        raise typer.BadParameter(f"Invalid amount: {amount}") from e

    async def _add():
        async with open_runtime() as rt:
            stored = await find_stored_group(rt, group_ref)
            group = await load_group(rt, stored)
            payer = find_member(group, paid_by)
            sharers = [find_member(group, ref) for ref in split] if split else group.members

            entry = await rt.ledger.create_expense(
                stored.token,
                stored.id,
                SharedExpenseDraft(
                    description=description,
                    amount=value,
                    paid_by=payer.id,
                    split_between=[m.id for m in sharers],
                    currency=group.currency,
                ),
            )
            if is_pending(entry):
                console.print("[yellow]Offline: expense queued for sync.[/yellow]")
            else:
                console.print(f"[green]Recorded expense {entry.id}[/green]")
            print_status(rt)

    run(_add())


# ============================================================================
# Sync
# ============================================================================


@app.command()
def pending(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List changes waiting to be synced."""
    setup_logging(verbose)

    async def _pending():
        async with open_runtime() as rt:
            print_status(rt)
            mutations = await rt.ledger.queue.list_pending()
            if not mutations:
                console.print("[green]Nothing pending.[/green]")
                return

            names = {g.id: g.name for g in await rt.ledger.registry.list_groups()}
            table = Table(title="Pending changes")
            table.add_column("#", style="dim")
            table.add_column("Group", style="cyan")
            table.add_column("Action")
            table.add_column("Queued", style="dim")
            for mutation in mutations:
                table.add_row(
                    str(mutation.id),
                    names.get(mutation.group_id, mutation.group_id),
                    mutation.action_kind,
                    queued_ago(mutation.timestamp),
                )
            console.print(table)

    run(_pending())


@app.command()
def sync(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Replay pending changes and refresh cached groups."""
    setup_logging(verbose)

    async def _sync():
        async with open_runtime() as rt:
            coordinator = rt.coordinator
            if not coordinator.is_online:
                console.print("[yellow]Ledger service unreachable; try again later.[/yellow]")
                print_status(rt)
                return

            await coordinator.trigger_sync()
            refreshed = await rt.ledger.prefetch_all_groups()

            if coordinator.last_rejection:
                console.print(f"[red]{coordinator.last_rejection}[/red]")
                console.print(
                    "[red]Fix the problem or drop the change with "
                    "'share-cost discard <id>'.[/red]"
                )
            console.print(f"[green]Refreshed {refreshed} group(s).[/green]")
            print_status(rt)

    run(_sync())


@app.command()
def discard(
    mutation_id: int = typer.Argument(..., help="Pending change number"),
):
    """Drop a pending change that the server keeps rejecting."""

    async def _discard():
        async with open_runtime() as rt:
            await rt.coordinator.discard(mutation_id)
            console.print(f"[yellow]Discarded change #{mutation_id}[/yellow]")

    run(_discard())


if __name__ == "__main__":
    app()
