"""CLI entrypoint for designer-dispatch."""

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

import rich_click as click

from designer_dispatch import __version__
from designer_dispatch.config import Settings
from designer_dispatch.dispatch.controllers import (
    TASK_ACTIONS,
    AvailabilityListCommand,
    AvailabilitySetCommand,
    CompanyAddCommand,
    CreditsBalanceCommand,
    CreditsBuyCommand,
    DbCommand,
    DispatchCliController,
    OfferActionCommand,
    OfferListCommand,
    OrderPayCommand,
    OrderPlaceCommand,
    TaskActionCommand,
    TaskInspectCommand,
    TaskListCommand,
    UserAddCommand,
    UserListCommand,
)
from designer_dispatch.dispatch.models import TaskPriority, TaskStatus, UserRole
from designer_dispatch.errors import DispatchError

click.rich_click.USE_MARKDOWN = True
DISPATCH_CONTROLLER = DispatchCliController()
LOG_FORMAT = "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"

CommandT = TypeVar("CommandT")

_db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="designer-dispatch")
def designer_dispatch() -> None:
    """Designer dispatch CLI."""

    _configure_logging(Settings.from_env().log.level)


@designer_dispatch.group()
def db() -> None:
    """Schema commands."""


@db.command("init")
@_db_path_option
def db_init(db_path: Path | None) -> None:
    """Create or migrate the database schema."""

    _run(DISPATCH_CONTROLLER.init_db, DbCommand(db_path=db_path))


@designer_dispatch.group()
def companies() -> None:
    """Company accounts."""


@companies.command("add")
@_db_path_option
@click.option("--company-id", required=True, help="Company id.")
@click.option("--name", required=True, help="Company name.")
@click.option(
    "--free-credits",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Free credits granted to the company.",
)
def companies_add(db_path: Path | None, company_id: str, name: str, free_credits: int) -> None:
    """Register a company."""

    _run(
        DISPATCH_CONTROLLER.add_company,
        CompanyAddCommand(
            db_path=db_path,
            company_id=company_id,
            name=name,
            free_credits=free_credits,
        ),
    )


@designer_dispatch.group()
def users() -> None:
    """User accounts."""


@users.command("add")
@_db_path_option
@click.option("--user-id", required=True, help="User id.")
@click.option("--name", "display_name", required=True, help="Display name.")
@click.option(
    "--role",
    type=click.Choice([role.value for role in UserRole], case_sensitive=False),
    required=True,
    help="Marketplace role.",
)
@click.option("--company-id", default=None, help="Company the user belongs to.")
def users_add(
    db_path: Path | None,
    user_id: str,
    display_name: str,
    role: str,
    company_id: str | None,
) -> None:
    """Register a user."""

    _run(
        DISPATCH_CONTROLLER.add_user,
        UserAddCommand(
            db_path=db_path,
            user_id=user_id,
            display_name=display_name,
            role=role,
            company_id=company_id,
        ),
    )


@users.command("list")
@_db_path_option
@click.option(
    "--role",
    type=click.Choice([role.value for role in UserRole], case_sensitive=False),
    default=None,
    help="Filter by role.",
)
def users_list(db_path: Path | None, role: str | None) -> None:
    """List users."""

    _run(DISPATCH_CONTROLLER.list_users, UserListCommand(db_path=db_path, role=role))


@designer_dispatch.group()
def availability() -> None:
    """Designer availability windows."""


@availability.command("set")
@_db_path_option
@click.option("--designer-id", required=True, help="Designer user id.")
@click.option("--day", type=click.DateTime(formats=["%Y-%m-%d"]), required=True, help="UTC date.")
@click.option(
    "--window",
    "windows",
    multiple=True,
    help="Window as HH:MM-HH:MM (UTC). Repeat for several; omit to clear the day.",
)
def availability_set(
    db_path: Path | None,
    designer_id: str,
    day: datetime,
    windows: tuple[str, ...],
) -> None:
    """Replace a designer's windows for one day."""

    _run(
        DISPATCH_CONTROLLER.set_availability,
        AvailabilitySetCommand(
            db_path=db_path,
            designer_id=designer_id,
            day=day.date(),
            windows=windows,
        ),
    )


@availability.command("list")
@_db_path_option
@click.option("--start", type=click.DateTime(formats=["%Y-%m-%d"]), required=True)
@click.option("--end", type=click.DateTime(formats=["%Y-%m-%d"]), required=True)
@click.option("--designer-id", default=None, help="Only this designer.")
def availability_list(
    db_path: Path | None,
    start: datetime,
    end: datetime,
    designer_id: str | None,
) -> None:
    """Show declared availability for an inclusive date range."""

    _run(
        DISPATCH_CONTROLLER.list_availability,
        AvailabilityListCommand(
            db_path=db_path,
            start=start.date(),
            end=end.date(),
            designer_id=designer_id,
        ),
    )


@designer_dispatch.group()
def credits() -> None:
    """Credit packages and balances."""


@credits.command("buy")
@_db_path_option
@click.option("--user-id", required=True, help="Purchasing user id.")
@click.option("--credits", "amount", type=click.IntRange(min=1), required=True)
@click.option("--package-name", default="package", show_default=True)
@click.option("--company-id", default=None, help="Share the package with this company.")
@click.option(
    "--expires-in-days",
    type=click.IntRange(min=1),
    default=None,
    help="Package lifetime; never expires when omitted.",
)
def credits_buy(  # noqa: PLR0913
    db_path: Path | None,
    user_id: str,
    amount: int,
    package_name: str,
    company_id: str | None,
    expires_in_days: int | None,
) -> None:
    """Record a paid credit package."""

    _run(
        DISPATCH_CONTROLLER.buy_credits,
        CreditsBuyCommand(
            db_path=db_path,
            user_id=user_id,
            credits=amount,
            package_name=package_name,
            company_id=company_id,
            expires_in_days=expires_in_days,
        ),
    )


@credits.command("balance")
@_db_path_option
@click.option("--user-id", required=True, help="User id.")
def credits_balance(db_path: Path | None, user_id: str) -> None:
    """Show a user's spendable credits."""

    _run(DISPATCH_CONTROLLER.balance, CreditsBalanceCommand(db_path=db_path, user_id=user_id))


@designer_dispatch.group()
def orders() -> None:
    """Orders and payment."""


@orders.command("place")
@_db_path_option
@click.option("--user-id", required=True, help="Ordering user id.")
@click.option("--quantity", type=click.IntRange(min=1), default=1, show_default=True)
@click.option(
    "--priority",
    type=click.Choice([priority.value for priority in TaskPriority], case_sensitive=False),
    default=TaskPriority.NORMAL.value,
    show_default=True,
)
@click.option(
    "--use-credits/--no-credits",
    default=True,
    show_default=True,
    help="Fund the order from credits when the balance covers it.",
)
def orders_place(
    db_path: Path | None,
    user_id: str,
    quantity: int,
    priority: str,
    use_credits: bool,
) -> None:
    """Place an order; funded orders are offered to a designer right away."""

    _run(
        DISPATCH_CONTROLLER.place_order,
        OrderPlaceCommand(
            db_path=db_path,
            user_id=user_id,
            quantity=quantity,
            priority=priority,
            use_credits=use_credits,
        ),
    )


@orders.command("pay")
@_db_path_option
@click.option("--order-id", required=True, help="Order id.")
@click.option("--payment-ref", required=True, help="Payment provider reference.")
def orders_pay(db_path: Path | None, order_id: str, payment_ref: str) -> None:
    """Signal that payment for an order was confirmed."""

    _run(
        DISPATCH_CONTROLLER.pay_order,
        OrderPayCommand(db_path=db_path, order_id=order_id, payment_ref=payment_ref),
    )


@designer_dispatch.group()
def offers() -> None:
    """Designer offers."""


@offers.command("pending")
@_db_path_option
@click.option("--as", "caller_id", required=True, help="Designer user id.")
def offers_pending(db_path: Path | None, caller_id: str) -> None:
    """List live offers for a designer."""

    _run(DISPATCH_CONTROLLER.list_offers, OfferListCommand(db_path=db_path, caller_id=caller_id))


@offers.command("confirm")
@_db_path_option
@click.option("--as", "caller_id", required=True, help="Designer user id.")
@click.option("--assignment-id", required=True, help="Offer id.")
def offers_confirm(db_path: Path | None, caller_id: str, assignment_id: str) -> None:
    """Accept an offer within the confirmation window."""

    _run(
        DISPATCH_CONTROLLER.confirm_offer,
        OfferActionCommand(db_path=db_path, caller_id=caller_id, assignment_id=assignment_id),
    )


@offers.command("reject")
@_db_path_option
@click.option("--as", "caller_id", required=True, help="Designer user id.")
@click.option("--assignment-id", required=True, help="Offer id.")
def offers_reject(db_path: Path | None, caller_id: str, assignment_id: str) -> None:
    """Decline an offer; the task goes to the next designer."""

    _run(
        DISPATCH_CONTROLLER.reject_offer,
        OfferActionCommand(db_path=db_path, caller_id=caller_id, assignment_id=assignment_id),
    )


@designer_dispatch.group()
def tasks() -> None:
    """Task inspection and work transitions."""


@tasks.command("list")
@_db_path_option
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Filter by status.",
)
@click.option("--limit", type=click.IntRange(min=1, max=500), default=50, show_default=True)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _run(
        DISPATCH_CONTROLLER.list_tasks,
        TaskListCommand(db_path=db_path, status=status, limit=limit),
    )


@tasks.command("inspect")
@_db_path_option
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Inspect one task with offers and event history."""

    _run(DISPATCH_CONTROLLER.inspect_task, TaskInspectCommand(db_path=db_path, task_id=task_id))


@tasks.command("act")
@_db_path_option
@click.option("--as", "caller_id", required=True, help="Acting user id.")
@click.option("--task-id", required=True, help="Task id.")
@click.argument("action", type=click.Choice(TASK_ACTIONS, case_sensitive=False))
@click.option("--reason", default=None, help="Reason for fail-qa or complaint.")
def tasks_act(
    db_path: Path | None,
    caller_id: str,
    task_id: str,
    action: str,
    reason: str | None,
) -> None:
    """Move a task through its work lifecycle."""

    _run(
        DISPATCH_CONTROLLER.task_action,
        TaskActionCommand(
            db_path=db_path,
            caller_id=caller_id,
            task_id=task_id,
            action=action.lower(),
            reason=reason,
        ),
    )


@designer_dispatch.command("sweep")
@_db_path_option
def sweep(db_path: Path | None) -> None:
    """Expire overdue offers and offer every unassigned task."""

    _run(DISPATCH_CONTROLLER.sweep, DbCommand(db_path=db_path))


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except DispatchError as error:
        raise click.ClickException(str(error)) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def _configure_logging(level_name: str) -> None:
    package_logger = logging.getLogger("designer_dispatch")
    level = getattr(logging, level_name.strip().upper(), logging.INFO)
    package_logger.setLevel(level)
    # Re-bind on every invocation so the handler writes to the current stderr.
    for stale in [h for h in package_logger.handlers if isinstance(h, _CliLogHandler)]:
        package_logger.removeHandler(stale)
    handler = _CliLogHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)


class _CliLogHandler(logging.StreamHandler):
    pass


if __name__ == "__main__":  # pragma: no cover
    designer_dispatch()
