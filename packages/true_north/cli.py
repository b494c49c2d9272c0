"""CLI for the ``true_north`` package.

Every command loads the saved state from the database (see
:mod:`true_north.persistence`), applies one action through
:class:`~true_north.store.AppStore`, and saves the state back. Environment
variables (``OPENAI_API_KEY``, ``TRUE_NORTH_*``) are loaded from a local
``.env`` with ``python-dotenv`` before any command runs.

Command handlers (``cmd_*``) return a process exit code so they can be
called directly; the Typer commands turn non-zero codes into ``typer.Exit``.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from pydantic import ValidationError

from .categories import CATEGORIES, UNCATEGORIZED
from .config import ClassifierSettings, RecurringSettings
from .logging_setup import configure_logging, get_logger
from .models import Transaction, to_decimal
from .normalizers import BANK_NAMES, CSVNormalizer
from .persistence import load_snapshot, save_snapshot, session_scope
from .recurring import merchant_key
from .rules import DuplicateRuleError, apply_rules, suggest_keyword
from .store import AppStore
from .term_ui import confirm, prompt_keyword, select_category
from .workflow import BatchClassifier

_logger = get_logger("true_north.cli")


@dataclass(slots=True)
class CliState:
    database_url: str | None = None


# ---- Helpers -----------------------------------------------------------------


def _money(value: Decimal) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def _err(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def load_store(database_url: str | None) -> AppStore:
    store = AppStore(recurring_settings=RecurringSettings.from_env())
    with session_scope(url=database_url) as session:
        store.import_state(load_snapshot(session))
    return store


def save_store(store: AppStore, database_url: str | None) -> None:
    with session_scope(url=database_url) as session:
        save_snapshot(session, store.export_state())


def _build_classifier() -> BatchClassifier:
    if not os.getenv("OPENAI_API_KEY"):
        raise ValueError("OPENAI_API_KEY is not set in the environment.")
    # Deferred import keeps the openai SDK off the startup path of read-only commands.
    from .llm import LLMClassifier

    return LLMClassifier(settings=ClassifierSettings.from_env())


def _parse_month(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        year, month = (int(p) for p in value.split("-", 1))
        return date(year, month, 1)
    except ValueError as e:
        raise typer.BadParameter(f"expected YYYY-MM, got {value!r}") from e


def _parse_day(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from e


def _parse_amount(value: str) -> Decimal:
    try:
        return to_decimal(value.replace(",", "").replace("$", ""))
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


# ---- Command handlers --------------------------------------------------------


def cmd_import_csv(csv_path: Path, *, database_url: str | None = None) -> int:
    """Parse a bank CSV and add its transactions to the saved state."""

    try:
        text = csv_path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        _err(f"File not found: {csv_path}")
        return 1
    except PermissionError:
        _err(f"Permission denied: {csv_path}")
        return 1
    except UnicodeDecodeError as e:
        _err(f"Failed to read '{csv_path}' as UTF-8: {e}")
        return 1

    result = CSVNormalizer.parse(text)
    if not result.transactions:
        for message in result.errors or ["No valid transactions found in CSV"]:
            _err(message)
        return 1

    store = load_store(database_url)
    added = store.add_transactions(result.transactions)
    if result.balance is not None:
        store.set_bank_balance(result.balance)
    save_store(store, database_url)

    typer.echo(
        f"Imported {added} new transaction(s) from {BANK_NAMES[result.bank]} "
        f"({len(result.transactions) - added} already present)."
    )
    if result.balance is not None:
        typer.echo(f"Balance set to {_money(result.balance)}.")
    return 0


def cmd_categorize(
    *,
    database_url: str | None = None,
    build_classifier: Callable[[], BatchClassifier] = _build_classifier,
) -> int:
    """Apply rules, then classify what is left, saving the result.

    The classifier is only built when rules leave transactions uncategorized,
    so a rules-only run needs no API key.
    """

    store = load_store(database_url)
    if not store.transactions:
        typer.echo("No transactions to categorize.")
        return 0

    def _progress(completed: int, total: int) -> None:
        typer.echo(f"Analyzed {completed}/{total}", err=True)

    residual = [
        t for t in apply_rules(store.transactions, store.rules) if t.category == UNCATEGORIZED
    ]
    classifier: BatchClassifier | None = None
    if residual:
        try:
            classifier = build_classifier()
        except Exception as e:
            _err(f"failed to create classifier: {e}")
            return 1

    ok = store.reapply_rules(classifier, on_progress=_progress)
    save_store(store, database_url)

    remaining = len(store.uncategorized())
    if not ok:
        _err("categorization failed; rule matches were saved")
        return 1
    typer.echo(f"Categorization complete. {remaining} transaction(s) still uncategorized.")
    return 0


def _group_uncategorized(store: AppStore) -> list[tuple[str, list[Transaction]]]:
    groups: dict[str, list[Transaction]] = {}
    for txn in store.uncategorized():
        groups.setdefault(merchant_key(txn), []).append(txn)
    return sorted(groups.items(), key=lambda kv: (-len(kv[1]), kv[0]))


def review_uncategorized(
    store: AppStore,
    *,
    session: PromptSession | None = None,
    limit: int | None = None,
) -> int:
    """Walk uncategorized merchants interactively; return how many were categorized.

    Accepting ``Uncategorized`` skips a merchant. After a category is chosen
    the user may turn it into a rule, starting from the suggested keyword.
    """

    done = 0
    groups = _group_uncategorized(store)
    for key, txns in (groups[:limit] if limit else groups):
        sample = txns[0]
        total = sum((abs(t.amount) for t in txns), Decimal(0))
        typer.echo(f"\n{sample.description}  ({len(txns)} txn, {_money(total)})")
        category = select_category(CATEGORIES, default=UNCATEGORIZED, session=session)
        if category == UNCATEGORIZED:
            continue
        for txn in txns:
            store.update_transaction(txn.id, category=category)
        done += len(txns)
        _logger.info(
            "review:group_categorized key=%s category=%s count=%d", key, category, len(txns)
        )

        if not confirm("Always apply this category?", session=session):
            continue
        keyword = prompt_keyword(initial=suggest_keyword(sample.description), session=session)
        if not keyword:
            continue
        try:
            store.add_rule(keyword, category)
            typer.echo(f"Rule added: {keyword} -> {category}")
        except DuplicateRuleError as e:
            typer.echo(f"Skipped rule: {e}", err=True)
    return done


def cmd_review(*, database_url: str | None = None, limit: int | None = None) -> int:
    store = load_store(database_url)
    if not store.uncategorized():
        typer.echo("Nothing to review.")
        return 0
    try:
        done = review_uncategorized(store, limit=limit)
    except (KeyboardInterrupt, EOFError):
        save_store(store, database_url)
        typer.echo("\nReview interrupted; progress saved.", err=True)
        return 130
    save_store(store, database_url)
    typer.echo(f"Categorized {done} transaction(s).")
    return 0


def cmd_recurring(*, database_url: str | None = None) -> int:
    store = load_store(database_url)
    patterns = store.recurring_patterns
    if not patterns:
        typer.echo("No recurring bills detected.")
        return 0
    for p in patterns:
        typer.echo(
            f"{p.keyword:<30} {_money(p.average_amount):>12}  day {p.day_of_month:>2}  "
            f"x{p.occurrences}"
        )
    return 0


def cmd_safe_balance(*, database_url: str | None = None, today: date | None = None) -> int:
    store = load_store(database_url)
    result = store.safe_balance(today=today)
    typer.echo(f"Bank balance:        {_money(store.bank_balance)}")
    typer.echo(f"Upcoming bills:      {_money(result.total_upcoming_bills)}")
    typer.echo(f"Reserved (savings):  {_money(result.reserved_for_savings)}")
    typer.echo(f"Safe to spend:       {_money(result.safe_balance)}")
    for bill in result.upcoming_bills:
        flag = "  OVERDUE" if bill.overdue else ""
        typer.echo(
            f"  {bill.due_date.isoformat()}  {bill.description:<30} {_money(bill.amount):>12}{flag}"
        )
    return 0


def cmd_insights(*, database_url: str | None = None, month: date | None = None) -> int:
    store = load_store(database_url)
    subs = store.subscriptions()
    typer.echo("Subscriptions:")
    if not subs:
        typer.echo("  (none)")
    for s in subs:
        change = ""
        if s.price_increased and s.previous_amount is not None:
            change = f"  up from {_money(s.previous_amount)}"
        typer.echo(f"  {s.name:<30} {_money(s.current_amount):>12}{change}")

    surcharges = store.surcharges(month)
    typer.echo(
        f"Surcharges & fees:   {_money(surcharges.total)} "
        f"({len(surcharges.transactions)} transaction(s))"
    )
    round_ups = store.round_ups(month)
    typer.echo(
        f"Round-up potential:  {_money(round_ups.total)} "
        f"({round_ups.transaction_count} transaction(s))"
    )
    return 0


def cmd_export(path: Path, *, database_url: str | None = None) -> int:
    store = load_store(database_url)
    store.mark_backed_up()
    payload = store.export_state().model_dump_json(indent=2, by_alias=True)
    try:
        path.write_text(payload, encoding="utf-8")
    except OSError as e:
        _err(f"failed to write '{path}': {e}")
        return 1
    save_store(store, database_url)
    typer.echo(f"Exported {len(store.transactions)} transaction(s) to {path}.")
    return 0


def cmd_import_state(path: Path, *, database_url: str | None = None) -> int:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        _err(f"File not found: {path}")
        return 1
    except json.JSONDecodeError as e:
        _err(f"invalid JSON in '{path}': {e}")
        return 1
    if not isinstance(data, dict):
        _err("state file must contain a JSON object")
        return 1

    store = load_store(database_url)
    try:
        store.import_state(data)
    except ValidationError as e:
        _err(f"invalid state file: {e}")
        return 1
    save_store(store, database_url)
    typer.echo(
        f"Imported state: {len(store.transactions)} transaction(s), {len(store.rules)} rule(s)."
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Categorize bank transactions, detect recurring bills and project a safe-to-spend "
        "balance. Loads OPENAI_API_KEY from a local .env before running."
    ),
)
rules_app = typer.Typer(no_args_is_help=True, help="Manage keyword rules.")
app.add_typer(rules_app, name="rules")


def _db(ctx: typer.Context) -> str | None:
    state = ctx.find_object(CliState)
    return state.database_url if state is not None else None


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


@app.command("import-csv")
def import_csv_cmd(
    ctx: typer.Context,
    csv_path: Annotated[Path, typer.Argument(dir_okay=False, help="Bank CSV export")],
) -> None:
    """Import transactions (and the balance) from a bank CSV export."""

    _exit(cmd_import_csv(csv_path, database_url=_db(ctx)))


@app.command("categorize")
def categorize_cmd(ctx: typer.Context) -> None:
    """Apply rules, then classify remaining transactions with the LLM."""

    _exit(cmd_categorize(database_url=_db(ctx)))


@app.command("review")
def review_cmd(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option(min=1, help="Review at most N merchants")] = None,
) -> None:
    """Interactively categorize uncategorized merchants."""

    _exit(cmd_review(database_url=_db(ctx), limit=limit))


@rules_app.command("add")
def rules_add_cmd(
    ctx: typer.Context,
    keyword: Annotated[str, typer.Argument(help="Substring to match in descriptions")],
    category: Annotated[str, typer.Argument(help="Category to assign")],
) -> None:
    """Add a keyword rule."""

    store = load_store(_db(ctx))
    try:
        rule = store.add_rule(keyword, category)
    except ValueError as e:
        _err(str(e))
        raise typer.Exit(1) from e
    save_store(store, _db(ctx))
    typer.echo(f"Added rule {rule.id}: {rule.keyword} -> {rule.category}")


@rules_app.command("list")
def rules_list_cmd(ctx: typer.Context) -> None:
    """List rules in insertion order."""

    store = load_store(_db(ctx))
    if not store.rules:
        typer.echo("No rules.")
        return
    for rule in store.rules:
        typer.echo(f"{rule.id}  {rule.keyword:<30} {rule.category}")


@rules_app.command("remove")
def rules_remove_cmd(
    ctx: typer.Context,
    rule_id: Annotated[str, typer.Argument(help="Rule id as shown by 'rules list'")],
) -> None:
    """Remove a rule by id."""

    store = load_store(_db(ctx))
    if not store.remove_rule(rule_id):
        _err(f"no rule with id {rule_id!r}")
        raise typer.Exit(1)
    save_store(store, _db(ctx))
    typer.echo(f"Removed rule {rule_id}")


@app.command("recurring")
def recurring_cmd(ctx: typer.Context) -> None:
    """List detected recurring bills."""

    _exit(cmd_recurring(database_url=_db(ctx)))


@app.command("safe-balance")
def safe_balance_cmd(
    ctx: typer.Context,
    today: Annotated[
        str | None, typer.Option(help="Project from this date (YYYY-MM-DD) instead of today")
    ] = None,
) -> None:
    """Show the safe-to-spend balance and upcoming bills."""

    _exit(cmd_safe_balance(database_url=_db(ctx), today=_parse_day(today)))


@app.command("insights")
def insights_cmd(
    ctx: typer.Context,
    month: Annotated[str | None, typer.Option(help="Month to analyze (YYYY-MM)")] = None,
) -> None:
    """Show subscriptions, surcharges and round-up potential."""

    _exit(cmd_insights(database_url=_db(ctx), month=_parse_month(month)))


@app.command("set-balance")
def set_balance_cmd(
    ctx: typer.Context,
    amount: Annotated[str, typer.Argument(help="Current bank balance")],
) -> None:
    """Set the bank balance used for the safe-to-spend projection."""

    store = load_store(_db(ctx))
    store.set_bank_balance(_parse_amount(amount))
    save_store(store, _db(ctx))
    typer.echo(f"Balance set to {_money(store.bank_balance)}.")


@app.command("set-savings")
def set_savings_cmd(
    ctx: typer.Context,
    amount: Annotated[str, typer.Argument(help="Amount to reserve for savings")],
) -> None:
    """Set the savings reserve deducted from the safe-to-spend balance."""

    store = load_store(_db(ctx))
    try:
        store.set_savings_reserve(_parse_amount(amount))
    except ValueError as e:
        _err(str(e))
        raise typer.Exit(1) from e
    save_store(store, _db(ctx))
    typer.echo(f"Savings reserve set to {_money(store.savings_reserve)}.")


@app.command("export")
def export_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(dir_okay=False, help="Destination JSON file")],
) -> None:
    """Export the full state to a JSON backup."""

    _exit(cmd_export(path, database_url=_db(ctx)))


@app.command("import-state")
def import_state_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(dir_okay=False, help="JSON backup to restore")],
) -> None:
    """Restore state from a JSON backup (fields present in the file replace saved ones)."""

    _exit(cmd_import_state(path, database_url=_db(ctx)))


@app.callback()
def _root(
    ctx: typer.Context,
    database_url: Annotated[
        str | None,
        typer.Option(help="Override TRUE_NORTH_DATABASE_URL (default: ./true_north.db)"),
    ] = None,
) -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps variables already set in the environment
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()
    ctx.obj = CliState(database_url=database_url)


if __name__ == "__main__":  # pragma: no cover - exercised via the console script
    app()
