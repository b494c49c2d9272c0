from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import select
from typer.testing import CliRunner

import true_north.cli as cli
import true_north.llm as llm_mod
from tests.helpers.llm_stub import DecidingChatClient
from true_north.persistence import TnTransaction, session_scope

CSV = """Date,Amount,Description,Balance
03/02/2024,-80.00,WOOLWORTHS 1234 SYDNEY,920.00
05/02/2024,-22.99,NETFLIX.COM,897.01
06/02/2024,-18.40,UBER *TRIP,878.61
07/02/2024,-45.00,KMART 44,833.61
05/01/2024,-16.99,NETFLIX.COM,1000.00
"""


def _decide(row: dict[str, str]) -> dict[str, Any]:
    desc = row["description"].upper()

    def pick(category: str, merchant: str, subscription: bool = False) -> dict[str, Any]:
        return {
            "id": row["id"],
            "category": category,
            "cleanMerchantName": merchant,
            "isSubscription": subscription,
            "confidence": 0.92,
        }

    if "NETFLIX" in desc:
        return pick("Subscriptions", "Netflix", subscription=True)
    if "UBER" in desc:
        return pick("Transport", "Uber")
    return pick("Shopping", desc.split(" ")[0].title())


def test_e2e_import_rules_categorize_persists_expected(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("TRUE_NORTH_CHUNK_DELAY_MS", "0")
    monkeypatch.setenv("TRUE_NORTH_RESIDUAL_BATCH_SIZE", "2")

    client = DecidingChatClient(_decide)
    monkeypatch.setattr(llm_mod, "OpenAI", lambda **kwargs: client)

    csv_path = tmp_path / "statement.csv"
    csv_path.write_text(CSV, encoding="utf-8")
    runner = CliRunner()

    # -------------------------
    # Import, add a rule, categorize (twice to assert idempotency)
    # -------------------------
    assert runner.invoke(cli.app, ["import-csv", str(csv_path)]).exit_code == 0
    assert runner.invoke(cli.app, ["rules", "add", "woolworths", "Groceries"]).exit_code == 0

    first = runner.invoke(cli.app, ["categorize"])
    assert first.exit_code == 0, first.output
    # Four residual transactions in chunks of two; the rule-matched one never reaches the model.
    assert len(client.calls) == 2
    prompts = "\n".join(c["messages"][-1]["content"] for c in client.calls)
    assert "WOOLWORTHS" not in prompts

    second = runner.invoke(cli.app, ["categorize"])
    assert second.exit_code == 0, second.output
    assert len(client.calls) == 2

    # -------------------------
    # Assert persisted categories and derived recurring state
    # -------------------------
    with session_scope() as session:
        rows = session.execute(
            select(TnTransaction.description, TnTransaction.category, TnTransaction.is_recurring)
        ).all()
    got = {(desc, cat, rec) for desc, cat, rec in rows}
    assert got == {
        ("WOOLWORTHS 1234 SYDNEY", "Groceries", False),
        ("NETFLIX.COM", "Subscriptions", True),
        ("UBER *TRIP", "Transport", False),
        ("KMART 44", "Shopping", False),
    }
    assert len(rows) == 5

    store = cli.load_store(None)
    patterns = store.recurring_patterns
    assert [(p.keyword, p.average_amount) for p in patterns] == [("NETFLIX", Decimal("22.99"))]
    safe = store.safe_balance()
    assert safe.reserved_for_savings == Decimal("0")
