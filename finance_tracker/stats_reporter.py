from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Mapping

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from finance_tracker.currency_conversion import (
    coerce_decimal,
    convert_amount,
    format_amount,
    normalize_currency,
    quantize_money,
)
from finance_tracker.db import accounts, transactions
from finance_tracker.errors import ValidationError
from finance_tracker.schemas import (
    ConvertedSummary,
    CurrencyBalance,
    StatsResponse,
    TypeCurrencyTotal,
)

PERIODS = ("today", "week", "month", "year", "all")
ZERO = Decimal("0")


def period_start(period: str, today: date) -> date | None:
    """First calendar day included in a stats window; ``None`` means unbounded."""
    normalized = period.strip().lower()
    if normalized == "today":
        return today
    if normalized == "week":
        return today - timedelta(days=7)
    if normalized == "month":
        return today.replace(day=1)
    if normalized == "year":
        return today.replace(month=1, day=1)
    if normalized == "all":
        return None
    raise ValidationError(f"Invalid period. Must be one of: {', '.join(PERIODS)}.")


def transaction_stats(
    engine: Engine,
    user_id: int,
    period: str = "month",
    today: date | None = None,
) -> StatsResponse:
    """Per (type, currency) sums for the period and per-currency balance totals.

    Amounts are reported in their own currencies; see ``summarize`` for a
    single-currency view.
    """
    today = today or date.today()
    start = period_start(period, today)
    normalized_period = period.strip().lower()

    conditions = [transactions.c.user_id == user_id]
    if normalized_period == "today":
        conditions.append(transactions.c.date == today)
    elif start is not None:
        conditions.append(transactions.c.date >= start)

    total_expr = func.coalesce(func.sum(transactions.c.amount), 0).label("total")
    count_expr = func.count().label("count")
    balance_expr = func.coalesce(func.sum(accounts.c.balance), 0).label("total_balance")

    with engine.begin() as conn:
        stat_rows = conn.execute(
            select(transactions.c.type, transactions.c.currency, total_expr, count_expr)
            .where(*conditions)
            .group_by(transactions.c.type, transactions.c.currency)
            .order_by(transactions.c.type, transactions.c.currency)
        ).mappings().all()
        balance_rows = conn.execute(
            select(accounts.c.currency, balance_expr)
            .where(accounts.c.user_id == user_id)
            .group_by(accounts.c.currency)
            .order_by(accounts.c.currency)
        ).mappings().all()

    return StatsResponse(
        period=normalized_period,
        start_date=start,
        transactions=[
            TypeCurrencyTotal(
                type=row["type"],
                currency=row["currency"],
                total=quantize_money(row["total"]),
                count=int(row["count"]),
            )
            for row in stat_rows
        ],
        account_balances=[
            CurrencyBalance(
                currency=row["currency"],
                total_balance=quantize_money(row["total_balance"]),
            )
            for row in balance_rows
        ],
    )


def summarize(
    stats: StatsResponse,
    display_currency: str,
    rates: Mapping[str, Decimal],
) -> ConvertedSummary:
    """Collapse the per-currency breakdowns into one display currency."""
    target = normalize_currency(display_currency)
    totals = {"income": ZERO, "expense": ZERO}
    for row in stats.transactions:
        if row.type in totals:
            totals[row.type] += convert_amount(row.total, row.currency, target, rates)

    total_balance = ZERO
    for row in stats.account_balances:
        total_balance += convert_amount(coerce_decimal(row.total_balance), row.currency, target, rates)

    total_income = quantize_money(totals["income"])
    total_expenses = quantize_money(totals["expense"])
    net_flow = quantize_money(totals["income"] - totals["expense"])
    total_balance = quantize_money(total_balance)
    return ConvertedSummary(
        currency=target,
        total_income=total_income,
        total_expenses=total_expenses,
        net_flow=net_flow,
        total_balance=total_balance,
        formatted={
            "total_income": format_amount(total_income, target),
            "total_expenses": format_amount(total_expenses, target),
            "net_flow": format_amount(net_flow, target),
            "total_balance": format_amount(total_balance, target),
        },
    )
