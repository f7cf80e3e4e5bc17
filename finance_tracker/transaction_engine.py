"""
Transaction engine.

Every mutation runs as one unit of work that keeps the owning account's
running balance equal to its initial balance plus the signed amounts of its
live transactions:

- create: insert the row, then apply its signed delta to the account
- update: apply the patch, reverse the old delta on the old account, apply
  the new delta on the (possibly different) account
- delete: delete the row, archive a copy, reverse the delta

Validation and ownership checks run before the first write, so a rejected
call leaves the store untouched. The row write comes first and is checked
against what was read, so two requests racing on one transaction cannot both
move the balance: the loser gets zero affected rows and rolls back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from finance_tracker.account_store import fetch_owned_account
from finance_tracker.db import accounts, archived_transactions, transactions, unit_of_work
from finance_tracker.errors import ConflictError, NotFoundError, StoreError, ValidationError
from finance_tracker.schemas import (
    ArchivedTransactionResponse,
    Pagination,
    TransactionPage,
    TransactionPatch,
    TransactionPayload,
    TransactionResponse,
    TransactionType,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
SORT_FIELDS = ("date", "amount", "created_at")
SORT_ORDERS = ("asc", "desc")
DEFAULT_SORT = "date"
DEFAULT_ORDER = "desc"


@dataclass(frozen=True)
class TransactionFilters:
    type: str | None = None
    account_id: int | None = None
    category: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0
    sort: str = DEFAULT_SORT
    order: str = DEFAULT_ORDER


def signed_delta(amount: Decimal, txn_type: str) -> Decimal:
    """Balance effect of a transaction: positive for income, negative for expense."""
    amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return amount if txn_type == "income" else -amount


def _joined_select():
    return select(
        transactions,
        accounts.c.name.label("account_name"),
        accounts.c.type.label("account_type"),
    ).select_from(transactions.outerjoin(accounts, transactions.c.account_id == accounts.c.id))


def _fetch_joined(conn: Connection, user_id: int, transaction_id: int):
    return conn.execute(
        _joined_select().where(
            transactions.c.id == transaction_id,
            transactions.c.user_id == user_id,
        )
    ).mappings().first()


def _fetch_owned(conn: Connection, user_id: int, transaction_id: int):
    return conn.execute(
        select(transactions).where(
            transactions.c.id == transaction_id,
            transactions.c.user_id == user_id,
        )
    ).mappings().first()


def _adjust_balance(conn: Connection, account_id: int, delta: Decimal) -> None:
    result = conn.execute(
        update(accounts)
        .where(accounts.c.id == account_id)
        .values(balance=accounts.c.balance + delta)
    )
    if result.rowcount != 1:
        raise StoreError("Internal server error.")


def _to_response(row) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        amount=row["amount"],
        description=row["description"],
        category=row["category"],
        type=row["type"],
        currency=row["currency"],
        date=row["date"],
        created_at=row["created_at"],
        account_name=row["account_name"],
        account_type=row["account_type"],
    )


def create_transaction(
    engine: Engine,
    user_id: int,
    payload: TransactionPayload,
    today: date | None = None,
) -> TransactionResponse:
    payload = TransactionPayload.validate_payload(payload)
    transaction_date = payload.date or today or date.today()

    with unit_of_work(engine) as conn:
        account = fetch_owned_account(conn, user_id, payload.account_id)
        if not account:
            raise NotFoundError("Account not found.")
        currency = payload.currency or account["currency"]

        transaction_id = conn.execute(
            insert(transactions)
            .values(
                user_id=user_id,
                account_id=account["id"],
                amount=payload.amount,
                description=payload.description,
                category=payload.category,
                type=payload.type,
                currency=currency,
                date=transaction_date,
            )
            .returning(transactions.c.id)
        ).scalar_one()
        _adjust_balance(conn, account["id"], signed_delta(payload.amount, payload.type))
        row = _fetch_joined(conn, user_id, transaction_id)

    logger.info(
        "Created transaction %s on account %s: %s %s %s",
        transaction_id,
        account["id"],
        payload.type,
        payload.amount,
        currency,
    )
    return _to_response(row)


def get_transaction(engine: Engine, user_id: int, transaction_id: int) -> TransactionResponse:
    with engine.begin() as conn:
        row = _fetch_joined(conn, user_id, transaction_id)
    if not row:
        raise NotFoundError("Transaction not found.")
    return _to_response(row)


def update_transaction(
    engine: Engine,
    user_id: int,
    transaction_id: int,
    patch: TransactionPatch,
) -> TransactionResponse:
    """Apply a partial update and move the balance effect accordingly.

    Amount, type and account may all change at once, so the old effect is
    reversed on the old account before the new one is applied.
    """
    patch = TransactionPatch.validate_payload(patch)
    changes = patch.changes()

    with unit_of_work(engine) as conn:
        existing = _fetch_owned(conn, user_id, transaction_id)
        if not existing:
            raise NotFoundError("Transaction not found.")
        if patch.account_id is not None and not fetch_owned_account(conn, user_id, patch.account_id):
            raise NotFoundError("Account not found.")

        # Only applies if the balance-relevant columns still hold what was read,
        # so a concurrent change cannot have its delta reversed twice.
        result = conn.execute(
            update(transactions)
            .where(
                transactions.c.id == transaction_id,
                transactions.c.user_id == user_id,
                transactions.c.account_id == existing["account_id"],
                transactions.c.amount == existing["amount"],
                transactions.c.type == existing["type"],
            )
            .ordered_values(*((transactions.c[name], value) for name, value in changes))
        )
        if result.rowcount != 1:
            raise ConflictError("Transaction was changed by another request. Please retry.")
        _adjust_balance(conn, existing["account_id"], -signed_delta(existing["amount"], existing["type"]))
        row = _fetch_joined(conn, user_id, transaction_id)
        _adjust_balance(conn, row["account_id"], signed_delta(row["amount"], row["type"]))

    logger.info(
        "Updated transaction %s (%s)",
        transaction_id,
        ", ".join(name for name, _ in changes),
    )
    return _to_response(row)


def delete_transaction(engine: Engine, user_id: int, transaction_id: int) -> None:
    with unit_of_work(engine) as conn:
        existing = _fetch_owned(conn, user_id, transaction_id)
        if not existing:
            raise NotFoundError("Transaction not found.")

        # The row is removed first; a concurrent delete that already took it
        # leaves nothing to archive or reverse.
        result = conn.execute(
            transactions.delete().where(
                transactions.c.id == transaction_id,
                transactions.c.user_id == user_id,
            )
        )
        if result.rowcount != 1:
            raise NotFoundError("Transaction not found.")
        conn.execute(
            insert(archived_transactions).values(
                original_id=existing["id"],
                user_id=existing["user_id"],
                account_id=existing["account_id"],
                amount=existing["amount"],
                description=existing["description"],
                category=existing["category"],
                type=existing["type"],
                currency=existing["currency"],
                date=existing["date"],
            )
        )
        _adjust_balance(conn, existing["account_id"], -signed_delta(existing["amount"], existing["type"]))

    logger.info("Deleted and archived transaction %s", transaction_id)


def list_transactions(
    engine: Engine,
    user_id: int,
    filters: TransactionFilters | None = None,
) -> TransactionPage:
    filters = filters or TransactionFilters()
    if filters.limit < 1:
        raise ValidationError("Limit must be at least 1.")
    if filters.offset < 0:
        raise ValidationError("Offset cannot be negative.")

    conditions = [transactions.c.user_id == user_id]
    if filters.type in TransactionType.values:
        conditions.append(transactions.c.type == filters.type)
    if filters.account_id is not None:
        conditions.append(transactions.c.account_id == filters.account_id)
    if filters.category:
        conditions.append(transactions.c.category == filters.category)
    if filters.start_date is not None:
        conditions.append(transactions.c.date >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(transactions.c.date <= filters.end_date)

    sort_field = filters.sort if filters.sort in SORT_FIELDS else DEFAULT_SORT
    sort_order = filters.order if filters.order in SORT_ORDERS else DEFAULT_ORDER
    sort_column = transactions.c[sort_field]
    if sort_order == "desc":
        ordering = (sort_column.desc(), transactions.c.id.desc())
    else:
        ordering = (sort_column.asc(), transactions.c.id.asc())

    with engine.begin() as conn:
        rows = conn.execute(
            _joined_select()
            .where(*conditions)
            .order_by(*ordering)
            .limit(filters.limit)
            .offset(filters.offset)
        ).mappings().all()
        total = conn.execute(
            select(func.count()).select_from(transactions).where(*conditions)
        ).scalar_one()

    return TransactionPage(
        transactions=[_to_response(row) for row in rows],
        pagination=Pagination(
            total=total,
            limit=filters.limit,
            offset=filters.offset,
            has_more=filters.offset + filters.limit < total,
        ),
    )


def list_archived_transactions(engine: Engine, user_id: int) -> list[ArchivedTransactionResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(archived_transactions)
            .where(archived_transactions.c.user_id == user_id)
            .order_by(archived_transactions.c.archived_at.desc(), archived_transactions.c.id.desc())
        ).mappings().all()
    return [
        ArchivedTransactionResponse(
            id=row["id"],
            original_id=row["original_id"],
            user_id=row["user_id"],
            account_id=row["account_id"],
            amount=row["amount"],
            description=row["description"],
            category=row["category"],
            type=row["type"],
            currency=row["currency"],
            date=row["date"],
            archived_at=row["archived_at"],
        )
        for row in rows
    ]
