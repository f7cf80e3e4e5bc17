from __future__ import annotations

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from finance_tracker.db import accounts, transactions, unit_of_work, users
from finance_tracker.errors import ConflictError, NotFoundError, ValidationError
from finance_tracker.schemas import AccountPatch, AccountPayload, AccountResponse

ACCOUNT_COLUMNS = (
    accounts.c.id,
    accounts.c.user_id,
    accounts.c.name,
    accounts.c.type,
    accounts.c.currency,
    accounts.c.balance,
    accounts.c.created_at,
)


def _to_response(row) -> AccountResponse:
    return AccountResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        currency=row["currency"],
        balance=row["balance"],
        created_at=row["created_at"],
    )


def fetch_owned_account(conn: Connection, user_id: int, account_id: int):
    return conn.execute(
        select(*ACCOUNT_COLUMNS).where(accounts.c.id == account_id, accounts.c.user_id == user_id)
    ).mappings().first()


def list_accounts(engine: Engine, user_id: int) -> list[AccountResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(*ACCOUNT_COLUMNS)
            .where(accounts.c.user_id == user_id)
            .order_by(accounts.c.created_at.desc(), accounts.c.id.desc())
        ).mappings().all()
    return [_to_response(row) for row in rows]


def get_account(engine: Engine, user_id: int, account_id: int) -> AccountResponse:
    with engine.begin() as conn:
        row = fetch_owned_account(conn, user_id, account_id)
    if not row:
        raise NotFoundError("Account not found.")
    return _to_response(row)


def create_account(engine: Engine, user_id: int, payload: AccountPayload) -> AccountResponse:
    payload = AccountPayload.validate_payload(payload)
    with unit_of_work(engine) as conn:
        currency = payload.currency
        if currency is None:
            currency = conn.execute(
                select(users.c.currency).where(users.c.id == user_id)
            ).scalar_one_or_none()
            if currency is None:
                raise NotFoundError("User not found.")
        row = conn.execute(
            insert(accounts)
            .values(
                user_id=user_id,
                name=payload.name,
                type=payload.type,
                currency=currency,
                balance=payload.balance,
            )
            .returning(*ACCOUNT_COLUMNS)
        ).mappings().first()
    return _to_response(row)


def update_account(
    engine: Engine, user_id: int, account_id: int, payload: AccountPatch
) -> AccountResponse:
    """Rename or retype an account.

    The currency is fixed at creation; supplying a different one is rejected.
    The balance is owned by the transaction engine and is not writable here.
    """
    payload = AccountPatch.validate_payload(payload)
    with unit_of_work(engine) as conn:
        existing = fetch_owned_account(conn, user_id, account_id)
        if not existing:
            raise NotFoundError("Account not found.")
        if payload.currency is not None and payload.currency != existing["currency"]:
            raise ValidationError("Account currency cannot be changed after creation.")

        values = {}
        if payload.name is not None:
            values["name"] = payload.name
        if payload.type is not None:
            values["type"] = payload.type
        if not values:
            return _to_response(existing)

        row = conn.execute(
            update(accounts)
            .where(accounts.c.id == account_id, accounts.c.user_id == user_id)
            .values(**values)
            .returning(*ACCOUNT_COLUMNS)
        ).mappings().first()
    return _to_response(row)


def delete_account(engine: Engine, user_id: int, account_id: int) -> None:
    with unit_of_work(engine) as conn:
        if not fetch_owned_account(conn, user_id, account_id):
            raise NotFoundError("Account not found.")
        transaction_count = conn.execute(
            select(func.count()).select_from(transactions).where(transactions.c.account_id == account_id)
        ).scalar_one()
        if transaction_count > 0:
            raise ConflictError(
                "Cannot delete account that has transactions. Please delete all transactions first."
            )
        conn.execute(
            accounts.delete().where(accounts.c.id == account_id, accounts.c.user_id == user_id)
        )
